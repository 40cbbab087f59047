"""
投資組合 API 路由

投資組合 CRUD、持倉摘要、持倉清單與帳本比對。
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.api.auth import get_current_user
from portfolio_tracker.database import get_db
from portfolio_tracker.models.user import User
from portfolio_tracker.schemas.common import ApiResponse
from portfolio_tracker.schemas.ledger import DriftReport
from portfolio_tracker.schemas.portfolio import (
    PortfolioCreate,
    PortfolioResponse,
    PortfolioSummary,
    PortfolioUpdate,
)
from portfolio_tracker.schemas.position import PositionWithMetrics
from portfolio_tracker.services.ledger import LedgerService
from portfolio_tracker.services.portfolio_service import PortfolioService
from portfolio_tracker.services.position_service import PositionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/portfolio", tags=["投資組合"])


@router.get("/", response_model=ApiResponse[list[PortfolioResponse]])
async def list_portfolios(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """取得用戶所有投資組合"""
    portfolios = await PortfolioService(db).list_portfolios(user.id)
    return ApiResponse(
        data=[PortfolioResponse.model_validate(p) for p in portfolios]
    )


@router.post("/", response_model=ApiResponse[PortfolioResponse])
async def create_portfolio(
    data: PortfolioCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """建立投資組合"""
    portfolio = await PortfolioService(db).create_portfolio(user.id, data)
    return ApiResponse(
        data=PortfolioResponse.model_validate(portfolio),
        message="投資組合已建立",
    )


@router.get("/summaries", response_model=ApiResponse[list[PortfolioSummary]])
async def get_portfolio_summaries(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    各投資組合摘要

    所有持倉皆有市價時才附上現值與未實現損益。
    """
    summaries = await PortfolioService(db).get_summaries(user.id)
    return ApiResponse(data=summaries)


@router.get("/{portfolio_id}", response_model=ApiResponse[PortfolioResponse])
async def get_portfolio(
    portfolio_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """取得單一投資組合"""
    portfolio = await PortfolioService(db).get_portfolio(user.id, portfolio_id)
    return ApiResponse(data=PortfolioResponse.model_validate(portfolio))


@router.put("/{portfolio_id}", response_model=ApiResponse[PortfolioResponse])
async def update_portfolio(
    portfolio_id: str,
    data: PortfolioUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """更新投資組合"""
    portfolio = await PortfolioService(db).update_portfolio(
        user.id, portfolio_id, data
    )
    return ApiResponse(data=PortfolioResponse.model_validate(portfolio))


@router.delete("/{portfolio_id}")
async def delete_portfolio(
    portfolio_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """刪除投資組合（持倉與交易一併刪除）"""
    await PortfolioService(db).delete_portfolio(user.id, portfolio_id)
    return ApiResponse(message="投資組合已刪除")


@router.get(
    "/{portfolio_id}/positions",
    response_model=ApiResponse[list[PositionWithMetrics]],
)
async def list_portfolio_positions(
    portfolio_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """投資組合內的持倉（含市價指標）"""
    positions = await PositionService(db).list_positions_with_metrics(
        user.id, portfolio_id
    )
    return ApiResponse(data=positions)


@router.get(
    "/{portfolio_id}/positions/exists",
    response_model=ApiResponse[bool],
)
async def check_symbol_exists(
    portfolio_id: str,
    symbol: str = Query(min_length=1, max_length=10),
    exclude_position_id: str | None = Query(default=None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    投資組合內是否已有該代碼的持倉

    供表單即時檢查；編輯既有持倉時以 exclude_position_id 排除自己。
    """
    exists = await PositionService(db).symbol_exists(
        user.id, portfolio_id, symbol, exclude_position_id
    )
    return ApiResponse(data=exists)


@router.get(
    "/{portfolio_id}/positions/count",
    response_model=ApiResponse[int],
)
async def count_portfolio_positions(
    portfolio_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """投資組合內的持倉數"""
    count = await PositionService(db).count_positions(user.id, portfolio_id)
    return ApiResponse(data=count)


@router.get(
    "/{portfolio_id}/reconcile",
    response_model=ApiResponse[list[DriftReport]],
)
async def check_portfolio_ledger(
    portfolio_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """比對投資組合內所有持倉與交易帳本（唯讀）"""
    reports = await LedgerService(db).check_portfolio(portfolio_id, user.id)
    return ApiResponse(data=reports)
