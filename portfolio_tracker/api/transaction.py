"""
交易 API 路由

交易紀錄查詢、統計、管理員刪除與全系統帳本修復。
"""

import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.api.auth import get_admin_user, get_current_user
from portfolio_tracker.database import get_db
from portfolio_tracker.models.transaction import TransactionType
from portfolio_tracker.models.user import User
from portfolio_tracker.schemas.common import ApiResponse, PaginatedResponse
from portfolio_tracker.schemas.ledger import LedgerSweepResult
from portfolio_tracker.schemas.transaction import (
    TransactionDetail,
    TransactionFilter,
    TransactionStats,
)
from portfolio_tracker.services.ledger import LedgerService
from portfolio_tracker.services.transaction_service import TransactionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/transactions", tags=["交易"])


@router.get("/recent", response_model=ApiResponse[list[TransactionDetail]])
async def list_recent_transactions(
    limit: int = Query(default=10, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """所有投資組合中最近的交易"""
    items = await TransactionService(db).list_recent(user.id, limit)
    return ApiResponse(data=items)


@router.get("/stats", response_model=ApiResponse[TransactionStats])
async def get_transaction_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """交易統計"""
    stats = await TransactionService(db).get_stats(user.id)
    return ApiResponse(data=stats)


@router.get(
    "/portfolio/{portfolio_id}",
    response_model=ApiResponse[PaginatedResponse[TransactionDetail]],
)
async def list_portfolio_transactions(
    portfolio_id: str,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    transaction_type: TransactionType | None = Query(default=None),
    symbol: str | None = Query(default=None, max_length=10),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    sort_by: Literal[
        "transaction_date", "created_at", "quantity", "price", "symbol"
    ] = Query(default="transaction_date"),
    sort_order: Literal["asc", "desc"] = Query(default="desc"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    取得投資組合交易紀錄（分頁）

    可依交易類型、代碼、日期區間（含起訖）、代碼或名稱關鍵字篩選，並指定排序。
    """
    filters = TransactionFilter(
        transaction_type=transaction_type,
        symbol=symbol,
        start_date=start_date,
        end_date=end_date,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    items, total = await TransactionService(db).list_by_portfolio(
        user.id, portfolio_id, page, page_size, filters
    )
    return ApiResponse(
        data=PaginatedResponse.build(items, total, page, page_size)
    )


@router.post(
    "/reconcile/all",
    response_model=ApiResponse[LedgerSweepResult],
    tags=["維護"],
)
async def repair_all_positions(
    admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    """
    全系統帳本比對與修復（管理員）

    以交易帳本回放結果覆寫有偏差的持倉；帳本本身無效者只回報。
    """
    logger.info("管理員 %s 執行全系統帳本修復", admin.email)
    result = await LedgerService(db).repair_all()
    return ApiResponse(
        data=result,
        message=f"已檢查 {result.checked} 筆持倉，修復 {result.repaired} 筆",
    )


@router.get("/{transaction_id}", response_model=ApiResponse[TransactionDetail])
async def get_transaction(
    transaction_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """取得單筆交易"""
    tx = await TransactionService(db).get_transaction(user.id, transaction_id)
    return ApiResponse(data=tx)


@router.delete("/{transaction_id}", response_model=ApiResponse[bool])
async def delete_transaction(
    transaction_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    刪除單筆交易

    持倉不會自動調整，需再執行帳本比對修復。
    """
    await TransactionService(db).delete_transaction(user.id, transaction_id)
    return ApiResponse(data=True, message="交易已刪除，請重新比對持倉帳本")
