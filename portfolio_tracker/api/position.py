"""
持倉 API 路由

買入、賣出、編輯、刪除持倉，持倉交易紀錄與帳本比對。
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.api.auth import get_current_user
from portfolio_tracker.database import get_db
from portfolio_tracker.models.user import User
from portfolio_tracker.schemas.common import ApiResponse
from portfolio_tracker.schemas.ledger import DriftReport
from portfolio_tracker.schemas.position import (
    MutationResponse,
    PositionCreate,
    PositionResponse,
    PositionSell,
    PositionUpdate,
    PositionWithMetrics,
)
from portfolio_tracker.schemas.transaction import TransactionResponse
from portfolio_tracker.services.cost_basis import compute_metrics
from portfolio_tracker.services.ledger import LedgerService
from portfolio_tracker.services.position_service import (
    MutationOutcome,
    MutationResult,
    PositionService,
)
from portfolio_tracker.services.transaction_service import TransactionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/positions", tags=["持倉"])


def _to_response(result: MutationResult) -> MutationResponse:
    return MutationResponse(
        outcome=result.outcome.value,
        position=PositionResponse.model_validate(result.position),
        transaction=(
            TransactionResponse.model_validate(result.transaction)
            if result.transaction else None
        ),
    )


@router.post("/", response_model=ApiResponse[MutationResponse])
async def record_purchase(
    data: PositionCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    記錄買入

    投資組合內已有相同代碼時合併為同一持倉並重算平均成本，
    否則建立新持倉。自動產生 BUY 交易紀錄。
    """
    result = await PositionService(db).record_purchase(user.id, data)
    message = (
        "持倉已建立" if result.outcome == MutationOutcome.CREATED
        else "已合併至既有持倉"
    )
    return ApiResponse(data=_to_response(result), message=message)


@router.get("/{position_id}", response_model=ApiResponse[PositionWithMetrics])
async def get_position(
    position_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """取得單一持倉（含市價指標）"""
    position = await PositionService(db).get_position(user.id, position_id)
    return ApiResponse(
        data=PositionWithMetrics(
            **PositionResponse.model_validate(position).model_dump(),
            **compute_metrics(position, position.current_price).as_dict(),
        )
    )


@router.patch("/{position_id}", response_model=ApiResponse[MutationResponse])
async def edit_position(
    position_id: str,
    data: PositionUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    編輯持倉

    數量增加時必須提供 purchase_price；可帶 expected_version 避免覆蓋他人的修改。
    """
    result = await PositionService(db).edit_position(user.id, position_id, data)
    return ApiResponse(data=_to_response(result), message="持倉已更新")


@router.post("/{position_id}/sell", response_model=ApiResponse[MutationResponse])
async def record_sale(
    position_id: str,
    data: PositionSell,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """記錄賣出（平均成本不變）"""
    result = await PositionService(db).record_sale(user.id, position_id, data)
    return ApiResponse(data=_to_response(result), message="已記錄賣出")


@router.delete("/{position_id}")
async def delete_position(
    position_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """刪除持倉（交易紀錄一併刪除）"""
    await PositionService(db).delete_position(user.id, position_id)
    return ApiResponse(message="持倉已刪除")


@router.get(
    "/{position_id}/transactions",
    response_model=ApiResponse[list[TransactionResponse]],
)
async def list_position_transactions(
    position_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """持倉的交易紀錄（新到舊）"""
    transactions = await TransactionService(db).list_by_position(
        user.id, position_id
    )
    return ApiResponse(
        data=[TransactionResponse.model_validate(tx) for tx in transactions]
    )


@router.get(
    "/{position_id}/transactions/count",
    response_model=ApiResponse[int],
)
async def count_position_transactions(
    position_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """持倉的交易筆數"""
    position = await PositionService(db).get_position(user.id, position_id)
    count = await TransactionService(db).count_by_position(position.id)
    return ApiResponse(data=count)


@router.get("/{position_id}/reconcile", response_model=ApiResponse[DriftReport])
async def check_position_ledger(
    position_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """比對持倉與交易帳本（唯讀）"""
    report = await LedgerService(db).check_position(position_id, user.id)
    return ApiResponse(data=report)


@router.post("/{position_id}/reconcile", response_model=ApiResponse[DriftReport])
async def repair_position_ledger(
    position_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """比對持倉與交易帳本，有偏差時以帳本回放結果修復"""
    report = await LedgerService(db).repair_position(position_id, user.id)
    message = "已依帳本修復持倉" if report.repaired else "持倉與帳本一致"
    if report.status == "invalid_ledger":
        message = "帳本無效，未修改持倉"
    return ApiResponse(data=report, message=message)
