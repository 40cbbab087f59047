"""
帳本回放與持倉比對 (Ledger Reconciliation)

交易紀錄是不可變的帳本，持倉欄位則是逐筆累加的結果。
依交易日期重新回放帳本可得出持倉應有的數量與成本，
用來偵測並修正兩者之間的偏差（例如寫入中途失敗、管理員刪除交易）。
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.config import Settings, get_settings
from portfolio_tracker.exceptions import (
    OversellError,
    PortfolioNotFoundError,
    PositionNotFoundError,
)
from portfolio_tracker.models.position import Position
from portfolio_tracker.models.transaction import TransactionType
from portfolio_tracker.schemas.ledger import DriftReport, LedgerSweepResult
from portfolio_tracker.services.cost_basis import (
    ZERO,
    round_money,
    round_quantity,
    to_decimal,
)
from portfolio_tracker.store import PositionStore

logger = logging.getLogger(__name__)


class LedgerEntry(Protocol):
    """可回放的交易（ORM Transaction 或測試用替身）"""
    type: Any
    quantity: Decimal
    price: Decimal
    transaction_date: datetime


@dataclass(frozen=True)
class LedgerState:
    """帳本回放結果"""
    quantity: Decimal
    average_cost: Decimal
    total_invested: Decimal


@dataclass(frozen=True)
class LedgerTolerance:
    """比對容許誤差"""
    quantity: Decimal = Decimal("0.00000001")
    average_cost: Decimal = Decimal("0.0001")
    total_invested: Decimal = Decimal("0.01")

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerTolerance":
        return cls(
            quantity=settings.ledger_quantity_tolerance,
            average_cost=settings.ledger_cost_tolerance,
            total_invested=settings.ledger_amount_tolerance,
        )


def _replay_order(tx: LedgerEntry) -> datetime:
    # SQLite 讀回的 datetime 不帶時區，與記憶體中的值比較前一律視為 UTC
    executed_at = tx.transaction_date
    if executed_at.tzinfo is None:
        return executed_at.replace(tzinfo=timezone.utc)
    return executed_at


def replay_transactions(transactions: Iterable[LedgerEntry]) -> LedgerState:
    """
    依交易日期回放帳本，計算持倉的數量、平均成本與總投入

    - 以 transaction_date 遞增排序；同一時間的交易維持原順序（穩定排序）
    - BUY：累加數量與成本總額
    - SELL：以賣出當下的平均成本扣除成本總額，平均成本不變

    Raises:
        OversellError: 賣出數量超過當下累計持有數量
    """
    ordered = sorted(transactions, key=_replay_order)

    total_quantity = ZERO
    total_value = ZERO

    for tx in ordered:
        quantity = to_decimal(tx.quantity)
        if tx.type == TransactionType.BUY:
            total_quantity += quantity
            total_value += quantity * to_decimal(tx.price)
        elif tx.type == TransactionType.SELL:
            if quantity > total_quantity:
                raise OversellError(
                    f"賣出 {quantity} 單位超過當時持有的 {total_quantity} 單位"
                )
            avg_cost_at_sale = (
                total_value / total_quantity if total_quantity > 0 else ZERO
            )
            total_value -= quantity * avg_cost_at_sale
            total_quantity -= quantity

    average_cost = total_value / total_quantity if total_quantity > 0 else ZERO

    return LedgerState(
        quantity=round_quantity(total_quantity),
        average_cost=round_quantity(average_cost),
        total_invested=round_money(total_value),
    )


def compare_position(
    position: Position,
    state: LedgerState,
    tolerance: LedgerTolerance | None = None,
    transaction_count: int = 0,
) -> DriftReport:
    """
    比對持倉欄位與帳本回放結果

    帳本數量為 0 時不比較平均成本：全數賣出後持倉保留原平均成本，
    而回放結果的平均成本為 0。
    """
    tolerance = tolerance or LedgerTolerance()

    diffs = []
    if abs(state.quantity - position.quantity) > tolerance.quantity:
        diffs.append("quantity")
    if state.quantity > 0 and (
        abs(state.average_cost - position.average_cost) > tolerance.average_cost
    ):
        diffs.append("average_cost")
    if abs(state.total_invested - position.total_invested) > tolerance.total_invested:
        diffs.append("total_invested")

    return DriftReport(
        position_id=position.id,
        symbol=position.symbol,
        status="drift" if diffs else "matched",
        transaction_count=transaction_count,
        recorded_quantity=position.quantity,
        recorded_average_cost=position.average_cost,
        recorded_total_invested=position.total_invested,
        ledger_quantity=state.quantity,
        ledger_average_cost=state.average_cost,
        ledger_total_invested=state.total_invested,
        detail=f"不一致欄位: {', '.join(diffs)}" if diffs else None,
    )


class LedgerService:
    """帳本比對與修復服務"""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.store = PositionStore(db)
        self.tolerance = LedgerTolerance.from_settings(settings or get_settings())

    async def check_position(self, position_id: str, user_id: str) -> DriftReport:
        """比對單一持倉（僅限本人）"""
        position = await self._get_position(position_id, user_id)
        report, _ = await self._inspect(position)
        return report

    async def repair_position(self, position_id: str, user_id: str) -> DriftReport:
        """比對單一持倉，若有偏差則以帳本回放結果覆寫持倉欄位"""
        position = await self._get_position(position_id, user_id)
        return await self._repair(position)

    async def check_portfolio(
        self, portfolio_id: str, user_id: str
    ) -> list[DriftReport]:
        """比對投資組合內所有持倉"""
        portfolio = await self.store.fetch_owned_portfolio(portfolio_id, user_id)
        if not portfolio:
            raise PortfolioNotFoundError("投資組合不存在")

        reports = []
        for position in await self.store.list_positions(portfolio_id):
            report, _ = await self._inspect(position)
            reports.append(report)
        return reports

    async def repair_all(self) -> LedgerSweepResult:
        """
        遍歷全系統持倉並修復偏差（管理員維護用）

        帳本本身無效（賣超）的持倉只回報，不修改。
        """
        positions = await self.store.list_all_positions()
        matched = repaired = invalid = 0

        for position in positions:
            report = await self._repair(position)
            if report.status == "matched":
                matched += 1
            elif report.status == "invalid_ledger":
                invalid += 1
            elif report.repaired:
                repaired += 1

        logger.info(
            "帳本全面比對完成：共 %d 筆，一致 %d、已修復 %d、帳本無效 %d",
            len(positions), matched, repaired, invalid,
        )
        return LedgerSweepResult(
            checked=len(positions),
            matched=matched,
            repaired=repaired,
            invalid=invalid,
        )

    async def _get_position(self, position_id: str, user_id: str) -> Position:
        position = await self.store.fetch_position_by_id(position_id, user_id)
        if not position:
            raise PositionNotFoundError("持倉不存在")
        return position

    async def _inspect(
        self, position: Position
    ) -> tuple[DriftReport, LedgerState | None]:
        """回放帳本並比對，帳本賣超時回報 invalid_ledger"""
        transactions = await self.store.fetch_transactions_by_position(position.id)
        try:
            state = replay_transactions(transactions)
        except OversellError as e:
            logger.warning("持倉 %s 帳本無效: %s", position.symbol, e)
            report = DriftReport(
                position_id=position.id,
                symbol=position.symbol,
                status="invalid_ledger",
                transaction_count=len(transactions),
                recorded_quantity=position.quantity,
                recorded_average_cost=position.average_cost,
                recorded_total_invested=position.total_invested,
                detail=str(e),
            )
            return report, None

        report = compare_position(
            position, state, self.tolerance, transaction_count=len(transactions)
        )
        if report.status == "drift":
            logger.warning("持倉 %s 與帳本不一致: %s", position.symbol, report.detail)
        return report, state

    async def _repair(self, position: Position) -> DriftReport:
        report, state = await self._inspect(position)
        if report.status != "drift" or state is None:
            return report

        patch = {
            "quantity": state.quantity,
            "total_invested": state.total_invested,
        }
        # 全數賣出後保留原平均成本
        if state.quantity > 0:
            patch["average_cost"] = state.average_cost

        self.store.update_position(position, patch)
        await self.store.flush()
        logger.info(
            "已依帳本修復持倉 %s: qty=%s avg=%s invested=%s",
            position.symbol, position.quantity,
            position.average_cost, position.total_invested,
        )
        return report.model_copy(update={"repaired": True})
