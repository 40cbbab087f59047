"""
持倉服務層

處理買入、賣出、編輯、刪除持倉的流程：
1. 讀取目前持倉（並驗證歸屬）
2. 以成本計算函式算出新的數量、平均成本、總投入
3. 寫入持倉，並自動產生一筆對應的交易紀錄

所有前置條件都在寫入前檢查。持倉與交易在同一個資料庫交易內寫入，
由請求層級的 session 一起 commit，任一步失敗則整體 rollback。
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.config import Settings, get_settings
from portfolio_tracker.database import utcnow
from portfolio_tracker.exceptions import (
    ConcurrentModificationError,
    DuplicateSymbolError,
    InvalidPriceError,
    PortfolioNotFoundError,
    PositionNotFoundError,
)
from portfolio_tracker.models.position import Position
from portfolio_tracker.models.transaction import Transaction, TransactionType
from portfolio_tracker.schemas.position import (
    PositionCreate,
    PositionResponse,
    PositionSell,
    PositionUpdate,
    PositionWithMetrics,
)
from portfolio_tracker.services.cost_basis import (
    compute_average_cost_on_buy,
    compute_cost_basis_after_sale,
    compute_metrics,
    compute_update_impact,
    round_money,
    round_quantity,
    validate_buy,
    validate_position_update,
    validate_sell,
)
from portfolio_tracker.store import PositionStore

logger = logging.getLogger(__name__)


class MutationOutcome(str, enum.Enum):
    """持倉異動的結果狀態"""
    CREATED = "created"   # 新建持倉
    MERGED = "merged"     # 加碼既有持倉
    REDUCED = "reduced"   # 賣出
    UPDATED = "updated"   # 直接編輯


@dataclass
class MutationResult:
    """一次異動寫入的持倉與交易（數量未變時無交易）"""
    outcome: MutationOutcome
    position: Position
    transaction: Transaction | None = None


class PositionService:
    """持倉業務邏輯"""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.store = PositionStore(db)
        self.settings = settings or get_settings()

    # === 異動 ===

    async def record_purchase(
        self, user_id: str, data: PositionCreate
    ) -> MutationResult:
        """
        記錄一筆買入

        - 投資組合內尚無該代碼：建立持倉，平均成本 = 買入價
        - 已有持倉：以加權平均重算成本並累加數量
        兩種情況都會產生一筆 BUY 交易。
        """
        await self._get_owned_portfolio(data.portfolio_id, user_id)
        validate_buy(data.quantity, data.purchase_price)
        quantity = round_quantity(data.quantity)
        price = round_quantity(data.purchase_price)

        existing = await self.store.fetch_position(data.portfolio_id, data.symbol)

        if existing is None:
            position = self.store.create_position({
                "portfolio_id": data.portfolio_id,
                "symbol": data.symbol,
                "name": data.name,
                "quantity": quantity,
                "average_cost": price,
                "total_invested": round_money(quantity * price),
                "current_price": data.current_price,
            })
            outcome = MutationOutcome.CREATED
        else:
            result = compute_average_cost_on_buy(
                existing.quantity,
                existing.average_cost,
                quantity,
                price,
            )
            patch = {
                "quantity": round_quantity(existing.quantity + quantity),
                "average_cost": result.average_cost,
                "total_invested": result.total_invested,
            }
            if self.settings.merge_name_policy == "latest":
                patch["name"] = data.name
            if data.current_price is not None:
                patch["current_price"] = data.current_price
            position = self.store.update_position(existing, patch)
            outcome = MutationOutcome.MERGED

        await self.store.flush()
        tx = await self._record_transaction(
            position, TransactionType.BUY,
            quantity, price, data.transaction_date,
        )

        logger.info(
            "買入 %s x%s @%s (%s): qty=%s avg=%s",
            position.symbol, quantity, price,
            outcome.value, position.quantity, position.average_cost,
        )
        return MutationResult(outcome=outcome, position=position, transaction=tx)

    async def record_sale(
        self, user_id: str, position_id: str, data: PositionSell
    ) -> MutationResult:
        """
        記錄一筆賣出

        平均成本不變，數量與總投入依剩餘數量減少；交易以實際賣價記錄。
        """
        position = await self._get_position(position_id, user_id)
        validate_sell(position.quantity, data.quantity)
        quantity = round_quantity(data.quantity)
        price = round_quantity(data.price)
        if price <= 0:
            raise InvalidPriceError("賣出價格必須為正數，且至少為 0.00000001")

        result = compute_cost_basis_after_sale(
            position.quantity, position.average_cost, quantity
        )
        self.store.update_position(position, {
            "quantity": result.remaining_quantity,
            "total_invested": result.total_invested,
        })
        await self.store.flush()
        tx = await self._record_transaction(
            position, TransactionType.SELL,
            quantity, price, data.transaction_date,
        )

        logger.info(
            "賣出 %s x%s @%s: 剩餘 qty=%s",
            position.symbol, quantity, price, position.quantity,
        )
        return MutationResult(
            outcome=MutationOutcome.REDUCED, position=position, transaction=tx
        )

    async def edit_position(
        self, user_id: str, position_id: str, data: PositionUpdate
    ) -> MutationResult:
        """
        直接編輯持倉

        數量增加視為以 purchase_price 買入差額（必須提供價格），
        數量減少視為以目前平均成本賣出差額；有數量變動時自動產生交易紀錄。
        指定 expected_version 時，版本不符即拒絕寫入。
        """
        position = await self._get_position(position_id, user_id)

        if (
            data.expected_version is not None
            and data.expected_version != position.version
        ):
            raise ConcurrentModificationError(
                f"持倉版本已變更（目前為 {position.version}），請重新讀取後再試"
            )

        patch: dict = {}

        if data.symbol is not None and data.symbol != position.symbol:
            if await self.store.symbol_exists(
                position.portfolio_id, data.symbol, exclude_position_id=position.id
            ):
                raise DuplicateSymbolError(f"此投資組合已有 {data.symbol} 的持倉")
            patch["symbol"] = data.symbol

        if data.name is not None:
            patch["name"] = data.name

        if data.current_price is not None:
            patch["current_price"] = data.current_price

        impact = None
        previous_average_cost = position.average_cost
        if data.quantity is not None:
            validate_position_update(position, data.quantity, data.purchase_price)
            new_quantity = round_quantity(data.quantity)
            impact = compute_update_impact(
                position, new_quantity, data.purchase_price
            )
            patch.update({
                "quantity": new_quantity,
                "average_cost": impact.new_average_cost,
                "total_invested": impact.new_total_invested,
            })

        self.store.update_position(position, patch)
        await self.store.flush()

        tx = None
        if impact is not None and impact.quantity_change != 0:
            if impact.quantity_change > 0:
                tx = await self._record_transaction(
                    position, TransactionType.BUY,
                    impact.quantity_change, data.purchase_price,
                    data.transaction_date,
                )
            else:
                # 減少的部分以原平均成本記錄，不影響剩餘成本
                tx = await self._record_transaction(
                    position, TransactionType.SELL,
                    -impact.quantity_change, previous_average_cost,
                    data.transaction_date,
                )

        logger.info(
            "編輯持倉 %s: 變更欄位 %s", position.symbol, ", ".join(sorted(patch))
        )
        return MutationResult(
            outcome=MutationOutcome.UPDATED, position=position, transaction=tx
        )

    async def delete_position(self, user_id: str, position_id: str) -> None:
        """刪除持倉（交易紀錄一併刪除）"""
        position = await self._get_position(position_id, user_id)
        await self.store.delete_position(position)

    # === 查詢 ===

    async def get_position(self, user_id: str, position_id: str) -> Position:
        return await self._get_position(position_id, user_id)

    async def list_positions(
        self, user_id: str, portfolio_id: str
    ) -> list[Position]:
        await self._get_owned_portfolio(portfolio_id, user_id)
        return await self.store.list_positions(portfolio_id)

    async def list_positions_with_metrics(
        self, user_id: str, portfolio_id: str
    ) -> list[PositionWithMetrics]:
        """持倉清單，附上以 current_price 計算的現值與未實現損益"""
        positions = await self.list_positions(user_id, portfolio_id)
        return [
            PositionWithMetrics(
                **PositionResponse.model_validate(p).model_dump(),
                **compute_metrics(p, p.current_price).as_dict(),
            )
            for p in positions
        ]

    async def symbol_exists(
        self,
        user_id: str,
        portfolio_id: str,
        symbol: str,
        exclude_position_id: str | None = None,
    ) -> bool:
        await self._get_owned_portfolio(portfolio_id, user_id)
        return await self.store.symbol_exists(
            portfolio_id, symbol.strip().upper(), exclude_position_id
        )

    async def count_positions(self, user_id: str, portfolio_id: str) -> int:
        await self._get_owned_portfolio(portfolio_id, user_id)
        return await self.store.count_positions(portfolio_id)

    # === 內部 ===

    async def _get_owned_portfolio(self, portfolio_id: str, user_id: str):
        portfolio = await self.store.fetch_owned_portfolio(portfolio_id, user_id)
        if not portfolio:
            raise PortfolioNotFoundError("投資組合不存在")
        return portfolio

    async def _get_position(self, position_id: str, user_id: str) -> Position:
        position = await self.store.fetch_position_by_id(position_id, user_id)
        if not position:
            raise PositionNotFoundError("持倉不存在")
        return position

    async def _record_transaction(
        self,
        position: Position,
        tx_type: TransactionType,
        quantity: Decimal,
        price: Decimal,
        transaction_date: datetime | None,
    ) -> Transaction:
        """產生持倉異動對應的交易紀錄"""
        tx = self.store.create_transaction({
            "position_id": position.id,
            "type": tx_type,
            "quantity": round_quantity(quantity),
            "price": round_quantity(price),
            "transaction_date": transaction_date or utcnow(),
        })
        await self.store.flush()
        return tx
