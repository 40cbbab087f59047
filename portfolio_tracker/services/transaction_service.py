"""
交易服務層

交易紀錄的查詢、統計與管理員刪除。
交易只由持倉異動自動產生，此處不提供新增或修改。
"""

import logging
from datetime import timedelta, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.config import Settings, get_settings
from portfolio_tracker.database import utcnow
from portfolio_tracker.exceptions import (
    PortfolioNotFoundError,
    PositionNotFoundError,
    TransactionNotFoundError,
)
from portfolio_tracker.models.portfolio import Portfolio
from portfolio_tracker.models.position import Position
from portfolio_tracker.models.transaction import Transaction, TransactionType
from portfolio_tracker.schemas.transaction import (
    TransactionDetail,
    TransactionFilter,
    TransactionStats,
)
from portfolio_tracker.services.cost_basis import ZERO, round_money
from portfolio_tracker.store import PositionStore

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "transaction_date": Transaction.transaction_date,
    "created_at": Transaction.created_at,
    "quantity": Transaction.quantity,
    "price": Transaction.price,
    "symbol": Position.symbol,
}


def _to_detail(tx: Transaction, position: Position) -> TransactionDetail:
    return TransactionDetail(
        id=tx.id,
        position_id=tx.position_id,
        type=tx.type,
        quantity=tx.quantity,
        price=tx.price,
        transaction_date=tx.transaction_date,
        created_at=tx.created_at,
        portfolio_id=position.portfolio_id,
        symbol=position.symbol,
        name=position.name,
    )


class TransactionService:
    """交易業務邏輯"""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.store = PositionStore(db)
        self.settings = settings or get_settings()

    def _owned(self, user_id: str):
        """交易 → 持倉 → 投資組合，限定為該用戶所有"""
        return (
            select(Transaction, Position)
            .join(Position, Transaction.position_id == Position.id)
            .join(Portfolio, Position.portfolio_id == Portfolio.id)
            .where(Portfolio.user_id == user_id)
        )

    async def list_by_position(
        self, user_id: str, position_id: str
    ) -> list[Transaction]:
        """持倉的交易紀錄（新到舊）"""
        position = await self.store.fetch_position_by_id(position_id, user_id)
        if not position:
            raise PositionNotFoundError("持倉不存在")

        stmt = (
            select(Transaction)
            .where(Transaction.position_id == position_id)
            .order_by(
                Transaction.transaction_date.desc(), Transaction.created_at.desc()
            )
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_by_portfolio(
        self,
        user_id: str,
        portfolio_id: str,
        page: int = 1,
        page_size: int = 20,
        filters: TransactionFilter | None = None,
    ) -> tuple[list[TransactionDetail], int]:
        """
        取得投資組合的交易紀錄（分頁）

        可依交易類型、代碼、日期區間與關鍵字篩選；預設依交易日期新到舊，
        排序欄位相同時再依建立時間排序。
        """
        portfolio = await self.store.fetch_owned_portfolio(portfolio_id, user_id)
        if not portfolio:
            raise PortfolioNotFoundError("投資組合不存在")

        filters = filters or TransactionFilter()
        conditions = [Position.portfolio_id == portfolio_id]
        if filters.transaction_type is not None:
            conditions.append(Transaction.type == filters.transaction_type)
        if filters.symbol:
            conditions.append(Position.symbol.ilike(f"%{filters.symbol.strip()}%"))
        if filters.start_date is not None:
            conditions.append(Transaction.transaction_date >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(Transaction.transaction_date <= filters.end_date)
        if filters.search:
            keyword = f"%{filters.search.strip()}%"
            conditions.append(
                or_(Position.symbol.ilike(keyword), Position.name.ilike(keyword))
            )

        # 計算總數
        count_stmt = (
            select(func.count())
            .select_from(Transaction)
            .join(Position, Transaction.position_id == Position.id)
            .where(*conditions)
        )
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        # 查詢分頁資料
        sort_column = _SORT_COLUMNS[filters.sort_by]
        if filters.sort_order == "asc":
            ordering = (sort_column.asc(), Transaction.created_at.asc())
        else:
            ordering = (sort_column.desc(), Transaction.created_at.desc())

        offset = (page - 1) * page_size
        stmt = (
            self._owned(user_id)
            .where(*conditions)
            .order_by(*ordering)
            .offset(offset)
            .limit(page_size)
        )
        result = await self.db.execute(stmt)
        items = [_to_detail(tx, pos) for tx, pos in result.all()]
        return items, total

    async def list_recent(
        self, user_id: str, limit: int = 10
    ) -> list[TransactionDetail]:
        """用戶所有投資組合中最近的交易"""
        stmt = (
            self._owned(user_id)
            .order_by(
                Transaction.transaction_date.desc(), Transaction.created_at.desc()
            )
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [_to_detail(tx, pos) for tx, pos in result.all()]

    async def get_transaction(
        self, user_id: str, transaction_id: str
    ) -> TransactionDetail:
        stmt = self._owned(user_id).where(Transaction.id == transaction_id)
        result = await self.db.execute(stmt)
        row = result.first()
        if not row:
            raise TransactionNotFoundError("交易紀錄不存在")
        tx, position = row
        return _to_detail(tx, position)

    async def delete_transaction(self, user_id: str, transaction_id: str) -> None:
        """
        刪除單筆交易（管理用途）

        不會回頭調整持倉，持倉與帳本會因此產生偏差，
        需透過帳本比對修復。
        """
        stmt = self._owned(user_id).where(Transaction.id == transaction_id)
        result = await self.db.execute(stmt)
        row = result.first()
        if not row:
            raise TransactionNotFoundError("交易紀錄不存在")
        tx, position = row

        await self.db.delete(tx)
        await self.db.flush()
        logger.warning(
            "已刪除交易 %s (%s %s)，持倉 %s 需重新比對帳本",
            tx.id, tx.type.value, tx.quantity, position.symbol,
        )

    async def count_by_position(self, position_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Transaction)
            .where(Transaction.position_id == position_id)
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def get_stats(self, user_id: str) -> TransactionStats:
        """用戶交易統計：筆數、買賣金額、近期活動"""
        result = await self.db.execute(self._owned(user_id))
        transactions = [tx for tx, _ in result.all()]

        since = utcnow() - timedelta(days=self.settings.recent_activity_days)
        stats = TransactionStats(total_transactions=len(transactions))
        buy_volume = sell_volume = ZERO

        for tx in transactions:
            if tx.type == TransactionType.BUY:
                stats.total_buy_transactions += 1
                buy_volume += tx.quantity * tx.price
            else:
                stats.total_sell_transactions += 1
                sell_volume += tx.quantity * tx.price

            created_at = tx.created_at
            # SQLite 讀回的 datetime 不帶時區
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            if created_at >= since:
                stats.recent_activity_count += 1

        stats.total_buy_volume = round_money(buy_volume)
        stats.total_sell_volume = round_money(sell_volume)
        return stats
