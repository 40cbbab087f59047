"""
持倉與交易的資料存取層

封裝所有 positions / transactions 的 SQLAlchemy 查詢，服務層只透過此類別讀寫。
各方法只 add / flush，不 commit；commit 由請求層級的 session 統一處理，
因此同一請求內的持倉更新與交易紀錄會一起成功或一起 rollback。
"""

import logging
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from portfolio_tracker.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    DuplicateSymbolError,
)
from portfolio_tracker.models.portfolio import Portfolio
from portfolio_tracker.models.position import Position
from portfolio_tracker.models.transaction import Transaction

logger = logging.getLogger(__name__)

# PostgreSQL 回報約束名稱，SQLite 回報欄位名稱
_DUPLICATE_SYMBOL_MARKERS = (
    "uq_portfolio_symbol",
    "positions.portfolio_id, positions.symbol",
)


def _is_duplicate_symbol(error: IntegrityError) -> bool:
    message = str(error.orig)
    return any(marker in message for marker in _DUPLICATE_SYMBOL_MARKERS)


class PositionStore:
    """持倉與交易存取"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # === 讀取 ===

    async def fetch_owned_portfolio(
        self, portfolio_id: str, user_id: str
    ) -> Portfolio | None:
        """取得屬於該用戶的投資組合，不屬於則視為不存在"""
        portfolio = await self.db.get(Portfolio, portfolio_id)
        if not portfolio or portfolio.user_id != user_id:
            return None
        return portfolio

    async def fetch_position(
        self, portfolio_id: str, symbol: str
    ) -> Position | None:
        """依 (portfolio_id, symbol) 查詢持倉"""
        stmt = (
            select(Position)
            .where(Position.portfolio_id == portfolio_id)
            .where(Position.symbol == symbol)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def fetch_position_by_id(
        self, position_id: str, user_id: str | None = None
    ) -> Position | None:
        """依 id 查詢持倉；指定 user_id 時一併驗證投資組合歸屬"""
        stmt = select(Position).where(Position.id == position_id)
        if user_id is not None:
            stmt = (
                stmt.join(Portfolio, Position.portfolio_id == Portfolio.id)
                .where(Portfolio.user_id == user_id)
            )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_positions(self, portfolio_id: str) -> list[Position]:
        """投資組合內所有持倉（新建立者在前）"""
        stmt = (
            select(Position)
            .where(Position.portfolio_id == portfolio_id)
            .order_by(Position.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_all_positions(self) -> list[Position]:
        """全系統持倉（維護作業用）"""
        result = await self.db.execute(select(Position))
        return list(result.scalars().all())

    async def count_positions(self, portfolio_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Position)
            .where(Position.portfolio_id == portfolio_id)
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def symbol_exists(
        self,
        portfolio_id: str,
        symbol: str,
        exclude_position_id: str | None = None,
    ) -> bool:
        """檢查投資組合內是否已有該代碼的持倉"""
        stmt = (
            select(Position.id)
            .where(Position.portfolio_id == portfolio_id)
            .where(Position.symbol == symbol)
        )
        if exclude_position_id:
            stmt = stmt.where(Position.id != exclude_position_id)
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def fetch_transactions_by_position(
        self, position_id: str
    ) -> list[Transaction]:
        """
        取得持倉的所有交易（依建立順序）

        帳本回放只依交易日期做穩定排序，同一交易日期的紀錄維持此處的先後。
        """
        stmt = (
            select(Transaction)
            .where(Transaction.position_id == position_id)
            .order_by(Transaction.created_at)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # === 寫入 ===

    def create_position(self, data: dict[str, Any]) -> Position:
        """新增持倉（延後至 flush 寫入）"""
        position = Position(**data)
        self.db.add(position)
        return position

    def update_position(self, position: Position, patch: dict[str, Any]) -> Position:
        """套用欄位變更（延後至 flush 寫入）"""
        for key, value in patch.items():
            setattr(position, key, value)
        return position

    def create_transaction(self, data: dict[str, Any]) -> Transaction:
        """新增交易紀錄（延後至 flush 寫入）"""
        tx = Transaction(**data)
        self.db.add(tx)
        return tx

    async def delete_position(self, position: Position) -> None:
        """刪除持倉及其所有交易紀錄"""
        result = await self.db.execute(
            delete(Transaction).where(Transaction.position_id == position.id)
        )
        await self.db.delete(position)
        await self.flush()
        logger.info(
            "已刪除持倉 %s 及 %d 筆交易紀錄", position.symbol, result.rowcount
        )

    async def flush(self) -> None:
        """
        將待寫入的變更送出

        版本衝突與約束衝突轉為業務例外，並先 rollback 整個請求的交易。
        只有 (portfolio_id, symbol) 唯一鍵衝突視為重複代碼，其餘約束錯誤回報為一般衝突。
        """
        try:
            await self.db.flush()
        except StaleDataError as e:
            await self.db.rollback()
            raise ConcurrentModificationError(
                "持倉已被其他請求修改，請重新讀取後再試"
            ) from e
        except IntegrityError as e:
            await self.db.rollback()
            if _is_duplicate_symbol(e):
                raise DuplicateSymbolError("此投資組合已有相同代碼的持倉") from e
            logger.warning("寫入違反資料約束: %s", e.orig)
            raise ConflictError("資料已被其他請求變更，請重新讀取後再試") from e
