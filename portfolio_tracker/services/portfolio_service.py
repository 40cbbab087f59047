"""
投資組合服務層

投資組合的 CRUD，以及彙總各投資組合持倉的摘要。
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.exceptions import (
    DuplicatePortfolioNameError,
    PortfolioNotFoundError,
)
from portfolio_tracker.models.portfolio import Portfolio
from portfolio_tracker.schemas.portfolio import (
    PortfolioCreate,
    PortfolioResponse,
    PortfolioSummary,
    PortfolioUpdate,
)
from portfolio_tracker.services.cost_basis import (
    HUNDRED,
    ZERO,
    round_money,
)
from portfolio_tracker.store import PositionStore

logger = logging.getLogger(__name__)


class PortfolioService:
    """投資組合業務邏輯"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = PositionStore(db)

    async def list_portfolios(self, user_id: str) -> list[Portfolio]:
        stmt = (
            select(Portfolio)
            .where(Portfolio.user_id == user_id)
            .order_by(Portfolio.created_at.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_portfolio(self, user_id: str, portfolio_id: str) -> Portfolio:
        portfolio = await self.store.fetch_owned_portfolio(portfolio_id, user_id)
        if not portfolio:
            raise PortfolioNotFoundError("投資組合不存在")
        return portfolio

    async def create_portfolio(
        self, user_id: str, data: PortfolioCreate
    ) -> Portfolio:
        name = data.name.strip()
        await self._ensure_unique_name(user_id, name)

        portfolio = Portfolio(
            user_id=user_id,
            name=name,
            description=data.description,
            asset_type=data.asset_type,
            currency=data.currency.upper(),
        )
        self.db.add(portfolio)
        await self.db.flush()
        logger.info("用戶 %s 建立投資組合: %s", user_id, name)
        return portfolio

    async def update_portfolio(
        self, user_id: str, portfolio_id: str, data: PortfolioUpdate
    ) -> Portfolio:
        portfolio = await self.get_portfolio(user_id, portfolio_id)

        update_data = data.model_dump(exclude_unset=True)
        if update_data.get("name") is not None:
            update_data["name"] = update_data["name"].strip()
            if update_data["name"].lower() != portfolio.name.lower():
                await self._ensure_unique_name(user_id, update_data["name"])

        for key, value in update_data.items():
            setattr(portfolio, key, value)

        await self.db.flush()
        return portfolio

    async def delete_portfolio(self, user_id: str, portfolio_id: str) -> None:
        """刪除投資組合（其下持倉與交易一併刪除）"""
        portfolio = await self.get_portfolio(user_id, portfolio_id)

        for position in await self.store.list_positions(portfolio_id):
            await self.store.delete_position(position)

        await self.db.delete(portfolio)
        await self.db.flush()
        logger.info("已刪除投資組合: %s", portfolio.name)

    async def get_summaries(self, user_id: str) -> list[PortfolioSummary]:
        """
        各投資組合的持倉摘要

        總投入為所有持倉的加總。所有持倉皆有市價（且至少一筆持倉）時，
        才計算現值與未實現損益。
        """
        summaries = []
        for portfolio in await self.list_portfolios(user_id):
            positions = await self.store.list_positions(portfolio.id)

            total_invested = round_money(
                sum((p.total_invested for p in positions), ZERO)
            )
            summary = PortfolioSummary(
                **PortfolioResponse.model_validate(portfolio).model_dump(),
                total_positions=len(positions),
                total_invested=total_invested,
            )

            if positions and all(p.current_price is not None for p in positions):
                current_value = round_money(
                    sum((p.quantity * p.current_price for p in positions), ZERO)
                )
                gain_loss = current_value - total_invested
                summary.current_value = current_value
                summary.unrealized_gain_loss = gain_loss
                summary.unrealized_gain_loss_percentage = round_money(
                    gain_loss / total_invested * HUNDRED
                    if total_invested > 0 else ZERO
                )

            summaries.append(summary)
        return summaries

    async def _ensure_unique_name(self, user_id: str, name: str) -> None:
        """同一用戶的投資組合名稱不分大小寫不可重複"""
        stmt = (
            select(func.count())
            .select_from(Portfolio)
            .where(Portfolio.user_id == user_id)
            .where(func.lower(Portfolio.name) == name.lower())
        )
        result = await self.db.execute(stmt)
        if (result.scalar() or 0) > 0:
            raise DuplicatePortfolioNameError(f"已有名為「{name}」的投資組合")
