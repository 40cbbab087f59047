"""
投資組合模型

一個用戶可擁有多個投資組合（如「美股帳戶」、「加密貨幣」），
依資產類型分類。
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_tracker.database import Base, utcnow


class AssetType(str, enum.Enum):
    """投資組合資產類型"""
    STOCKS = "stocks"
    CRYPTO = "crypto"
    MUTUAL_FUNDS = "mutual_funds"
    COMMODITIES = "commodities"
    REAL_ESTATE = "real_estate"


class Portfolio(Base):
    __tablename__ = "portfolios"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    asset_type: Mapped[AssetType] = mapped_column(
        Enum(AssetType), default=AssetType.STOCKS, nullable=False
    )
    currency: Mapped[str] = mapped_column(
        String(10), default="USD", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Portfolio {self.name}>"
