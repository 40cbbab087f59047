"""
持倉部位模型

每個投資組合內每個標的一筆，紀錄總數量、加權平均成本與總投入金額。
quantity / average_cost 以 8 位小數、total_invested 以 2 位小數各自四捨五入，
兩者相乘可能有不到一分錢的誤差。

version 欄位為樂觀鎖：每次 UPDATE 自動 +1，
若兩個請求讀到同一版本，後寫入者會在 flush 時失敗。
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Integer, DateTime, Numeric,
    ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_tracker.database import Base, utcnow


class Position(Base):
    __tablename__ = "positions"

    # 同一投資組合內，symbol 必須唯一
    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol", name="uq_portfolio_symbol"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    portfolio_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("portfolios.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    symbol: Mapped[str] = mapped_column(
        String(10), nullable=False, index=True,
        comment="標的代碼（大寫英數字）",
    )
    name: Mapped[str] = mapped_column(
        String(200), nullable=False,
        comment="標的名稱",
    )
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=8), default=Decimal("0"),
        comment="持有數量",
    )
    average_cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=8), default=Decimal("0"),
        comment="加權平均成本",
    )
    total_invested: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0"),
        comment="總投入金額",
    )
    current_price: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=18, scale=8), nullable=True,
        comment="最近一次市價（外部輸入）",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Position {self.symbol} qty={self.quantity}>"
