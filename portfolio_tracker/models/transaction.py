"""
交易明細模型

每一筆買入、賣出的不可變紀錄，作為持倉成本的帳本。
transaction_date 由呼叫端指定（可早於建立時間），created_at 為系統時間。
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric, ForeignKey, Enum
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_tracker.database import Base, utcnow


class TransactionType(str, enum.Enum):
    """交易類型列舉"""
    BUY = "BUY"    # 買入
    SELL = "SELL"  # 賣出


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    position_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("positions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType), nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=8), nullable=False,
        comment="交易數量（加密貨幣支援小數）",
    )
    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=8), nullable=False,
        comment="單位價格",
    )
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
        comment="交易執行時間",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow,
    )

    @property
    def total_amount(self) -> Decimal:
        """交易總金額"""
        return self.quantity * self.price

    def __repr__(self) -> str:
        return f"<Transaction {self.type.value} x{self.quantity} @{self.price}>"
