"""Portfolio Tracker ORM Models 套件"""

from portfolio_tracker.models.user import User
from portfolio_tracker.models.portfolio import Portfolio, AssetType
from portfolio_tracker.models.position import Position
from portfolio_tracker.models.transaction import Transaction, TransactionType

__all__ = [
    "User",
    "Portfolio",
    "AssetType",
    "Position",
    "Transaction",
    "TransactionType",
]
