"""
帳本比對 Schema

持倉欄位與交易帳本回放結果的比對報告。
"""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel


class DriftReport(BaseModel):
    """單一持倉的比對結果"""
    position_id: str
    symbol: str
    status: Literal["matched", "drift", "invalid_ledger"]
    transaction_count: int
    recorded_quantity: Decimal
    recorded_average_cost: Decimal
    recorded_total_invested: Decimal
    ledger_quantity: Decimal | None = None
    ledger_average_cost: Decimal | None = None
    ledger_total_invested: Decimal | None = None
    repaired: bool = False
    detail: str | None = None


class LedgerSweepResult(BaseModel):
    """全系統比對／修復結果"""
    checked: int
    matched: int
    repaired: int
    invalid: int
