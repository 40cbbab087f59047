"""
交易相關 Schema

定義交易紀錄查詢、統計的回應模型。
交易只由持倉異動自動產生，因此沒有獨立的新增請求。
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel

from portfolio_tracker.models.transaction import TransactionType


class TransactionResponse(BaseModel):
    """交易紀錄回應"""
    id: str
    position_id: str
    type: TransactionType
    quantity: Decimal
    price: Decimal
    transaction_date: datetime
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class TransactionDetail(TransactionResponse):
    """交易紀錄（附持倉代碼與名稱）"""
    portfolio_id: str
    symbol: str
    name: str


class TransactionStats(BaseModel):
    """用戶交易統計"""
    total_transactions: int = 0
    total_buy_transactions: int = 0
    total_sell_transactions: int = 0
    total_buy_volume: Decimal = Decimal("0")
    total_sell_volume: Decimal = Decimal("0")
    recent_activity_count: int = 0


class TransactionFilter(BaseModel):
    """投資組合交易查詢條件"""
    transaction_type: TransactionType | None = None
    symbol: str | None = None  # 代碼部分比對
    start_date: datetime | None = None  # 含當下
    end_date: datetime | None = None  # 含當下
    search: str | None = None  # 代碼或名稱部分比對
    sort_by: Literal[
        "transaction_date", "created_at", "quantity", "price", "symbol"
    ] = "transaction_date"
    sort_order: Literal["asc", "desc"] = "desc"
