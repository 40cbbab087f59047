"""
持倉相關 Schema

定義買入、賣出、編輯持倉的請求，以及持倉、異動結果的回應模型。
"""

import re
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from portfolio_tracker.schemas.transaction import TransactionResponse

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]{1,10}$")


def normalize_symbol(value: str) -> str:
    """代碼去除空白並轉大寫，只允許 1-10 個英數字"""
    symbol = value.strip().upper()
    if not SYMBOL_PATTERN.match(symbol):
        raise ValueError("代碼須為 1-10 個英文字母或數字")
    return symbol


class PositionCreate(BaseModel):
    """買入（新建或加碼）請求"""
    portfolio_id: str
    symbol: str
    name: str = Field(min_length=1, max_length=200)
    quantity: Decimal = Field(gt=0, decimal_places=8)
    purchase_price: Decimal = Field(gt=0, decimal_places=8)
    current_price: Decimal | None = Field(default=None, gt=0, decimal_places=8)
    transaction_date: datetime | None = None

    @field_validator("symbol")
    @classmethod
    def _symbol(cls, v: str) -> str:
        return normalize_symbol(v)

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("名稱不可為空白")
        return v


class PositionUpdate(BaseModel):
    """編輯持倉請求"""
    symbol: str | None = None
    name: str | None = Field(default=None, min_length=1, max_length=200)
    quantity: Decimal | None = Field(default=None, ge=0, decimal_places=8)
    purchase_price: Decimal | None = Field(default=None, gt=0, decimal_places=8)
    current_price: Decimal | None = Field(default=None, gt=0, decimal_places=8)
    transaction_date: datetime | None = None
    expected_version: int | None = None

    @field_validator("symbol")
    @classmethod
    def _symbol(cls, v: str | None) -> str | None:
        return normalize_symbol(v) if v is not None else None

    @model_validator(mode="after")
    def _at_least_one_field(self) -> "PositionUpdate":
        fields = (self.symbol, self.name, self.quantity, self.current_price)
        if all(f is None for f in fields):
            raise ValueError("至少需提供一個更新欄位")
        return self


class PositionSell(BaseModel):
    """賣出請求"""
    quantity: Decimal = Field(gt=0, decimal_places=8)
    price: Decimal = Field(gt=0, decimal_places=8)
    transaction_date: datetime | None = None


class PositionResponse(BaseModel):
    """持倉回應"""
    id: str
    portfolio_id: str
    symbol: str
    name: str
    quantity: Decimal
    average_cost: Decimal
    total_invested: Decimal
    current_price: Decimal | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class PositionWithMetrics(PositionResponse):
    """持倉回應（含市價指標，市價未知時為 None）"""
    current_value: Decimal | None = None
    unrealized_gain_loss: Decimal | None = None
    unrealized_gain_loss_percentage: Decimal | None = None


class MutationResponse(BaseModel):
    """持倉異動結果"""
    outcome: str
    position: PositionResponse
    transaction: TransactionResponse | None = None
