"""
投資組合相關 Schema

定義投資組合 CRUD 與摘要的請求與回應模型。
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from portfolio_tracker.models.portfolio import AssetType


class PortfolioCreate(BaseModel):
    """建立投資組合"""
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    asset_type: AssetType = AssetType.STOCKS
    currency: str = Field(default="USD", max_length=10)


class PortfolioUpdate(BaseModel):
    """更新投資組合"""
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)


class PortfolioResponse(BaseModel):
    """投資組合回應"""
    id: str
    name: str
    description: str | None
    asset_type: AssetType
    currency: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class PortfolioSummary(PortfolioResponse):
    """
    投資組合摘要

    所有持倉皆有市價時才計算現值與未實現損益，否則為 None。
    """
    total_positions: int
    total_invested: Decimal
    current_value: Decimal | None = None
    unrealized_gain_loss: Decimal | None = None
    unrealized_gain_loss_percentage: Decimal | None = None
