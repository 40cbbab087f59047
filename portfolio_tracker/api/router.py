"""
API 路由集中註冊
"""

from fastapi import APIRouter

from portfolio_tracker.api.portfolio import router as portfolio_router
from portfolio_tracker.api.position import router as position_router
from portfolio_tracker.api.transaction import router as transaction_router

api_router = APIRouter(prefix="/api")
api_router.include_router(portfolio_router)
api_router.include_router(position_router)
api_router.include_router(transaction_router)
