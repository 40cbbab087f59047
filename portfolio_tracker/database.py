"""
Portfolio Tracker 資料庫連線模組

支援 SQLAlchemy 2.0 async engine。
開發模式使用 SQLite，生產環境使用 PostgreSQL。
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from portfolio_tracker.config import get_settings

settings = get_settings()

# 根據資料庫類型調整引擎參數
_engine_kwargs: dict = {
    "echo": settings.debug and settings.is_development,
}

if settings.use_sqlite:
    # SQLite 需要特殊的 connect_args，允許跨執行緒存取
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    # PostgreSQL 連線池設定
    _engine_kwargs.update({
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,
    })


def normalize_database_url(url: str) -> str:
    """自動轉換資料庫 URL 為非同步驅動程式"""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


engine = create_async_engine(
    normalize_database_url(settings.database_url), **_engine_kwargs
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """所有 ORM Model 的基礎類別"""
    pass


def utcnow() -> datetime:
    """時間戳預設值（應用端產生，flush 後不需 refresh）"""
    return datetime.now(timezone.utc)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI 依賴注入：取得資料庫 session

    一個請求即一個交易單位：持倉更新與交易紀錄在同一次 commit 寫入，
    任一步失敗則整體 rollback。
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """初始化資料庫（開發模式下自動建立所有表）"""
    if settings.use_sqlite:
        # 確保所有 Model 已註冊至 metadata
        import portfolio_tracker.models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
