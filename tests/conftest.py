"""Pytest 設定與共用 fixtures"""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from portfolio_tracker.api.auth import create_access_token
from portfolio_tracker.config import Settings
from portfolio_tracker.database import Base, get_db
from portfolio_tracker.models import Portfolio, User
from portfolio_tracker.schemas.position import PositionCreate


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """記憶體 SQLite，所有連線共用同一個資料庫"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(merge_name_policy="latest", recent_activity_days=7)


@pytest.fixture
async def user(db_session: AsyncSession) -> User:
    user = User(email="alice@example.com", username="Alice")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    user = User(email="bob@example.com", username="Bob")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def admin_user(db_session: AsyncSession) -> User:
    user = User(email="admin@example.com", username="Admin")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def portfolio(db_session: AsyncSession, user: User) -> Portfolio:
    portfolio = Portfolio(user_id=user.id, name="美股帳戶")
    db_session.add(portfolio)
    await db_session.commit()
    return portfolio


@pytest.fixture
def make_purchase():
    """買入請求工廠（預設 AAPL 10 股 @100）"""

    def _make(portfolio_id: str, **overrides) -> PositionCreate:
        data = {
            "portfolio_id": portfolio_id,
            "symbol": "AAPL",
            "name": "Apple Inc.",
            "quantity": Decimal("10"),
            "purchase_price": Decimal("100"),
            "transaction_date": datetime(2024, 1, 2, tzinfo=timezone.utc),
        }
        data.update(overrides)
        return PositionCreate(**data)

    return _make


@pytest.fixture
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """透過 ASGI 呼叫 API，資料庫改用測試用的記憶體 SQLite"""
    from portfolio_tracker.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def other_headers(other_user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


@pytest.fixture
def admin_headers(admin_user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(admin_user.id)}"}
