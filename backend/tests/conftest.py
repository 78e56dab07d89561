import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
import pytest_asyncio
from decimal import Decimal
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import StaticPool
from tradedesk.database import Base, make_engine
import tradedesk.models  # noqa: F401 - register all models
from tradedesk.models.user import User
from tradedesk.services import wallets

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

@pytest_asyncio.fixture
async def engine():
    engine = make_engine(
        TEST_DATABASE_URL, poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)

@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session

@pytest_asyncio.fixture
async def user(db):
    user = User(email="trader@example.com", name="Trader", demo_mode_enabled=True)
    db.add(user)
    await db.commit()
    return user

@pytest_asyncio.fixture
async def other_user(db):
    user = User(email="other@example.com", name="Other", demo_mode_enabled=True)
    db.add(user)
    await db.commit()
    return user

@pytest_asyncio.fixture
async def wallet(db, user):
    """Default USD wallet funded with 1000."""
    return await wallets.create_wallet(db, user, "USD", initial_balance=Decimal("1000"))

@pytest.fixture
def mock_redis():
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    return redis

def assert_wallet_invariant(wallet):
    assert wallet.balance == wallet.available_balance + wallet.locked_balance
    assert wallet.balance >= 0
    assert wallet.available_balance >= 0
    assert wallet.locked_balance >= 0
