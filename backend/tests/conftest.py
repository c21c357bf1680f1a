import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
import pytest_asyncio
from decimal import Decimal
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from ledger.database import Base
import ledger.models  # noqa: F401 - register all models
from ledger.core.locks import KeyedLocks
from ledger.services.ledger_engine import LedgerEngine
from ledger.services.portfolio import PortfolioValuator
from ledger.services.pricing import StaticPriceOracle

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def oracle():
    return StaticPriceOracle()


@pytest.fixture
def ledger_engine(session_factory, oracle):
    return LedgerEngine(
        session_factory,
        oracle,
        fee_rate=Decimal("0"),
        max_retries=3,
        retry_backoff=0,
        locks=KeyedLocks(timeout=2.0),
    )


@pytest.fixture
def valuator(session_factory, oracle):
    return PortfolioValuator(session_factory, oracle, initial_value=Decimal("10000.00"))
