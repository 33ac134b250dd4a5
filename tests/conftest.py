"""
conftest.py - Shared pytest fixtures

Each test gets its own SQLite ledger file, so storage tests never share rows.
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from portfolio_tracker.database import build_engine, init_db
from portfolio_tracker.ledger import LedgerStore
from portfolio_tracker.portfolio import PortfolioService
from portfolio_tracker.validation import TradeValidator


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session):
    return LedgerStore(session)


@pytest.fixture
def portfolio(store):
    return PortfolioService(store)


@pytest.fixture
def validator(portfolio):
    return TradeValidator(portfolio)


@pytest.fixture
def record(store):
    """Insert trades straight into the ledger, bypassing validation."""
    async def _record(*trades):
        return [await store.insert(t) for t in trades]
    return _record
