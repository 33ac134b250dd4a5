import os
from sqlalchemy import text
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./portfolio.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")
REPAIR_ON_STARTUP = os.getenv("REPAIR_ON_STARTUP", "true").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def build_engine(url: str, echo: bool = False):
    # statement_cache_size is an asyncpg-only connect arg
    connect_args = {"statement_cache_size": 0} if "+asyncpg" in url else {}
    return create_async_engine(
        url,
        echo=echo,
        future=True,
        connect_args=connect_args,
        poolclass=NullPool
    )


engine = build_engine(DATABASE_URL, echo=SQL_ECHO)
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()

async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def init_db(bind=None):
    """Creates the ledger tables if they do not exist yet."""
    # models must be imported so the Trade table is registered on Base
    from portfolio_tracker import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def ping(session: AsyncSession) -> None:
    await session.execute(text("SELECT 1"))
