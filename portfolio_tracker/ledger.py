from datetime import date
from typing import List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker.database import ping
from portfolio_tracker.models import Trade

# Columns two records must share to be reported as potential duplicates
DUPLICATE_KEY = (Trade.symbol, Trade.trade_date, Trade.quantity, Trade.price, Trade.type)


class TradeSource(Protocol):
    """Read capability the replay consumers need from a ledger."""

    async def scan(self, as_of: Optional[date] = None, symbol: Optional[str] = None) -> Sequence: ...

    async def get(self, trade_id: int): ...


def _filters(as_of: Optional[date], symbol: Optional[str]):
    filters = []
    if as_of is not None:
        filters.append(Trade.trade_date <= as_of)
    if symbol:
        filters.append(func.upper(Trade.symbol) == symbol.upper())
    return filters


class LedgerStore:
    """Append-only trade ledger backed by a SQLAlchemy async session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def scan(self, as_of: Optional[date] = None, symbol: Optional[str] = None) -> List[Trade]:
        """All trades with trade_date <= as_of (and matching symbol), in replay order."""
        stmt = (
            select(Trade)
            .where(*_filters(as_of, symbol))
            .order_by(Trade.trade_date, Trade.created_at, Trade.id)
        )
        res = await self.session.execute(stmt)
        return list(res.scalars().all())

    async def page(
        self,
        as_of: Optional[date] = None,
        symbol: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Trade], int]:
        filters = _filters(as_of, symbol)
        stmt = (
            select(Trade)
            .where(*filters)
            .order_by(Trade.trade_date, Trade.created_at, Trade.id)
            .limit(limit)
            .offset(offset)
        )
        res = await self.session.execute(stmt)
        total = await self.count(*filters)
        return list(res.scalars().all()), total

    async def get(self, trade_id: int) -> Optional[Trade]:
        return await self.session.get(Trade, trade_id)

    async def insert(self, trade: Trade) -> Trade:
        self.session.add(trade)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(trade)
        return trade

    async def delete(self, trade: Trade) -> None:
        await self.session.delete(trade)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def find(self, *criteria) -> List[Trade]:
        res = await self.session.execute(select(Trade).where(*criteria).order_by(Trade.id))
        return list(res.scalars().all())

    async def count(self, *criteria) -> int:
        stmt = select(func.count(Trade.id))
        if criteria:
            stmt = stmt.where(*criteria)
        res = await self.session.execute(stmt)
        return res.scalar() or 0

    async def count_duplicate_groups(self) -> int:
        """Number of distinct DUPLICATE_KEY groups holding more than one record."""
        groups = (
            select(*DUPLICATE_KEY)
            .group_by(*DUPLICATE_KEY)
            .having(func.count(Trade.id) > 1)
            .subquery()
        )
        res = await self.session.execute(select(func.count()).select_from(groups))
        return res.scalar() or 0

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def ping(self) -> None:
        await ping(self.session)
