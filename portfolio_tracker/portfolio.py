import logging
from datetime import date
from decimal import Decimal
from typing import List

from portfolio_tracker.ledger import TradeSource
from portfolio_tracker.replay import replay_holdings, replay_quantity
from portfolio_tracker.schemas import PortfolioHolding

logger = logging.getLogger(__name__)


class PortfolioService:
    """
    Read path over the ledger.

    ``holdings_as_of`` and ``quantity_as_of`` propagate storage errors;
    ``get_holdings`` and ``get_quantity`` log them and answer with an empty
    portfolio / zero instead, so a storage outage shows up as "no holdings".
    """

    def __init__(self, source: TradeSource):
        self.source = source

    async def holdings_as_of(self, as_of: date) -> List[PortfolioHolding]:
        trades = await self.source.scan(as_of=as_of)
        return list(replay_holdings(trades, as_of=as_of).values())

    async def quantity_as_of(self, symbol: str, as_of: date) -> Decimal:
        trades = await self.source.scan(as_of=as_of, symbol=symbol)
        return replay_quantity(trades, symbol, as_of=as_of)

    async def get_holdings(self, as_of: date) -> List[PortfolioHolding]:
        try:
            return await self.holdings_as_of(as_of)
        except Exception as e:
            logger.error(f"Error calculating holdings as of {as_of}: {str(e)}")
            return []

    async def get_quantity(self, symbol: str, as_of: date) -> Decimal:
        try:
            return await self.quantity_as_of(symbol, as_of)
        except Exception as e:
            logger.error(f"Error calculating quantity of {symbol} as of {as_of}: {str(e)}")
            return Decimal(0)
