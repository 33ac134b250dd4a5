import asyncio
import logging
from datetime import date
from typing import Optional

from sqlalchemy import exc as sa_exc

from portfolio_tracker import clock
from portfolio_tracker.ledger import LedgerStore
from portfolio_tracker.models import Trade
from portfolio_tracker.schemas import TradeCreate, ValidationResult
from portfolio_tracker.validation import TradeValidator

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 0.1
TRANSIENT_MARKERS = ("timeout", "deadlock", "connection", "network", "transport")
TIMEOUT_ERRORS = (TimeoutError, asyncio.TimeoutError, sa_exc.TimeoutError)


def _linked(error: BaseException):
    # DBAPIError.orig holds the driver exception SQLAlchemy wrapped
    return (getattr(error, "orig", None), error.__cause__, error.__context__)


def is_transient_failure(error: BaseException) -> bool:
    """True when ``error`` or anything it wraps looks like a retryable storage failure."""
    pending, seen = [error], set()
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))

        if isinstance(current, TIMEOUT_ERRORS):
            return True
        message = str(current).lower()
        if any(marker in message for marker in TRANSIENT_MARKERS):
            return True
        pending.extend(_linked(current))
    return False


class TradeCoordinator:
    """
    Validated writes against the ledger, retried on transient storage failures.

    Validation and insert are separate round trips: two sells of the same
    symbol submitted concurrently can both pass validation. Nothing here
    serializes them.
    """

    def __init__(self, store: LedgerStore, validator: TradeValidator, sleep=asyncio.sleep, now=clock.utcnow):
        self.store = store
        self.validator = validator
        self.sleep = sleep
        self.now = now
        # Verdict of the most recent add_trade validation, None until one ran
        self.verdict: Optional[ValidationResult] = None

    async def _backoff(self, action: str, attempt: int, error: Exception) -> bool:
        """Sleeps before the next attempt; False when the failure should not be retried."""
        if attempt >= MAX_ATTEMPTS or not is_transient_failure(error):
            logger.error(f"{action} failed on attempt {attempt}/{MAX_ATTEMPTS}: {str(error)}")
            return False
        delay = BASE_DELAY_SECONDS * attempt
        logger.warning(f"{action} hit a transient failure on attempt {attempt}, retrying in {delay:.1f}s: {str(error)}")
        await self.sleep(delay)
        return True

    async def add_trade(self, trade: TradeCreate, today: date) -> bool:
        """
        Validates and records a trade. False on rejection or exhausted retries;
        self.verdict tells the two apart.
        """
        self.verdict = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                verdict = self.verdict = await self.validator.validate(trade, today)
                if not verdict.is_valid:
                    logger.info(f"Rejected {trade.type.value} of {trade.symbol}: {'; '.join(verdict.errors)}")
                    return False

                # A fresh row per attempt, never one bound to the failed transaction
                row = Trade(
                    symbol=trade.symbol.upper(),
                    quantity=trade.quantity,
                    price=trade.price,
                    type=trade.type,
                    trade_date=trade.trade_date,
                    created_at=self.now(),
                )
                await self.store.insert(row)
                logger.info(f"Recorded {row!r}")
                return True
            except Exception as e:
                if not await self._backoff("Add trade", attempt, e):
                    return False
        return False

    async def delete_trade(self, trade_id: int) -> bool:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                trade = await self.store.get(trade_id)
                if trade is None:
                    logger.info(f"Trade {trade_id} not found, nothing deleted")
                    return False

                await self.store.delete(trade)
                logger.info(f"Deleted trade {trade_id}")
                return True
            except Exception as e:
                if not await self._backoff(f"Delete trade {trade_id}", attempt, e):
                    return False
        return False
