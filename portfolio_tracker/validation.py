import logging
import re
from datetime import date

from portfolio_tracker.models import TradeType
from portfolio_tracker.portfolio import PortfolioService
from portfolio_tracker.schemas import TradeCreate, ValidationResult

logger = logging.getLogger(__name__)

MAX_SYMBOL_LENGTH = 10
# Scale of the quantity and price columns
MAX_DECIMAL_PLACES = 4
SYMBOL_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def decimal_places(value) -> int:
    return max(0, -value.normalize().as_tuple().exponent)


class TradeValidator:
    """Decides whether a candidate trade may be appended to the ledger."""

    def __init__(self, portfolio: PortfolioService):
        self.portfolio = portfolio

    async def validate(self, trade: TradeCreate, today: date) -> ValidationResult:
        """
        Runs every rule and collects all violations.

        Errors block the trade. Warnings are informational: a sell whose
        availability cannot be checked is let through with a warning.
        """
        result = ValidationResult()

        symbol = trade.symbol or ""
        if not symbol.strip():
            result.add_error("Stock symbol is required")
        elif len(symbol) > MAX_SYMBOL_LENGTH:
            result.add_error(f"Stock symbol must be {MAX_SYMBOL_LENGTH} characters or less")
        elif not SYMBOL_PATTERN.match(symbol):
            result.add_error("Stock symbol must contain only alphanumeric characters")

        if trade.quantity <= 0:
            result.add_error("Quantity must be greater than 0")
        elif decimal_places(trade.quantity) > MAX_DECIMAL_PLACES:
            result.add_error(f"Quantity can have at most {MAX_DECIMAL_PLACES} decimal places")

        if trade.price <= 0:
            result.add_error("Price must be greater than 0")
        elif decimal_places(trade.price) > MAX_DECIMAL_PLACES:
            result.add_error(f"Price can have at most {MAX_DECIMAL_PLACES} decimal places")

        if trade.trade_date > today:
            result.add_error("Trade date cannot be in the future")

        if trade.type == TradeType.SELL:
            await self._check_available(trade, result)

        return result

    async def _check_available(self, trade: TradeCreate, result: ValidationResult):
        try:
            available = await self.portfolio.quantity_as_of(trade.symbol, trade.trade_date)

            if trade.id is not None and trade.id > 0:
                existing = await self.portfolio.source.get(trade.id)
                if existing is not None and existing.type == TradeType.BUY:
                    available += existing.quantity
                elif existing is not None and existing.type == TradeType.SELL:
                    available -= existing.quantity
        except Exception as e:
            logger.warning(f"Sell validation for {trade.symbol} could not read holdings: {str(e)}")
            result.warnings.append("Unable to verify current holdings for sell validation")
            return

        if trade.quantity > available:
            result.add_error(
                f"Cannot sell {trade.quantity:,.4f} shares of {trade.symbol}. "
                f"Only {available:,.4f} shares available as of {trade.trade_date.isoformat()}"
            )
