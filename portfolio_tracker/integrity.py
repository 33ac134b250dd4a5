import logging
from datetime import date
from typing import List

from sqlalchemy import func, or_

from portfolio_tracker import clock
from portfolio_tracker.ledger import LedgerStore
from portfolio_tracker.models import Trade
from portfolio_tracker.schemas import IntegrityResult
from portfolio_tracker.validation import MAX_SYMBOL_LENGTH

logger = logging.getLogger(__name__)

OLD_TRADE_YEARS = 10
LARGE_LEDGER_TRADES = 10_000
INDEX_ADVISORY_TRADES = 1_000


def years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 in a year that has none
        return day.replace(year=day.year - years, day=28)


class IntegrityAuditor:
    """Scans the whole ledger for records breaking the trade invariants."""

    def __init__(self, store: LedgerStore, now=clock.utcnow):
        self.store = store
        self.now = now

    async def check_integrity(self, today: date) -> IntegrityResult:
        result = IntegrityResult(last_checked=self.now())

        try:
            try:
                await self.store.ping()
            except Exception as e:
                logger.error(f"Database connection validation failed: {str(e)}")
                result.issues.append("Database connection failed")
                result.is_healthy = False
                return result

            result.total_trades = await self.store.count()

            corruption = await self.find_corruption(today)
            result.issues.extend(corruption)
            result.corrupted_trades = len(corruption)

            await self._check_consistency(result, today)
            await self._check_scale(result)

            result.is_healthy = not result.issues
            logger.info(
                f"Data integrity check completed. Healthy: {result.is_healthy}, "
                f"Issues: {len(result.issues)}, Warnings: {len(result.warnings)}"
            )
        except Exception as e:
            logger.error(f"Error during data integrity check: {str(e)}")
            result.issues.append(f"Data integrity check failed: {str(e)}")
            result.is_healthy = False

        return result

    async def find_corruption(self, today: date) -> List[str]:
        """One message per kind of hard corruption present, with its record count."""
        issues = []
        checks = [
            (Trade.quantity <= 0, "trades with invalid quantities (≤ 0)"),
            (Trade.price <= 0, "trades with invalid prices (≤ 0)"),
            (or_(Trade.symbol.is_(None), func.trim(Trade.symbol) == ""), "trades with empty stock symbols"),
            (Trade.trade_date > today, "trades with future dates"),
            (
                func.length(Trade.symbol) > MAX_SYMBOL_LENGTH,
                f"trades with stock symbols longer than {MAX_SYMBOL_LENGTH} characters",
            ),
        ]

        try:
            for criterion, label in checks:
                count = await self.store.count(criterion)
                if count > 0:
                    issues.append(f"Found {count} {label}")
        except Exception as e:
            logger.error(f"Error checking for corrupted data: {str(e)}")
            issues.append(f"Error checking data corruption: {str(e)}")

        return issues

    async def _check_consistency(self, result: IntegrityResult, today: date):
        try:
            duplicate_groups = await self.store.count_duplicate_groups()
            if duplicate_groups > 0:
                result.warnings.append(f"Found {duplicate_groups} potential duplicate trade groups")

            cutoff = years_before(today, OLD_TRADE_YEARS)
            old_trades = await self.store.count(Trade.trade_date < cutoff)
            if old_trades > 0:
                result.warnings.append(f"Found {old_trades} trades older than {OLD_TRADE_YEARS} years")
        except Exception as e:
            logger.error(f"Error checking data consistency: {str(e)}")
            result.issues.append(f"Data consistency check failed: {str(e)}")

    async def _check_scale(self, result: IntegrityResult):
        try:
            total = await self.store.count()
            if total > LARGE_LEDGER_TRADES:
                result.warnings.append(f"Large number of trades ({total:,}) may impact performance")
            if total > INDEX_ADVISORY_TRADES:
                result.warnings.append("Consider adding database indexes for better performance with large datasets")
        except Exception as e:
            logger.error(f"Error checking performance issues: {str(e)}")
            result.warnings.append(f"Performance check failed: {str(e)}")

    async def repair_corruption(self, today: date) -> bool:
        """
        Truncates over-long symbols and moves future trade dates back to today.

        Non-positive quantities or prices and empty symbols are left for a
        human. Returns whether the repairs could be persisted.
        """
        try:
            repaired = 0

            for trade in await self.store.find(func.length(Trade.symbol) > MAX_SYMBOL_LENGTH):
                trade.symbol = trade.symbol[:MAX_SYMBOL_LENGTH]
                repaired += 1

            for trade in await self.store.find(Trade.trade_date > today):
                trade.trade_date = today
                repaired += 1

            if repaired > 0:
                await self.store.commit()
                logger.info(f"Repaired {repaired} data corruption issues")

            return True
        except Exception as e:
            logger.error(f"Error repairing data corruption: {str(e)}")
            return False
