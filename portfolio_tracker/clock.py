from datetime import date, datetime, timezone


def today() -> date:
    return date.today()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime column it is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
