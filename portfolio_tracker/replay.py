"""
Holdings replay.

Folds an ordered sequence of trades into per-symbol holdings. Everything here
is a pure function of its input: no storage access, no clock. Trades only need
``symbol``, ``quantity``, ``price``, ``type``, ``trade_date`` and (for
ordering) ``created_at`` attributes, so ORM rows and schema objects both work.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from portfolio_tracker.models import TradeType
from portfolio_tracker.schemas import PortfolioHolding

ZERO = Decimal(0)


def replay_order_key(trade):
    """(trade_date, created_at) is the canonical replay order."""
    return (trade.trade_date, trade.created_at or datetime.min)


def in_replay_order(trades: Iterable, as_of: Optional[date] = None) -> List:
    """Cuts ``trades`` at ``as_of`` (inclusive) and sorts them stably for replay."""
    if as_of is not None:
        trades = (t for t in trades if t.trade_date <= as_of)
    return sorted(trades, key=replay_order_key)


def replay_holdings(trades: Iterable, as_of: Optional[date] = None) -> Dict[str, PortfolioHolding]:
    """
    Full snapshot: symbol -> holding for every symbol still held.

    Buys move the weighted average cost; sells only reduce quantity. A sell
    that takes the running quantity to zero or below liquidates the position
    and clears its cost basis. Symbols ending at zero are left out.
    """
    book: Dict[str, list] = {}

    for trade in in_replay_order(trades, as_of):
        symbol = trade.symbol.upper()
        position = book.setdefault(symbol, [ZERO, ZERO])
        quantity, cost_basis = position
        traded = Decimal(trade.quantity)

        if trade.type == TradeType.BUY:
            new_quantity = quantity + traded
            if new_quantity > 0:
                cost_basis = (quantity * cost_basis + traded * Decimal(trade.price)) / new_quantity
            else:
                cost_basis = ZERO
            quantity = new_quantity
        elif trade.type == TradeType.SELL:
            quantity -= traded
            if quantity <= 0:
                quantity, cost_basis = ZERO, ZERO
        else:
            raise ValueError(f"Unknown trade type: {trade.type!r}")

        position[0], position[1] = quantity, cost_basis

    return {
        symbol: PortfolioHolding(symbol=symbol, quantity=quantity, average_cost_basis=cost_basis)
        for symbol, (quantity, cost_basis) in sorted(book.items())
        if quantity > 0
    }


def replay_quantity(trades: Iterable, symbol: str, as_of: Optional[date] = None) -> Decimal:
    """
    Single-symbol quantity held.

    Only the signed running total is tracked, and only the final value is
    clamped at zero. An oversell in the middle of the history therefore still
    counts against later buys here, unlike in replay_holdings.
    """
    wanted = symbol.upper()
    quantity = ZERO

    for trade in in_replay_order(trades, as_of):
        if trade.symbol.upper() != wanted:
            continue
        if trade.type == TradeType.BUY:
            quantity += Decimal(trade.quantity)
        elif trade.type == TradeType.SELL:
            quantity -= Decimal(trade.quantity)
        else:
            raise ValueError(f"Unknown trade type: {trade.type!r}")

    return max(ZERO, quantity)
