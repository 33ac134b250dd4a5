import enum

from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Enum, Index
from portfolio_tracker.database import Base


class TradeType(str, enum.Enum):
    BUY = "Buy"
    SELL = "Sell"


class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    # Unbounded so over-long symbols stay storable for the auditor to find
    symbol = Column(String, nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False)
    price = Column(Numeric(18, 4), nullable=False)
    type = Column(Enum(TradeType, name="trade_type"), nullable=False)
    trade_date = Column(Date, nullable=False)
    # Insertion instant, only used to order trades sharing a trade_date
    created_at = Column(DateTime, nullable=False)

    # Performance: replay scans filter by date and/or symbol
    __table_args__ = (
        Index("idx_trade_symbol", "symbol"),
        Index("idx_trade_date", "trade_date"),
        Index("idx_trade_symbol_date", "symbol", "trade_date"),
        Index("idx_trade_date_symbol_type", "trade_date", "symbol", "type"),
    )

    @property
    def total_value(self):
        return self.quantity * self.price

    def __repr__(self):
        return (
            f"Trade(id={self.id}, {self.type.value} {self.quantity} {self.symbol} "
            f"@ {self.price} on {self.trade_date})"
        )
