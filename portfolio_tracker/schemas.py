from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal

from portfolio_tracker.models import TradeType

class TradeCreate(BaseModel):
    # No field constraints here, TradeValidator reports every broken rule
    symbol: str = ""
    quantity: Decimal
    price: Decimal
    type: TradeType
    trade_date: date
    id: Optional[int] = None  # set when re-validating an existing record

class TradeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    symbol: str
    quantity: Decimal
    price: Decimal
    type: TradeType
    trade_date: date
    created_at: datetime

    @computed_field
    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.price

class PortfolioHolding(BaseModel):
    symbol: str
    quantity: Decimal = Decimal(0)
    average_cost_basis: Decimal = Decimal(0)

    @computed_field
    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.average_cost_basis

class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    def add_error(self, message: str):
        self.errors.append(message)
        self.is_valid = False

class IntegrityResult(BaseModel):
    is_healthy: bool = True
    issues: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    total_trades: int = 0
    corrupted_trades: int = 0
    last_checked: Optional[datetime] = None

class Summary(BaseModel):
    position_count: int
    total_value: Decimal

class Pagination(BaseModel):
    limit: int
    offset: int
    total: int

class HoldingsResponse(BaseModel):
    as_of: date
    summary: Summary
    holdings: List[PortfolioHolding]
    warnings: List[str] = Field(default_factory=list)

class QuantityResponse(BaseModel):
    symbol: str
    as_of: date
    quantity: Decimal

class TradesResponse(BaseModel):
    trades: List[TradeRead]
    pagination: Pagination

class TradeSubmitResponse(BaseModel):
    success: bool
    message: str
    warnings: List[str] = Field(default_factory=list)

class RepairResponse(BaseModel):
    success: bool
