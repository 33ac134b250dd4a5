import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_tracker import clock
from portfolio_tracker.database import AsyncSessionLocal, LOG_LEVEL, REPAIR_ON_STARTUP, get_db, init_db
from portfolio_tracker.integrity import IntegrityAuditor
from portfolio_tracker.ledger import LedgerStore
from portfolio_tracker.mutations import TradeCoordinator
from portfolio_tracker.portfolio import PortfolioService
from portfolio_tracker.schemas import (
    HoldingsResponse, Summary, QuantityResponse, TradeCreate, TradeRead, TradesResponse,
    TradeSubmitResponse, ValidationResult, IntegrityResult, RepairResponse, Pagination
)
from portfolio_tracker.validation import TradeValidator

# Setup logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


async def startup_integrity_pass(session: AsyncSession, today: date, repair: bool = REPAIR_ON_STARTUP) -> IntegrityResult:
    """Checks the ledger once at startup and repairs what can be repaired automatically."""
    auditor = IntegrityAuditor(LedgerStore(session))
    result = await auditor.check_integrity(today)

    if result.is_healthy:
        logger.info(f"Database integrity check passed. Found {result.total_trades} trades.")
        return result

    logger.warning(
        f"Database integrity issues detected: {len(result.issues)} issues, {len(result.warnings)} warnings"
    )
    for issue in result.issues:
        logger.warning(f"Data integrity issue: {issue}")

    if repair and result.corrupted_trades > 0:
        logger.info("Attempting to repair data corruption issues...")
        if await auditor.repair_corruption(today):
            logger.info("Data corruption repair completed successfully.")
        else:
            logger.error("Failed to repair data corruption. Manual intervention may be required.")
    return result


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    async with AsyncSessionLocal() as session:
        await startup_integrity_pass(session, clock.today())
    yield


app = FastAPI(title="Portfolio Ledger API", lifespan=lifespan)

# CORS Management
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

def get_today() -> date:
    return clock.today()

def get_store(db: AsyncSession = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)

def get_portfolio(store: LedgerStore = Depends(get_store)) -> PortfolioService:
    return PortfolioService(store)

def get_validator(portfolio: PortfolioService = Depends(get_portfolio)) -> TradeValidator:
    return TradeValidator(portfolio)

def get_coordinator(
    store: LedgerStore = Depends(get_store),
    validator: TradeValidator = Depends(get_validator),
) -> TradeCoordinator:
    return TradeCoordinator(store, validator)

def resolve_as_of(as_of: Optional[date], today: date):
    """Defaults the snapshot date to today and pulls future dates back to today."""
    if as_of is None:
        return today, []
    if as_of > today:
        return today, ["Future dates are not allowed. Showing portfolio for today."]
    return as_of, []

@app.get("/api/holdings", response_model=HoldingsResponse)
async def get_holdings(
    as_of: Optional[date] = Query(None),
    today: date = Depends(get_today),
    portfolio: PortfolioService = Depends(get_portfolio),
):
    as_of, warnings = resolve_as_of(as_of, today)
    holdings = await portfolio.get_holdings(as_of)

    return HoldingsResponse(
        as_of=as_of,
        summary=Summary(
            position_count=len(holdings),
            total_value=sum((h.total_value for h in holdings), start=0)
        ),
        holdings=holdings,
        warnings=warnings
    )

@app.get("/api/holdings/{symbol}", response_model=QuantityResponse)
async def get_quantity(
    symbol: str,
    as_of: Optional[date] = Query(None),
    today: date = Depends(get_today),
    portfolio: PortfolioService = Depends(get_portfolio),
):
    as_of, _ = resolve_as_of(as_of, today)
    quantity = await portfolio.get_quantity(symbol, as_of)
    return QuantityResponse(symbol=symbol.upper(), as_of=as_of, quantity=quantity)

@app.get("/api/trades", response_model=TradesResponse)
async def list_trades(
    symbol: Optional[str] = Query(None),
    up_to: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_store),
):
    try:
        trades, total = await store.page(as_of=up_to, symbol=symbol, limit=limit, offset=offset)
    except Exception as e:
        logger.error(f"Error fetching trades: {str(e)}")
        trades, total = [], 0

    return TradesResponse(
        trades=[TradeRead.model_validate(t) for t in trades],
        pagination=Pagination(limit=limit, offset=offset, total=total)
    )

@app.get("/api/trades/{trade_id}", response_model=TradeRead)
async def get_trade(trade_id: int, store: LedgerStore = Depends(get_store)):
    try:
        trade = await store.get(trade_id)
    except Exception as e:
        logger.error(f"Error fetching trade {trade_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")
    if trade is None:
        raise HTTPException(status_code=404, detail="The requested trade could not be found.")
    return TradeRead.model_validate(trade)

@app.post("/api/trades/validate", response_model=ValidationResult)
async def validate_trade(
    trade: TradeCreate,
    today: date = Depends(get_today),
    validator: TradeValidator = Depends(get_validator),
):
    return await validator.validate(trade, today)

@app.post("/api/trades", response_model=TradeSubmitResponse, status_code=201)
async def add_trade(
    trade: TradeCreate,
    today: date = Depends(get_today),
    coordinator: TradeCoordinator = Depends(get_coordinator),
):
    saved = await coordinator.add_trade(trade, today)
    verdict = coordinator.verdict
    if verdict is not None and not verdict.is_valid:
        raise HTTPException(
            status_code=422,
            detail={"errors": verdict.errors, "warnings": verdict.warnings}
        )

    if not saved:
        raise HTTPException(
            status_code=503,
            detail="Failed to save the trade. This may be due to a database error or network issue. Please try again."
        )

    return TradeSubmitResponse(
        success=True,
        message=(
            f"Trade added successfully! {trade.type.value} {trade.quantity:,.4f} shares of "
            f"{trade.symbol.upper()} at ${trade.price:,.2f} per share."
        ),
        warnings=verdict.warnings
    )

@app.delete("/api/trades/{trade_id}", response_model=TradeSubmitResponse)
async def delete_trade(trade_id: int, coordinator: TradeCoordinator = Depends(get_coordinator)):
    if not await coordinator.delete_trade(trade_id):
        raise HTTPException(
            status_code=404,
            detail="Failed to delete trade. The trade may not exist or a database error occurred. Please try again."
        )
    return TradeSubmitResponse(success=True, message="Trade deleted successfully. Your portfolio has been updated.")

@app.get("/api/integrity", response_model=IntegrityResult)
async def check_integrity(today: date = Depends(get_today), store: LedgerStore = Depends(get_store)):
    return await IntegrityAuditor(store).check_integrity(today)

@app.post("/api/integrity/repair", response_model=RepairResponse)
async def repair_corruption(today: date = Depends(get_today), store: LedgerStore = Depends(get_store)):
    return RepairResponse(success=await IntegrityAuditor(store).repair_corruption(today))
