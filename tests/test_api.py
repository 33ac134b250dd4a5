"""
test_api.py - HTTP surface driven through httpx against the ASGI app

get_db is pointed at the per-test SQLite ledger and get_today is pinned.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from portfolio_tracker.database import get_db
from portfolio_tracker.main import app, get_coordinator, get_today, get_validator, startup_integrity_pass
from portfolio_tracker.mutations import TradeCoordinator
from portfolio_tracker.schemas import ValidationResult
from tests.factories import TODAY, buy


@pytest.fixture
async def client(session_factory):
    async def override_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_today] = lambda: TODAY
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def _payload(symbol="AAPL", quantity="10", price="150", type="Buy", trade_date=TODAY):
    return {
        "symbol": symbol,
        "quantity": quantity,
        "price": price,
        "type": type,
        "trade_date": trade_date.isoformat(),
    }


class TestTradeEndpoints:
    async def test_add_trade(self, client):
        response = await client.post("/api/trades", json=_payload())

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Trade added successfully! Buy 10.0000 shares of AAPL at $150.00 per share."

    async def test_add_invalid_trade_lists_every_error(self, client):
        response = await client.post("/api/trades", json=_payload(symbol="", quantity="0", price="-2"))

        assert response.status_code == 422
        assert response.json()["detail"]["errors"] == [
            "Stock symbol is required",
            "Quantity must be greater than 0",
            "Price must be greater than 0",
        ]

    async def test_oversell_rejected(self, client):
        await client.post("/api/trades", json=_payload(quantity="5"))

        response = await client.post("/api/trades", json=_payload(quantity="10", type="Sell"))

        assert response.status_code == 422
        (error,) = response.json()["detail"]["errors"]
        assert "Cannot sell 10.0000 shares of AAPL" in error
        assert "Only 5.0000 shares available" in error

    async def test_validate_only(self, client):
        response = await client.post("/api/trades/validate", json=_payload(trade_date=TODAY + timedelta(days=1)))

        assert response.status_code == 200
        assert response.json() == {
            "is_valid": False,
            "errors": ["Trade date cannot be in the future"],
            "warnings": [],
        }

    async def test_list_get_and_delete(self, client):
        await client.post("/api/trades", json=_payload(symbol="msft", trade_date=TODAY - timedelta(days=3)))
        await client.post("/api/trades", json=_payload(symbol="AAPL"))

        listing = (await client.get("/api/trades")).json()
        assert [t["symbol"] for t in listing["trades"]] == ["MSFT", "AAPL"]
        assert listing["pagination"] == {"limit": 50, "offset": 0, "total": 2}

        filtered = (await client.get("/api/trades", params={"symbol": "Msft"})).json()
        assert [t["symbol"] for t in filtered["trades"]] == ["MSFT"]

        up_to = (await client.get("/api/trades", params={"up_to": (TODAY - timedelta(days=1)).isoformat()})).json()
        assert up_to["pagination"]["total"] == 1

        trade_id = listing["trades"][0]["id"]
        fetched = (await client.get(f"/api/trades/{trade_id}")).json()
        assert Decimal(fetched["total_value"]) == 1500

        assert (await client.delete(f"/api/trades/{trade_id}")).status_code == 200
        assert (await client.get(f"/api/trades/{trade_id}")).status_code == 404
        assert (await client.delete(f"/api/trades/{trade_id}")).status_code == 404


class ScriptedValidator:
    """Answers each validate call with the next canned verdict."""

    def __init__(self, *verdicts):
        self.verdicts = list(verdicts)
        self.calls = 0

    async def validate(self, trade, today):
        self.calls += 1
        return self.verdicts.pop(0)


class TestAddTradeVerdict:
    """POST /api/trades answers from the verdict the coordinator acted on."""

    @pytest.fixture
    def scripted(self, client):
        def install(*verdicts):
            validator = ScriptedValidator(*verdicts)
            app.dependency_overrides[get_validator] = lambda: validator
            return validator

        return install

    async def test_coordinator_rejection_is_422(self, client, scripted):
        validator = scripted(
            ValidationResult(is_valid=False, errors=["Cannot sell 10.0000 shares of AAPL."], warnings=["stale"]),
            ValidationResult(),
        )

        response = await client.post("/api/trades", json=_payload(type="Sell"))

        assert response.status_code == 422
        assert response.json()["detail"] == {
            "errors": ["Cannot sell 10.0000 shares of AAPL."],
            "warnings": ["stale"],
        }
        assert validator.calls == 1

    async def test_success_carries_the_acted_on_warnings(self, client, scripted):
        validator = scripted(
            ValidationResult(warnings=["Unable to verify current holdings for sell validation"]),
            ValidationResult(warnings=["never shown"]),
        )

        response = await client.post("/api/trades", json=_payload())

        assert response.status_code == 201
        assert response.json()["warnings"] == ["Unable to verify current holdings for sell validation"]
        assert validator.calls == 1

    async def test_storage_failure_is_503(self, client):
        class BrokenCoordinator(TradeCoordinator):
            async def add_trade(self, trade, today):
                self.verdict = ValidationResult()
                return False

        app.dependency_overrides[get_coordinator] = lambda: BrokenCoordinator(None, None)

        response = await client.post("/api/trades", json=_payload())
        assert response.status_code == 503


class TestHoldingsEndpoints:
    async def test_holdings_snapshot(self, client):
        await client.post("/api/trades", json=_payload(quantity="10", price="100", trade_date=TODAY - timedelta(days=5)))
        await client.post("/api/trades", json=_payload(quantity="20", price="150"))

        body = (await client.get("/api/holdings")).json()

        assert body["as_of"] == TODAY.isoformat()
        assert body["warnings"] == []
        (holding,) = body["holdings"]
        assert holding["symbol"] == "AAPL"
        assert Decimal(holding["quantity"]) == 30
        assert Decimal(holding["average_cost_basis"]).quantize(Decimal("0.01")) == Decimal("133.33")
        assert body["summary"]["position_count"] == 1
        assert Decimal(body["summary"]["total_value"]).quantize(Decimal("0.01")) == Decimal("4000.00")

    async def test_historical_snapshot(self, client):
        await client.post("/api/trades", json=_payload(trade_date=TODAY - timedelta(days=5)))
        await client.post("/api/trades", json=_payload(symbol="MSFT"))

        params = {"as_of": (TODAY - timedelta(days=1)).isoformat()}
        body = (await client.get("/api/holdings", params=params)).json()
        assert [h["symbol"] for h in body["holdings"]] == ["AAPL"]

    async def test_future_as_of_is_clamped(self, client):
        params = {"as_of": (TODAY + timedelta(days=7)).isoformat()}
        body = (await client.get("/api/holdings", params=params)).json()

        assert body["as_of"] == TODAY.isoformat()
        assert body["warnings"] == ["Future dates are not allowed. Showing portfolio for today."]

    async def test_symbol_quantity(self, client):
        await client.post("/api/trades", json=_payload(quantity="8"))
        await client.post("/api/trades", json=_payload(quantity="3", type="Sell"))

        body = (await client.get("/api/holdings/aapl")).json()
        assert body["symbol"] == "AAPL"
        assert Decimal(body["quantity"]) == 5


class TestIntegrityEndpoints:
    async def test_check_and_repair(self, client, record):
        await record(buy("TOOLONGSYMBOL", 1, 10, trade_date=TODAY + timedelta(days=1)))

        report = (await client.get("/api/integrity")).json()
        assert report["is_healthy"] is False
        assert report["corrupted_trades"] == 2

        assert (await client.post("/api/integrity/repair")).json() == {"success": True}
        assert (await client.get("/api/integrity")).json()["is_healthy"] is True


class TestStartupPass:
    async def test_repairs_when_corrupted(self, session, record, store):
        (row,) = await record(buy("TOOLONGSYMBOL", 1, 10))

        result = await startup_integrity_pass(session, TODAY, repair=True)

        assert result.corrupted_trades == 1
        assert (await store.get(row.id)).symbol == "TOOLONGSYM"

    async def test_leaves_ledger_alone_when_disabled(self, session, record, store):
        (row,) = await record(buy("TOOLONGSYMBOL", 1, 10))

        await startup_integrity_pass(session, TODAY, repair=False)

        assert (await store.get(row.id)).symbol == "TOOLONGSYMBOL"
