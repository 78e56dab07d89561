import pytest
import pytest_asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from tradedesk.core.security import create_access_token
from tradedesk.database import get_db
from tradedesk.main import app
from tradedesk.models.notification import Notification


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    with patch("tradedesk.services.notifications.AsyncSessionLocal", session_factory):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def other_auth(other_user):
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


def _price(value):
    return patch("tradedesk.routers.trading.get_current_price", AsyncMock(return_value=value))


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_requires_valid_token(client, user):
    resp = await client.get("/api/wallets", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401
    resp = await client.get("/api/wallets")
    assert resp.status_code in (401, 403)


@pytest.mark.asyncio
async def test_wallet_endpoints(client, auth):
    resp = await client.post("/api/wallets", json={"currency": "usd", "initial_balance": "100"}, headers=auth)
    assert resp.status_code == 201
    first = resp.json()
    assert first["currency"] == "USD"
    assert first["is_default"] is True
    assert Decimal(first["balance"]) == Decimal("100")

    resp = await client.post("/api/wallets", json={"currency": "USD"}, headers=auth)
    second = resp.json()

    resp = await client.post(f"/api/wallets/{first['id']}/deposit", json={"amount": "50"}, headers=auth)
    assert resp.status_code == 200
    assert Decimal(resp.json()["wallet"]["available_balance"]) == Decimal("150")

    resp = await client.post(
        f"/api/wallets/{first['id']}/transfer",
        json={"to_wallet_id": second["id"], "amount": "40", "fee": "1"},
        headers=auth,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["reference_id"].startswith("TRANSFER-")
    assert {t["reference_id"] for t in body["transactions"]} == {body["reference_id"]}
    assert Decimal(body["from_wallet"]["balance"]) == Decimal("109")
    assert Decimal(body["to_wallet"]["balance"]) == Decimal("40")

    resp = await client.post(f"/api/wallets/{second['id']}/lock", json={"amount": "15"}, headers=auth)
    assert Decimal(resp.json()["wallet"]["locked_balance"]) == Decimal("15")

    resp = await client.get("/api/wallets", headers=auth)
    summary = resp.json()
    assert Decimal(summary["total_balance"]) == Decimal("149")
    assert Decimal(summary["total_locked_balance"]) == Decimal("15")

    resp = await client.get(f"/api/wallets/{first['id']}/transactions", headers=auth)
    types = [t["transaction_type"] for t in resp.json()]
    assert types == ["TRANSFER_OUT", "DEPOSIT", "DEPOSIT"]


@pytest.mark.asyncio
async def test_ledger_errors_map_to_status_codes(client, auth, other_auth):
    wallet = (await client.post(
        "/api/wallets", json={"currency": "USD", "initial_balance": "10"}, headers=auth
    )).json()

    resp = await client.post(
        f"/api/wallets/{wallet['id']}/withdraw", json={"amount": "10", "fee": "0.5"}, headers=auth
    )
    assert resp.status_code == 402
    error = resp.json()
    assert error["error"] == "insufficient_funds"
    assert Decimal(error["details"]["required_amount"]) == Decimal("10.5")

    resp = await client.post(f"/api/wallets/{wallet['id']}/unlock", json={"amount": "1"}, headers=auth)
    assert resp.status_code == 402
    assert resp.json()["error"] == "insufficient_locked_funds"

    resp = await client.delete(f"/api/wallets/{wallet['id']}", headers=auth)
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_state"

    resp = await client.get(f"/api/wallets/{wallet['id']}", headers=other_auth)
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"

    resp = await client.post(f"/api/wallets/{wallet['id']}/deposit", json={"amount": "0"}, headers=auth)
    assert resp.status_code == 422

    resp = await client.get(f"/api/wallets/{wallet['id']}", headers=auth)
    assert Decimal(resp.json()["balance"]) == Decimal("10")


@pytest.mark.asyncio
async def test_trading_round_trip(client, auth, session_factory):
    await client.post("/api/wallets", json={"currency": "USD", "initial_balance": "1000"}, headers=auth)

    resp = await client.get("/api/trading/wallet", headers=auth)
    assert resp.json()["wallet_type"] == "DEMO"
    assert Decimal(resp.json()["available_margin"]) == Decimal("50000")

    with _price(Decimal("100")):
        resp = await client.post(
            "/api/trading/orders",
            json={"currency_pair": "ETH-USD", "side": "BUY", "quantity": "10"},
            headers=auth,
        )
    assert resp.status_code == 201
    body = resp.json()
    assert body["order"]["status"] == "FILLED"
    assert Decimal(body["wallet"]["used_margin"]) == Decimal("20")
    position_id = body["position"]["id"]

    resp = await client.get("/api/trading/positions", headers=auth)
    assert [p["id"] for p in resp.json()] == [position_id]

    with _price(Decimal("110")):
        resp = await client.post(f"/api/trading/positions/{position_id}/close", headers=auth)
    assert resp.status_code == 200
    body = resp.json()
    assert Decimal(body["profit_loss"]) == Decimal("100")
    assert Decimal(body["wallet"]["available_margin"]) == Decimal("50100")

    with _price(Decimal("110")):
        resp = await client.post(f"/api/trading/positions/{position_id}/close", headers=auth)
    assert resp.status_code == 409
    assert resp.json()["error"] == "already_closed"

    resp = await client.get("/api/wallets", headers=auth)
    assert Decimal(resp.json()["total_balance"]) == Decimal("1100")

    async with session_factory() as s:
        types = (await s.scalars(select(Notification.type).order_by(Notification.id))).all()
    assert types == ["trade_executed", "trade_closed"]


@pytest.mark.asyncio
async def test_close_uses_market_price_not_client_price(client, auth):
    wallet = (await client.post("/api/wallets", json={"currency": "USD"}, headers=auth)).json()
    with _price(Decimal("100")):
        resp = await client.post(
            "/api/trading/orders",
            json={"currency_pair": "ETH-USD", "side": "BUY", "quantity": "10"},
            headers=auth,
        )
    position_id = resp.json()["position"]["id"]

    with _price(None):
        resp = await client.post(
            f"/api/trading/positions/{position_id}/close", json={"exit_price": "1000000"}, headers=auth
        )
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_state"

    with _price(Decimal("101")):
        resp = await client.post(
            f"/api/trading/positions/{position_id}/close", json={"exit_price": "1000000"}, headers=auth
        )
    assert resp.status_code == 200
    assert Decimal(resp.json()["profit_loss"]) == Decimal("10")
    assert Decimal(resp.json()["position"]["exit_price"]) == Decimal("101")

    resp = await client.get(f"/api/wallets/{wallet['id']}", headers=auth)
    assert Decimal(resp.json()["balance"]) == Decimal("10")


@pytest.mark.asyncio
async def test_order_validation_and_cancel(client, auth):
    with _price(None):
        resp = await client.post(
            "/api/trading/orders",
            json={"currency_pair": "ETH-USD", "side": "SELL", "quantity": "1"},
            headers=auth,
        )
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_state"

    resp = await client.post(
        "/api/trading/orders",
        json={"currency_pair": "ETH-USD", "side": "BUY", "order_type": "LIMIT", "quantity": "1"},
        headers=auth,
    )
    assert resp.status_code == 422

    resp = await client.post(
        "/api/trading/orders",
        json={"currency_pair": "ETH-USD", "side": "BUY", "order_type": "LIMIT", "quantity": "1", "price": "90"},
        headers=auth,
    )
    assert resp.status_code == 201
    order_id = resp.json()["order"]["id"]

    resp = await client.get("/api/trading/orders/pending", headers=auth)
    assert [o["id"] for o in resp.json()] == [order_id]

    resp = await client.post(f"/api/trading/orders/{order_id}/cancel", headers=auth)
    assert resp.json()["status"] == "CANCELED"
    resp = await client.post(f"/api/trading/orders/{order_id}/cancel", headers=auth)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_toggle_mode(client, auth):
    resp = await client.post("/api/trading/mode/toggle", headers=auth)
    assert resp.status_code == 200
    assert resp.json()["demo_mode_enabled"] is False
    assert resp.json()["wallet"]["wallet_type"] == "LIVE"


@pytest.mark.asyncio
async def test_funding_flow(client, auth):
    wallet = (await client.post("/api/wallets", json={"currency": "USD"}, headers=auth)).json()
    account = (await client.post(
        "/api/funding/accounts",
        json={"institution_name": "Demo Bank", "account_name": "Checking", "account_mask": "1234", "balance": "500"},
        headers=auth,
    )).json()

    resp = await client.post(
        "/api/funding/deposits",
        json={"connected_account_id": account["id"], "wallet_id": wallet["id"], "amount": "200"},
        headers=auth,
    )
    assert resp.status_code == 201
    deposit = resp.json()
    assert deposit["status"] == "PENDING"

    resp = await client.post(f"/api/funding/transactions/{deposit['id']}/complete", headers=auth)
    assert resp.json()["status"] == "COMPLETED"

    resp = await client.post(
        "/api/funding/withdrawals",
        json={"connected_account_id": account["id"], "amount": "50"},
        headers=auth,
    )
    withdrawal = resp.json()
    resp = await client.post(f"/api/funding/transactions/{withdrawal['id']}/cancel", headers=auth)
    assert resp.json()["status"] == "CANCELED"

    resp = await client.post(f"/api/funding/transactions/{withdrawal['id']}/cancel", headers=auth)
    assert resp.status_code == 409

    resp = await client.get(f"/api/wallets/{wallet['id']}", headers=auth)
    assert Decimal(resp.json()["balance"]) == Decimal("200")

    resp = await client.get("/api/funding/accounts", headers=auth)
    assert Decimal(resp.json()[0]["available_balance"]) == Decimal("300")

    resp = await client.get("/api/funding/transactions", headers=auth)
    assert resp.json()["total"] == 2


@pytest.mark.asyncio
async def test_analytics_and_backtest_endpoints(client, auth):
    resp = await client.get("/api/analytics/performance", headers=auth)
    assert resp.status_code == 200
    assert resp.json()["statistics"]["total_trades"] == 0

    resp = await client.get("/api/analytics/risk", headers=auth)
    assert resp.json()["max_drawdown"]["value"] == 0.0

    candles = [{"timestamp": i, "close": c} for i, c in enumerate([10, 10, 10, 9, 8, 12, 14, 16, 10, 6, 4])]
    resp = await client.post(
        "/api/strategies/backtest",
        json={"candles": candles, "fast_period": 2, "slow_period": 3, "initial_capital": 1000},
        headers=auth,
    )
    assert resp.status_code == 200
    assert resp.json()["summary"]["total_trades"] == 3

    resp = await client.post(
        "/api/strategies/backtest", json={"candles": candles, "fast_period": 5, "slow_period": 3}, headers=auth
    )
    assert resp.status_code == 422
