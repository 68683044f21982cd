"""
HTTP surface tests: the FastAPI app wired to a runtime over in-memory ledgers.
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from session_wallet.config import Settings
from session_wallet.core.chain_types import Chain
from session_wallet.core.wallet import ClientFundingSigner, InMemorySecretStore
from session_wallet.main import app
from session_wallet.runtime import SessionRuntime, get_runtime

from conftest import ETH_OWNER, ETH_RECIPIENT, SOL_OWNER, SOL_RECIPIENT


@pytest.fixture
def runtime(adapters) -> SessionRuntime:
    settings = Settings(
        _env_file=None,
        balance_poll_interval_seconds=60,
        funding_timeout_seconds=5,
        rpc_timeout_seconds=1,
    )
    return SessionRuntime(
        settings=settings,
        adapters=adapters,
        funding_signer=ClientFundingSigner(),
        store=InMemorySecretStore(),
    )


@pytest.fixture
def client(runtime):
    app.dependency_overrides[get_runtime] = lambda: runtime
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def start(client):
    response = client.post("/session/start", json={"solOwner": SOL_OWNER, "ethOwner": ETH_OWNER})
    assert response.status_code == 200
    return response.json()


def test_root(client):
    assert client.get("/").json()["health"] == "/healthz"


def test_health_reports_each_ledger(client):
    data = client.get("/healthz").json()
    assert data["status"] == "healthy"
    assert data["session"] == "uninitialized"
    assert set(data["ledgers"]) == {"solana", "ethereum"}
    assert data["available_ledgers"] == data["total_ledgers"] == 2


def test_start_returns_addresses_and_limits(client):
    data = start(client)
    assert data["status"] == "active"
    assert set(data["addresses"]) == {"solana", "ethereum"}
    assert data["limits"]["solana"]["maxTotal"] == "0.1"
    assert data["limits"]["ethereum"]["maxPerTransaction"] == "0.005"

    # Idempotent while active
    assert start(client)["addresses"] == data["addresses"]


def test_session_requires_start(client):
    response = client.get("/session/usage")
    assert response.status_code == 409
    assert response.json()["detail"]["category"] == "session"


def test_fund_waits_for_client_transfer(client, adapters):
    data = start(client)
    adapters[Chain.SOLANA].fund(data["addresses"]["solana"], Decimal("0.05"))

    response = client.post("/session/fund", json={"chain": "sol", "amount": "0.05", "txId": "owner-sig"})

    assert response.status_code == 200
    body = response.json()
    assert body["confirmed"] is True
    assert body["txId"] == "owner-sig"
    assert body["from"] == SOL_OWNER

    balances = client.get("/session/balances").json()
    assert balances["solana"]["amount"] == "0.05"


def test_fund_without_owner_is_bad_request(client):
    client.post("/session/start", json={})
    response = client.post("/session/fund", json={"chain": "ethereum", "amount": "0.01", "txId": "0xabc"})
    assert response.status_code == 400


def test_fund_rejects_unknown_chain(client):
    start(client)
    response = client.post("/session/fund", json={"chain": "dogecoin", "amount": "1", "txId": "x"})
    assert response.status_code == 400


def test_tools_listing(client):
    names = [tool["name"] for tool in client.get("/tools").json()]
    assert names == ["transferSOL", "transferETH", "getBalance", "swapTokens"]
    assert client.get("/tools", params={"format": "gemini"}).json()[0]["parameters"]["type"] == "OBJECT"
    assert client.get("/tools", params={"format": "nope"}).status_code == 400


def test_tool_call_flow(client, adapters):
    data = start(client)
    adapters[Chain.SOLANA].fund(data["addresses"]["solana"], Decimal("0.2"))

    approved = client.post(
        "/tools/call",
        json={"id": "call_1", "name": "transferSOL", "arguments": {"toAddress": SOL_RECIPIENT, "amount": 0.05}},
    ).json()
    assert approved["toolCallId"] == "call_1"
    assert approved["status"] == "approved"

    blocked = client.post(
        "/tools/call",
        json={"name": "transferSOL", "arguments": {"toAddress": SOL_RECIPIENT, "amount": 0.06}},
    ).json()
    assert blocked["status"] == "rejected"

    usage = client.get("/session/usage").json()
    assert usage["solana"]["spent"] == "0.05"
    assert usage["solana"]["remaining"] == "0.05"

    tx_id = approved["data"]["txId"]
    status = client.get(f"/session/transfers/solana/{tx_id}").json()
    assert status["status"] == "confirmed"


def test_revoke_refunds_and_allows_new_session(client, adapters):
    first = start(client)
    adapters[Chain.ETHEREUM].fund(first["addresses"]["ethereum"], Decimal("0.01"))

    revoked = client.post("/session/revoke").json()
    assert revoked["alreadyRevoked"] is False
    assert revoked["refunds"]["ethereum"]["status"] == "refunded"
    assert revoked["refunds"]["ethereum"]["to"] == ETH_OWNER
    assert revoked["refunds"]["solana"]["status"] == "skipped"

    assert client.post("/session/revoke").json()["alreadyRevoked"] is True

    call = client.post(
        "/tools/call",
        json={"name": "transferETH", "arguments": {"toAddress": ETH_RECIPIENT, "amount": 0.001}},
    ).json()
    assert call["status"] == "error"

    second = start(client)
    assert second["status"] == "active"
    assert second["addresses"]["ethereum"] != first["addresses"]["ethereum"]


def test_failed_fund_does_not_leave_a_pending_transfer(client, runtime):
    before_start = client.post("/session/fund", json={"chain": "solana", "amount": "0.05", "txId": "early-sig"})
    assert before_start.status_code == 409
    assert runtime.funding_signer.pending(Chain.SOLANA) is None

    client.post("/session/start", json={})
    no_owner = client.post("/session/fund", json={"chain": "solana", "amount": "0.05", "txId": "orphan-sig"})
    assert no_owner.status_code == 400
    assert runtime.funding_signer.pending(Chain.SOLANA) is None


def test_revoke_without_owner_is_refused_and_session_survives(client):
    client.post("/session/start", json={"ethOwner": ETH_OWNER})

    response = client.post("/session/revoke")

    assert response.status_code == 400
    assert response.json()["detail"]["details"]["missing"].keys() == {"solana"}
    assert client.get("/session").json()["status"] == "active"
