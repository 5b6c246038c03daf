"""
HTTP API tests through FastAPI's TestClient
"""

import pytest
from fastapi.testclient import TestClient

from main import create_app
from verifiers.calldata import decode_transfer_calldata


@pytest.fixture
def app(billing_config, store, users, events):
    return create_app(billing_config, store=store, users=users, events=events)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def wallet_payment(client, **overrides):
    body = {"user_id": "alice", "plan_id": "pro", "months": 3, "network": "base", **overrides}
    return client.post("/api/subscribe/wallet-payment", json=body)


class TestCatalog:

    def test_plans(self, client):
        resp = client.get("/api/subscription/plans")

        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()["plans"]] == ["pro", "premium"]

    def test_pricing(self, client):
        resp = client.get("/api/subscription/pricing", params={"plan_id": "pro", "months": 3})

        assert resp.status_code == 200
        assert resp.json()["total_due"] == "89.97"

    def test_pricing_unknown_plan(self, client):
        resp = client.get("/api/subscription/pricing", params={"plan_id": "gold", "months": 1})

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_PLAN"


class TestWalletPayment:

    def test_evm_intent(self, client, test_addresses):
        resp = wallet_payment(client)

        assert resp.status_code == 200
        data = resp.json()
        assert data["address"] == test_addresses["treasury"]
        assert data["amount"] == "89.97"
        assert data["token"].lower() == test_addresses["USDC"]
        assert data["amount_base_units"] == "89970000"

        call = decode_transfer_calldata(data["transfer_calldata"])
        assert call.recipient == test_addresses["treasury"]
        assert call.raw_amount == 89_970_000

    def test_solana_intent(self, client, test_addresses):
        resp = wallet_payment(client, network="solana", months=1)

        assert resp.status_code == 200
        data = resp.json()
        assert data["network"] == "non_evm"
        assert data["address"] == test_addresses["sol_treasury"]
        assert "transfer_calldata" not in data

    def test_unconfigured_network(self, client, billing_config):
        billing_config.blockchain.solana_wallet_address = None

        resp = wallet_payment(client, network="solana")

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "UNCONFIGURED_NETWORK"

    def test_months_validated(self, client):
        assert wallet_payment(client, months=0).status_code == 422

    def test_disabled_returns_404(self, client, billing_config):
        billing_config.features.enable_crypto_payment = False

        resp = wallet_payment(client)

        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "FEATURE_DISABLED"

    def test_renew_flags_response(self, client):
        resp = client.post("/api/subscribe/renew", json={"user_id": "alice", "plan_id": "premium", "months": 1})

        assert resp.status_code == 200
        assert resp.json()["is_renewal"] is True


class TestSubscriptionStatus:

    def test_pending_then_cancel_rejected(self, client):
        payment_id = wallet_payment(client).json()["payment_id"]

        status = client.get("/api/subscription", params={"user_id": "alice"}).json()
        assert status["status"] == "pending_payment"
        assert status["pending_payment"]["payment_id"] == payment_id

        resp = client.post("/api/subscription/cancel", json={"user_id": "alice"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "NOT_ACTIVE"

    def test_unknown_user(self, client):
        resp = client.get("/api/subscription", params={"user_id": "mallory"})
        assert resp.status_code == 404

    def test_renewal_info_null_for_free_user(self, client):
        resp = client.get("/api/subscribe/renewal-info", params={"user_id": "alice"})

        assert resp.status_code == 200
        assert resp.json() is None


class TestSubmitTransaction:

    def test_submit_hash(self, client):
        payment_id = wallet_payment(client).json()["payment_id"]

        resp = client.post("/api/subscribe/submit-transaction", json={
            "user_id": "alice", "payment_id": payment_id, "tx_hash": "0x" + "ab" * 32,
        })

        assert resp.status_code == 200
        assert resp.json()["status"] == "pending_verification"

    def test_unknown_payment_is_gone(self, client):
        wallet_payment(client)

        resp = client.post("/api/subscribe/submit-transaction", json={
            "user_id": "alice", "payment_id": "alice_pro_1_0", "tx_hash": "0x" + "ab" * 32,
        })

        assert resp.status_code == 410
        assert resp.json()["error"]["code"] == "INTENT_EXPIRED"


class TestPollerStats:

    def test_stats_before_first_cycle(self, client):
        resp = client.get("/api/subscription/poller")

        assert resp.status_code == 200
        assert resp.json()["cycles_run"] == 0
        assert resp.json()["running"] is False
