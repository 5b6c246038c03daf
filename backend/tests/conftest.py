"""
Pytest Configuration for the billing backend tests

Run all tests: python -m pytest backend/tests/ -v
Run unit tests only: python -m pytest backend/tests/ -v -m "not integration"
"""

import json
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import httpx
import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

from billing import (
    EventBus,
    InMemorySubscriptionStore,
    InMemoryUserDirectory,
    SubscriptionService,
    SubscriptionStateMachine,
    User,
)
from infrastructure.config import BASE_USDC_CONTRACT, SOLANA_USDC_MINT, BillingConfig
from infrastructure.rpc import JsonRpcClient
from verifiers.calldata import address_topic, encode_transfer_calldata


# =============================================================================
# FIXTURES - Shared across all test files
# =============================================================================

@pytest.fixture
def test_addresses():
    """Treasury, payer and foreign addresses on both networks"""
    return {
        "USDC": BASE_USDC_CONTRACT.lower(),
        "USDC_MINT": SOLANA_USDC_MINT,
        "OTHER_TOKEN": "0x4200000000000000000000000000000000000006",
        "treasury": "0xa30a689ec0f9d717c5ba1098455b031b868b720f",
        "payer": "0x5e047deb5eb22f4e4a7f2207087369468575e3ef",
        "stranger": "0x742d35cc6634c0532925a3b844bc9e7595f8fe00",
        "sol_treasury": "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
        "sol_payer": "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T",
    }


class FrozenClock:
    """Callable clock the tests move by hand"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def billing_config(test_addresses):
    """Config with both treasuries set, no discount and single-attempt RPC"""
    config = BillingConfig()
    config.blockchain.evm_rpc_url = "http://base.rpc.test"
    config.blockchain.solana_rpc_url = "http://solana.rpc.test"
    config.blockchain.evm_wallet_address = test_addresses["treasury"]
    config.blockchain.solana_wallet_address = test_addresses["sol_treasury"]
    config.blockchain.rpc_max_attempts = 1
    config.blockchain.rpc_retry_delay = 0
    config.features.enable_crypto_payment = True
    config.features.enable_payment_poller = False
    return config


@pytest.fixture
def store():
    return InMemorySubscriptionStore()


@pytest.fixture
def users():
    return InMemoryUserDirectory({
        "alice": User(id="alice", email="alice@example.com"),
        "bob_smith": User(id="bob_smith"),
        "root": User(id="root", is_admin=True),
    })


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def state_machine(store, events, clock):
    return SubscriptionStateMachine(store, events, clock)


@pytest.fixture
def service(billing_config, store, users, events, clock):
    return SubscriptionService(billing_config, store, users, events, clock)


# =============================================================================
# JSON-RPC FAKES
# =============================================================================

def rpc_transport(responses: dict, calls: list = None) -> httpx.MockTransport:
    """
    MockTransport answering JSON-RPC by method name.

    A response value may be a plain result, a callable taking params, an
    exception instance to raise, or {"__error__": {...}} for an error object.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if calls is not None:
            calls.append(body)

        method = body["method"]
        if method not in responses:
            return httpx.Response(200, json={
                "jsonrpc": "2.0", "id": body["id"],
                "error": {"code": -32601, "message": f"method {method} not found"},
            })

        value = responses[method]
        if callable(value):
            value = value(body["params"])
        if isinstance(value, Exception):
            raise value
        if isinstance(value, dict) and "__error__" in value:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": value["__error__"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": value})

    return httpx.MockTransport(handler)


@pytest.fixture
def make_rpc():
    """Build a single-attempt JsonRpcClient over a MockTransport; `client.calls` records requests."""
    def factory(responses: dict, chain: str = "base") -> JsonRpcClient:
        calls = []
        client = JsonRpcClient(
            "http://rpc.test",
            chain,
            timeout=1.0,
            max_attempts=1,
            retry_delay=0,
            transport=rpc_transport(responses, calls),
        )
        client.calls = calls
        return client
    return factory


class EvmChain:
    """In-memory Base chain serving the five RPC methods the EVM verifier uses"""

    def __init__(self, usdc: str, latest: int = 1000):
        self.usdc = usdc.lower()
        self.latest = latest
        self.transfers = {}
        self.block_times = {}

    def add_transfer(
        self,
        tx_hash: str,
        to: str,
        amount: Decimal,
        timestamp: datetime,
        block: int = 990,
        token: str = None,
        log_address: str = None,
        sender: str = "0x5e047deb5eb22f4e4a7f2207087369468575e3ef",
        status: str = "0x1",
        input_data: str = None,
    ):
        token = (token or self.usdc).lower()
        raw = int(Decimal(amount).scaleb(6))
        self.transfers[tx_hash] = {
            "hash": tx_hash,
            "to": to.lower(),
            "token": token,
            "log_address": (log_address or token).lower(),
            "from": sender,
            "block": block,
            "status": status,
            "input": input_data or encode_transfer_calldata(to, raw),
        }
        self.block_times[block] = int(timestamp.timestamp())

    def responses(self) -> dict:
        return {
            "eth_blockNumber": lambda params: hex(self.latest),
            "eth_getLogs": self._get_logs,
            "eth_getTransactionByHash": self._get_tx,
            "eth_getTransactionReceipt": self._get_receipt,
            "eth_getBlockByNumber": self._get_block,
        }

    def _get_logs(self, params):
        flt = params[0]
        start, end = int(flt["fromBlock"], 16), int(flt["toBlock"], 16)
        recipient_topic = flt["topics"][2]
        return [
            {"transactionHash": t["hash"], "blockNumber": hex(t["block"]), "removed": False}
            for t in self.transfers.values()
            if t["log_address"] == flt["address"].lower()
            and address_topic(t["to"]) == recipient_topic
            and start <= t["block"] <= end
        ]

    def _get_tx(self, params):
        t = self.transfers.get(params[0])
        if t is None:
            return None
        return {
            "hash": t["hash"],
            "from": t["from"],
            "to": t["token"],
            "input": t["input"],
            "blockNumber": hex(t["block"]),
        }

    def _get_receipt(self, params):
        t = self.transfers.get(params[0])
        return {"status": t["status"]} if t else None

    def _get_block(self, params):
        return {"timestamp": hex(self.block_times[int(params[0], 16)])}


@pytest.fixture
def evm_chain(test_addresses):
    return EvmChain(test_addresses["USDC"])


def solana_token_accounts(owner: str, mint: str, *amounts: str) -> dict:
    """getTokenAccountsByOwner jsonParsed result holding `amounts`"""
    return {
        "context": {"slot": 250_000_000},
        "value": [
            {
                "pubkey": f"TokenAccount{i}",
                "account": {
                    "data": {
                        "program": "spl-token",
                        "parsed": {
                            "type": "account",
                            "info": {
                                "mint": mint,
                                "owner": owner,
                                "tokenAmount": {
                                    "amount": str(int(Decimal(amount).scaleb(6))),
                                    "decimals": 6,
                                    "uiAmountString": amount,
                                },
                            },
                        },
                    },
                },
            }
            for i, amount in enumerate(amounts)
        ],
    }


@pytest.fixture
def solana_accounts():
    return solana_token_accounts


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (use real RPC endpoints)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
