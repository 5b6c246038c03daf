"""
SubscriptionService facade tests
"""

from decimal import Decimal

import pytest

from billing import Network, SubscriptionStatus
from infrastructure.errors import (
    IntentExpired,
    InvalidPlan,
    NotActive,
    NotFoundError,
    UnconfiguredNetwork,
    ValidationError,
)

EVM_HASH = "0x" + "AB" * 32


async def activate(service, user_id="alice", months=1):
    intent = await service.create_renewal_intent(user_id, "pro", months, "base")
    assert await service.state.activate(user_id, intent.payment_id)
    return intent


class TestCreateIntent:

    @pytest.mark.asyncio
    async def test_creates_pending_row(self, service, store):
        intent = await service.create_renewal_intent("alice", "pro", 2, "base")

        row = await store.read("alice")
        assert row.status == SubscriptionStatus.PENDING_PAYMENT
        assert row.linked_payment_id == intent.payment_id
        assert row.network == Network.EVM
        assert intent.expected_amount == Decimal("59.98")

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            await service.create_renewal_intent("mallory", "pro", 1, "base")

    @pytest.mark.asyncio
    async def test_admin_cannot_purchase(self, service):
        with pytest.raises(ValidationError):
            await service.create_renewal_intent("root", "pro", 1, "base")

    @pytest.mark.asyncio
    async def test_caller_errors_leave_no_row(self, service, store, billing_config):
        with pytest.raises(InvalidPlan):
            await service.create_renewal_intent("alice", "free", 1, "base")

        billing_config.blockchain.evm_wallet_address = None
        with pytest.raises(UnconfiguredNetwork):
            await service.create_renewal_intent("alice", "pro", 1, "base")

        assert await store.read("alice") is None


class TestStatus:

    @pytest.mark.asyncio
    async def test_new_user_is_free(self, service):
        status = await service.get_subscription_status("alice")

        assert status["status"] == "free"
        assert status["has_access"] is False
        assert status["needs_renewal"] is False
        assert status["features"] == ["basic_alerts", "limited_api"]

    @pytest.mark.asyncio
    async def test_admin_always_active(self, service):
        status = await service.get_subscription_status("root")

        assert status["status"] == "active"
        assert status["is_admin"] is True
        assert status["needs_renewal"] is False

    @pytest.mark.asyncio
    async def test_pending_exposes_intent(self, service):
        intent = await service.create_renewal_intent("alice", "pro", 1, "solana")

        status = await service.get_subscription_status("alice")

        assert status["status"] == "pending_payment"
        assert status["pending_payment"]["payment_id"] == intent.payment_id
        assert status["pending_payment"]["amount"] == "29.99"
        assert status["pending_payment"]["network"] == "non_evm"

    @pytest.mark.asyncio
    async def test_active_outside_window(self, service):
        await activate(service, months=3)

        status = await service.get_subscription_status("alice")

        assert status["status"] == "active"
        assert status["has_access"] is True
        assert status["needs_renewal"] is False
        assert status["plan_name"] == "Pro Plan"

    @pytest.mark.asyncio
    async def test_needs_renewal_within_seven_days(self, service, clock):
        await activate(service)
        clock.advance(days=25)

        status = await service.get_subscription_status("alice")

        assert status["status"] == "active"
        assert status["needs_renewal"] is True
        assert status["days_until_expiry"] == 6

    @pytest.mark.asyncio
    async def test_expired_needs_renewal(self, service, clock):
        await activate(service)
        clock.advance(days=40)

        status = await service.get_subscription_status("alice")

        assert status["status"] == "expired"
        assert status["needs_renewal"] is True
        assert status["has_access"] is False
        assert status["expired_plan"] == "pro"

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            await service.get_subscription_status("mallory")


class TestRenewalOptions:

    @pytest.mark.asyncio
    async def test_none_when_not_due(self, service):
        await activate(service, months=3)
        assert await service.get_renewal_options("alice") is None

    @pytest.mark.asyncio
    async def test_quotes_for_expired_plan(self, service, clock):
        service.calculator.discount = Decimal("9.99")
        await activate(service)
        clock.advance(days=40)

        info = await service.get_renewal_options("alice")

        assert info["plan_id"] == "pro"
        assert [o["months"] for o in info["renewal_options"]] == [1, 3, 6, 12]
        assert info["renewal_options"][1]["total_due"] == "79.98"


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_active(self, service):
        await activate(service)

        status = await service.cancel_subscription("alice")

        assert status["status"] == "cancelled"
        assert status["has_access"] is False

    @pytest.mark.asyncio
    async def test_cancel_free_is_not_active(self, service):
        with pytest.raises(NotActive):
            await service.cancel_subscription("alice")


class TestSubmitTransaction:

    @pytest.mark.asyncio
    async def test_claim_recorded_lowercase(self, service, store):
        intent = await service.create_renewal_intent("alice", "pro", 1, "base")

        result = await service.submit_transaction_hash("alice", intent.payment_id, EVM_HASH)

        assert result["status"] == "pending_verification"
        assert (await store.read("alice")).claimed_tx_ref == EVM_HASH.lower()
        assert (await store.read("alice")).status == SubscriptionStatus.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_solana_signature_required_for_solana_intent(self, service):
        intent = await service.create_renewal_intent("alice", "pro", 1, "solana")

        with pytest.raises(ValidationError):
            await service.submit_transaction_hash("alice", intent.payment_id, EVM_HASH)

    @pytest.mark.asyncio
    async def test_superseded_intent(self, service, clock):
        old = await service.create_renewal_intent("alice", "pro", 1, "base")
        clock.advance(seconds=1)
        await service.create_renewal_intent("alice", "pro", 1, "base")

        with pytest.raises(IntentExpired):
            await service.submit_transaction_hash("alice", old.payment_id, EVM_HASH)

    @pytest.mark.asyncio
    async def test_lapsed_intent(self, service, clock):
        intent = await service.create_renewal_intent("alice", "pro", 1, "base")
        clock.advance(hours=24, minutes=1)

        with pytest.raises(IntentExpired):
            await service.submit_transaction_hash("alice", intent.payment_id, EVM_HASH)
