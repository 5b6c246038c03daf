"""
Subscription API Router
USDC wallet payments for Pro/Premium plans on Base and Solana
"""

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from typing import Dict
import logging

from billing import Network, PaymentIntent, SubscriptionService
from billing.networks import network_settings
from infrastructure.config import BillingConfig
from infrastructure.errors import FeatureDisabled
from verifiers.calldata import encode_transfer_calldata, to_base_units


logger = logging.getLogger("SubscriptionAPI")

router = APIRouter(tags=["Subscription"])

# ============================================
# MODELS
# ============================================

class WalletPaymentRequest(BaseModel):
    """Create a USDC payment intent"""
    user_id: str
    plan_id: str
    months: int = Field(1, ge=1, le=36)
    network: str = "base"  # base/evm or solana/non_evm


class SubmitTransactionRequest(BaseModel):
    """Transaction the user sent for a pending intent"""
    user_id: str
    payment_id: str
    tx_hash: str


class CancelRequest(BaseModel):
    user_id: str


# ============================================
# DEPENDENCIES
# ============================================

def get_service(request: Request) -> SubscriptionService:
    return request.app.state.billing


def get_billing_config(request: Request) -> BillingConfig:
    return request.app.state.config


def require_crypto_payments(config: BillingConfig = Depends(get_billing_config)) -> BillingConfig:
    if not config.features.enable_crypto_payment:
        raise FeatureDisabled("Crypto payments")
    return config


def intent_response(intent: PaymentIntent, config: BillingConfig, is_renewal: bool = False) -> Dict:
    """Intent plus what a wallet needs to build the transfer."""
    settings = network_settings(config)[intent.network]
    payload = intent.to_dict()
    payload.update({
        "success": True,
        "is_renewal": is_renewal,
        "chain": settings.chain_name,
        "token": settings.usdc_token,
        "quote": intent.quote.to_dict(),
    })

    if intent.network == Network.EVM:
        raw_amount = to_base_units(intent.expected_amount, config.blockchain.usdc_decimals)
        payload["amount_base_units"] = str(raw_amount)
        payload["chain_id"] = config.blockchain.evm_chain_id
        payload["transfer_calldata"] = encode_transfer_calldata(intent.destination_address, raw_amount)

    return payload


# ============================================
# ENDPOINTS
# ============================================

@router.get("/api/subscription/plans")
async def get_plans(service: SubscriptionService = Depends(get_service)):
    """Purchasable plans with monthly USDC prices"""
    return {"plans": service.list_plans(), "currency": "USDC"}


@router.get("/api/subscription/pricing")
async def get_pricing(
    plan_id: str = Query(...),
    months: int = Query(1, ge=1, le=36),
    service: SubscriptionService = Depends(get_service),
):
    """Exact amount owed for `months` of `plan_id`, first-month discount applied"""
    return service.quote(plan_id, months).to_dict()


@router.post("/api/subscribe/wallet-payment")
async def create_wallet_payment(
    body: WalletPaymentRequest,
    service: SubscriptionService = Depends(get_service),
    config: BillingConfig = Depends(require_crypto_payments),
):
    """
    Create a payment intent.

    The user sends `amount` USDC to `address` on `network` within 24 hours;
    the poller activates the subscription once the transfer is seen on chain.
    """
    intent = await service.create_renewal_intent(body.user_id, body.plan_id, body.months, body.network)
    return intent_response(intent, config)


@router.post("/api/subscribe/renew")
async def renew_subscription(
    body: WalletPaymentRequest,
    service: SubscriptionService = Depends(get_service),
    config: BillingConfig = Depends(require_crypto_payments),
):
    """Same as wallet-payment, flagged as a renewal. Paid time left on an active plan is kept."""
    intent = await service.create_renewal_intent(
        body.user_id, body.plan_id, body.months, body.network, is_renewal=True
    )
    response = intent_response(intent, config, is_renewal=True)
    response["message"] = "Renewal payment created successfully"
    return response


@router.get("/api/subscribe/renewal-info")
async def get_renewal_info(
    user_id: str = Query(...),
    service: SubscriptionService = Depends(get_service),
):
    """Renewal quotes, or null when the subscription is not due"""
    return await service.get_renewal_options(user_id)


@router.post("/api/subscribe/submit-transaction")
async def submit_transaction(
    body: SubmitTransactionRequest,
    service: SubscriptionService = Depends(get_service),
    config: BillingConfig = Depends(require_crypto_payments),
):
    """Attach a transaction hash to the pending intent; verification happens on the next poll"""
    result = await service.submit_transaction_hash(body.user_id, body.payment_id, body.tx_hash)
    return {"success": True, **result}


@router.get("/api/subscription")
async def get_subscription(
    user_id: str = Query(...),
    service: SubscriptionService = Depends(get_service),
):
    return await service.get_subscription_status(user_id)


@router.post("/api/subscription/cancel")
async def cancel_subscription(
    body: CancelRequest,
    service: SubscriptionService = Depends(get_service),
):
    status = await service.cancel_subscription(body.user_id)
    logger.info(f"[Subscription] {body.user_id} cancelled")
    return {"success": True, "subscription": status}


@router.get("/api/subscription/poller")
async def get_poller_stats(request: Request):
    """Last poll cycle summary"""
    poller = getattr(request.app.state, "poller", None)
    if poller is None:
        return {"running": False, "last_cycle": None}
    return poller.get_stats()
