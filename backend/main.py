"""
USDC Subscription Billing API

Run: uvicorn main:app --app-dir backend
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI

backend_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(os.path.join(backend_dir, ".env"))

from api.subscription_router import router as subscription_router
from billing import (
    EventBus,
    EventType,
    SubscriptionService,
    SubscriptionStore,
    UserDirectory,
    build_store,
    build_user_directory,
)
from infrastructure.config import BillingConfig, get_config
from infrastructure.errors import register_exception_handlers
from sentry_config import capture_payment_breadcrumb, init_sentry
from services.payment_poller import PaymentPoller
from verifiers import build_verifiers

logger = logging.getLogger("BillingAPI")


def _breadcrumb_on_activation(event):
    capture_payment_breadcrumb("payment_confirmed", event.data.get("network") or "unknown", {
        "payment_id": event.payment_id,
        "plan_id": event.data.get("plan_id"),
        "months": event.data.get("months"),
    })


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: BillingConfig = app.state.config
    poller: PaymentPoller = app.state.poller

    if config.features.enable_payment_poller:
        poller.start()
    else:
        logger.info("[BillingAPI] Payment poller disabled")

    try:
        yield
    finally:
        await poller.aclose()
        logger.info("[BillingAPI] Shutdown complete")


def create_app(
    config: Optional[BillingConfig] = None,
    store: Optional[SubscriptionStore] = None,
    users: Optional[UserDirectory] = None,
    events: Optional[EventBus] = None,
    transports: Optional[Dict] = None,
) -> FastAPI:
    """Wire config, persistence, verifiers and the poller into a FastAPI app."""
    config = config or get_config()
    logging.getLogger().setLevel(config.monitoring.log_level.upper())
    init_sentry(config.monitoring.sentry_dsn, config.environment.value)

    events = events or EventBus()
    events.subscribe(EventType.PAYMENT_CONFIRMED, _breadcrumb_on_activation)

    service = SubscriptionService(
        config,
        store or build_store(config.storage),
        users or build_user_directory(config.storage),
        events,
    )
    poller = PaymentPoller(service.state, build_verifiers(config, transports), config.poller)

    app = FastAPI(title="USDC Subscription Billing", lifespan=lifespan)
    app.state.config = config
    app.state.billing = service
    app.state.poller = poller

    register_exception_handlers(app)
    app.include_router(subscription_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "environment": config.environment.value}

    logger.info(f"[BillingAPI] App created (crypto payments: {config.features.enable_crypto_payment})")
    return app


app = create_app()
