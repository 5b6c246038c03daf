"""
Sentry Error Monitoring Configuration
Error tracking for the USDC billing backend
"""
import os
import logging
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger("Sentry")

SENSITIVE_KEYS = ['supabase_key', 'api_key', 'secret', 'password', 'authorization', 'private_key']


def filter_sensitive_data(event, hint):
    """Strip credentials from Sentry events. Wallet addresses and tx hashes are public and kept."""
    request = event.get('request') or {}

    data = request.get('data')
    if isinstance(data, dict):
        for key in list(data):
            if key.lower() in SENSITIVE_KEYS:
                data[key] = '[FILTERED]'

    headers = request.get('headers')
    if isinstance(headers, dict):
        for key in list(headers):
            if key.lower() in ('authorization', 'apikey', 'x-api-key'):
                headers[key] = '[FILTERED]'

    for exc in (event.get('exception') or {}).get('values', []):
        value = exc.get('value') or ''
        if any(key in value.lower() for key in SENSITIVE_KEYS):
            exc['value'] = '[FILTERED - sensitive data]'

    return event


def init_sentry(dsn: str = None, environment: str = None) -> bool:
    """Initialize Sentry when a DSN is configured."""
    dsn = dsn or os.getenv("SENTRY_DSN")

    if not dsn:
        logger.info("[Sentry] No SENTRY_DSN found - error tracking disabled")
        return False

    environment = environment or os.getenv("BILLING_ENV", "development")
    release = os.getenv("COMMIT_SHA", "local")

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.2,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR
            ),
        ],
        before_send=filter_sensitive_data,
        send_default_pii=False,
        release=f"usdc-billing@{release}",
        ignore_errors=[
            ConnectionRefusedError,
            TimeoutError,
        ],
    )

    logger.info(f"[Sentry] ✓ Initialized for {environment} (release: {release[:8]})")
    return True


def capture_payment_breadcrumb(action: str, network: str, details: dict = None):
    """Breadcrumb for intent creation and activation."""
    sentry_sdk.add_breadcrumb(
        category="payment",
        message=action,
        level="info",
        data={"network": network, **(details or {})}
    )
