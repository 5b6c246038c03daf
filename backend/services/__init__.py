"""
Background Services
Scheduled jobs that run alongside the API
"""

from .payment_poller import PaymentPoller

__all__ = [
    "PaymentPoller",
]
