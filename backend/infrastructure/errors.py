"""
Global Error Handling for the USDC billing backend
Structured exceptions for intent creation, verification and subscription state

Features:
- Custom exception classes with error codes
- Structured JSON error responses
- Retry logic for RPC calls
- Error tracking and aggregation
"""

import asyncio
import logging
import traceback
from datetime import datetime
from typing import Callable, Dict, TypeVar
from functools import wraps
from enum import Enum

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ErrorHandler")


# ============================================
# ERROR CODES
# ============================================

class ErrorCode(str, Enum):
    # Client errors (4xx)
    BAD_REQUEST = "BAD_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_PLAN = "INVALID_PLAN"
    UNCONFIGURED_NETWORK = "UNCONFIGURED_NETWORK"
    NOT_ACTIVE = "NOT_ACTIVE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INTENT_EXPIRED = "INTENT_EXPIRED"
    FEATURE_DISABLED = "FEATURE_DISABLED"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    BLOCKCHAIN_ERROR = "BLOCKCHAIN_ERROR"

    # Verification / state outcomes (never surfaced to end users)
    VERIFICATION_INDETERMINATE = "VERIFICATION_INDETERMINATE"
    ACTIVATION_CONFLICT = "ACTIVATION_CONFLICT"


# ============================================
# CUSTOM EXCEPTIONS
# ============================================

class BillingError(Exception):
    """Base exception for the billing core"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Dict = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict:
        return {
            "success": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp.isoformat()
            }
        }


class ValidationError(BillingError):
    """Input validation error"""
    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, 400, details)


class NotFoundError(BillingError):
    """Resource not found"""
    def __init__(self, resource: str, identifier: str = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        super().__init__(message, ErrorCode.NOT_FOUND, 404)


class InvalidPlan(BillingError):
    """Unknown or non-purchasable plan"""
    def __init__(self, plan_id: str):
        super().__init__(f"Invalid plan '{plan_id}'", ErrorCode.INVALID_PLAN, 400, {"plan_id": plan_id})


class UnconfiguredNetwork(BillingError):
    """No destination address configured for the network"""
    def __init__(self, network: str):
        super().__init__(
            f"No wallet address configured for network '{network}'",
            ErrorCode.UNCONFIGURED_NETWORK,
            400,
            {"network": network}
        )


class NotActive(BillingError):
    """Operation requires an active subscription"""
    def __init__(self, user_id: str, status: str):
        super().__init__(
            "Subscription is not active",
            ErrorCode.NOT_ACTIVE,
            409,
            {"user_id": user_id, "status": status}
        )


class InvalidTransition(BillingError):
    """Requested transition is not legal from the current status"""
    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Cannot move subscription from {from_status} to {to_status}",
            ErrorCode.INVALID_TRANSITION,
            409,
            {"from": from_status, "to": to_status}
        )


class IntentExpired(BillingError):
    """Payment intent window elapsed or intent was superseded"""
    def __init__(self, payment_id: str):
        super().__init__(
            "Payment intent expired; request a new one",
            ErrorCode.INTENT_EXPIRED,
            410,
            {"payment_id": payment_id}
        )


class FeatureDisabled(BillingError):
    """Feature switched off by configuration"""
    def __init__(self, feature: str):
        super().__init__(f"{feature} is not enabled", ErrorCode.FEATURE_DISABLED, 404, {"feature": feature})


class DatabaseError(BillingError):
    """Database operation failed"""
    def __init__(self, message: str, original_error: Exception = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)
        super().__init__(message, ErrorCode.DATABASE_ERROR, 500, details)


class BlockchainError(BillingError):
    """Blockchain operation failed"""
    def __init__(self, chain: str, message: str, tx_hash: str = None):
        details = {"chain": chain}
        if tx_hash:
            details["tx_hash"] = tx_hash
        super().__init__(message, ErrorCode.BLOCKCHAIN_ERROR, 500, details)


class RpcError(BlockchainError):
    """JSON-RPC endpoint returned an error object or unusable payload"""
    def __init__(self, chain: str, method: str, message: str):
        super().__init__(chain, f"{method}: {message}")
        self.details["method"] = method


class VerificationIndeterminate(BillingError):
    """Verification could not reach a verdict because of infrastructure trouble"""
    def __init__(self, network: str, reason: str):
        super().__init__(
            f"Verification indeterminate on {network}: {reason}",
            ErrorCode.VERIFICATION_INDETERMINATE,
            503,
            {"network": network}
        )


class ConcurrentActivationConflict(BillingError):
    """Conditional update lost: row no longer in the expected state"""
    def __init__(self, user_id: str, expected_status: str, expected_payment_id: str = None):
        super().__init__(
            "Subscription row changed concurrently",
            ErrorCode.ACTIVATION_CONFLICT,
            409,
            {
                "user_id": user_id,
                "expected_status": expected_status,
                "expected_payment_id": expected_payment_id,
            }
        )


# ============================================
# ERROR TRACKING
# ============================================

class ErrorTracker:
    """Tracks and aggregates errors for monitoring"""

    def __init__(self, max_errors: int = 1000):
        self.errors: list = []
        self.max_errors = max_errors
        self.error_counts: Dict[str, int] = {}

    def track(self, error: Exception, request_path: str = None):
        """Track an error"""
        error_type = type(error).__name__

        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        error_info = {
            "type": error_type,
            "message": str(error),
            "path": request_path,
            "timestamp": datetime.now().isoformat(),
            "traceback": traceback.format_exc() if not isinstance(error, BillingError) else None
        }

        if isinstance(error, BillingError):
            error_info["code"] = error.code.value
            error_info["details"] = error.details

        self.errors.append(error_info)

        if len(self.errors) > self.max_errors:
            self.errors = self.errors[-self.max_errors:]

        # Log critical errors
        if not isinstance(error, BillingError) or error.status_code >= 500:
            logger.error(f"Error tracked: {error_type} - {str(error)[:200]}")

    def get_stats(self) -> Dict:
        """Get error statistics"""
        return {
            "total_errors": len(self.errors),
            "error_counts": self.error_counts,
            "recent_errors": self.errors[-10:],
            "timestamp": datetime.now().isoformat()
        }

    def clear(self):
        """Clear error history"""
        self.errors.clear()
        self.error_counts.clear()


# Global error tracker
error_tracker = ErrorTracker()


# ============================================
# RETRY LOGIC
# ============================================

T = TypeVar('T')


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Decorator for automatic retry with exponential backoff.

    Usage:
        @retry(max_attempts=3, delay=1.0)
        async def fetch_data():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            last_exception = None
            current_delay = delay

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    if attempt < max_attempts - 1:
                        logger.warning(f"Retry {attempt + 1}/{max_attempts} for {func.__name__}: {e}")
                        await asyncio.sleep(current_delay)
                        current_delay *= backoff
                    else:
                        logger.error(f"All retries failed for {func.__name__}: {e}")

            raise last_exception

        return wrapper
    return decorator


# ============================================
# FASTAPI EXCEPTION HANDLERS
# ============================================

async def billing_exception_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Handle BillingError exceptions"""
    error_tracker.track(exc, str(request.url.path))

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPExceptions"""
    error_tracker.track(exc, str(request.url.path))

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.BAD_REQUEST.value if exc.status_code < 500 else ErrorCode.INTERNAL_ERROR.value,
                "message": exc.detail,
                "timestamp": datetime.now().isoformat()
            }
        }
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    error_tracker.track(exc, str(request.url.path))

    logger.error(f"Unhandled exception: {traceback.format_exc()}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "timestamp": datetime.now().isoformat()
            }
        }
    )


def register_exception_handlers(app):
    """Register all exception handlers with FastAPI app"""
    app.add_exception_handler(BillingError, billing_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Exception handlers registered")
