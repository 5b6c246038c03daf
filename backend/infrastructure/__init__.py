"""
Billing Infrastructure Module
Configuration, error taxonomy, RPC transport and persistence client
"""

from .errors import (
    BillingError,
    ValidationError,
    NotFoundError,
    InvalidPlan,
    UnconfiguredNetwork,
    NotActive,
    InvalidTransition,
    IntentExpired,
    FeatureDisabled,
    DatabaseError,
    BlockchainError,
    RpcError,
    VerificationIndeterminate,
    ConcurrentActivationConflict,
    ErrorCode,
    ErrorTracker,
    error_tracker,
    retry,
    register_exception_handlers,
)

from .config import (
    BillingConfig,
    BlockchainConfig,
    PricingConfig,
    PollerConfig,
    StorageConfig,
    MonitoringConfig,
    Environment,
    FeatureFlags,
    config,
    get_config,
    reload_config,
)

from .rpc import JsonRpcClient, build_rpc_client

__all__ = [
    # Errors
    "BillingError",
    "ValidationError",
    "NotFoundError",
    "InvalidPlan",
    "UnconfiguredNetwork",
    "NotActive",
    "InvalidTransition",
    "IntentExpired",
    "FeatureDisabled",
    "DatabaseError",
    "BlockchainError",
    "RpcError",
    "VerificationIndeterminate",
    "ConcurrentActivationConflict",
    "ErrorCode",
    "ErrorTracker",
    "error_tracker",
    "retry",
    "register_exception_handlers",

    # Config
    "BillingConfig",
    "BlockchainConfig",
    "PricingConfig",
    "PollerConfig",
    "StorageConfig",
    "MonitoringConfig",
    "Environment",
    "FeatureFlags",
    "config",
    "get_config",
    "reload_config",

    # RPC
    "JsonRpcClient",
    "build_rpc_client",
]
