"""
Configuration Management for the USDC billing backend
Environment-based configuration with secrets handling and feature flags

Features:
- Environment-based config (dev/staging/prod)
- Per-network RPC endpoints and treasury addresses
- Pricing, poller and storage settings
- Dynamic reload
"""

import os
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional
from enum import Enum

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Config")


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


# USDC deployments (6 decimals on both networks)
BASE_USDC_CONTRACT = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
SOLANA_USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDC_DECIMALS = 6

# Placeholders shipped in example .env files; treated as "not configured"
ZERO_ADDRESSES = {
    "0x0000000000000000000000000000000000000000",
    "0000000000000000000000000000000000000000000000",
}


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class BlockchainConfig:
    """RPC endpoints, treasury addresses and verification tuning"""
    evm_rpc_url: str = "https://mainnet.base.org"
    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    evm_chain_id: int = 8453

    # Treasury addresses receiving payments
    evm_wallet_address: Optional[str] = None
    solana_wallet_address: Optional[str] = None

    evm_usdc_contract: str = BASE_USDC_CONTRACT
    solana_usdc_mint: str = SOLANA_USDC_MINT
    usdc_decimals: int = USDC_DECIMALS

    # RPC behaviour
    rpc_timeout: float = 10.0
    rpc_max_attempts: int = 3
    rpc_retry_delay: float = 0.5
    rpc_backoff: float = 2.0

    # EVM log scanning
    evm_log_chunk_blocks: int = 5000
    evm_block_time_seconds: float = 2.0
    min_confirmations: int = 1


@dataclass
class PricingConfig:
    """Pricing and intent lifetime"""
    # Flat currency amount taken off the first month only
    discount_offer: Decimal = Decimal("0")
    amount_tolerance: Decimal = Decimal("0.01")
    intent_ttl_hours: int = 24
    renewal_window_days: int = 7
    renewal_option_months: tuple = (1, 3, 6, 12)


@dataclass
class PollerConfig:
    """Pending-payment poller schedule"""
    interval_seconds: int = 60
    max_concurrency: int = 8
    initial_delay_seconds: int = 10


@dataclass
class StorageConfig:
    """Subscription persistence"""
    backend: str = "memory"  # memory or supabase
    supabase_url: str = ""
    supabase_key: str = ""
    subscriptions_table: str = "crypto_subscriptions"
    users_table: str = "users"


@dataclass
class MonitoringConfig:
    """Monitoring configuration"""
    log_level: str = "INFO"
    sentry_dsn: Optional[str] = None


@dataclass
class FeatureFlags:
    """Feature flags for gradual rollout"""
    enable_crypto_payment: bool = False
    enable_payment_poller: bool = True

    def is_enabled(self, feature: str) -> bool:
        return getattr(self, f"enable_{feature}", False)


@dataclass
class BillingConfig:
    """Main application configuration"""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True

    blockchain: BlockchainConfig = field(default_factory=BlockchainConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    poller: PollerConfig = field(default_factory=PollerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    features: FeatureFlags = field(default_factory=FeatureFlags)

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """Create configuration from environment variables"""
        env = os.environ.get("BILLING_ENV", "development").lower()

        config = cls(
            environment=Environment(env) if env in [e.value for e in Environment] else Environment.DEVELOPMENT,
            debug=_env_bool("DEBUG", "true"),
        )

        config.blockchain = BlockchainConfig(
            evm_rpc_url=os.environ.get("BASE_RPC_URL", "https://mainnet.base.org"),
            solana_rpc_url=os.environ.get("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com"),
            evm_wallet_address=os.environ.get("BASE_WALLET_ADDRESS") or None,
            solana_wallet_address=os.environ.get("SOLANA_WALLET_ADDRESS") or None,
            rpc_timeout=float(os.environ.get("RPC_TIMEOUT", "10")),
            rpc_max_attempts=int(os.environ.get("RPC_MAX_ATTEMPTS", "3")),
            rpc_backoff=float(os.environ.get("RPC_BACKOFF", "2.0")),
            evm_log_chunk_blocks=int(os.environ.get("EVM_LOG_CHUNK_BLOCKS", "5000")),
            evm_block_time_seconds=float(os.environ.get("EVM_BLOCK_TIME_SECONDS", "2.0")),
            min_confirmations=int(os.environ.get("MIN_CONFIRMATIONS", "1")),
        )

        config.pricing = PricingConfig(
            discount_offer=Decimal(os.environ.get("DISCOUNT_OFFER", "0") or "0"),
        )

        config.poller = PollerConfig(
            interval_seconds=int(os.environ.get("POLL_INTERVAL_SECONDS", "60")),
            max_concurrency=int(os.environ.get("POLL_MAX_CONCURRENCY", "8")),
            initial_delay_seconds=int(os.environ.get("POLL_INITIAL_DELAY_SECONDS", "10")),
        )

        config.storage = StorageConfig(
            backend=os.environ.get("STORE_BACKEND", "memory"),
            supabase_url=os.environ.get("SUPABASE_URL", ""),
            supabase_key=os.environ.get("SUPABASE_KEY", ""),
        )

        config.monitoring = MonitoringConfig(
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            sentry_dsn=os.environ.get("SENTRY_DSN") or None,
        )

        config.features = FeatureFlags(
            enable_crypto_payment=_env_bool("SUPPORT_CRYPTO_PAYMENT"),
            enable_payment_poller=_env_bool("ENABLE_PAYMENT_POLLER", "true"),
        )

        # Production hardening
        if config.environment == Environment.PRODUCTION:
            config.debug = False
            config.monitoring.log_level = "WARNING"

        return config

    def wallet_addresses(self) -> Dict[str, Optional[str]]:
        return {
            "evm": self.blockchain.evm_wallet_address,
            "non_evm": self.blockchain.solana_wallet_address,
        }

    def to_dict(self) -> Dict:
        """Convert to dictionary (hiding secrets)"""
        def sanitize(obj):
            if isinstance(obj, dict):
                return {
                    k: sanitize(v) for k, v in obj.items()
                    if "key" not in k.lower() and "secret" not in k.lower() and "dsn" not in k.lower()
                }
            elif hasattr(obj, '__dataclass_fields__'):
                return sanitize({k: getattr(obj, k) for k in obj.__dataclass_fields__})
            elif isinstance(obj, Enum):
                return obj.value
            elif isinstance(obj, Decimal):
                return str(obj)
            else:
                return obj

        return sanitize(self)


# ============================================
# GLOBAL INSTANCE
# ============================================

config = BillingConfig.from_env()

logger.info(f"Configuration loaded for environment: {config.environment.value}")


def get_config() -> BillingConfig:
    """Get the global configuration"""
    return config


def reload_config() -> BillingConfig:
    """Reload configuration from environment"""
    global config
    config = BillingConfig.from_env()
    logger.info("Configuration reloaded")
    return config
