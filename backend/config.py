"""
Crypto Invoice Core - Configuration Management

Centralized configuration for environment variables and deployment settings.
This module ensures:
- No hardcoded secrets
- No missing required variables
- Environment-specific settings (dev/staging/prod)
- Transfer source credentials validated before the first pass
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="Async SQLAlchemy URL of the invoice database (required)"
    )

    # ==================== INTERNAL AUTH ====================
    INTERNAL_API_KEY: str = Field(
        default="",
        description="Primary key accepted on X-Internal-Api-Key"
    )
    INTERNAL_API_KEYS: str = Field(
        default="",
        description="Comma-separated additional keys (rotation)"
    )

    # ==================== TRANSFER SOURCE ====================
    TRANSFER_SOURCE: str = Field(
        default="ASSET_TRANSFERS",
        description="ASSET_TRANSFERS (indexer polling) or CONTRACT_EVENTS (payment contract log)"
    )
    ALCHEMY_API_KEY: str = Field(default="")
    ALCHEMY_NETWORK: str = Field(
        default="eth-sepolia",
        description="Alchemy network slug used to build the JSON-RPC URL"
    )
    ALCHEMY_URL: str = Field(
        default="",
        description="Explicit JSON-RPC URL; overrides ALCHEMY_NETWORK/ALCHEMY_API_KEY"
    )
    CONTRACT_ADDRESS: str = Field(
        default="",
        description="Invoice payment contract emitting InvoicePaid"
    )
    CONTRACT_RPC_URL: str = Field(
        default="",
        description="HTTP RPC endpoint for contract log queries (defaults to the Alchemy URL)"
    )
    CONTRACT_START_BLOCK: int = Field(
        default=0,
        description="First block scanned when no lower bound is given"
    )
    CONTRACT_BLOCK_WINDOW: int = Field(
        default=10_000,
        description="Blocks per eth_getLogs request when scanning back from the chain head"
    )
    TRANSFER_MAX_COUNT: int = Field(
        default=100,
        description="Maximum transfer records fetched per address per pass"
    )
    SOURCE_TIMEOUT_SECONDS: float = Field(
        default=15.0,
        description="Upper bound on a single transfer source call"
    )

    # ==================== RECONCILIATION ====================
    RECONCILE_INTERVAL_SECONDS: int = Field(
        default=0,
        description="Scheduler interval; 0 disables the in-process scheduler"
    )
    RECONCILE_MAX_CONCURRENCY: int = Field(
        default=1,
        description="Parallel transfer fetches per pass (matching stays sequential)"
    )
    TREAT_WETH_AS_ETH: bool = Field(
        default=False,
        description="Allow WETH transfers to settle ETH invoices and vice versa"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Crypto Invoice Reconciliation API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def internal_api_keys(self) -> List[str]:
        keys = []
        if self.INTERNAL_API_KEY.strip():
            keys.append(self.INTERNAL_API_KEY.strip())
        keys.extend(k.strip() for k in self.INTERNAL_API_KEYS.split(",") if k.strip())
        return keys

    @property
    def alchemy_url(self) -> str:
        """JSON-RPC endpoint for the asset transfer index."""
        if self.ALCHEMY_URL:
            return self.ALCHEMY_URL
        if not self.ALCHEMY_API_KEY:
            return ""
        return f"https://{self.ALCHEMY_NETWORK}.g.alchemy.com/v2/{self.ALCHEMY_API_KEY}"

    @property
    def contract_rpc_url(self) -> str:
        return self.CONTRACT_RPC_URL or self.alchemy_url

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required")

        if not self.internal_api_keys:
            errors.append("INTERNAL_API_KEY is required")

        source = self.TRANSFER_SOURCE.upper()
        if source == "ASSET_TRANSFERS" and not self.alchemy_url:
            errors.append("ALCHEMY_API_KEY or ALCHEMY_URL is required for ASSET_TRANSFERS")
        elif source == "CONTRACT_EVENTS":
            if not self.CONTRACT_ADDRESS:
                errors.append("CONTRACT_ADDRESS is required for CONTRACT_EVENTS")
            if not self.contract_rpc_url:
                errors.append("CONTRACT_RPC_URL or ALCHEMY_API_KEY is required for CONTRACT_EVENTS")
        elif source not in ("ASSET_TRANSFERS", "CONTRACT_EVENTS"):
            errors.append(f"Unknown TRANSFER_SOURCE: {self.TRANSFER_SOURCE}")

        if self.TRANSFER_MAX_COUNT < 1:
            errors.append("TRANSFER_MAX_COUNT must be positive")

        if self.RECONCILE_MAX_CONCURRENCY < 1:
            errors.append("RECONCILE_MAX_CONCURRENCY must be positive")

        if self.CONTRACT_BLOCK_WINDOW < 1:
            errors.append("CONTRACT_BLOCK_WINDOW must be positive")

        if self.is_production:
            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Transfer source: {settings.TRANSFER_SOURCE}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    required_vars = [
        ("DATABASE_URL", settings.DATABASE_URL),
        ("INTERNAL_API_KEY", ",".join(settings.internal_api_keys)),
    ]

    for name, value in required_vars:
        if not value:
            status["errors"].append(f"{name} is not set")
            status["valid"] = False
        else:
            status["variables"][name] = "✓ Set"

    optional_vars = [
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
        ("RECONCILE_INTERVAL_SECONDS", settings.RECONCILE_INTERVAL_SECONDS, "Scheduled reconciliation disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "⚠ Not set"
        else:
            status["variables"][name] = "✓ Set"

    for error in settings.validate_production_config():
        if error not in status["errors"] and not error.startswith(("DATABASE_URL is", "INTERNAL_API_KEY is")):
            status["errors"].append(error)
            status["valid"] = False

    return status
