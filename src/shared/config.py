"""Application settings for the receipt verification pipeline."""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MIB = 1024 * 1024


class Settings(BaseSettings):
    """Environment-driven configuration.

    Every Lambda reads the same settings object; ``validate_runtime`` must be
    called once at cold start before any provider is built.
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Environment
    ENVIRONMENT: str = "development"
    USE_STUB_PROVIDERS: bool = False
    LOG_LEVEL: str = "INFO"
    AWS_REGION: str = "us-east-1"

    # Storage
    RECEIPTS_BUCKET: Optional[str] = None
    BONUS_ASSETS_BUCKET: Optional[str] = None
    RECEIPTS_PUBLIC_URL: Optional[str] = None

    # Tables
    RECEIPTS_TABLE: Optional[str] = None
    FINGERPRINTS_TABLE: Optional[str] = None
    VERIFICATIONS_TABLE: Optional[str] = None
    CLAIMS_TABLE: Optional[str] = None
    ENTITLEMENTS_TABLE: Optional[str] = None

    # Background processing
    PROCESSING_QUEUE_URL: Optional[str] = None

    # Providers
    BEDROCK_MODEL_ID: Optional[str] = None
    SES_SENDER_EMAIL: Optional[str] = None
    APP_BASE_URL: str = "https://ai-born.org"

    # Ingestion
    MAX_UPLOAD_BYTES: int = 10 * MIB

    # Verification policy
    AUTO_VERIFY_SCORE: int = 80
    AUTO_VERIFY_MIN_CONFIDENCE: float = 0.8
    LOW_CONFIDENCE_THRESHOLD: float = 0.5
    DECISIVE_REJECT_CONFIDENCE: float = 0.8
    PURCHASE_STALENESS_MONTHS: int = 6
    MAX_PLAUSIBLE_RECEIPT_AGE_YEARS: int = 5
    EXPECTED_TITLE_TOKEN: str = "ai-born"
    ENTITLEMENT_TTL_HOURS: int = 24

    # Provider calls
    PROVIDER_MAX_ATTEMPTS: int = 3
    PROVIDER_BACKOFF_BASE_SECONDS: float = 0.5
    PROVIDER_BACKOFF_MAX_SECONDS: float = 8.0
    PROVIDER_CONNECT_TIMEOUT: int = 5
    PROVIDER_READ_TIMEOUT: int = 30

    # Rate limiting
    RATE_LIMIT_BACKEND: str = "local"
    REDIS_URL: Optional[str] = None
    UPLOAD_RATE_LIMIT: int = 5
    UPLOAD_RATE_WINDOW_SECONDS: int = 3600

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def missing_required(self) -> List[str]:
        """Return the names of required settings that are unset."""
        required = [
            'RECEIPTS_BUCKET',
            'BONUS_ASSETS_BUCKET',
            'RECEIPTS_TABLE',
            'FINGERPRINTS_TABLE',
            'VERIFICATIONS_TABLE',
            'CLAIMS_TABLE',
            'ENTITLEMENTS_TABLE',
            'PROCESSING_QUEUE_URL',
        ]
        if not self.USE_STUB_PROVIDERS:
            required += ['BEDROCK_MODEL_ID', 'SES_SENDER_EMAIL']
        if self.RATE_LIMIT_BACKEND == 'redis':
            required.append('REDIS_URL')

        return [name for name in required if not getattr(self, name)]

    def validate_runtime(self) -> None:
        """
        Validate configuration before serving traffic.

        Raises:
            ConfigurationError: In production, when a required key is missing
                or stub providers are enabled. In any environment, when the
                rate limit backend is unknown.
        """
        if self.RATE_LIMIT_BACKEND not in ('local', 'redis'):
            raise ConfigurationError(
                f"Unknown RATE_LIMIT_BACKEND: {self.RATE_LIMIT_BACKEND}"
            )

        if self.is_production and self.USE_STUB_PROVIDERS:
            raise ConfigurationError("Stub providers are not permitted in production")

        missing = self.missing_required()
        if not missing:
            return

        if self.is_production:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )

        logger.warning(f"Running {self.ENVIRONMENT} with missing configuration: {', '.join(missing)}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
