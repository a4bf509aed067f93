"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from decimal import Decimal, InvalidOperation

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str
    database_echo: bool = False

    # Redis (cache, reward queue and Dramatiq)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0

    # Application
    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"
    health_check_port: int = Field(
        default=8081, ge=1, le=65535, description="Scheduler health check HTTP port"
    )
    worker_health_check_port: int = Field(
        default=8082, ge=1, le=65535, description="Worker pool health check HTTP port"
    )

    # Referral chain / reward tiers
    referral_max_depth: int = Field(
        default=3, ge=1, le=10,
        description="Maximum referral chain depth (number of rewarded tiers)"
    )
    referral_tier_rates: str = Field(
        default="0.10,0.05,0.025",
        description="Comma-separated payout rates, tier 1 first"
    )

    # Retry / dead-letter
    reward_max_retries: int = Field(
        default=5, ge=1,
        description="Failed attempts before a reward is dead-lettered"
    )
    reward_retry_base_delay_seconds: int = Field(
        default=60, ge=1,
        description="Base delay for exponential backoff (60s, 120s, 240s...)"
    )
    reward_stale_threshold_seconds: int = Field(
        default=600, ge=10,
        description="Age after which a PENDING reward without a live job is re-enqueued"
    )
    reward_sweep_batch_limit: int = Field(default=500, ge=1)

    # Distribution worker pool
    distribution_workers: int = Field(default=4, ge=1, le=64)
    distribution_poll_timeout_seconds: float = Field(default=5.0, gt=0)
    distribution_credit_timeout_seconds: float = Field(default=30.0, gt=0)
    reward_queue_prefix: str = "referral_rewards"
    reward_events_channel: str = "referral:reward_distributed"

    # Cache layer
    chain_cache_ttl_seconds: int = Field(default=300, ge=1)
    stats_cache_ttl_seconds: int = Field(default=60, ge=1)

    # Scheduler intervals
    retry_interval_seconds: int = Field(default=60, ge=5)
    queue_cleanup_interval_seconds: int = Field(default=300, ge=5)
    chain_repair_interval_minutes: int = Field(default=360, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL."""
        if not v.startswith(('postgresql://', 'postgresql+asyncpg://')):
            raise ValueError(
                'DATABASE_URL must start with postgresql:// or postgresql+asyncpg://'
            )
        return v

    @field_validator('referral_tier_rates')
    @classmethod
    def validate_tier_rates(cls, v: str) -> str:
        """Validate that every tier rate is a positive decimal below 1."""
        for raw in v.split(","):
            try:
                rate = Decimal(raw.strip())
            except InvalidOperation as e:
                raise ValueError(f"Invalid tier rate: {raw!r}") from e
            if rate <= 0 or rate >= 1:
                raise ValueError(f"Tier rate must be in (0, 1): {raw!r}")
        return v

    @model_validator(mode='after')
    def validate_tier_table(self) -> 'Settings':
        """Tier rates must cover every tier and never increase with depth."""
        rates = self.get_tier_rates()
        if len(rates) != self.referral_max_depth:
            raise ValueError(
                f"REFERRAL_TIER_RATES defines {len(rates)} tiers but "
                f"REFERRAL_MAX_DEPTH is {self.referral_max_depth}"
            )
        ordered = [rates[tier] for tier in sorted(rates)]
        if any(later > earlier for earlier, later in zip(ordered, ordered[1:])):
            raise ValueError("Tier rates must be non-increasing with tier")
        return self

    @model_validator(mode='after')
    def validate_production(self) -> 'Settings':
        """Validate production-specific requirements."""
        if self.environment == 'production' and self.debug:
            logger.warning("DEBUG is enabled in production environment")
        return self

    @property
    def async_database_url(self) -> str:
        """Database URL with the asyncpg driver."""
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        return self.database_url

    def get_tier_rates(self) -> dict[int, Decimal]:
        """Parse tier rates into {tier: rate}, tier 1 first."""
        return {
            tier: Decimal(raw.strip())
            for tier, raw in enumerate(self.referral_tier_rates.split(","), start=1)
            if raw.strip()
        }


# Global settings instance
settings = Settings()
