import logging
from pydantic_settings import BaseSettings
from pydantic import model_validator, ConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: "development" or "production"
    environment: str = "development"
    log_level: str = "INFO"

    database_url: str = "postgresql+asyncpg://localhost/adpilot"

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Hosted Postgres gives postgresql:// — we need postgresql+asyncpg:// for asyncpg."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values

    api_key: str = ""  # Required in production; in dev, empty = auth disabled
    cron_secret: str = ""

    # Circuit breaker state lives in Redis when configured, in-process otherwise
    redis_url: str = ""
    circuit_breaker_max_failures: int = 3
    circuit_breaker_cooldown_seconds: int = 60

    # Budget allocation
    min_budget_share: float = 0.05
    default_roas: float = 0.5

    # Portfolio optimization thresholds
    roas_pause_threshold: float = 0.8
    roas_scale_threshold: float = 2.5
    budget_increase_percentage: int = 20
    performance_lookback_days: int = 30

    # Deployment
    rollback_after_failures: int = 3
    worker_concurrency: int = 4
    platform_timeout_seconds: float = 30.0

    # Platform gateways (MCP servers fronting each ad platform)
    google_ads_mcp_url: str = ""
    google_ads_mcp_token: str = ""
    facebook_ads_mcp_url: str = ""
    facebook_ads_mcp_token: str = ""

    # Creative asset storage: local directory or HTTP base URL
    asset_storage_root: str = "./assets"
    asset_base_url: str = ""

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.is_production:
            if not self.api_key:
                raise ValueError(
                    "API_KEY must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.cron_secret:
                logger.warning("CRON_SECRET is empty in production; cron endpoints will refuse all calls.")
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        if not 0 < self.min_budget_share < 1:
            raise ValueError("MIN_BUDGET_SHARE must be between 0 and 1")
        if self.roas_pause_threshold >= self.roas_scale_threshold:
            raise ValueError("ROAS_PAUSE_THRESHOLD must be below ROAS_SCALE_THRESHOLD")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    return Settings()
