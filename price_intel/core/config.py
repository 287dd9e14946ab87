from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Database
    DATABASE_URL: str

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    SLACK_WEBHOOK_URL: str | None = None

    # Price observation rules
    PRICE_MIN: float = 1.50
    PRICE_MAX: float = 8.00
    DEFAULT_FUEL_TYPE: str = "heating_oil"
    DEFAULT_MIN_QUANTITY: int = 150
    TTL_HOURS_SCRAPED: int = 24
    TTL_HOURS_USER_REPORTED: int = 24
    TTL_HOURS_AGGREGATOR_SIGNAL: int = 24
    TTL_HOURS_MANUAL: int = 48
    TTL_HOURS_SUPPLIER_VERIFIED: int = 48

    # Expired-price recovery (tolerates missed scheduler runs, pending product sign-off)
    RECONCILE_TRUST_WINDOW_HOURS: int = 7 * 24
    RECONCILE_EXTENSION_HOURS: int = 48
    # No scraped price from any supplier for this long counts as a missed run
    RECONCILE_GAP_HOURS: int = 24

    # Scrape backoff
    SCRAPE_COOLDOWN_THRESHOLD: int = 3
    SCRAPE_DISABLE_THRESHOLD: int = 6
    SCRAPE_BACKOFF_BASE_HOURS: float = 6.0
    SCRAPE_BACKOFF_MAX_HOURS: float = 7 * 24.0

    # Aggregation windows
    HISTORY_WEEKS: int = 12
    TREND_WEEKS: int = 6
    VALIDATION_PRICE_TOLERANCE: float = 0.001

    # Scheduled pipeline (runs inside the API process when enabled)
    PIPELINE_SCHEDULE_ENABLED: bool = False
    PIPELINE_INTERVAL_SECONDS: int = 24 * 60 * 60

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def effective_log_level(self) -> str:
        """Return appropriate log level based on environment."""
        if self.is_production:
            # In production, minimum INFO level (ignore DEBUG)
            return self.LOG_LEVEL if self.LOG_LEVEL.upper() != "DEBUG" else "INFO"
        return self.LOG_LEVEL

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development


settings = Settings()
