"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str = "sqlite:///./renewals.db"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Renewals list pagination
    RENEWALS_DEFAULT_PAGE_SIZE: int = 50
    RENEWALS_MAX_PAGE_SIZE: int = 500

    # Premium change (%) above which a record is treated as priority.
    # Independent of the "high" bucket threshold (15%).
    PRIORITY_PREMIUM_CHANGE_THRESHOLD: float = 10.0

    # Upload processing
    UPLOAD_BATCH_SIZE: int = 50
    AUTO_PROMOTE_RENEWAL_TAKEN: bool = True  # Dropped + "Renewal Taken" -> success

    # Dashboard chart window (days, ending today)
    CHART_WINDOW_DAYS: int = 7

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
