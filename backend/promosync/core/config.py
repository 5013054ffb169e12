"""Application configuration loaded from environment variables."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings handed to the sync components and the cache API."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Promo Sync"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_SERIALIZE: bool = True

    # Upstream POS API. API keys come from the store records in the sink.
    SOURCE_API_URL: str = "https://api.pos.dutchie.com"
    # 2160 hours = 90 days of product modifications
    SOURCE_LOOKBACK_HOURS: int = 2160
    SOURCE_TIMEOUT_SEC: float = 30.0
    # Reporting endpoints return full snapshots (with quantities) for reconciliation
    SOURCE_USE_REPORTING: bool = True

    # Sink: direct database writes or the CMS REST collections
    SINK_MODE: Literal["database", "rest"] = "database"
    DATABASE_URL: str | None = None
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 5432
    DB_USER: str = "promosync"
    DB_PASSWORD: str = ""  # set via env/.env
    DB_NAME: str = "cms"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800
    # Development only; production schemas are owned by the CMS
    SINK_CREATE_TABLES: bool = False

    SINK_API_URL: str = "http://localhost:1337"
    SINK_API_TOKEN: str = ""
    SINK_PAGE_SIZE: int = 100
    SINK_TIMEOUT_SEC: float = 30.0

    SINK_BATCH_SIZE: int = 100
    SINK_BATCH_DELAY_SEC: float = 0.1
    # Concurrent row upserts within one REST batch
    SINK_MAX_CONCURRENCY: int = 10

    RETRY_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0
    RETRY_JITTER: float = 1.0

    # Redis cache (optional - falls back to an in-process store)
    REDIS_ENABLED: bool = True
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None
    CACHE_KEY_PREFIX: str = "product"
    CACHE_DEFAULT_TTL_SEC: int = 24 * 60 * 60
    CACHE_MEMORY_MAX_ENTRIES: int = 50_000

    MIN_QUANTITY_AVAILABLE: float = 5
    SYNC_INTERVAL_MINUTES: int | None = Field(default=None, description="Absent = run once")

    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3000
    API_DEFAULT_MAX_DISCOUNTS: int = 6
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


settings = Settings()
