from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"
    # Root log level name (DEBUG, INFO, WARNING, ...)
    LOG_LEVEL: str = "INFO"

    # database & redis
    DATABASE_URL: str = "sqlite:///./salesintel.db"
    # Keep this as a plain string so redis:// URLs are always accepted
    REDIS_URL: str = "redis://localhost:6379/0"

    # external data sources
    SERPAPI_API_KEY: str | None = None
    SERPAPI_BASE_URL: str = "https://serpapi.com/search.json"
    SNOV_CLIENT_ID: str | None = None
    SNOV_CLIENT_SECRET: str | None = None
    APOLLO_API_KEY: str | None = None
    HUNTER_API_KEY: str | None = None
    BRIGHTDATA_API_KEY: str | None = None
    BRIGHTDATA_COMPANY_DATASET_ID: str = "gd_l1vikfnt1wgvvqz95w"
    # Per-call timeout for every outbound collector request
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # orchestration
    ORCHESTRATION_MAX_PARALLEL_SOURCES: int = 5
    ORCHESTRATION_RETRY_ATTEMPTS: int = 2
    ORCHESTRATION_RETRY_BASE_DELAY_SECONDS: float = 1.0
    ORCHESTRATION_BATCH_PAUSE_SECONDS: float = 0.5
    ORCHESTRATION_CACHE_ENABLED: bool = True
    # JSON object {source_id: usd_per_call} overriding the built-in cost table
    SOURCE_COSTS_JSON: str | None = None

    # data retention (in days)
    COLLECTION_HISTORY_RETENTION_DAYS: int = 90
    # Hour (UTC) the beat schedule runs the history cleanup
    COLLECTION_HISTORY_CLEANUP_HOUR_UTC: int = 3

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
