from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "Longbox"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/longbox"

    comicvine_api_key: str = ""
    comicvine_base_url: str = "https://comicvine.gamespot.com/api"

    metron_username: str = ""
    metron_password: str = ""
    metron_base_url: str = "https://metron.cloud/api"

    http_timeout_seconds: float = 30.0

    # Global fetch concurrency, independent of how many providers are configured
    worker_pool_size: int = 4

    orchestration_deadline_seconds: float = 20.0
    provider_call_timeout_seconds: float = 10.0

    # Longest a caller waits on a provider's token bucket before giving up
    admission_wait_seconds: float = 5.0

    record_ttl_seconds: float = 6 * 60 * 60

    # 0 disables negative caching of NotFound answers
    negative_cache_ttl_seconds: float = 0.0


settings = Settings()


# =============================================================================
# PUBLISHED PROVIDER LIMITS
# =============================================================================

# Comic Vine: 200 requests/hour per resource for non-commercial keys
COMICVINE_BUCKET_CAPACITY = 10
COMICVINE_REFILL_PER_SECOND = 200 / 3600

# Metron: 30 requests/minute, 10,000/day
METRON_BUCKET_CAPACITY = 5
METRON_REFILL_PER_SECOND = 30 / 60


# =============================================================================
# RETRY DEFAULTS
# =============================================================================

RETRY_BASE_DELAY_SECONDS = 0.5
RETRY_BACKOFF_FACTOR = 2.0
RETRY_MAX_DELAY_SECONDS = 8.0
RETRY_MAX_ATTEMPTS = 4


# =============================================================================
# RECONCILIATION
# =============================================================================

DEFAULT_EDITION_LINE = "original"

# Volume assumed for a series whose volume no provider or earlier sync has reported
DEFAULT_VOLUME = 1

# Field -> providers in descending precedence
DEFAULT_FIELD_PRECEDENCE: dict[str, tuple[str, ...]] = {
    "title": ("metron", "comicvine"),
    "cover_date": ("metron", "comicvine"),
    "store_date": ("metron", "comicvine"),
    "creators": ("metron", "comicvine"),
    "cover_image": ("metron", "comicvine"),
}
