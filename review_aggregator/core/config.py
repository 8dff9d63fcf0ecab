from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

CACHE_TTL_MIN_SECONDS = 120
CACHE_TTL_MAX_SECONDS = 300


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Listing Reviews API"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./reviews.db"

    cache_enabled: bool = True
    cache_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_prefix: str = "reviews"
    cache_default_ttl: int = 300

    provider_timeout_seconds: float = 10.0
    provider_min_delay_ms: int = 1000
    user_agent: str = "ListingReviews-Dashboard/1.0"

    google_places_api_key: str = ""
    google_places_max_reviews: int = 5

    google_business_client_id: str = ""
    google_business_client_secret: str = ""
    google_business_refresh_token: str = ""
    google_business_max_pages: int = 10

    property_api_base_url: str = "https://api.hostaway.com/v1"
    property_api_account_id: str = ""
    property_api_key: str = ""
    property_api_scope: str = "general"
    property_api_page_size: int = 100

    @property
    def cache_ttl_seconds(self) -> int:
        return max(CACHE_TTL_MIN_SECONDS, min(CACHE_TTL_MAX_SECONDS, self.cache_default_ttl))

    @property
    def provider_min_delay_seconds(self) -> float:
        return self.provider_min_delay_ms / 1000.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
