"""
Configuration management for the streamvault backend.
Uses pydantic-settings for environment variable loading.
"""
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    app_name: str = "streamvault"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS Configuration
    cors_origins: list[str] = ["*"]

    # Catalog and private data
    data_dir: str = "data"
    database_path: str = "data/private/stream_secrets.db"
    player_settings_path: str = "data/private/player_settings.json"
    # Raw JSON (or base64 JSON) used when the settings file is missing
    player_settings_json: str = ""

    # Playback security
    # Empty secret means a random per-process secret is generated at startup
    playback_token_secret: str = ""
    license_token_ttl_seconds: int = 300  # 5 minutes
    proxy_token_ttl_seconds: int = 6 * 60 * 60  # proxied sessions keep fetching segments
    force_proxy_domains: list[str] = ["cloudfront.net"]

    # Mobile API shared secret
    mobile_api_key: str = ""

    # Distributed counter store (Upstash-compatible REST API)
    kv_rest_url: str = ""
    kv_rest_token: str = ""
    kv_timeout_seconds: float = 2.0

    # Rate Limiting
    rate_limit_per_minute: int = 100
    playback_rate_limit_per_minute: int = 120
    license_rate_limit_per_minute: int = 240
    live_events_rate_limit_per_minute: int = 60

    # Pydantic V2 configuration
    model_config = SettingsConfigDict(env_prefix="STREAMVAULT_", env_file=".env")

    @property
    def kv_configured(self) -> bool:
        return bool(self.kv_rest_url.strip() and self.kv_rest_token.strip())


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
