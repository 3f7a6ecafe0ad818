from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "SinoUS Pulse"
    debug: bool = False
    log_level: str = "INFO"  # env: LOG_LEVEL; DEBUG is forced when debug is on

    # API
    frontend_url: str = "http://localhost:3000"

    # Anthropic (generation backend)
    anthropic_api_key: str = ""
    generation_model: str = "claude-sonnet-4-20250514"
    generation_timeout_seconds: float = 120.0
    generation_max_tokens: int = 16000
    # "anthropic" in production, "fake" for local development without an API key
    generation_backend: str = "anthropic"  # env: GENERATION_BACKEND

    # R2 / S3-compatible artifact store
    r2_bucket_name: str = ""  # env: R2_BUCKET_NAME
    r2_endpoint: str = ""  # env: R2_ENDPOINT: https://<account>.r2.cloudflarestorage.com
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_region: str = "auto"
    r2_public_url: str = ""  # env: R2_PUBLIC_URL: CDN-fronted read-only domain, no scheme
    store_timeout_seconds: float = 10.0

    # Archive layout
    data_folder: str = "sino-pulse/v1"
    artifact_cache_max_age_seconds: int = 86400  # artifacts are immutable once written

    # Library index behaviour
    fuzzy_match_min_length: int = 8
    index_listing_fallback: bool = True  # env: INDEX_LISTING_FALLBACK: raw bucket listing when index is empty

    # Auth (Clerk JWT)
    clerk_publishable_key: str = ""
    clerk_allowed_origins: list[str] = [
        "http://localhost:3000",
    ]
    admin_emails: list[str] = []  # env: ADMIN_EMAILS: JSON list

    @property
    def public_base_url(self) -> str:
        """Public CDN base URL with scheme, or empty string when not configured."""
        if not self.r2_public_url:
            return ""
        if self.r2_public_url.startswith(("http://", "https://")):
            return self.r2_public_url.rstrip("/")
        return f"https://{self.r2_public_url.rstrip('/')}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
