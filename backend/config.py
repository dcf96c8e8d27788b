"""
Configuration and settings for the ride-sharing backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    cors_origins: str = Field(default="*")

    # Database (Postgres expected, Firestore optional)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")
    use_firestore: bool = Field(default=False, env="USE_FIRESTORE")
    firebase_project_id: Optional[str] = Field(
        default=None, env="FIREBASE_PROJECT_ID"
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="USE_IN_MEMORY_BACKENDS"
    )

    # Auth
    auth_secret: str = Field(default="change-me", env="AUTH_SECRET")
    auth_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60 * 24 * 7)
    verification_token_expire_minutes: int = Field(default=60 * 24)
    allowed_email_domain: str = Field(
        default="ves.ac.in", env="ALLOWED_EMAIL_DOMAIN"
    )
    min_password_length: int = Field(default=6)
    public_base_url: str = Field(
        default="http://localhost:3000", env="PUBLIC_BASE_URL"
    )

    # Live room updates (Redis pub/sub)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    redis_channel_prefix: str = Field(
        default="rideshare", env="REDIS_CHANNEL_PREFIX"
    )
    event_keepalive_seconds: float = Field(default=15.0)

    # LLM / Gemini
    gemini_api_key: Optional[str] = Field(default=None, env="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", env="GEMINI_MODEL")

    # Maps
    google_maps_api_key: Optional[str] = Field(
        default=None, env="GOOGLE_MAPS_API_KEY"
    )
    nominatim_url: str = Field(
        default="https://nominatim.openstreetmap.org/search",
        env="NOMINATIM_URL",
    )
    nominatim_user_agent: str = Field(
        default="rideshare-rooms/0.1", env="NOMINATIM_USER_AGENT"
    )
    # Appended to ambiguous addresses before geocoding, e.g. "Mumbai".
    geocode_bias: Optional[str] = Field(default="Mumbai", env="GEOCODE_BIAS")

    # S3-compatible storage for avatars
    s3_endpoint: Optional[str] = Field(default=None, env="S3_ENDPOINT")
    s3_region: Optional[str] = Field(default=None, env="S3_REGION")
    s3_bucket: Optional[str] = Field(default=None, env="S3_BUCKET")
    s3_public_base_url: Optional[str] = Field(
        default=None, env="S3_PUBLIC_BASE_URL"
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # Expiration worker
    expiry_poll_seconds: float = Field(default=30.0, env="EXPIRY_POLL_SECONDS")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
