"""
Configuration and settings for the filedrop service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=3000, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    # Comma-separated in the environment, e.g. "https://a.example,https://b.example".
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default=["*"], validation_alias="CORS_ORIGINS"
    )

    # Which family of clients to wire up at startup.
    backend: Literal["firebase", "sql", "memory"] = Field(
        default="memory", validation_alias="FILEDROP_BACKEND"
    )

    # Firebase (Auth + Firestore + Cloud Storage)
    firebase_credentials_path: str = Field(
        default="serviceAccountKey.json",
        validation_alias="GOOGLE_APPLICATION_CREDENTIALS",
    )
    storage_bucket: Optional[str] = Field(
        default=None, validation_alias="FIREBASE_STORAGE_BUCKET"
    )
    firebase_web_api_key: Optional[str] = Field(
        default=None, validation_alias="FIREBASE_WEB_API_KEY"
    )

    # Self-hosted alternative: SQL records + S3-compatible objects
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")
    s3_bucket: Optional[str] = Field(default=None, validation_alias="S3_BUCKET")
    s3_endpoint: Optional[str] = Field(default=None, validation_alias="S3_ENDPOINT")
    s3_region: Optional[str] = Field(default=None, validation_alias="S3_REGION")
    s3_public_base_url: Optional[str] = Field(
        default=None, validation_alias="S3_PUBLIC_BASE_URL"
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, validation_alias="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, validation_alias="AWS_SECRET_ACCESS_KEY"
    )

    # Uploads
    max_upload_bytes: int = Field(
        default=5 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES"
    )
    make_uploads_public: bool = Field(
        default=True, validation_alias="MAKE_UPLOADS_PUBLIC"
    )

    # Accept a raw uid as bearer token. Only for local testing.
    trust_uid_tokens: bool = Field(default=False, validation_alias="TRUST_UID_TOKENS")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
