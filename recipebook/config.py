"""
Configuration and settings for the recipe catalog backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from recipebook.auth import AdminIdentity

DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Admin accounts (admin1 is mandatory in production, admin2 optional)
    admin_password: Optional[str] = Field(default=None)
    admin2_password: Optional[str] = Field(default=None)

    # Admin session tokens
    token_mode: Literal["session", "signed"] = Field(default="session")
    token_ttl_seconds: Optional[int] = Field(default=None, gt=0)
    jwt_secret: Optional[str] = Field(default=None)
    jwt_algorithm: str = Field(default="HS256")

    # Catalog persistence
    catalog_backend: Literal["filetree", "database"] = Field(default="filetree")
    catalog_dir: str = Field(default="data/recipes")
    database_url: Optional[str] = Field(default=None)

    # Image assets
    asset_backend: Literal["memory", "bucket", "cdn"] = Field(default="memory")
    max_upload_bytes: int = Field(default=DEFAULT_MAX_UPLOAD_BYTES, gt=0)

    # S3-compatible bucket
    bucket_name: Optional[str] = Field(default=None)
    bucket_endpoint: Optional[str] = Field(default=None)
    bucket_region: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    bucket_public_base_url: Optional[str] = Field(default=None)
    bucket_prefix: str = Field(default="recipes")

    # Cloudinary image CDN
    cloudinary_cloud_name: Optional[str] = Field(default=None)
    cloudinary_api_key: Optional[str] = Field(default=None)
    cloudinary_api_secret: Optional[str] = Field(default=None)
    cloudinary_folder: str = Field(default="recettes")

    def admin_identities(self) -> tuple[AdminIdentity, ...]:
        admins = []
        if self.admin_password:
            admins.append(AdminIdentity("admin1", self.admin_password))
        if self.admin2_password:
            admins.append(AdminIdentity("admin2", self.admin2_password))
        return tuple(admins)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
