"""
Dependency wiring for the FastAPI app.

Every application owns one `Services` container, built from settings when
the app is created and kept on `app.state`; request handlers receive its
members through `Depends`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from fastapi import Depends, Header, Request

from recipebook.auth import (
    AdminIdentity,
    CredentialChecker,
    SessionTokenStore,
    SignedTokenStore,
    TokenStore,
)
from recipebook.catalog import CatalogStore, FileTreeCatalogStore
from recipebook.categories import CategoryStore, FileCategoryStore
from recipebook.config import Settings
from recipebook.db import SqlCatalogStore, SqlCategoryStore, create_db_engine
from recipebook.errors import AuthenticationError, ConfigError
from recipebook.storage import (
    AssetStore,
    BucketAssetStore,
    CdnAssetStore,
    InMemoryAssetStore,
)

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "x-admin-token"
CATEGORIES_FILENAME = "categories.json"


@dataclass
class Services:
    settings: Settings
    credentials: CredentialChecker
    tokens: TokenStore
    assets: AssetStore
    catalog: CatalogStore
    categories: CategoryStore

    def shutdown(self) -> None:
        self.tokens.revoke()
        self.categories.close()
        self.catalog.close()


def build_token_store(settings: Settings) -> TokenStore:
    ttl = (
        timedelta(seconds=settings.token_ttl_seconds)
        if settings.token_ttl_seconds
        else None
    )
    if settings.token_mode == "signed":
        if not settings.jwt_secret:
            raise ConfigError("JWT_SECRET is required when TOKEN_MODE=signed")
        return SignedTokenStore(
            settings.jwt_secret, ttl=ttl, algorithm=settings.jwt_algorithm
        )
    return SessionTokenStore(ttl=ttl)


def build_asset_store(settings: Settings) -> AssetStore:
    if settings.asset_backend == "bucket":
        if not settings.bucket_name or not settings.bucket_public_base_url:
            raise ConfigError(
                "BUCKET_NAME and BUCKET_PUBLIC_BASE_URL are required for the bucket backend"
            )
        return BucketAssetStore(
            bucket=settings.bucket_name,
            public_base_url=settings.bucket_public_base_url,
            prefix=settings.bucket_prefix,
            endpoint=settings.bucket_endpoint,
            region=settings.bucket_region,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
        )
    if settings.asset_backend == "cdn":
        if not (
            settings.cloudinary_cloud_name
            and settings.cloudinary_api_key
            and settings.cloudinary_api_secret
        ):
            raise ConfigError(
                "CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET "
                "are required for the cdn backend"
            )
        return CdnAssetStore(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            folder=settings.cloudinary_folder,
        )
    return InMemoryAssetStore()


def build_services(settings: Settings) -> Services:
    admins = settings.admin_identities()
    if not admins:
        logger.warning("No admin password configured; every login will be refused.")
    assets = build_asset_store(settings)

    if settings.catalog_backend == "database":
        if not settings.database_url:
            raise ConfigError("DATABASE_URL is required for the database backend")
        engine = create_db_engine(settings.database_url)
        catalog: CatalogStore = SqlCatalogStore(engine, assets=assets)
        categories: CategoryStore = SqlCategoryStore(engine, catalog)
    else:
        catalog = FileTreeCatalogStore(settings.catalog_dir, assets=assets)
        categories = FileCategoryStore(
            Path(settings.catalog_dir) / CATEGORIES_FILENAME, catalog
        )

    return Services(
        settings=settings,
        credentials=CredentialChecker(admins),
        tokens=build_token_store(settings),
        assets=assets,
        catalog=catalog,
        categories=categories,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_catalog(services: Services = Depends(get_services)) -> CatalogStore:
    return services.catalog


def get_categories(services: Services = Depends(get_services)) -> CategoryStore:
    return services.categories


def get_token_store(services: Services = Depends(get_services)) -> TokenStore:
    return services.tokens


def require_admin(
    x_admin_token: Optional[str] = Header(None, alias=ADMIN_TOKEN_HEADER),
    tokens: TokenStore = Depends(get_token_store),
) -> AdminIdentity:
    identity = tokens.resolve(x_admin_token)
    if identity is None:
        logger.warning("Admin auth: unauthorized access attempt")
        raise AuthenticationError("Unauthorized. Please log in again.")
    return identity
