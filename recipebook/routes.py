"""
HTTP routes for the recipe catalog API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Header, Query, Response, UploadFile
from fastapi.concurrency import run_in_threadpool

from recipebook.auth import AdminIdentity, TokenStore
from recipebook.catalog import CatalogStore, search_recipes
from recipebook.categories import CategoryStore
from recipebook.dependencies import (
    ADMIN_TOKEN_HEADER,
    Services,
    get_catalog,
    get_categories,
    get_services,
    get_token_store,
    require_admin,
)
from recipebook.errors import AuthenticationError, NotFoundError, ValidationError
from recipebook.models import Recipe
from recipebook.schemas import (
    AuthStatusResponse,
    CategoryCreate,
    CategoryResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PartialFailureResponse,
    RecipeCreate,
    RecipeUpdate,
    SubcategoryCreate,
    UploadResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

UPLOAD_FIELD = "recipeImage"


def _check_taxonomy(
    categories: CategoryStore, category_name: str, subcategory: Optional[str]
) -> None:
    category = next(
        (c for c in categories.list() if c.name == category_name), None
    )
    if category is None:
        raise ValidationError(f"Unknown category '{category_name}'.")
    if subcategory and not category.has_subcategory(subcategory):
        raise ValidationError(
            f"Unknown subcategory '{subcategory}' in category '{category_name}'."
        )


# Auth


@router.post("/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, services: Services = Depends(get_services)):
    logger.info("POST /auth/login attempt for user: %s", payload.username or "unknown")
    if not payload.password:
        raise ValidationError("Password is required.")
    identity = services.credentials.authenticate(payload.username, payload.password)
    if identity is None:
        logger.warning(
            "Admin login failed: invalid credentials for %s",
            payload.username or "unknown",
        )
        raise AuthenticationError("Invalid credentials.")
    token = services.tokens.issue(identity)
    logger.info("Admin login successful: %s", identity.username)
    return LoginResponse(
        message="Authentication successful.", token=token, username=identity.username
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(tokens: TokenStore = Depends(get_token_store)):
    logger.info("POST /auth/logout received")
    tokens.revoke()
    return MessageResponse(message="Logged out.")


@router.get("/auth/status", response_model=AuthStatusResponse)
def auth_status(
    x_admin_token: Optional[str] = Header(None, alias=ADMIN_TOKEN_HEADER),
    tokens: TokenStore = Depends(get_token_store),
):
    identity = tokens.resolve(x_admin_token)
    if identity is None:
        return AuthStatusResponse(isAdmin=False)
    return AuthStatusResponse(isAdmin=True, username=identity.username)


# Recipes


@router.get("/recipes")
def list_recipes(catalog: CatalogStore = Depends(get_catalog)):
    recipes = catalog.list_all()
    logger.info("GET /recipes - returning %d recipes", len(recipes))
    return [recipe.as_dict() for recipe in recipes]


@router.get("/recipes/search")
def search(
    q: Optional[str] = Query(None),
    catalog: CatalogStore = Depends(get_catalog),
):
    logger.info("GET /recipes/search received with query: %r", q)
    if not q or not q.strip():
        return []
    results = search_recipes(catalog.list_all(), q)
    logger.info("Search for %r found %d results.", q, len(results))
    return [recipe.as_dict() for recipe in results]


@router.get("/recipes/{recipe_id}")
def get_recipe(recipe_id: str, catalog: CatalogStore = Depends(get_catalog)):
    recipe = catalog.get(recipe_id)
    if recipe is None:
        raise NotFoundError(f"Recipe not found (ID: {recipe_id})")
    return recipe.as_dict()


@router.post("/recipes", status_code=201)
def create_recipe(
    payload: RecipeCreate,
    admin: AdminIdentity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    logger.info("POST /recipes by %s: %s", admin.username, payload.title)
    _check_taxonomy(services.categories, payload.category, payload.subcategory)
    if payload.image_url and not services.assets.owns(payload.image_url):
        logger.warning(
            "Recipe image URL %s is not managed by the configured asset backend",
            payload.image_url,
        )
    recipe = Recipe(
        id=payload.id or None,
        title=payload.title,
        category=payload.category,
        subcategory=payload.subcategory,
        description=payload.description or "",
        tags=payload.tags or [],
        ingredients=payload.ingredients or [],
        image_url=payload.image_url,
        extras=payload.extras or {},
    )
    created = services.catalog.create(recipe)
    return created.as_dict()


@router.put("/recipes/{recipe_id}")
def update_recipe(
    recipe_id: str,
    payload: RecipeUpdate,
    admin: AdminIdentity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    logger.info("PUT /recipes/%s by %s", recipe_id, admin.username)
    existing = services.catalog.get(recipe_id)
    if existing is None:
        raise NotFoundError(f"Recipe not found (ID: {recipe_id})")
    changes = payload.changes()
    subcategory = changes["subcategory"] if "subcategory" in changes else existing.subcategory
    _check_taxonomy(services.categories, payload.category, subcategory)
    updated = services.catalog.update(recipe_id, changes)
    return updated.as_dict()


@router.delete("/recipes/{recipe_id}", status_code=204)
def delete_recipe(
    recipe_id: str,
    admin: AdminIdentity = Depends(require_admin),
    catalog: CatalogStore = Depends(get_catalog),
):
    logger.info("DELETE /recipes/%s by %s", recipe_id, admin.username)
    catalog.delete(recipe_id)
    return Response(status_code=204)


@router.get(
    "/catalog/partial-failures", response_model=list[PartialFailureResponse]
)
def partial_failures(
    admin: AdminIdentity = Depends(require_admin),
    catalog: CatalogStore = Depends(get_catalog),
):
    return [failure.as_dict() for failure in catalog.partial_failures]


# Categories


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(categories: CategoryStore = Depends(get_categories)):
    result = categories.list()
    logger.info("GET /categories - returning %d categories.", len(result))
    return [category.as_dict() for category in result]


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    payload: CategoryCreate,
    admin: AdminIdentity = Depends(require_admin),
    categories: CategoryStore = Depends(get_categories),
):
    logger.info("POST /categories by %s: %r", admin.username, payload.name)
    return categories.create(payload.name).as_dict()


@router.delete("/categories/{category_id}", status_code=204)
def delete_category(
    category_id: str,
    admin: AdminIdentity = Depends(require_admin),
    categories: CategoryStore = Depends(get_categories),
):
    logger.info("DELETE /categories/%s by %s", category_id, admin.username)
    categories.delete(category_id)
    return Response(status_code=204)


@router.post(
    "/categories/{category_id}/subcategories",
    response_model=CategoryResponse,
    status_code=201,
)
def add_subcategory(
    category_id: str,
    payload: SubcategoryCreate,
    admin: AdminIdentity = Depends(require_admin),
    categories: CategoryStore = Depends(get_categories),
):
    logger.info(
        "POST /categories/%s/subcategories by %s: %r",
        category_id,
        admin.username,
        payload.name,
    )
    return categories.add_subcategory(category_id, payload.name).as_dict()


@router.delete("/categories/{category_id}/subcategories/{name}", status_code=204)
def remove_subcategory(
    category_id: str,
    name: str,
    admin: AdminIdentity = Depends(require_admin),
    categories: CategoryStore = Depends(get_categories),
):
    logger.info(
        "DELETE /categories/%s/subcategories/%s by %s",
        category_id,
        name,
        admin.username,
    )
    categories.remove_subcategory(category_id, name)
    return Response(status_code=204)


# Uploads


@router.post("/upload/image", response_model=UploadResponse)
async def upload_image(
    recipe_image: Optional[UploadFile] = File(None, alias=UPLOAD_FIELD),
    admin: AdminIdentity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    if recipe_image is None:
        raise ValidationError("No image file provided.")
    logger.info("Received image %s from %s", recipe_image.filename, admin.username)
    content_type = recipe_image.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationError("File type not allowed. Please upload an image.")

    limit = services.settings.max_upload_bytes
    data = await recipe_image.read(limit + 1)
    if not data:
        raise ValidationError("The uploaded file is empty.")
    if len(data) > limit:
        raise ValidationError(f"Upload error: file exceeds {limit} bytes.")

    url = await run_in_threadpool(
        services.assets.upload, data, recipe_image.filename or "image", content_type
    )
    return UploadResponse(imageUrl=url)


@router.get("/health", response_model=HealthResponse)
def health(services: Services = Depends(get_services)):
    settings = services.settings
    return HealthResponse(
        status="ok",
        catalogBackend=settings.catalog_backend,
        assetBackend=settings.asset_backend,
        tokenMode=settings.token_mode,
    )
