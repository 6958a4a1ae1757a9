"""
Pydantic schemas for the recipe catalog API.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class LoginResponse(BaseModel):
    message: str
    token: str
    username: str


class MessageResponse(BaseModel):
    message: str


class AuthStatusResponse(BaseModel):
    isAdmin: bool
    username: Optional[str] = None


def _required_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value.strip()


RequiredText = Annotated[str, AfterValidator(_required_text)]


class RecipeFields(BaseModel):
    """Fields a client may send for a recipe; unknown keys belong in `extras`."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    title: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    ingredients: Optional[list[Any]] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    extras: Optional[dict[str, Any]] = None

    @field_validator("subcategory")
    @classmethod
    def _blank_subcategory_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("tags")
    @classmethod
    def _strip_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        return [tag.strip() for tag in value if tag and tag.strip()]


class RecipeCreate(RecipeFields):
    id: Optional[str] = None
    title: RequiredText
    category: RequiredText


class RecipeUpdate(RecipeFields):
    title: Optional[RequiredText] = None
    category: RequiredText

    # Echoed back by clients that send the whole record; never applied.
    id: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    def changes(self) -> dict:
        changes = self.model_dump(
            exclude_unset=True, exclude={"id", "created_at", "updated_at"}
        )
        if changes.get("title", "") is None:
            del changes["title"]
        return changes


class CategoryCreate(BaseModel):
    name: Optional[str] = None


class SubcategoryCreate(BaseModel):
    name: Optional[str] = None


class SubcategoryResponse(BaseModel):
    name: str


class CategoryResponse(BaseModel):
    id: str
    name: str
    subcategories: list[SubcategoryResponse]
    sortOrder: int


class UploadResponse(BaseModel):
    imageUrl: str


class PartialFailureResponse(BaseModel):
    operation: str
    recipeId: str
    detail: str
    occurredAt: str


class HealthResponse(BaseModel):
    status: str
    catalogBackend: str
    assetBackend: str
    tokenMode: str
