"""
Domain records for the catalog: recipes, categories and partial failures.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

DEFAULT_SORT_ORDER = 999

# Fields a caller may change through an update; id and createdAt are not here.
UPDATABLE_FIELDS = (
    "title",
    "category",
    "subcategory",
    "description",
    "tags",
    "ingredients",
    "image_url",
    "extras",
)

_EMPTY_VALUES = {"description": str, "tags": list, "ingredients": list, "extras": dict}


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class Recipe:
    title: str
    category: str
    id: Optional[str] = None
    subcategory: Optional[str] = None
    description: str = ""
    tags: list[str] = field(default_factory=list)
    ingredients: list[Any] = field(default_factory=list)
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def location(self) -> tuple[str, Optional[str]]:
        return self.category, self.subcategory or None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "subcategory": self.subcategory,
            "description": self.description,
            "tags": list(self.tags),
            "ingredients": list(self.ingredients),
            "imageUrl": self.image_url,
            "createdAt": _format_time(self.created_at),
            "updatedAt": _format_time(self.updated_at),
            "extras": dict(self.extras),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Recipe":
        return cls(
            id=data.get("id"),
            title=data.get("title", ""),
            category=data.get("category", ""),
            subcategory=data.get("subcategory") or None,
            description=data.get("description") or "",
            tags=list(data.get("tags") or []),
            ingredients=list(data.get("ingredients") or []),
            image_url=data.get("imageUrl"),
            created_at=_parse_time(data.get("createdAt")),
            updated_at=_parse_time(data.get("updatedAt")),
            extras=dict(data.get("extras") or {}),
        )

    def with_changes(self, changes: dict, now: datetime) -> "Recipe":
        """Return a copy with the supplied fields applied and updatedAt refreshed."""
        allowed = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        for name, empty in _EMPTY_VALUES.items():
            if name in allowed and allowed[name] is None:
                allowed[name] = empty()
        if "subcategory" in allowed:
            allowed["subcategory"] = allowed["subcategory"] or None
        return replace(self, **allowed, updated_at=now)


@dataclass(frozen=True)
class Subcategory:
    name: str

    def as_dict(self) -> dict:
        return {"name": self.name}


@dataclass
class Category:
    id: str
    name: str
    subcategories: list[Subcategory] = field(default_factory=list)
    sort_order: int = DEFAULT_SORT_ORDER

    def has_subcategory(self, name: str) -> bool:
        return any(sub.name == name for sub in self.subcategories)

    def sorted(self) -> "Category":
        return replace(
            self, subcategories=sorted(self.subcategories, key=lambda s: s.name)
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "subcategories": [sub.as_dict() for sub in self.subcategories],
            "sortOrder": self.sort_order,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Category":
        return cls(
            id=data["id"],
            name=data["name"],
            subcategories=[
                Subcategory(name=sub["name"])
                for sub in data.get("subcategories") or []
            ],
            sort_order=int(data.get("sortOrder", DEFAULT_SORT_ORDER)),
        )


@dataclass(frozen=True)
class PartialFailure:
    """A multi-step write that completed only partly."""

    operation: str
    recipe_id: str
    detail: str
    occurred_at: datetime

    def as_dict(self) -> dict:
        return {
            "operation": self.operation,
            "recipeId": self.recipe_id,
            "detail": self.detail,
            "occurredAt": self.occurred_at.isoformat(),
        }
