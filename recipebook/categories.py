"""
Category taxonomy: categories with one level of nested subcategories.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional, Protocol

from recipebook.catalog import CatalogStore
from recipebook.errors import ConflictError, NotFoundError, StorageError, ValidationError
from recipebook.models import DEFAULT_SORT_ORDER, Category, Subcategory
from recipebook.paths import check_segment

logger = logging.getLogger(__name__)


class CategoryStore(Protocol):
    """Interface for category persistence."""

    def list(self) -> list[Category]:
        ...

    def get(self, category_id: str) -> Optional[Category]:
        ...

    def create(self, name: str) -> Category:
        ...

    def delete(self, category_id: str) -> Category:
        ...

    def add_subcategory(self, category_id: str, name: str) -> Category:
        ...

    def remove_subcategory(self, category_id: str, name: str) -> Category:
        ...

    def close(self) -> None:
        ...


def clean_name(name: Optional[str], kind: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError(f"The {kind} name is required.")
    return cleaned


def sort_categories(categories: Iterable[Category]) -> list[Category]:
    return [
        category.sorted()
        for category in sorted(categories, key=lambda c: (c.sort_order, c.name))
    ]


class CategoryRules:
    """
    Validation and referential checks shared by the category backends.

    Subclasses provide storage primitives: `_all`, `_put` and `_drop`.
    The existence and duplicate checks are not atomic.
    """

    catalog: CatalogStore

    def _all(self) -> list[Category]:
        raise NotImplementedError

    def _put(self, category: Category) -> None:
        raise NotImplementedError

    def _drop(self, category_id: str) -> None:
        raise NotImplementedError

    def list(self) -> list[Category]:
        return sort_categories(self._all())

    def get(self, category_id: str) -> Optional[Category]:
        categories = self._all()
        for category in categories:
            if category.id == category_id:
                return category
        for category in categories:
            if category.name == category_id:
                return category
        return None

    def _require(self, category_id: str) -> Category:
        category = self.get(category_id)
        if category is None:
            raise NotFoundError(f"Category not found (ID: {category_id})")
        return category

    def _new_name(self, name: Optional[str], kind: str) -> str:
        return clean_name(name, kind)

    def create(self, name: str) -> Category:
        name = self._new_name(name, "category")
        if any(category.name == name for category in self._all()):
            raise ConflictError(f"Category '{name}' already exists.")
        category = Category(
            id=uuid.uuid4().hex, name=name, subcategories=[], sort_order=DEFAULT_SORT_ORDER
        )
        self._put(category)
        logger.info("Category '%s' created with ID: %s", name, category.id)
        return category

    def delete(self, category_id: str) -> Category:
        category = self._require(category_id)
        if self.catalog.has_recipes(category.name):
            logger.warning(
                "Attempted to delete category '%s' (ID: %s) which is still in use.",
                category.name,
                category.id,
            )
            raise ConflictError(
                f"Cannot delete category '{category.name}': it is used by recipes."
            )
        self._drop(category.id)
        logger.info("Category '%s' (ID: %s) deleted.", category.name, category.id)
        return category

    def add_subcategory(self, category_id: str, name: str) -> Category:
        name = self._new_name(name, "subcategory")
        category = self._require(category_id)
        if category.has_subcategory(name):
            raise ConflictError(f"Subcategory '{name}' already exists.")
        updated = replace(
            category, subcategories=[*category.subcategories, Subcategory(name=name)]
        )
        self._put(updated)
        logger.info("Subcategory '%s' added to category ID %s", name, category.id)
        return updated.sorted()

    def remove_subcategory(self, category_id: str, name: str) -> Category:
        name = clean_name(name, "subcategory")
        category = self._require(category_id)
        if self.catalog.has_recipes(category.name, name):
            logger.warning(
                "Attempted to delete subcategory '%s' from '%s' which is still in use.",
                name,
                category.name,
            )
            raise ConflictError(
                f"Cannot delete subcategory '{name}': it is used by recipes."
            )
        if not category.has_subcategory(name):
            raise NotFoundError(f"Subcategory '{name}' not found in this category.")
        updated = replace(
            category,
            subcategories=[sub for sub in category.subcategories if sub.name != name],
        )
        self._put(updated)
        logger.info("Subcategory '%s' removed from category ID %s", name, category.id)
        return updated.sorted()

    def close(self) -> None:
        pass


class FileCategoryStore(CategoryRules):
    """All categories in a single JSON document."""

    def __init__(self, path: str | os.PathLike, catalog: CatalogStore):
        self.path = Path(path)
        self.catalog = catalog

    def _new_name(self, name: Optional[str], kind: str) -> str:
        # Names become directories of the recipe tree.
        return check_segment(clean_name(name, kind), kind)

    def _all(self) -> list[Category]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as exc:
            raise StorageError(f"Could not read {self.path}") from exc
        return [Category.from_dict(item) for item in payload]

    def _save(self, categories: list[Category]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(
                    [category.as_dict() for category in categories],
                    f,
                    ensure_ascii=False,
                    indent=2,
                )
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Could not write {self.path}") from exc

    def _put(self, category: Category) -> None:
        categories = [c for c in self._all() if c.id != category.id]
        categories.append(category)
        self._save(categories)

    def _drop(self, category_id: str) -> None:
        self._save([c for c in self._all() if c.id != category_id])
