"""
Recipe persistence: the catalog store interface and its JSON file-tree backend.
"""

from __future__ import annotations

import json
import logging
import os
from collections import deque
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol

from recipebook.auth import Clock, utcnow
from recipebook.errors import ConflictError, NotFoundError, StorageError, ValidationError
from recipebook.models import PartialFailure, Recipe
from recipebook.paths import (
    MANIFEST_NAME,
    RECORD_SUFFIX,
    CatalogPaths,
    check_recipe_id,
    new_recipe_id,
)
from recipebook.storage import AssetStore

logger = logging.getLogger(__name__)

MAX_PARTIAL_FAILURES = 100


class CatalogStore(Protocol):
    """Interface for recipe persistence."""

    partial_failures: deque

    def list_all(self) -> list[Recipe]:
        ...

    def get(self, recipe_id: str) -> Optional[Recipe]:
        ...

    def create(self, recipe: Recipe) -> Recipe:
        ...

    def update(self, recipe_id: str, changes: dict) -> Recipe:
        ...

    def delete(
        self,
        recipe_id: str,
        category: Optional[str] = None,
        subcategory: Optional[str] = None,
    ) -> Recipe:
        ...

    def has_recipes(self, category: str, subcategory: Optional[str] = None) -> bool:
        ...

    def close(self) -> None:
        ...


def newest_first(recipes: Iterable[Recipe]) -> list[Recipe]:
    dated = [r for r in recipes if r.created_at]
    undated = [r for r in recipes if not r.created_at]
    dated.sort(key=lambda r: r.created_at, reverse=True)
    return dated + undated


def search_recipes(recipes: Iterable[Recipe], query: Optional[str]) -> list[Recipe]:
    """Case-insensitive substring match over title, description and tags."""
    needle = (query or "").strip().lower()
    if not needle:
        return []

    def matches(recipe: Recipe) -> bool:
        if recipe.title and needle in recipe.title.lower():
            return True
        if recipe.description and needle in recipe.description.lower():
            return True
        return any(tag and needle in str(tag).lower() for tag in recipe.tags)

    return [recipe for recipe in recipes if matches(recipe)]


def record_partial_failure(
    failures: deque, operation: str, recipe_id: str, detail: str, clock: Clock
) -> None:
    failure = PartialFailure(
        operation=operation, recipe_id=recipe_id, detail=detail, occurred_at=clock()
    )
    failures.append(failure)
    logger.warning("Partial failure during %s of %s: %s", operation, recipe_id, detail)


def release_asset(
    assets: Optional[AssetStore], recipe: Recipe, failures: deque, clock: Clock
) -> None:
    """Delete the recipe's image if it lives in the managed upload area."""
    url = recipe.image_url
    if not url:
        logger.info("Recipe %s had no image URL to delete.", recipe.id)
        return
    if assets is None or not assets.owns(url):
        logger.info(
            "Recipe %s image URL (%s) is not managed here, skipping deletion.",
            recipe.id,
            url,
        )
        return
    try:
        assets.delete(url)
    except Exception as exc:
        # The record is already gone; the asset is left behind.
        logger.exception("Error deleting image %s (non-fatal)", url)
        record_partial_failure(
            failures, "delete-asset", recipe.id, f"{url}: {exc}", clock
        )


def new_failure_log() -> deque:
    return deque(maxlen=MAX_PARTIAL_FAILURES)


class FileTreeCatalogStore:
    """
    One JSON file per recipe, grouped in category/subcategory directories.

    Each leaf directory carries a manifest listing the ids of the records it
    holds; listings read manifests instead of scanning record contents.
    """

    def __init__(
        self,
        base_dir: str | os.PathLike,
        assets: Optional[AssetStore] = None,
        clock: Clock = utcnow,
    ):
        self.paths = CatalogPaths(Path(base_dir))
        self.assets = assets
        self.clock = clock
        self.partial_failures = new_failure_log()
        self.paths.base.mkdir(parents=True, exist_ok=True)

    # JSON helpers

    def _read_json(self, path: Path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise StorageError(f"Could not read {path}") from exc

    def _write_json(self, path: Path, payload) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, path)

    def _read_manifest(self, category: str, subcategory: Optional[str]) -> list[dict]:
        entries = self._read_json(self.paths.manifest_path(category, subcategory))
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise StorageError(
                f"Malformed manifest for {category}/{subcategory or ''}"
            )
        return [entry for entry in entries if isinstance(entry, dict) and entry.get("id")]

    def _write_manifest(
        self, category: str, subcategory: Optional[str], entries: list[dict]
    ) -> None:
        self._write_json(self.paths.manifest_path(category, subcategory), entries)

    def _load(self, category: str, subcategory: Optional[str], recipe_id: str) -> Optional[Recipe]:
        data = self._read_json(self.paths.recipe_file_path(category, subcategory, recipe_id))
        if data is None:
            return None
        return Recipe.from_dict(data)

    # Tree walking

    def _leaf_locations(self) -> Iterator[tuple[str, Optional[str]]]:
        for category_dir in _subdirectories(self.paths.base):
            category = category_dir.name
            subdirs = _subdirectories(category_dir)
            if not subdirs or (category_dir / MANIFEST_NAME).exists():
                yield category, None
            for sub_dir in subdirs:
                yield category, sub_dir.name

    def _iter_entries(self) -> Iterator[tuple[str, Optional[str], str]]:
        for category, subcategory in self._leaf_locations():
            for entry in self._read_manifest(category, subcategory):
                yield category, subcategory, entry["id"]

    def _locate(self, recipe_id: str) -> Optional[tuple[str, Optional[str]]]:
        for category, subcategory, entry_id in self._iter_entries():
            if entry_id == recipe_id:
                return category, subcategory
        return None

    # Store operations

    def list_all(self) -> list[Recipe]:
        recipes = []
        for category, subcategory, recipe_id in self._iter_entries():
            recipe = self._load(category, subcategory, recipe_id)
            if recipe is None:
                logger.warning(
                    "Manifest entry %s in %s/%s has no record file, skipping",
                    recipe_id,
                    category,
                    subcategory or "",
                )
                continue
            recipes.append(recipe)
        return newest_first(recipes)

    def get(self, recipe_id: str) -> Optional[Recipe]:
        check_recipe_id(recipe_id)
        location = self._locate(recipe_id)
        if location is None:
            return None
        return self._load(*location, recipe_id)

    def has_recipes(self, category: str, subcategory: Optional[str] = None) -> bool:
        for recipe in self.list_all():
            if recipe.category != category:
                continue
            if subcategory is None or recipe.subcategory == subcategory:
                return True
        return False

    def _insert(self, recipe: Recipe) -> None:
        """Write the record, then index it; undo the record if indexing fails."""
        category, subcategory = recipe.location
        record_path = self.paths.recipe_file_path(category, subcategory, recipe.id)
        try:
            self._write_json(record_path, recipe.as_dict())
        except OSError as exc:
            raise StorageError(f"Could not write recipe {recipe.id}") from exc

        try:
            entries = self._read_manifest(category, subcategory)
            if not any(entry["id"] == recipe.id for entry in entries):
                entries.append({"id": recipe.id})
            self._write_manifest(category, subcategory, entries)
        except (OSError, StorageError) as exc:
            detail = f"manifest update failed: {exc}"
            try:
                record_path.unlink()
            except OSError as cleanup_exc:
                detail += f"; orphaned record left in place: {cleanup_exc}"
            else:
                detail += "; record removed"
            record_partial_failure(
                self.partial_failures, "create", recipe.id, detail, self.clock
            )
            raise StorageError(f"Could not index recipe {recipe.id}") from exc

    def _remove(self, recipe_id: str, category: str, subcategory: Optional[str]) -> None:
        record_path = self.paths.recipe_file_path(category, subcategory, recipe_id)
        try:
            record_path.unlink()
        except FileNotFoundError:
            logger.warning("Record file for %s already missing", recipe_id)
        except OSError as exc:
            raise StorageError(f"Could not delete recipe {recipe_id}") from exc

        entries = self._read_manifest(category, subcategory)
        remaining = [entry for entry in entries if entry["id"] != recipe_id]
        if len(remaining) == len(entries):
            logger.warning(
                "Recipe %s was not listed in the %s/%s manifest",
                recipe_id,
                category,
                subcategory or "",
            )
            return
        try:
            self._write_manifest(category, subcategory, remaining)
        except OSError as exc:
            raise StorageError(f"Could not update manifest for {recipe_id}") from exc

    def create(self, recipe: Recipe) -> Recipe:
        if recipe.id:
            check_recipe_id(recipe.id)
            if recipe.id.endswith(RECORD_SUFFIX):
                raise ValidationError(f"Invalid recipe id: {recipe.id!r}")
            if self._locate(recipe.id) is not None:
                raise ConflictError(f"Recipe '{recipe.id}' already exists.")
        now = self.clock()
        created = replace(
            recipe,
            id=recipe.id or new_recipe_id(recipe.title),
            subcategory=recipe.subcategory or None,
            created_at=now,
            updated_at=now,
        )
        self._insert(created)
        logger.info("Recipe %s written to %s", created.id, self.paths.folder_path(*created.location))
        return created

    def update(self, recipe_id: str, changes: dict) -> Recipe:
        existing = self.get(recipe_id)
        if existing is None:
            raise NotFoundError(f"Recipe not found (ID: {recipe_id})")
        updated = existing.with_changes(changes, self.clock())
        if updated.location == existing.location:
            category, subcategory = updated.location
            try:
                self._write_json(
                    self.paths.recipe_file_path(category, subcategory, recipe_id),
                    updated.as_dict(),
                )
            except OSError as exc:
                raise StorageError(f"Could not write recipe {recipe_id}") from exc
        else:
            # Category or subcategory changed: the record moves directories.
            self._insert(updated)
            self._remove(recipe_id, *existing.location)
            logger.info(
                "Recipe %s moved from %s to %s",
                recipe_id,
                "/".join(filter(None, existing.location)),
                "/".join(filter(None, updated.location)),
            )
        return updated

    def delete(
        self,
        recipe_id: str,
        category: Optional[str] = None,
        subcategory: Optional[str] = None,
    ) -> Recipe:
        check_recipe_id(recipe_id)
        if category is None:
            location = self._locate(recipe_id)
            if location is None:
                raise NotFoundError(f"Recipe not found (ID: {recipe_id})")
            category, subcategory = location
        recipe = self._load(category, subcategory, recipe_id)
        if recipe is None:
            raise NotFoundError(f"Recipe not found (ID: {recipe_id})")
        self._remove(recipe_id, category, subcategory)
        logger.info("Recipe %s deleted", recipe_id)
        release_asset(self.assets, recipe, self.partial_failures, self.clock)
        return recipe

    def close(self) -> None:
        pass


def _subdirectories(path: Path) -> list[Path]:
    try:
        return sorted(
            entry
            for entry in path.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )
    except FileNotFoundError:
        return []
