"""
Locations of recipe records and manifests in the catalog file tree.

    <base>/<category>/[<subcategory>/]<recipe_id>.json
    <base>/<category>/[<subcategory>/]manifest.json
"""

from __future__ import annotations

import re
import secrets
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from recipebook.errors import ValidationError

RECORD_SUFFIX = ".json"
MANIFEST_STEM = "manifest"
MANIFEST_NAME = MANIFEST_STEM + RECORD_SUFFIX

_FORBIDDEN_CHARS = ("/", "\\", "\x00")


def check_segment(value: Optional[str], kind: str) -> str:
    """Reject values that would escape or alias a directory of the tree."""
    if not value or not isinstance(value, str):
        raise ValidationError(f"{kind} is required")
    if value in (".", "..") or value.startswith("."):
        raise ValidationError(f"Invalid {kind}: {value!r}")
    if any(char in value for char in _FORBIDDEN_CHARS):
        raise ValidationError(f"Invalid {kind}: {value!r}")
    return value


def check_recipe_id(recipe_id: Optional[str]) -> str:
    check_segment(recipe_id, "recipe id")
    stem = recipe_id[: -len(RECORD_SUFFIX)] if recipe_id.endswith(RECORD_SUFFIX) else recipe_id
    if stem == MANIFEST_STEM:
        raise ValidationError(f"Invalid recipe id: {recipe_id!r}")
    return recipe_id


def slugify_title(title: str) -> str:
    ascii_title = (
        unicodedata.normalize("NFKD", title or "")
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    return re.sub(r"[^a-z0-9]+", "-", ascii_title.lower()).strip("-")


def new_recipe_id(title: str) -> str:
    slug = slugify_title(title) or "recipe"
    return f"{slug}-{secrets.token_hex(3)}"


@dataclass(frozen=True)
class CatalogPaths:
    base: Path

    def folder_path(self, category: str, subcategory: Optional[str] = None) -> Path:
        folder = self.base / check_segment(category, "category")
        if subcategory:
            folder = folder / check_segment(subcategory, "subcategory")
        return folder

    def recipe_file_path(
        self, category: str, subcategory: Optional[str], recipe_id: str
    ) -> Path:
        filename = check_recipe_id(recipe_id)
        if not filename.endswith(RECORD_SUFFIX):
            filename += RECORD_SUFFIX
        return self.folder_path(category, subcategory) / filename

    def manifest_path(self, category: str, subcategory: Optional[str] = None) -> Path:
        return self.folder_path(category, subcategory) / MANIFEST_NAME
