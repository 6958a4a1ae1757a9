"""
Database-backed catalog and category stores (Postgres in production, SQLite for tests).

Recipes are kept as JSON documents keyed by a store-assigned id, with the
columns needed for ordering and referential checks alongside.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Optional

from sqlalchemy import JSON, Column, Float, Integer, String, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from recipebook.auth import Clock, utcnow
from recipebook.catalog import (
    CatalogStore,
    new_failure_log,
    newest_first,
    release_asset,
)
from recipebook.categories import CategoryRules
from recipebook.errors import ConflictError, NotFoundError, StorageError
from recipebook.models import Category, Recipe
from recipebook.storage import AssetStore

logger = logging.getLogger(__name__)

Base = declarative_base()


class RecipeRow(Base):
    __tablename__ = "recipes"

    id = Column(String, primary_key=True)
    category = Column(String, nullable=False, index=True)
    subcategory = Column(String, nullable=True, index=True)
    created_at = Column(Float, nullable=False, index=True)
    data = Column("document", JSON, nullable=False)


class CategoryRow(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    sort_order = Column(Integer, nullable=False)
    subcategories = Column(JSON, nullable=False)


def create_db_engine(database_url: str) -> Engine:
    if not database_url:
        raise ValueError("DATABASE_URL is required for the database backend")
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # One shared connection so every thread sees the same in-memory database.
        engine = create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
    Base.metadata.create_all(engine)
    return engine


class SqlCatalogStore:
    """
    SQLAlchemy-backed implementation of the catalog store.
    """

    def __init__(
        self,
        engine: Engine,
        assets: Optional[AssetStore] = None,
        clock: Clock = utcnow,
    ):
        self.engine = engine
        self.assets = assets
        self.clock = clock
        self.partial_failures = new_failure_log()
        self.Session = sessionmaker(
            bind=engine, class_=Session, expire_on_commit=False, future=True
        )

    def _write_row(self, row: RecipeRow, recipe: Recipe) -> None:
        row.category = recipe.category
        row.subcategory = recipe.subcategory
        row.created_at = recipe.created_at.timestamp()
        row.data = recipe.as_dict()

    def list_all(self) -> list[Recipe]:
        try:
            with self.Session() as session:
                rows = session.execute(
                    select(RecipeRow).order_by(RecipeRow.created_at.desc())
                ).scalars()
                return newest_first(Recipe.from_dict(row.data) for row in rows)
        except SQLAlchemyError as exc:
            raise StorageError("Could not list recipes") from exc

    def get(self, recipe_id: str) -> Optional[Recipe]:
        try:
            with self.Session() as session:
                row = session.get(RecipeRow, recipe_id)
                return Recipe.from_dict(row.data) if row else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not read recipe {recipe_id}") from exc

    def has_recipes(self, category: str, subcategory: Optional[str] = None) -> bool:
        stmt = select(RecipeRow.id).where(RecipeRow.category == category)
        if subcategory is not None:
            stmt = stmt.where(RecipeRow.subcategory == subcategory)
        try:
            with self.Session() as session:
                return session.execute(stmt.limit(1)).first() is not None
        except SQLAlchemyError as exc:
            raise StorageError("Could not query recipes") from exc

    def create(self, recipe: Recipe) -> Recipe:
        now = self.clock()
        created = replace(
            recipe,
            id=recipe.id or uuid.uuid4().hex,
            subcategory=recipe.subcategory or None,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.Session() as session:
                if session.get(RecipeRow, created.id) is not None:
                    raise ConflictError(f"Recipe '{created.id}' already exists.")
                row = RecipeRow(id=created.id)
                self._write_row(row, created)
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not create recipe {created.id}") from exc
        logger.info("Recipe added to database with ID: %s", created.id)
        return created

    def update(self, recipe_id: str, changes: dict) -> Recipe:
        try:
            with self.Session() as session:
                row = session.get(RecipeRow, recipe_id)
                if row is None:
                    raise NotFoundError(f"Recipe not found (ID: {recipe_id})")
                updated = Recipe.from_dict(row.data).with_changes(changes, self.clock())
                self._write_row(row, updated)
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not update recipe {recipe_id}") from exc
        logger.info("Recipe %s updated in database.", recipe_id)
        return updated

    def delete(
        self,
        recipe_id: str,
        category: Optional[str] = None,
        subcategory: Optional[str] = None,
    ) -> Recipe:
        try:
            with self.Session() as session:
                row = session.get(RecipeRow, recipe_id)
                if row is None:
                    raise NotFoundError(f"Recipe not found (ID: {recipe_id})")
                recipe = Recipe.from_dict(row.data)
                session.delete(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not delete recipe {recipe_id}") from exc
        logger.info("Recipe %s deleted from database.", recipe_id)
        release_asset(self.assets, recipe, self.partial_failures, self.clock)
        return recipe

    def close(self) -> None:
        self.engine.dispose()


class SqlCategoryStore(CategoryRules):
    """Categories as rows, subcategories as a JSON list column."""

    def __init__(self, engine: Engine, catalog: CatalogStore):
        self.engine = engine
        self.catalog = catalog
        self.Session = sessionmaker(
            bind=engine, class_=Session, expire_on_commit=False, future=True
        )

    def _all(self) -> list[Category]:
        try:
            with self.Session() as session:
                rows = session.execute(select(CategoryRow)).scalars()
                return [
                    Category.from_dict(
                        {
                            "id": row.id,
                            "name": row.name,
                            "subcategories": row.subcategories,
                            "sortOrder": row.sort_order,
                        }
                    )
                    for row in rows
                ]
        except SQLAlchemyError as exc:
            raise StorageError("Could not list categories") from exc

    def _put(self, category: Category) -> None:
        subcategories = [sub.as_dict() for sub in category.subcategories]
        try:
            with self.Session() as session:
                row = session.get(CategoryRow, category.id)
                if row is None:
                    session.add(
                        CategoryRow(
                            id=category.id,
                            name=category.name,
                            sort_order=category.sort_order,
                            subcategories=subcategories,
                        )
                    )
                else:
                    row.name = category.name
                    row.sort_order = category.sort_order
                    row.subcategories = subcategories
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not save category {category.name}") from exc

    def _drop(self, category_id: str) -> None:
        try:
            with self.Session() as session:
                row = session.get(CategoryRow, category_id)
                if row is not None:
                    session.delete(row)
                    session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not delete category {category_id}") from exc
