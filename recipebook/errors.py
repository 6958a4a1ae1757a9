"""
Exception hierarchy shared by the stores and the HTTP layer.
"""

from __future__ import annotations


class RecipeBookError(Exception):
    status_code = 500


class ConfigError(RecipeBookError):
    pass


class ValidationError(RecipeBookError):
    status_code = 400


class AuthenticationError(RecipeBookError):
    status_code = 401


class NotFoundError(RecipeBookError):
    status_code = 404


class ConflictError(RecipeBookError):
    status_code = 409


class StorageError(RecipeBookError):
    """Database, file system, bucket or CDN failure."""

    status_code = 500
