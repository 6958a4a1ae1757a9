"""
Backend package for the recipe catalog API.

This package provides a FastAPI application with catalog, category, asset
and admin-session abstractions so the same routes can run against a local
JSON file tree or a database, and against a storage bucket or an image CDN.
"""
