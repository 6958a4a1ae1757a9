"""
FastAPI application entry point for the recipe catalog backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from recipebook.config import Settings, get_settings
from recipebook.dependencies import Services, build_services
from recipebook.errors import ConfigError, RecipeBookError, StorageError
from recipebook.routes import router

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An internal server error occurred."


async def handle_recipebook_error(request: Request, exc: RecipeBookError):
    if isinstance(exc, StorageError) or exc.status_code >= 500:
        logger.error(
            "Upstream failure on %s %s", request.method, request.url.path, exc_info=exc
        )
        return JSONResponse(
            status_code=exc.status_code, content={"message": GENERIC_ERROR_MESSAGE}
        )
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc)})


async def handle_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "message": "Invalid or missing request data.",
            "errors": [
                {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
                for error in exc.errors()
            ],
        },
    )


async def handle_unexpected_error(request: Request, exc: Exception):
    logger.error(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(status_code=500, content={"message": GENERIC_ERROR_MESSAGE})


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Recipe catalog started (catalog=%s, assets=%s, tokens=%s)",
            settings.catalog_backend,
            settings.asset_backend,
            settings.token_mode,
        )
        yield
        app.state.services.shutdown()
        logger.info("Recipe catalog stopped")

    app = FastAPI(title="Recipe Catalog Backend", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RecipeBookError, handle_recipebook_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app


def main() -> None:
    settings = get_settings()
    if not settings.admin_identities():
        raise ConfigError("ADMIN_PASSWORD must be set before starting the server.")
    uvicorn.run(
        "recipebook.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
