"""
FastAPI application factory for the EntBase gateway.

This module creates the FastAPI app with:
- Store initialization and client registry lifecycle
- CORS configuration for frontends
- Instance and schema routes under /v1
- EntBaseError -> JSON error responses

Invariants:
    - All instance routes require a tenant (X-Tenant-ID or default)
    - Errors carry the SDK error's status_code, code and details

How to change safely:
    - Keep routes thin; behavior belongs in EntityClient
    - Version the API if breaking changes are needed
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sdk.entbase_sdk.client import ClientRegistry
from sdk.entbase_sdk.config import ClientOptions
from sdk.entbase_sdk.errors import EntBaseError

from ..storage import SqliteEntityStore
from .routes import router
from .settings import Settings

logger = logging.getLogger(__name__)


def create_app(
    store: SqliteEntityStore,
    settings: Optional[Settings] = None,
    client_options: Optional[ClientOptions] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Entity store shared by every tenant client
        settings: Gateway settings (loaded from env if not provided)
        client_options: Schema cache options for tenant clients
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await store.initialize()
        app.state.registry = ClientRegistry(store)
        logger.info("EntBase gateway started", extra={"db_path": str(store.db_path)})

        yield

        app.state.registry.clear()
        logger.info("EntBase gateway stopped")

    app = FastAPI(
        title="EntBase",
        description="Instances of runtime-described entity types over HTTP.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.client_options = client_options or ClientOptions()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(EntBaseError)
    async def entbase_error_handler(request: Request, exc: EntBaseError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "Request failed",
                extra={"path": request.url.path, "code": exc.code, "error": exc.message},
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(router, prefix="/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "entbase"}

    return app
