"""
LinkStore HTTP application.

Usage:
    uvicorn linkstore.api.app:create_app --factory --port 8090
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import LinkStoreConfig
from ..errors import LinkStoreError
from ..persistence import PersistenceService
from .routes import router
from .settings import ApiSettings

logger = logging.getLogger(__name__)

# Error code -> HTTP status
STATUS_BY_CODE = {
    "PRIMARY_KEY_MISSING": 422,
    "LINK_CYCLE": 422,
    "INVALID_TEMPLATE": 422,
    "COLLECTION_NOT_REGISTERED": 404,
    "TRIGGER_NOT_FOUND": 404,
    "STORE_ERROR": 404,
    "STORE_WRITE_ERROR": 409,
    "STORE_DELETE_ERROR": 500,
    "STORAGE_OPEN_ERROR": 503,
    "STORAGE_UNSUPPORTED": 503,
}


async def handle_linkstore_error(request: Request, exc: LinkStoreError) -> JSONResponse:
    """Render engine errors with their code and details."""
    status = STATUS_BY_CODE.get(exc.code, 500)
    if status >= 500:
        logger.error(f"{exc.code}: {exc.message}", extra={"path": request.url.path})
    else:
        logger.info(f"{exc.code}: {exc.message}", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status,
        content={"error": {"code": exc.code, "message": exc.message, "details": exc.details}},
    )


def create_app(
    config: LinkStoreConfig | None = None,
    settings: ApiSettings | None = None,
    service: PersistenceService | None = None,
) -> FastAPI:
    """Create the LinkStore FastAPI app.

    Args:
        config: Engine configuration; read from the environment when omitted
        settings: HTTP settings; read from the environment when omitted
        service: Pre-built persistence service, mainly for tests
    """
    settings = settings or ApiSettings()
    persistence = service or PersistenceService(config or LinkStoreConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open storage for the lifetime of the app."""
        await persistence.initialize()
        app.state.persistence = persistence
        app.state.settings = settings

        yield

        await persistence.close()

    app = FastAPI(
        title="LinkStore",
        description="Linked-object persistence and query engine, usable as a fake backend.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[settings.total_count_header],
    )

    app.add_exception_handler(LinkStoreError, handle_linkstore_error)
    app.include_router(router, prefix=settings.api_prefix)

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": "linkstore",
            "version": persistence.registry.version,
        }

    return app
