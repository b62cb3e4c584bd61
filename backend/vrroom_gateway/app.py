"""
FastAPI application factory for the VRroom /v1 gateway.

This module creates the resource-oriented app with:
- CORS configuration for web clients
- Services lifecycle management when run standalone
- /v1 routes
- The shared {"success": false, "error": "..."} error envelope
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..vrroom_server._version import __version__
from ..vrroom_server.config import ServerConfig
from ..vrroom_server.errors import InternalError, NotFoundError, VrroomError
from ..vrroom_server.services import Services
from .config import GatewaySettings
from .routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Own the Services graph when the gateway runs on its own."""
    if app.state.services is not None:
        yield
        return

    services = Services.build(ServerConfig.from_env())
    await services.start()
    app.state.services = services

    yield

    await services.close()
    app.state.services = None


def create_app(
    services: Services | None = None,
    settings: GatewaySettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Shared engine graph (built from the environment on startup
            when omitted)
        settings: Bind address and CORS settings
    """
    settings = settings or GatewaySettings()

    app = FastAPI(
        title="VRroom API",
        description="Resource-oriented API for accounts, profiles, content and sharing.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(VrroomError)
    async def vrroom_error_handler(request: Request, exc: VrroomError) -> JSONResponse:
        return JSONResponse(exc.to_dict(), status_code=exc.status)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            error: VrroomError = NotFoundError("Endpoint not found")
        else:
            error = VrroomError(str(exc.detail), status=exc.status_code)
        return JSONResponse(error.to_dict(), status_code=error.status, headers=exc.headers)

    @app.middleware("http")
    async def error_middleware(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Gateway handler error",
                extra={"method": request.method, "path": request.url.path},
                exc_info=True,
            )
            error = InternalError()
            return JSONResponse(error.to_dict(), status_code=error.status)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.debug("Rejected request body", extra={"path": request.url.path})
        return JSONResponse({"success": False, "error": "Invalid request format"}, status_code=400)

    app.include_router(router, prefix="/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "vrroom-gateway"}

    return app


# Default app instance for running the gateway on its own
app = create_app()
