"""Levered agent proxy - FastAPI application."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from levered_agent import __version__
from levered_agent.api import api_router
from levered_agent.api.chat import limiter
from levered_agent.config import Settings, get_config_dict, settings as default_settings
from levered_agent.proxy import AgentProxy

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, proxy: AgentProxy | None = None) -> FastAPI:
    """Build the app around an agent proxy.

    The proxy is started when the app starts serving and shut down with it.
    """
    settings = settings or default_settings
    proxy = proxy or AgentProxy(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler with graceful shutdown."""
        logger.info(f"{settings.app_name} starting up: {get_config_dict(settings)}")
        proxy.start()
        logger.info(f"{settings.app_name} ready to serve requests")

        yield

        logger.info(f"{settings.app_name} shutting down...")
        try:
            await proxy.shutdown()
        except Exception as e:
            logger.error(f"Error stopping agent proxy: {e}")
        logger.info(f"{settings.app_name} shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Streams the reasoning, tool calls and results of a coding agent "
        "as Server-Sent Events.",
        lifespan=lifespan,
    )
    app.state.proxy = proxy
    app.state.settings = settings

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins(),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all HTTP requests with timing information."""
        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        if request.url.path != "/health":
            logger.info(
                "http_request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                    "client_ip": request.client.host if request.client else "unknown",
                },
            )
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Reject malformed bodies with 400 before any job starts."""
        logger.warning(f"Invalid request to {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "detail": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error in {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc)},
        )

    app.include_router(api_router)
    return app


app = create_app()
