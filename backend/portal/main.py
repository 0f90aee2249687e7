"""
Client Portal Backend — FastAPI Application Factory
====================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   uvicorn (`uvicorn portal.main:app`) and the serverless adapter in
       portal/handler.py.

Application Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                    FastAPI App                       │
    │                                                      │
    │  Middleware Chain:                                   │
    │  ┌──────┐ ┌────────────┐ ┌────────┐ ┌─────────┐      │
    │  │ CORS │→│ Rate Limit │→│ Req ID │→│ Logging │      │
    │  └──────┘ └────────────┘ └────────┘ └─────────┘      │
    │                                                      │
    │  Routes:                                             │
    │  /api/client-data  /api/secure-notion  /health       │
    │  /api/secure-simple  /api/simple-notion  /api/notion │
    │                                                      │
    │  Exception Handlers:                                 │
    │  400 │ 401 │ 403 │ 404 │ 429 │ 500 │ 503             │
    └──────────────────────────────────────────────────────┘
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from portal import __version__
from portal.config import settings
from portal.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    CircuitBreakerOpenError,
    ConfigurationError,
    NotFoundError,
    NotionAPIError,
    PortalError,
    ValidationError,
)
from portal.middleware.logging import RequestLoggingMiddleware
from portal.middleware.rate_limit import RateLimitMiddleware
from portal.middleware.request_id import RequestIDMiddleware, request_id_var
from portal.routes import client_data, health, notion_proxy
from portal.services.notion_service import notion_service

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Called once at startup: from the lifespan under uvicorn, from
    portal/handler.py in serverless runtimes (where lifespan is off).
    """
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # httpx logs every request line at INFO, including our Notion calls
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: configure logging, report configuration problems.
    Shutdown: close the pooled Notion HTTP client.
    """
    setup_logging()
    logger.info("=" * 60)
    logger.info("Client Portal Backend %s starting up...", __version__)

    # Don't exit on bad config: /health still answers and routes return a
    # configuration_error body that says what is missing
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    logger.info(
        "Serving %d clients (%d admins), legacy endpoints %s",
        len(settings.clients),
        len(settings.admin_emails_list),
        "enabled" if settings.legacy_endpoints_enabled else "disabled",
    )
    logger.info("=" * 60)

    yield

    logger.info("Client Portal Backend shutting down...")
    await notion_service.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _cors_headers(request: Request) -> Dict[str, str]:
    """
    CORS headers for responses built outside CORSMiddleware.

    The Exception fallback runs in Starlette's ServerErrorMiddleware,
    which wraps every user middleware.
    """
    origin = request.headers.get("Origin")
    if not origin:
        return {}
    origins = settings.cors_origins_list
    if "*" in origins:
        return {"Access-Control-Allow-Origin": "*"}
    if origin in origins:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Vary": "Origin",
        }
    return {}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP status codes and response formats.

    Handler hierarchy:
        ValidationError         → 400
        AuthenticationError     → 401
        AccessDeniedError       → 403
        NotFoundError           → 404
        (429 is answered by RateLimitMiddleware directly)
        ConfigurationError      → 500
        NotionAPIError          → 500 (upstream body logged, not returned)
        CircuitBreakerOpenError → 503
        PortalError (base)      → 500
        Exception (fallback)    → 500
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        logger.warning("[%s] Authentication failed: %s", request_id_var.get(""), exc.message)
        return _error_response(401, "unauthorized", exc.message)

    @app.exception_handler(AccessDeniedError)
    async def handle_access_denied(request: Request, exc: AccessDeniedError):
        logger.warning(
            "[%s] Access denied: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(403, "forbidden", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError):
        logger.error(
            "[%s] Configuration error, missing: %s",
            request_id_var.get(""),
            ", ".join(exc.missing),
        )
        return _error_response(500, "configuration_error", exc.message)

    @app.exception_handler(NotionAPIError)
    async def handle_notion_error(request: Request, exc: NotionAPIError):
        logger.error(
            "[%s] %s | Upstream body: %s",
            request_id_var.get(""),
            exc.message,
            exc.details[:1000],
        )
        return _error_response(500, "notion_api_error", exc.message, exc.context)

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            503,
            "service_unavailable",
            exc.message,
            {"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(PortalError)
    async def handle_portal_error(request: Request, exc: PortalError):
        logger.error("[%s] %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Generic 500; the stack trace is logged server-side only."""
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            str(exc),
            exc_info=True,
        )
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
            headers=_cors_headers(request),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Client Portal API",
        description=(
            "Per-client read access to a shared Notion database. Each caller is "
            "mapped server-side to one client and only that client's rows are returned."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in REVERSE order of addition:
    # CORS → RateLimit → RequestID → Logging → GZip
    # CORS is outermost so 429s carry Access-Control-Allow-Origin
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    origins = settings.cors_origins_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Browsers reject credentialed responses with a wildcard origin
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    register_exception_handlers(app)

    app.include_router(client_data.router)
    app.include_router(notion_proxy.router)
    app.include_router(health.router)

    return app


app = create_app()
