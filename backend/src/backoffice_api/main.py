"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from backoffice_api.config import get_settings
from backoffice_api.exceptions import BackofficeAPIError
from backoffice_api.middleware.error_handler import (
    backoffice_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from backoffice_api.middleware.request_id import RequestIDMiddleware
from backoffice_api.routers import auth, backup, rbac
from backoffice_api.security.rate_limit import limiter
from backoffice_api.services.token_service import get_token_service
from backoffice_api.tasks.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store, max-age=0"
        response.headers.setdefault("Vary", "Accept, Authorization, Origin")
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        # HSTS only outside debug mode
        if not get_settings().debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    await start_scheduler()
    logger.info(f"{app.title} started ({get_settings().environment})")
    yield
    await stop_scheduler()
    await get_token_service().store.close()


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Custom rate limit handler returning RFC 7807 Problem Details.

    Includes Retry-After header per RFC 6585 Section 4.
    """
    return JSONResponse(
        status_code=429,
        content={
            "type": "https://datatracker.ietf.org/doc/html/rfc6585#section-4",
            "title": "Too many requests",
            "status": 429,
            "detail": "Rate limit exceeded",
            "instance": request.url.path,
        },
        headers={
            "Content-Type": "application/problem+json",
            "Retry-After": "60",
        },
    )


def _allowed_origins() -> list[str]:
    """Validate configured CORS origins.

    Raises:
        ValueError: For a wildcard origin, or no origins in production
    """
    config = get_settings()
    allowed_origins = []
    for origin in config.cors_origins_list:
        # Credentials are allowed, so a wildcard would be unsafe
        if origin == "*":
            raise ValueError(
                "CORS_ORIGINS cannot contain '*' wildcard when allow_credentials=True. "
                "Specify explicit origins."
            )
        if origin.startswith("http://") or origin.startswith("https://"):
            allowed_origins.append(origin)

    if not allowed_origins and config.environment == "production":
        raise ValueError(
            "CORS_ORIGINS must be set in production. "
            "Example: CORS_ORIGINS=https://app.example.com"
        )
    return allowed_origins


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    config = get_settings()

    app = FastAPI(
        title=config.app_name,
        version="0.1.0",
        description="Back office API: authentication, RBAC and encrypted backups",
        lifespan=lifespan,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Sanitized error handlers
    app.add_exception_handler(BackofficeAPIError, backoffice_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Middleware runs in reverse order of addition: CORS first on requests
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(rbac.router, prefix="/api/v1/rbac", tags=["RBAC"])
    app.include_router(backup.router, prefix="/api/v1/backup", tags=["Backup"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
