"""
Organization Console API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orgconsole.api.v1 import router as api_v1_router
from orgconsole.api.v1.auth import router as auth_router
from orgconsole.core.auth import CSRF_COOKIE, SESSION_COOKIE
from orgconsole.core.config import get_settings
from orgconsole.core.errors import GENERIC_FAILURE, ConsoleError
from orgconsole.core.middleware import CSRFMiddleware, SecurityHeadersMiddleware
from orgconsole.core.security import close_redis

settings = get_settings()
log = structlog.get_logger()


def _first_validation_message(exc: RequestValidationError) -> str:
    for error in exc.errors():
        message = str(error.get("msg") or "")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        if message:
            return message
    return GENERIC_FAILURE


async def console_error_handler(request: Request, exc: ConsoleError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": _first_validation_message(exc)})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "request.unhandled_error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"error": GENERIC_FAILURE})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Organization Console",
        description="Organization, branch and staff administration.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (outermost first)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CSRFMiddleware, session_cookie=SESSION_COOKIE, csrf_cookie=CSRF_COOKIE)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    )

    app.add_exception_handler(ConsoleError, console_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Liveness probe."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        log.info(
            "Organization console starting",
            identity_provider=settings.identity_provider,
            invite_delivery=settings.invite_delivery,
        )

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Organization console shutting down")
        await close_redis()

    return app


app = create_app()
