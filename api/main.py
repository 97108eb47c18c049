"""FastAPI application for the ImobiBase security API."""

from contextlib import asynccontextmanager

import fastapi
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from core.config import Settings, get_settings
from core.csrf import CsrfTokenGuard, CSRFMiddleware
from core.logger import configure_logging, get_logger
from core.middleware import SecurityHeadersMiddleware
from core.redirects import RedirectParamMiddleware, RedirectValidator
from core.webhook_signatures import WebhookSignatureVerifier
from routes import auth_router, csrf_router, health_router, webhooks_router
from services.auth_service import CredentialChecker

configure_logging()
logger = get_logger(__name__)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for unhandled exceptions."""
    logger.exception(
        "unhandled.exception",
        exc_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again."},
    )


async def validation_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handler for request validation errors."""
    if not isinstance(exc, RequestValidationError):
        return JSONResponse(status_code=500, content={"detail": "Unexpected error"})

    logger.warning(
        "request.validation_error",
        path=request.url.path,
        method=request.method,
        error_count=len(exc.errors()),
    )
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()},
    )


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    logger.info(
        "init.complete",
        webhook_vendors=app.state.webhook_verifier.vendors(),
        redirect_domains=len(app.state.redirect_validator.get_allowed_redirect_domains()),
    )
    yield


def create_app(
    settings: Settings | None = None,
    *,
    credential_checker: CredentialChecker | None = None,
) -> fastapi.FastAPI:
    """Build the application.

    Guards are constructed here so configuration errors (missing webhook
    secrets, insecure session key) fail at startup instead of per request.

    Args:
        settings: Defaults to ``get_settings()``.
        credential_checker: Verifies login credentials. Without one the
            login route answers 503.
    """
    settings = settings or get_settings()

    app = fastapi.FastAPI(
        title="ImobiBase Security API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.enable_docs or settings.debug else None,
        redoc_url="/redoc" if settings.enable_docs or settings.debug else None,
        openapi_url=(
            "/openapi.json" if settings.enable_docs or settings.debug else None
        ),
    )

    redirect_validator = RedirectValidator.from_settings(settings)
    csrf_guard = CsrfTokenGuard.from_settings(settings)

    app.state.settings = settings
    app.state.redirect_validator = redirect_validator
    app.state.csrf_guard = csrf_guard
    app.state.webhook_verifier = WebhookSignatureVerifier.from_settings(settings)
    app.state.credential_checker = credential_checker

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(health_router)
    app.include_router(csrf_router)
    app.include_router(auth_router)
    app.include_router(webhooks_router)

    # Added innermost first. Runtime order:
    # SecurityHeaders -> Session -> RedirectParam -> CSRF -> routes
    app.add_middleware(CSRFMiddleware, guard=csrf_guard)
    app.add_middleware(RedirectParamMiddleware, validator=redirect_validator)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret_key,
        session_cookie="session",
        max_age=settings.session_max_age_seconds,
        same_site="lax",
        https_only=settings.require_https,
    )
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.require_https)

    return app


app = create_app()
