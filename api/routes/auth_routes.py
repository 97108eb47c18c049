"""Session authentication routes.

Handles:
- POST /api/auth/login: check credentials, rotate CSRF token, validate the
  post-login redirect target
- POST /api/auth/logout: destroy the session (CSRF-protected)
- GET /api/auth/callback: OAuth landing, redirects to a validated
  ``returnTo`` or the safe default
"""

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from core.dependencies import (
    CredentialCheckerDep,
    CsrfGuardDep,
    RedirectValidatorDep,
)
from core.logger import get_logger
from schemas import LoginRequest, LoginResponse, LogoutResponse
from services.auth_service import end_session, establish_session

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Log in with email and password",
    responses={
        401: {"description": "Invalid credentials"},
        503: {"description": "Authentication backend not configured"},
    },
)
async def login(
    request: Request,
    body: LoginRequest,
    checker: CredentialCheckerDep,
    guard: CsrfGuardDep,
    validator: RedirectValidatorDep,
    redirect: str | None = Query(default=None),
    return_to: str | None = Query(default=None, alias="returnTo"),
) -> LoginResponse:
    user_id = await checker(body.email, body.password)
    if user_id is None:
        logger.info("auth.login.failed")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = establish_session(request.session, user_id, guard)
    return LoginResponse(
        user_id=user_id,
        csrf_token=token,
        redirect_to=validator.resolve(redirect or return_to),
    )


@router.post(
    "/logout",
    response_model=LogoutResponse,
    summary="Log out and destroy the session",
)
async def logout(request: Request) -> LogoutResponse:
    end_session(request.session)
    return LogoutResponse()


@router.get(
    "/callback",
    summary="OAuth callback landing",
    include_in_schema=False,
)
async def oauth_callback(
    validator: RedirectValidatorDep,
    return_to: str | None = Query(default=None, alias="returnTo"),
) -> RedirectResponse:
    """Send the browser on to ``returnTo`` when it is safe, else the default."""
    return validator.safe_redirect(return_to)
