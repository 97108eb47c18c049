"""FastAPI dependencies exposing the guards built at app assembly.

``main.create_app`` stores one instance of each guard on ``app.state``;
routes receive them through these aliases so tests can swap them with
``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from core.csrf import CsrfTokenGuard
from core.redirects import RedirectValidator
from core.webhook_signatures import WebhookSignatureVerifier
from services.auth_service import CredentialChecker


def get_redirect_validator(request: Request) -> RedirectValidator:
    return request.app.state.redirect_validator


def get_csrf_guard(request: Request) -> CsrfTokenGuard:
    return request.app.state.csrf_guard


def get_webhook_verifier(request: Request) -> WebhookSignatureVerifier:
    return request.app.state.webhook_verifier


def get_credential_checker(request: Request) -> CredentialChecker:
    checker = getattr(request.app.state, "credential_checker", None)
    if checker is None:
        raise HTTPException(
            status_code=503, detail="Authentication backend not configured"
        )
    return checker


RedirectValidatorDep = Annotated[RedirectValidator, Depends(get_redirect_validator)]
CsrfGuardDep = Annotated[CsrfTokenGuard, Depends(get_csrf_guard)]
WebhookVerifierDep = Annotated[WebhookSignatureVerifier, Depends(get_webhook_verifier)]
CredentialCheckerDep = Annotated[CredentialChecker, Depends(get_credential_checker)]
