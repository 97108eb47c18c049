"""CSRF protection with a per-session token submitted via a custom header.

A random token is stored in the server-side session and must be echoed in
the ``X-CSRF-Token`` header on unsafe requests (POST, PUT, PATCH, DELETE).
Cross-site forms and ``fetch`` calls cannot set custom headers on another
origin, so a forged request arrives without a valid token.

Token lifecycle per session:

- issued lazily on the first request that touches a session without one
- rotated once, synchronously, when the session authenticates (login);
  the previous value is invalid from that point on
- destroyed together with the session on logout or expiry

A rotation racing an in-flight request that still carries the old token
makes that request fail with ``CSRF_TOKEN_INVALID``; the client re-fetches
the token from ``GET /api/csrf-token`` and retries.
"""

from __future__ import annotations

import secrets
from collections.abc import Iterable, MutableMapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from core.config import Settings
from core.logger import get_logger

logger = get_logger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
SESSION_KEY = "csrf_token"
DEFAULT_HEADER_NAME = "X-CSRF-Token"
TOKEN_BYTES = 32

Session = MutableMapping[str, Any]


class CsrfConfigurationError(RuntimeError):
    """CSRF middleware is running without a session store."""


class CsrfFailure(str, Enum):
    CSRF_TOKEN_MISSING = "CSRF_TOKEN_MISSING"
    CSRF_TOKEN_INVALID = "CSRF_TOKEN_INVALID"


@dataclass(frozen=True)
class CsrfDecision:
    allowed: bool
    failure: CsrfFailure | None = None


_ALLOW = CsrfDecision(allowed=True)


class CsrfTokenGuard:
    """Issues, rotates and validates per-session CSRF tokens.

    Args:
        header_name: Request header carrying the submitted token.
        exempt_paths: Path prefixes that skip validation (login, register,
            webhooks, health). An entry ending in ``/`` matches anything
            below it; otherwise the path must equal the entry or continue
            with ``/``.
        token_bytes: Entropy of generated tokens.
    """

    def __init__(
        self,
        *,
        header_name: str = DEFAULT_HEADER_NAME,
        exempt_paths: Iterable[str] = (),
        token_bytes: int = TOKEN_BYTES,
    ) -> None:
        if token_bytes < TOKEN_BYTES:
            raise ValueError(f"token_bytes must be at least {TOKEN_BYTES}")
        self.header_name = header_name
        self.exempt_paths = tuple(exempt_paths)
        self.token_bytes = token_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> CsrfTokenGuard:
        return cls(
            header_name=settings.csrf_header_name,
            exempt_paths=settings.csrf_exempt_prefixes,
        )

    def generate_token(self) -> str:
        return secrets.token_urlsafe(self.token_bytes)

    def get_or_create_token(self, session: Session) -> str:
        token = session.get(SESSION_KEY)
        if not token:
            token = self.generate_token()
            session[SESSION_KEY] = token
        return token

    def rotate_token(self, session: Session) -> str:
        """Replace the session token; call right after a successful login."""
        token = self.generate_token()
        session[SESSION_KEY] = token
        return token

    def is_exempt(self, method: str, path: str) -> bool:
        if method.upper() in SAFE_METHODS:
            return True
        for prefix in self.exempt_paths:
            if prefix.endswith("/"):
                if path.startswith(prefix):
                    return True
            elif path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    def validate(
        self,
        method: str,
        path: str,
        session: Session,
        submitted: str | None,
    ) -> CsrfDecision:
        """Decide whether a request may proceed.

        ``submitted`` is the raw header value, ``None`` when the header is
        absent. It is compared exactly; no trimming or case folding.
        """
        if self.is_exempt(method, path):
            return _ALLOW

        if submitted is None:
            return CsrfDecision(allowed=False, failure=CsrfFailure.CSRF_TOKEN_MISSING)

        expected = session.get(SESSION_KEY)
        if not expected or not secrets.compare_digest(
            submitted.encode("utf-8"), expected.encode("utf-8")
        ):
            return CsrfDecision(allowed=False, failure=CsrfFailure.CSRF_TOKEN_INVALID)

        return _ALLOW


class CSRFMiddleware:
    """Pure ASGI middleware enforcing ``CsrfTokenGuard`` on every request.

    Must sit inside SessionMiddleware so ``scope["session"]`` is populated;
    running without one raises ``CsrfConfigurationError`` rather than
    silently letting requests through.

    Args:
        app: The ASGI application.
        guard: Token guard holding header name and exempt paths.
    """

    def __init__(self, app: ASGIApp, *, guard: CsrfTokenGuard | None = None) -> None:
        self.app = app
        self.guard = guard or CsrfTokenGuard()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if "session" not in scope:
            raise CsrfConfigurationError(
                "CSRFMiddleware requires SessionMiddleware to run first"
            )

        request = Request(scope, receive)
        session = scope["session"]
        self.guard.get_or_create_token(session)

        decision = self.guard.validate(
            request.method,
            request.url.path,
            session,
            request.headers.get(self.guard.header_name),
        )
        if not decision.allowed:
            logger.warning(
                "csrf.validation_failed",
                path=request.url.path,
                method=request.method,
                code=decision.failure.value if decision.failure else None,
            )
            response = self._error_response(decision)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)

    @staticmethod
    def _error_response(decision: CsrfDecision) -> Response:
        """Return 403 with a stable code the client can act on."""
        return JSONResponse(
            {
                "code": decision.failure.value if decision.failure else None,
                "detail": "Invalid or missing CSRF token. "
                "Please refresh the page and try again.",
            },
            status_code=403,
        )
