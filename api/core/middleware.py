"""ASGI middleware for response security headers."""

from __future__ import annotations

from collections.abc import Iterable

from starlette.types import ASGIApp, Message, Receive, Scope, Send

# Responses on these paths carry session-bound tokens.
DEFAULT_NO_STORE_PREFIXES = ("/api/csrf-token", "/api/auth/")


class SecurityHeadersMiddleware:
    """Adds security headers to every HTTP response.

    Args:
        app: The ASGI application.
        hsts: Send Strict-Transport-Security (disable for plain-HTTP dev).
        no_store_prefixes: Path prefixes whose responses get
            ``Cache-Control: no-store`` so CSRF tokens and login results are
            never written to shared or browser caches.
    """

    SECURITY_HEADERS: tuple[tuple[bytes, bytes], ...] = (
        (b"x-content-type-options", b"nosniff"),
        (b"x-frame-options", b"DENY"),
        (b"referrer-policy", b"strict-origin-when-cross-origin"),
        (b"content-security-policy", b"default-src 'none'; frame-ancestors 'none'"),
        (b"permissions-policy", b"camera=(), microphone=(), geolocation=()"),
    )
    HSTS_HEADER = (b"strict-transport-security", b"max-age=31536000; includeSubDomains")
    NO_STORE_HEADER = (b"cache-control", b"no-store")

    def __init__(
        self,
        app: ASGIApp,
        *,
        hsts: bool = True,
        no_store_prefixes: Iterable[str] = DEFAULT_NO_STORE_PREFIXES,
    ) -> None:
        self.app = app
        self.headers = list(self.SECURITY_HEADERS)
        if hsts:
            self.headers.append(self.HSTS_HEADER)
        self.no_store_prefixes = tuple(no_store_prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        extra = list(self.headers)
        if scope.get("path", "").startswith(self.no_store_prefixes):
            extra.append(self.NO_STORE_HEADER)

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                message["headers"] = [*message.get("headers", []), *extra]
            await send(message)

        await self.app(scope, receive, send_wrapper)
