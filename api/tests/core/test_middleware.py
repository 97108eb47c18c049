"""Unit tests for core.middleware module.

Tests SecurityHeadersMiddleware:
- adds security headers to HTTP responses
- HSTS only when enabled
- no-store caching on token-bearing paths
- skips non-HTTP scopes
- keeps headers set by the wrapped app
"""

import pytest

from core.middleware import SecurityHeadersMiddleware


async def _noop_receive():
    return {"type": "http.request", "body": b""}


async def _make_app_that_sends_response(scope, receive, send):
    """Simulate an ASGI app that sends a response."""
    await send({"type": "http.response.start", "status": 200, "headers": []})
    await send({"type": "http.response.body", "body": b"OK"})


async def _run(middleware, path: str = "/api/leads") -> dict[bytes, bytes]:
    sent_messages = []

    async def mock_send(message):
        sent_messages.append(message)

    await middleware({"type": "http", "path": path}, _noop_receive, mock_send)
    return dict(sent_messages[0]["headers"])


@pytest.mark.unit
class TestSecurityHeadersMiddleware:
    """Test SecurityHeadersMiddleware adds expected headers."""

    async def test_adds_security_headers(self):
        headers = await _run(SecurityHeadersMiddleware(_make_app_that_sends_response))

        assert headers[b"x-content-type-options"] == b"nosniff"
        assert headers[b"x-frame-options"] == b"DENY"
        assert b"frame-ancestors 'none'" in headers[b"content-security-policy"]
        assert b"referrer-policy" in headers
        assert b"permissions-policy" in headers
        assert b"strict-transport-security" in headers

    async def test_hsts_can_be_disabled(self):
        middleware = SecurityHeadersMiddleware(_make_app_that_sends_response, hsts=False)
        headers = await _run(middleware)

        assert b"strict-transport-security" not in headers
        assert b"x-frame-options" in headers

    @pytest.mark.parametrize("path", ["/api/csrf-token", "/api/auth/login"])
    async def test_token_responses_are_not_cached(self, path):
        headers = await _run(SecurityHeadersMiddleware(_make_app_that_sends_response), path)

        assert headers[b"cache-control"] == b"no-store"

    async def test_other_responses_keep_default_caching(self):
        headers = await _run(SecurityHeadersMiddleware(_make_app_that_sends_response), "/health")

        assert b"cache-control" not in headers

    async def test_skips_non_http_scopes(self):
        called = False

        async def inner_app(scope, receive, send):
            nonlocal called
            called = True

        middleware = SecurityHeadersMiddleware(inner_app)

        await middleware({"type": "websocket"}, _noop_receive, lambda msg: None)
        assert called

    async def test_preserves_existing_headers(self):
        async def app_with_headers(scope, receive, send):
            await send(
                {
                    "type": "http.response.start",
                    "status": 302,
                    "headers": [(b"location", b"/dashboard")],
                }
            )

        headers = await _run(SecurityHeadersMiddleware(app_with_headers))

        assert headers[b"location"] == b"/dashboard"
        assert b"x-content-type-options" in headers
