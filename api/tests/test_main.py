"""Tests for application assembly in main.create_app."""

import pytest
from httpx import ASGITransport, AsyncClient

from core.config import Settings
from core.csrf import CsrfTokenGuard
from core.redirects import RedirectValidator
from core.webhook_signatures import WebhookConfigurationError, WebhookSignatureVerifier
from main import create_app


@pytest.mark.unit
class TestCreateApp:
    def test_guards_on_app_state(self, test_settings: Settings):
        app = create_app(test_settings)

        assert isinstance(app.state.redirect_validator, RedirectValidator)
        assert isinstance(app.state.csrf_guard, CsrfTokenGuard)
        assert isinstance(app.state.webhook_verifier, WebhookSignatureVerifier)
        assert app.state.webhook_verifier.vendors() == ["clicksign", "stripe", "whatsapp"]

    def test_each_app_has_its_own_validator(self, test_settings: Settings):
        first = create_app(test_settings)
        second = create_app(test_settings)

        first.state.redirect_validator.add_allowed_redirect_domain("tenant.example")

        assert "tenant.example" not in (
            second.state.redirect_validator.get_allowed_redirect_domains()
        )

    def test_missing_webhook_secret_fails_at_startup(self):
        settings = Settings.model_construct(
            debug=False,
            session_secret_key="x" * 32,
            stripe_webhook_secret="a",
            whatsapp_app_secret="",
            clicksign_webhook_secret="c",
        )
        with pytest.raises(WebhookConfigurationError, match="WHATSAPP_APP_SECRET"):
            create_app(settings)

    async def test_docs_disabled_in_production(self, test_settings: Settings):
        app = create_app(test_settings)
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.get("/docs")

        assert response.status_code == 404

    async def test_debug_allows_http_redirects(self):
        settings = Settings(debug=True, stripe_webhook_secret="a")
        app = create_app(settings)
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.get(
                "/api/auth/callback?returnTo=http%3A%2F%2Fapp.imobibase.com%2Fleads"
            )

        assert response.headers["location"] == "http://app.imobibase.com/leads"
