"""Pytest configuration and shared fixtures.

This module provides:
- Test settings with fixed webhook secrets
- An application built by ``create_app`` with a fake credential checker
- httpx AsyncClient fixtures; each client holds its own session cookie
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os

os.environ.setdefault("SESSION_SECRET_KEY", "test_session_secret_key_for_testing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_stripe_secret_key_12345")
os.environ.setdefault("WHATSAPP_APP_SECRET", "test_whatsapp_secret_67890")
os.environ.setdefault("CLICKSIGN_WEBHOOK_SECRET", "test_clicksign_secret_abcde")
os.environ.setdefault("REQUIRE_HTTPS", "false")

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from core.config import Settings, clear_settings_cache

STRIPE_SECRET = "whsec_test_stripe_secret_key_12345"
WHATSAPP_SECRET = "test_whatsapp_secret_67890"
CLICKSIGN_SECRET = "test_clicksign_secret_abcde"

TEST_USERS = {"broker@imobibase.com": ("correct-horse", "user_broker_1")}


async def fake_credential_checker(email: str, password: str) -> str | None:
    entry = TEST_USERS.get(email)
    if entry and entry[0] == password:
        return entry[1]
    return None


@pytest.fixture(autouse=True)
def _clear_settings():
    """Clear lru_cache between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        session_secret_key="test_session_secret_key_for_testing",
        stripe_webhook_secret=STRIPE_SECRET,
        whatsapp_app_secret=WHATSAPP_SECRET,
        clicksign_webhook_secret=CLICKSIGN_SECRET,
        require_https=False,
        debug=False,
    )


@pytest.fixture
def app(test_settings: Settings) -> FastAPI:
    from main import create_app

    return create_app(test_settings, credential_checker=fake_credential_checker)


def _client(app: FastAPI) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with _client(app) as ac:
        yield ac


@pytest_asyncio.fixture
async def other_client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """A second browser: same app, separate cookie jar and session."""
    async with _client(app) as ac:
        yield ac
