"""Session authentication hooks.

Credential storage and password hashing live outside this service; callers
inject a ``CredentialChecker``. This module only owns what happens to the
session when authentication state changes.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any, Protocol

from core.csrf import CsrfTokenGuard
from core.logger import get_logger

logger = get_logger(__name__)

SESSION_USER_KEY = "user_id"


class CredentialChecker(Protocol):
    """Returns the user ID for valid credentials, ``None`` otherwise."""

    async def __call__(self, email: str, password: str) -> str | None: ...


def establish_session(
    session: MutableMapping[str, Any],
    user_id: str,
    guard: CsrfTokenGuard,
) -> str:
    """Mark the session authenticated and rotate its CSRF token.

    Returns:
        The new CSRF token. The token held before login is invalid from here.
    """
    session[SESSION_USER_KEY] = user_id
    token = guard.rotate_token(session)
    logger.info("auth.login.success", user_id=user_id)
    return token


def end_session(session: MutableMapping[str, Any]) -> str | None:
    """Drop all session state, CSRF token included.

    Returns:
        The user ID that was logged out, if any.
    """
    user_id = session.get(SESSION_USER_KEY)
    session.clear()
    if user_id:
        logger.info("auth.logout", user_id=user_id)
    return user_id
