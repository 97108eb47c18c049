"""API route modules."""

from .auth_routes import router as auth_router
from .csrf_routes import router as csrf_router
from .health_routes import router as health_router
from .webhooks_routes import router as webhooks_router

__all__ = [
    "auth_router",
    "csrf_router",
    "health_router",
    "webhooks_router",
]
