"""API layer - FastAPI routers for addon sync and device login."""

from .router import auth_router, router

__all__ = ["router", "auth_router"]
