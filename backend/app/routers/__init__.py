"""Routers package."""

from app.routers.analytics import router as analytics_router
from app.routers.notifications import router as notifications_router

__all__ = [
    "analytics_router",
    "notifications_router",
]
