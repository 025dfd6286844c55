"""Services package."""

from app.services.metrics_service import MetricsService
from app.services.recap_service import RecapService
from app.services.notification_service import NotificationService
from app.services.push_service import ExpoPushProvider

__all__ = [
    "MetricsService",
    "RecapService",
    "NotificationService",
    "ExpoPushProvider",
]
