"""
Celery worker and beat schedule for the notification pass.

Run with:
    celery -A app.worker worker --beat --loglevel=info
"""

import logging
from typing import Optional

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_init

from app.config import get_settings
from app.database import SessionLocal
from app.logging_config import setup_logging
from app.services.notification_service import NotificationService
from app.services.push_service import validate_push_settings

settings = get_settings()
logger = logging.getLogger(__name__)

celery_app = Celery("liftpulse", broker=settings.celery_broker_url)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)

# Schedule configuration
celery_app.conf.beat_schedule = {
    # Polling pass: picks up users whose local delivery window is due
    "notification-poll": {
        "task": "notifications.run_pass",
        "schedule": crontab(minute=f"*/{settings.notification_poll_minutes}"),
    },
    # Fixed daily pass
    "notification-daily": {
        "task": "notifications.run_pass",
        "schedule": crontab(hour=settings.notification_daily_hour_utc, minute=0),
    },
}


@worker_init.connect
def configure_worker(**kwargs):
    setup_logging()
    validate_push_settings(settings)


@celery_app.task(name="notifications.run_pass")
def run_notification_pass(force: bool = False) -> Optional[dict]:
    """One evaluation pass. Errors are logged so the next beat still runs."""
    db = SessionLocal()
    try:
        summary = NotificationService(db).process_notifications(force=force)
        return summary.model_dump(mode="json")
    except Exception:
        logger.exception("Notification pass failed")
        db.rollback()
        return None
    finally:
        db.close()
