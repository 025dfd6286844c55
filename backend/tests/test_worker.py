from datetime import datetime
from unittest.mock import patch

from celery.schedules import crontab

from app.models import Exercise
from app.schemas import PassSummary
from app.services.exercise_catalog import load_catalog, seed_exercise_catalog
from app.worker import celery_app, run_notification_pass


def test_beat_schedule_runs_poll_and_daily_pass():
    schedule = celery_app.conf.beat_schedule

    assert schedule["notification-poll"]["task"] == "notifications.run_pass"
    assert schedule["notification-poll"]["schedule"] == crontab(minute="*/15")
    assert schedule["notification-daily"]["schedule"] == crontab(hour=15, minute=0)


def test_run_pass_returns_summary():
    summary = PassSummary(started_at=datetime(2026, 3, 18, 20, 0), forced=True, users_evaluated=3)

    with patch("app.worker.NotificationService") as service_cls:
        service_cls.return_value.process_notifications.return_value = summary
        result = run_notification_pass(force=True)

    service_cls.return_value.process_notifications.assert_called_once_with(force=True)
    assert result["users_evaluated"] == 3
    assert result["started_at"] == "2026-03-18T20:00:00"


def test_run_pass_swallows_failures():
    with patch("app.worker.NotificationService") as service_cls:
        service_cls.return_value.process_notifications.side_effect = RuntimeError("broker down")
        assert run_notification_pass() is None


def test_catalog_seeding_is_idempotent(db):
    entries = load_catalog()

    assert seed_exercise_catalog(db) == len(entries)
    assert seed_exercise_catalog(db) == 0
    assert db.query(Exercise).count() == len(entries)
    assert len({e["id"] for e in entries}) == len(entries)
