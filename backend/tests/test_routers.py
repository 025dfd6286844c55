from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.exceptions import TransientDataError
from app.main import app
from app.models import Exercise, NotificationEvent
from app.services.notification_service import NotificationService, generate_notification_id
from app.services.push_service import get_push_provider
from app.timeutils import compute_next_notification_at, utc_now

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


@pytest.fixture
def client(db, push_provider):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_push_provider] = lambda: push_provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def user(make_user):
    return make_user(next_notification_at=None)


def auth(user):
    return {"X-User-Id": str(user.id)}


def add_event(db, user, sent_at=None, read_at=None, notification_type="inactivity"):
    event = NotificationEvent(
        id=generate_notification_id(),
        user_id=user.id,
        notification_type=notification_type,
        title="We miss you! 💪",
        body="It's been 6 days since your last workout.",
        data={"days_since_last_workout": 6},
        sent_at=sent_at or utc_now() - timedelta(hours=1),
        delivery_status="sent",
        read_at=read_at,
    )
    db.add(event)
    db.commit()
    return event


# ============== App ==============

def test_health_and_catalog_seeded_on_startup(client, db):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    assert db.query(Exercise).filter(Exercise.id == "barbell-bench-press").count() == 1


def test_user_header_required(client, user):
    assert client.get("/api/v1/notifications/preferences").status_code == 422
    assert client.get("/api/v1/notifications/preferences", headers={"X-User-Id": "999"}).status_code == 404


def test_data_errors_map_to_503(client, user):
    with patch(
        "app.routers.analytics.MetricsService.get_fatigue_scores",
        side_effect=TransientDataError("statement timeout"),
    ):
        response = client.get("/api/v1/analytics/fatigue", headers=auth(user))

    assert response.status_code == 503


# ============== Preferences ==============

def test_preferences_default_and_partial_update(client, user):
    response = client.get("/api/v1/notifications/preferences", headers=auth(user))
    assert response.json()["quiet_hours_start"] == 22

    response = client.put(
        "/api/v1/notifications/preferences",
        headers=auth(user),
        json={"quiet_hours_start": 23, "squad_activity": False},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["quiet_hours_start"] == 23
    assert body["squad_activity"] is False
    assert body["quiet_hours_end"] == 8

    response = client.put(
        "/api/v1/notifications/preferences", headers=auth(user), json={"max_notifications_per_week": 3}
    )
    body = response.json()
    assert body["max_notifications_per_week"] == 3
    assert body["quiet_hours_start"] == 23


@pytest.mark.parametrize(
    "payload",
    [{"quiet_hours_start": 24}, {"max_notifications_per_week": -1}, {"unknown_key": True}],
)
def test_preferences_rejects_invalid_values(client, user, payload):
    response = client.put("/api/v1/notifications/preferences", headers=auth(user), json=payload)
    assert response.status_code == 422


# ============== Token & schedule ==============

def test_register_token_seeds_schedule(client, db, user):
    response = client.post(
        "/api/v1/notifications/register-token",
        headers=auth(user),
        json={"push_token": "ExponentPushToken[abc]", "tz_offset_minutes": 300},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["timezone_offset_minutes"] == 300
    db.refresh(user)
    assert user.push_token == "ExponentPushToken[abc]"
    assert user.next_notification_at > utc_now() - timedelta(minutes=1)


def test_register_token_without_offset_keeps_schedule(client, db, user):
    response = client.post(
        "/api/v1/notifications/register-token",
        headers=auth(user),
        json={"push_token": "ExponentPushToken[abc]"},
    )

    assert response.status_code == 200
    assert response.json()["next_notification_at"] is None


def test_timezone_update_moves_slot(client, db, user):
    response = client.post("/api/v1/notifications/timezone", headers=auth(user), json={"tz_offset_minutes": -60})

    assert response.status_code == 200
    db.refresh(user)
    assert user.timezone_offset_minutes == -60
    # the slot lands at 15:xx local, i.e. 14:xx UTC
    assert user.next_notification_at.hour == 14
    assert user.next_notification_at.minute == compute_next_notification_at(user.id, -60).minute


def test_timezone_out_of_range(client, user):
    response = client.post("/api/v1/notifications/timezone", headers=auth(user), json={"tz_offset_minutes": 900})
    assert response.status_code == 422


# ============== Inbox ==============

def test_inbox_lists_recent_events_for_user(client, db, user, make_user):
    other = make_user(name="Bea")
    recent = add_event(db, user)
    older = add_event(db, user, sent_at=utc_now() - timedelta(days=3), read_at=utc_now())
    add_event(db, user, sent_at=utc_now() - timedelta(days=40))
    add_event(db, other)

    response = client.get("/api/v1/notifications/inbox", headers=auth(user))

    body = response.json()
    assert [n["id"] for n in body["notifications"]] == [recent.id, older.id]
    assert body["unread_count"] == 1
    assert body["has_more"] is False
    assert body["notifications"][0]["data"] == {"days_since_last_workout": 6}


def test_inbox_pagination(client, db, user):
    for hours in range(1, 4):
        add_event(db, user, sent_at=utc_now() - timedelta(hours=hours))

    response = client.get("/api/v1/notifications/inbox?limit=2", headers=auth(user))
    assert len(response.json()["notifications"]) == 2
    assert response.json()["has_more"] is True

    response = client.get("/api/v1/notifications/inbox?limit=2&offset=2", headers=auth(user))
    assert len(response.json()["notifications"]) == 1


def test_mark_read_once(client, db, user):
    event = add_event(db, user)
    url = f"/api/v1/notifications/inbox/{event.id}/read"

    assert client.post(url, headers=auth(user)).status_code == 200
    db.refresh(event)
    assert event.read_at is not None
    assert client.post(url, headers=auth(user)).status_code == 404


def test_clicked_marks_read(client, db, user):
    event = add_event(db, user)

    response = client.post(f"/api/v1/notifications/inbox/{event.id}/clicked", headers=auth(user))

    assert response.status_code == 200
    db.refresh(event)
    assert event.clicked_at is not None
    assert event.read_at == event.clicked_at


def test_mark_all_read(client, db, user):
    add_event(db, user)
    add_event(db, user)
    add_event(db, user, read_at=utc_now())

    response = client.post("/api/v1/notifications/inbox/mark-all-read", headers=auth(user))

    assert response.json() == {"success": True, "updated": 2}
    inbox = client.get("/api/v1/notifications/inbox", headers=auth(user)).json()
    assert inbox["unread_count"] == 0


def test_cannot_touch_other_users_events(client, db, user, make_user):
    other = make_user(name="Bea")
    event = add_event(db, other)

    assert client.post(f"/api/v1/notifications/inbox/{event.id}/read", headers=auth(user)).status_code == 404
    assert client.delete(f"/api/v1/notifications/inbox/{event.id}", headers=auth(user)).status_code == 404


def test_delete_dismisses_but_keeps_event(client, db, user):
    event = add_event(db, user)
    event_id = event.id
    url = f"/api/v1/notifications/inbox/{event_id}"

    assert client.delete(url, headers=auth(user)).status_code == 200

    db.refresh(event)
    assert event.dismissed_at is not None
    inbox = client.get("/api/v1/notifications/inbox", headers=auth(user)).json()
    assert inbox["notifications"] == []
    assert inbox["unread_count"] == 0
    assert client.delete(url, headers=auth(user)).status_code == 404
    assert client.post(f"{url}/read", headers=auth(user)).status_code == 404


def test_dismissed_event_still_dedups_and_counts(client, db, push_provider, make_user, add_workout, now):
    athlete = make_user(name="Sam")
    for day in (15, 16, 17, 18):
        add_workout(athlete, now.replace(day=day, hour=10))
    service = NotificationService(db, push_provider=push_provider)

    service.process_notifications(now=now)
    event = db.query(NotificationEvent).filter(NotificationEvent.user_id == athlete.id).one()
    assert client.delete(f"/api/v1/notifications/inbox/{event.id}", headers=auth(athlete)).status_code == 200

    service.process_notifications(force=True, now=now + timedelta(hours=1))

    assert push_provider.send_one.call_count == 1
    assert db.query(NotificationEvent).filter(NotificationEvent.user_id == athlete.id).count() == 1
    assert service.has_sent(athlete.id, "goal_met", now - timedelta(days=3))
    assert service.count_deliveries_since(athlete.id, now - timedelta(days=7)) == 1


def test_send_test_lands_in_inbox(client, db, push_provider, user):
    response = client.post("/api/v1/notifications/send-test", headers=auth(user))

    assert response.status_code == 200
    body = response.json()
    inbox = client.get("/api/v1/notifications/inbox", headers=auth(user)).json()
    assert [n["id"] for n in inbox["notifications"]] == [body["notification_id"]]
    assert inbox["notifications"][0]["notification_type"] == "test"
    push_provider.send_one.assert_not_called()


# ============== Admin ==============

def test_admin_trigger_requires_token(client, user):
    assert client.post("/api/v1/notifications/admin/trigger-job").status_code == 403
    response = client.post("/api/v1/notifications/admin/trigger-job", headers={"X-Admin-Token": "nope"})
    assert response.status_code == 403


def test_admin_trigger_runs_forced_pass(client, db, user, make_user):
    make_user(name="Bea", next_notification_at=utc_now() + timedelta(days=1))

    response = client.post("/api/v1/notifications/admin/trigger-job", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["forced"] is True
    assert body["users_considered"] == 2
    assert body["users_evaluated"] == 2
    db.refresh(user)
    assert user.next_notification_at is not None


# ============== Analytics ==============

def test_analytics_endpoints_without_history(client, user):
    fatigue = client.get("/api/v1/analytics/fatigue", headers=auth(user))
    assert fatigue.status_code == 200
    assert fatigue.json()["deload_week_detected"] is False

    readiness = client.get("/api/v1/analytics/readiness", headers=auth(user))
    assert readiness.status_code == 200
    assert all(0 <= m["readiness"] <= 100 for m in readiness.json()["muscles"])

    recap = client.get("/api/v1/analytics/recap", headers=auth(user))
    assert recap.status_code == 200
    assert recap.json()["streak"]["current"] == 0

    next_workout = client.get(
        "/api/v1/analytics/next-workout?session_duration=30&avoid=quads", headers=auth(user)
    )
    assert next_workout.status_code == 200
    body = next_workout.json()
    assert body["preferred_split"] == "full_body"
    assert body["rest_recommended"] is False


def test_next_workout_validates_duration(client, user):
    response = client.get("/api/v1/analytics/next-workout?session_duration=2", headers=auth(user))
    assert response.status_code == 422
