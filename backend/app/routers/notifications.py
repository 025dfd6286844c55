"""Notifications API router: push token, schedule, preferences, inbox and admin pass."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.dependencies import get_current_user, require_admin
from app.models import NotificationEvent, User
from app.schemas import (
    InboxResponse,
    NotificationEventResponse,
    NotificationPreferences,
    NotificationPreferencesUpdate,
    PassSummary,
    PushTokenRegistration,
    ScheduleResponse,
    TimezoneUpdate,
)
from app.services.notification_service import NotificationService
from app.services.push_service import get_push_provider
from app.timeutils import compute_next_notification_at, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

INBOX_WINDOW_DAYS = 30


def _next_slot(user: User, tz_offset_minutes: int):
    settings = get_settings()
    return compute_next_notification_at(
        user.id,
        tz_offset_minutes,
        local_hour=settings.notification_local_hour,
        window_minutes=settings.notification_window_minutes,
    )


def _get_event(db: Session, user: User, notification_id: str) -> NotificationEvent:
    event = (
        db.query(NotificationEvent)
        .filter(
            NotificationEvent.id == notification_id,
            NotificationEvent.user_id == user.id,
            NotificationEvent.dismissed_at.is_(None),
        )
        .first()
    )
    if not event:
        raise HTTPException(status_code=404, detail="Notification not found")
    return event


# ============== Token & schedule ==============

@router.post("/register-token", response_model=ScheduleResponse)
def register_token(
    registration: PushTokenRegistration,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Store the device push token and, with an offset, seed the delivery schedule."""
    user.push_token = registration.push_token
    if registration.tz_offset_minutes is not None:
        user.timezone_offset_minutes = registration.tz_offset_minutes
        user.next_notification_at = _next_slot(user, registration.tz_offset_minutes)

    db.commit()
    db.refresh(user)
    return ScheduleResponse(
        timezone_offset_minutes=user.timezone_offset_minutes,
        next_notification_at=user.next_notification_at,
    )


@router.post("/timezone", response_model=ScheduleResponse)
def update_timezone(
    update: TimezoneUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Update the offset (minutes behind UTC) and move the next slot accordingly."""
    user.timezone_offset_minutes = update.tz_offset_minutes
    user.next_notification_at = _next_slot(user, update.tz_offset_minutes)
    db.commit()
    db.refresh(user)
    return ScheduleResponse(
        timezone_offset_minutes=user.timezone_offset_minutes,
        next_notification_at=user.next_notification_at,
    )


# ============== Preferences ==============

@router.get("/preferences", response_model=NotificationPreferences)
def get_preferences(user: User = Depends(get_current_user)):
    return NotificationPreferences(**user.preferences)


@router.put("/preferences", response_model=NotificationPreferences)
def update_preferences(
    update: NotificationPreferencesUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Merge a partial update into the stored preferences."""
    merged = dict(user.notification_preferences or {})
    merged.update(update.model_dump(exclude_none=True))
    user.notification_preferences = merged
    db.commit()
    db.refresh(user)
    return NotificationPreferences(**user.preferences)


# ============== Inbox ==============

@router.get("/inbox", response_model=InboxResponse)
def get_inbox(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Notifications from the last 30 days, newest first."""
    since = utc_now() - timedelta(days=INBOX_WINDOW_DAYS)
    base = db.query(NotificationEvent).filter(
        NotificationEvent.user_id == user.id,
        NotificationEvent.sent_at >= since,
        NotificationEvent.dismissed_at.is_(None),
    )

    events = (
        base.order_by(NotificationEvent.sent_at.desc(), NotificationEvent.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    unread_count = base.filter(NotificationEvent.read_at.is_(None)).count()

    return InboxResponse(
        notifications=[NotificationEventResponse.model_validate(e) for e in events],
        unread_count=unread_count,
        has_more=len(events) == limit,
    )


@router.post("/inbox/mark-all-read")
def mark_all_read(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    updated = (
        db.query(NotificationEvent)
        .filter(
            NotificationEvent.user_id == user.id,
            NotificationEvent.read_at.is_(None),
            NotificationEvent.dismissed_at.is_(None),
        )
        .update({NotificationEvent.read_at: utc_now()}, synchronize_session=False)
    )
    db.commit()
    return {"success": True, "updated": updated}


@router.post("/inbox/{notification_id}/read")
def mark_read(
    notification_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    event = _get_event(db, user, notification_id)
    if event.read_at is not None:
        raise HTTPException(status_code=404, detail="Notification not found or already read")

    event.read_at = utc_now()
    db.commit()
    return {"success": True}


@router.post("/inbox/{notification_id}/clicked")
def mark_clicked(
    notification_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Record a tap; a clicked notification is also read."""
    event = _get_event(db, user, notification_id)
    now = utc_now()
    event.clicked_at = now
    if event.read_at is None:
        event.read_at = now
    db.commit()
    return {"success": True}


@router.delete("/inbox/{notification_id}")
def delete_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Dismiss from the inbox. The event stays in the log for dedup and the weekly cap."""
    event = _get_event(db, user, notification_id)
    event.dismissed_at = utc_now()
    db.commit()
    return {"success": True}


@router.post("/send-test")
def send_test_notification(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    push_provider=Depends(get_push_provider),
):
    """Drop a test entry into the caller's inbox without pushing it."""
    event = NotificationService(db, push_provider).log_test_notification(user)
    return {
        "success": True,
        "notification_id": event.id,
        "message": "Test notification sent to inbox",
    }


# ============== Admin ==============

@router.post("/admin/trigger-job", response_model=PassSummary, dependencies=[Depends(require_admin)])
def trigger_notification_job(
    db: Session = Depends(get_db),
    push_provider=Depends(get_push_provider),
):
    """Run one evaluation pass now, ignoring due times."""
    logger.info("Manually triggering notification pass")
    return NotificationService(db, push_provider).process_notifications(force=True)
