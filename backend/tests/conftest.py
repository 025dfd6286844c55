import os
import sys
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

# Add backend to path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

# Settings are cached on first import, so the test environment goes in first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EXPO_REQUIRE_ACCESS_TOKEN"] = "false"
os.environ["EXPO_ACCESS_TOKEN"] = ""
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["DEBUG"] = "false"

from app.database import Base, SessionLocal, engine
from app.models import Exercise, User, WorkoutSession, WorkoutSet
from app.services.push_service import PushTicket
from app.services.recap_service import recap_cache

PUSH_TOKEN = "ExponentPushToken[test-device]"

# Wednesday
NOW = datetime(2026, 3, 18, 20, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_recap_cache():
    recap_cache.clear()
    yield
    recap_cache.clear()


@pytest.fixture
def catalog(db):
    entries = [
        Exercise(id="bench", name="Bench Press", primary_muscle_group="chest", equipment="barbell"),
        Exercise(id="row", name="Barbell Row", primary_muscle_group="upper back", equipment="barbell"),
        Exercise(id="squat", name="Back Squat", primary_muscle_group="legs", equipment="barbell"),
        Exercise(id="pushup", name="Push-Up", primary_muscle_group="chest", equipment="bodyweight"),
    ]
    db.add_all(entries)
    db.commit()
    return {e.id: e for e in entries}


@pytest.fixture
def make_user(db):
    def _make_user(**kwargs):
        values = {
            "name": "Alex",
            "weekly_goal": 4,
            "push_token": PUSH_TOKEN,
            "timezone_offset_minutes": 0,
            "next_notification_at": NOW - timedelta(minutes=1),
        }
        values.update(kwargs)
        user = User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def add_workout(db, catalog):
    """Add a finished session; ``sets`` is a list of (exercise_id, reps, weight[, rpe])."""

    def _add_workout(user, finished_at, sets=None, ended_reason=None, template_name=None, split_type=None):
        session = WorkoutSession(
            user_id=user.id,
            template_name=template_name,
            split_type=split_type,
            started_at=finished_at - timedelta(hours=1) if finished_at else None,
            finished_at=finished_at,
            ended_reason=ended_reason,
        )
        db.add(session)
        db.flush()
        for index, entry in enumerate(sets or [("bench", 10, 100)]):
            exercise_id, reps, weight = entry[:3]
            db.add(
                WorkoutSet(
                    session_id=session.id,
                    exercise_id=exercise_id,
                    set_index=index,
                    actual_reps=reps,
                    actual_weight=weight,
                    rpe=entry[3] if len(entry) > 3 else None,
                )
            )
        db.commit()
        db.refresh(session)
        return session

    return _add_workout


@pytest.fixture
def push_provider():
    provider = MagicMock()
    provider.send_one.return_value = PushTicket(status="ok", id="ticket-1")
    return provider
