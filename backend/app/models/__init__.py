"""Database models package."""

from app.models.user import User, DEFAULT_NOTIFICATION_PREFERENCES
from app.models.exercise import Exercise
from app.models.workout import WorkoutSession, WorkoutSet, AUTO_INACTIVITY
from app.models.notification_event import NotificationEvent
from app.models.social import Squad, SquadMember, WorkoutShare, WorkoutReaction

__all__ = [
    "User",
    "DEFAULT_NOTIFICATION_PREFERENCES",
    "Exercise",
    "WorkoutSession",
    "WorkoutSet",
    "AUTO_INACTIVITY",
    "NotificationEvent",
    "Squad",
    "SquadMember",
    "WorkoutShare",
    "WorkoutReaction",
]
