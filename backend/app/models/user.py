"""User model: profile fields read by the engine plus the schedule it owns."""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.orm import relationship

from app.database import Base
from app.timeutils import utc_now


DEFAULT_NOTIFICATION_PREFERENCES = {
    "goal_reminders": True,
    "inactivity_nudges": True,
    "squad_activity": True,
    "weekly_goal_met": True,
    "quiet_hours_start": 22,
    "quiet_hours_end": 8,
    "max_notifications_per_week": 5,
}


class User(Base):
    """User account with training goal and notification settings."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=True)
    name = Column(String(255), nullable=True)

    # Training profile
    weekly_goal = Column(Integer, default=4)
    preferred_split = Column(String(50), nullable=True)  # ppl, upper_lower, full_body, custom, ...

    # Push delivery
    push_token = Column(String(255), nullable=True)
    notification_preferences = Column(JSON, default=dict)

    # Schedule (owned by the notification engine)
    timezone_offset_minutes = Column(Integer, nullable=True)  # minutes behind UTC
    next_notification_at = Column(DateTime, nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    sessions = relationship("WorkoutSession", back_populates="user", cascade="all, delete-orphan")
    notification_events = relationship(
        "NotificationEvent", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def preferences(self) -> dict:
        """Stored preferences merged over the defaults."""
        merged = dict(DEFAULT_NOTIFICATION_PREFERENCES)
        merged.update(self.notification_preferences or {})
        return merged

    def __repr__(self):
        return f"<User {self.id} goal={self.weekly_goal} tz={self.timezone_offset_minutes}>"
