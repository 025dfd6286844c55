"""Notification event log (append-only)."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship

from app.database import Base
from app.timeutils import utc_now


class NotificationEvent(Base):
    """One notification decision. Only the read, clicked and dismissed timestamps change later."""

    __tablename__ = "notification_events"

    id = Column(String(12), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    notification_type = Column(String(50), nullable=False, index=True)
    # Types: "goal_met", "streak_risk", "goal_risk", "goal_missed", "inactivity",
    #        "squad_reaction", "squad_goal_met", "workout_comment",
    #        "friend_request", "friend_acceptance", "test"
    trigger_reason = Column(String(255), nullable=True)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSON, default=dict)

    sent_at = Column(DateTime, default=utc_now, index=True)
    delivery_status = Column(String(20), nullable=False)  # sent, silent, failed, no_token, inbox_only
    error_message = Column(String(500), nullable=True)

    read_at = Column(DateTime, nullable=True)
    clicked_at = Column(DateTime, nullable=True)
    dismissed_at = Column(DateTime, nullable=True)  # hidden from the inbox, still counted

    # Relationships
    user = relationship("User", back_populates="notification_events")

    def __repr__(self):
        return f"<NotificationEvent {self.notification_type} -> {self.user_id} ({self.delivery_status})>"
