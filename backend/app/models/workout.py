"""Workout session and set models."""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, or_
from sqlalchemy.orm import relationship

from app.database import Base
from app.timeutils import utc_now


AUTO_INACTIVITY = "auto_inactivity"


class WorkoutSession(Base):
    """A logged workout. ``finished_at`` is set when the user completes it."""

    __tablename__ = "workout_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    template_name = Column(String(255), nullable=True)
    split_type = Column(String(50), nullable=True)  # push, pull, legs, upper, ...

    started_at = Column(DateTime, default=utc_now)
    finished_at = Column(DateTime, nullable=True, index=True)
    ended_reason = Column(String(50), nullable=True)  # completed, auto_inactivity, ...

    # Relationships
    user = relationship("User", back_populates="sessions")
    sets = relationship("WorkoutSet", back_populates="session", cascade="all, delete-orphan")

    @classmethod
    def counts_for_analytics(cls):
        """Finished sessions that were not closed by the inactivity timeout."""
        return (
            cls.finished_at.isnot(None),
            or_(cls.ended_reason.is_(None), cls.ended_reason != AUTO_INACTIVITY),
        )

    def __repr__(self):
        return f"<WorkoutSession {self.id} user={self.user_id} finished={self.finished_at}>"


class WorkoutSet(Base):
    """A single set; immutable once its session is finished."""

    __tablename__ = "workout_sets"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("workout_sessions.id"), nullable=False, index=True)
    exercise_id = Column(String(100), ForeignKey("exercises.id"), nullable=True, index=True)
    exercise_name = Column(String(255), nullable=True)
    set_index = Column(Integer, default=0)

    target_reps = Column(Integer, nullable=True)
    target_weight = Column(Float, nullable=True)  # lbs
    actual_reps = Column(Integer, nullable=True)
    actual_weight = Column(Float, nullable=True)  # lbs
    rpe = Column(Float, nullable=True)  # 1-10

    # Relationships
    session = relationship("WorkoutSession", back_populates="sets")

    def __repr__(self):
        return f"<WorkoutSet {self.exercise_id} {self.actual_reps}x{self.actual_weight}>"
