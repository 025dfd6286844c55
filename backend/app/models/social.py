"""Squad and reaction models (read by the squad activity rule)."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from app.database import Base
from app.timeutils import utc_now


class Squad(Base):
    __tablename__ = "squads"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utc_now)


class SquadMember(Base):
    __tablename__ = "squad_members"

    id = Column(Integer, primary_key=True, index=True)
    squad_id = Column(Integer, ForeignKey("squads.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    joined_at = Column(DateTime, default=utc_now)


class WorkoutShare(Base):
    """A finished workout shared to the feed."""

    __tablename__ = "workout_shares"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("workout_sessions.id"), nullable=True)
    created_at = Column(DateTime, default=utc_now)


class WorkoutReaction(Base):
    """A reaction left by ``user_id`` on a share or status."""

    __tablename__ = "workout_reactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    target_type = Column(String(20), nullable=False)  # share, status
    target_id = Column(Integer, nullable=False, index=True)
    reaction_type = Column(String(20), default="emoji")  # emoji, comment
    emoji = Column(String(16), nullable=True)
    created_at = Column(DateTime, default=utc_now, index=True)
    deleted_at = Column(DateTime, nullable=True)
