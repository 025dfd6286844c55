"""Exercise catalog model."""

from sqlalchemy import Column, String

from app.database import Base


class Exercise(Base):
    """Catalog entry resolving an exercise to its primary muscle group."""

    __tablename__ = "exercises"

    id = Column(String(100), primary_key=True)
    name = Column(String(255), nullable=False)
    primary_muscle_group = Column(String(50), nullable=True)  # chest, back, legs, ...
    equipment = Column(String(50), nullable=True)  # barbell, dumbbell, bodyweight, ...

    def __repr__(self):
        return f"<Exercise {self.id} ({self.primary_muscle_group})>"
