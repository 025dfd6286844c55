"""Training analytics API router."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_current_user
from app.models import User
from app.schemas import FatigueResult, NextWorkoutRecommendation, ReadinessResponse, RecapSlice
from app.services.metrics_service import MetricsService
from app.services.readiness_service import get_muscle_readiness
from app.services.recap_service import RecapService
from app.services.recommendation_service import recommend_next_workout
from app.timeutils import utc_now

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/fatigue", response_model=FatigueResult)
def get_fatigue(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Per-muscle fatigue for the last 7 days vs the 4-week baseline."""
    return MetricsService(db).get_fatigue_scores(user.id)


@router.get("/readiness", response_model=ReadinessResponse)
def get_readiness(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    now = utc_now()
    fatigue = MetricsService(db).get_fatigue_scores(user.id, now)
    return get_muscle_readiness(fatigue, now)


@router.get("/recap", response_model=RecapSlice)
def get_recap(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Session quality, streaks and highlights over the last 8 weeks."""
    return RecapService(db).get_recap_slice(user)


@router.get("/next-workout", response_model=NextWorkoutRecommendation)
def get_next_workout(
    session_duration: Optional[int] = Query(None, ge=5, le=240),
    avoid: Optional[List[str]] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Suggest the next split from cycle position, recent history and fatigue."""
    now = utc_now()
    metrics = MetricsService(db)
    return recommend_next_workout(
        user.preferred_split,
        metrics.get_recent_workouts(user.id),
        metrics.get_fatigue_scores(user.id, now),
        session_duration=session_duration,
        avoid_muscles=avoid,
        now=now,
    )
