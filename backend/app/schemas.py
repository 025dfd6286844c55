"""Pydantic schemas for API request/response validation."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


# ============== Fatigue Schemas ==============

class MuscleFatigue(BaseModel):
    """Baseline-relative load for one muscle group."""
    muscle_group: str
    last_7_days_volume: float = 0
    baseline_volume: Optional[float] = None  # weekly average of the 4-week baseline
    fatigue_score: int = 50  # ~100 = baseline
    status: str = "no-data"  # under-trained, optimal, moderate-fatigue, high-fatigue, no-data
    color: str = "gray"
    fatigued: bool = False
    under_trained: bool = False
    baseline_missing: bool = True

    # Inputs for the readiness estimator
    recovery_load: Optional[float] = None
    last_trained_at: Optional[datetime] = None
    last_session_sets: int = 0
    last_session_volume: float = 0


class FatigueTotals(BaseModel):
    last_7_days_volume: float
    baseline_volume: Optional[float] = None
    fatigue_score: int


class FatigueResult(BaseModel):
    """Per-muscle fatigue scores for the last 7 days vs the 4-week baseline."""
    generated_at: datetime
    window_days: int = 7
    baseline_weeks: int = 4
    per_muscle: List[MuscleFatigue]
    deload_week_detected: bool
    readiness_score: int
    fresh_muscles: List[str]
    last_workout_at: Optional[datetime] = None
    totals: FatigueTotals


class RecentWorkout(BaseModel):
    session_id: int
    template_name: Optional[str] = None
    split_type: Optional[str] = None
    completed_at: datetime


# ============== Readiness Schemas ==============

class MuscleReadiness(BaseModel):
    muscle_group: str
    readiness: int = Field(..., ge=0, le=100)
    fatigue_score: int
    band: str  # blocked, high-fatigue, moderate, recovering, fresh


class ReadinessResponse(BaseModel):
    generated_at: datetime
    muscles: List[MuscleReadiness]


# ============== Recap Schemas ==============

class RecapSessionQuality(BaseModel):
    session_id: int
    finished_at: str  # local date key
    template_name: Optional[str] = None
    quality_score: int  # 35-100
    status: str  # peak, solid, dip
    total_volume: float
    avg_rpe: Optional[float] = None


class RecapHighlight(BaseModel):
    id: str
    type: str  # pr, volume_high, streak, dip
    title: str
    subtitle: Optional[str] = None
    date: str
    tone: str  # positive, warning, info
    value: Optional[float] = None


class RecapStreak(BaseModel):
    current: int = 0
    best: int = 0
    last_workout_at: Optional[str] = None


class RecapQualityDip(BaseModel):
    consecutive: int
    since: str
    suggestion: str
    last_score: int


class RecapWinBack(BaseModel):
    headline: str
    message: str
    since: Optional[str] = None


class RecapSlice(BaseModel):
    """Rolling 8-week summary of session quality, streaks and highlights."""
    generated_at: datetime
    lookback_weeks: int
    baseline_volume: Optional[float] = None
    baseline_rpe: Optional[float] = None
    streak: RecapStreak
    quality: List[RecapSessionQuality]
    highlights: List[RecapHighlight]
    quality_dip: Optional[RecapQualityDip] = None
    win_back: Optional[RecapWinBack] = None


# ============== Recommendation Schemas ==============

class WorkoutCandidate(BaseModel):
    split_key: str
    label: str
    tags: List[str] = []
    reason: str
    score: float


class NextWorkoutRecommendation(BaseModel):
    preferred_split: str
    selected: WorkoutCandidate
    alternates: List[WorkoutCandidate]
    rest_recommended: bool


# ============== Notification Schemas ==============

class NotificationPreferences(BaseModel):
    goal_reminders: bool = True
    inactivity_nudges: bool = True
    squad_activity: bool = True
    weekly_goal_met: bool = True
    quiet_hours_start: int = Field(22, ge=0, le=23)
    quiet_hours_end: int = Field(8, ge=0, le=23)
    max_notifications_per_week: int = Field(5, ge=0, le=20)


class NotificationPreferencesUpdate(BaseModel):
    """Partial update; unknown keys and out-of-range values are rejected."""
    goal_reminders: Optional[bool] = None
    inactivity_nudges: Optional[bool] = None
    squad_activity: Optional[bool] = None
    weekly_goal_met: Optional[bool] = None
    quiet_hours_start: Optional[int] = Field(None, ge=0, le=23)
    quiet_hours_end: Optional[int] = Field(None, ge=0, le=23)
    max_notifications_per_week: Optional[int] = Field(None, ge=0, le=20)

    class Config:
        extra = "forbid"


class PushTokenRegistration(BaseModel):
    push_token: str = Field(..., min_length=1)
    tz_offset_minutes: Optional[int] = Field(None, ge=-840, le=840)

    class Config:
        extra = "forbid"


class TimezoneUpdate(BaseModel):
    tz_offset_minutes: int = Field(..., ge=-840, le=840)

    class Config:
        extra = "forbid"


class NotificationEventResponse(BaseModel):
    id: str
    notification_type: str
    trigger_reason: Optional[str] = None
    title: str
    body: str
    data: Dict[str, Any] = {}
    sent_at: datetime
    delivery_status: str
    read_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InboxResponse(BaseModel):
    notifications: List[NotificationEventResponse]
    unread_count: int
    has_more: bool


class ScheduleResponse(BaseModel):
    success: bool = True
    timezone_offset_minutes: Optional[int] = None
    next_notification_at: Optional[datetime] = None


class PassSummary(BaseModel):
    """Outcome of one notification evaluation pass."""
    started_at: datetime
    forced: bool = False
    users_considered: int = 0
    users_evaluated: int = 0
    users_seeded: int = 0
    events_logged: int = 0
    rule_failures: int = 0
    user_failures: int = 0
