"""Training volume and fatigue service - per-muscle tonnage vs a 4-week baseline."""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.exceptions import translate_data_errors
from app.models import Exercise, WorkoutSession, WorkoutSet
from app.schemas import FatigueResult, FatigueTotals, MuscleFatigue, RecentWorkout
from app.services.stats import clamp, round_half_up
from app.timeutils import utc_now


BODYWEIGHT_FALLBACK_LBS = 100
RECENT_WINDOW_DAYS = 7
BASELINE_WEEKS = 4
NO_BASELINE_FATIGUE_SCORE = 50

TRACKED_MUSCLES = [
    "chest",
    "back",
    "shoulders",
    "biceps",
    "triceps",
    "legs",
    "glutes",
    "core",
]

STATUS_COLORS = {
    "under-trained": "green",
    "optimal": "blue",
    "moderate-fatigue": "yellow",
    "high-fatigue": "red",
    "no-data": "gray",
}

STATUS_ORDER = {
    "high-fatigue": 0,
    "moderate-fatigue": 1,
    "optimal": 2,
    "under-trained": 3,
    "no-data": 4,
}


@dataclass
class SetVolume:
    """One set resolved to its muscle group and tonnage."""
    session_id: int
    finished_at: datetime
    muscle_group: str
    volume: float


def set_volume(
    actual_reps: Optional[int],
    actual_weight: Optional[float],
    target_reps: Optional[int] = None,
    target_weight: Optional[float] = None,
    equipment: Optional[str] = None,
) -> float:
    """Tonnage of a set: reps x weight, with a fixed mass for bodyweight work."""
    reps = actual_reps if actual_reps is not None else target_reps
    if reps is None:
        reps = 0

    if actual_weight is not None:
        weight = actual_weight
    elif target_weight is not None:
        weight = target_weight
    elif (equipment or "bodyweight") == "bodyweight":
        weight = BODYWEIGHT_FALLBACK_LBS
    else:
        weight = 0

    return float(reps) * float(weight)


def fatigue_score(recent_volume: float, baseline_weekly: Optional[float]) -> int:
    """100 x recent / baseline; a missing baseline is treated as fresh (50)."""
    if not baseline_weekly or baseline_weekly <= 0:
        return NO_BASELINE_FATIGUE_SCORE
    return round_half_up(100 * recent_volume / baseline_weekly)


def status_from_score(score: float, has_data: bool) -> str:
    if not has_data:
        return "no-data"
    if score < 70:
        return "under-trained"
    if score < 110:
        return "optimal"
    if score < 130:
        return "moderate-fatigue"
    return "high-fatigue"


def sort_muscles(items: List[MuscleFatigue]) -> List[MuscleFatigue]:
    """Most fatigued first; under-trained muscles lowest score first."""
    def key(item: MuscleFatigue):
        score = item.fatigue_score if item.status == "under-trained" else -item.fatigue_score
        return (STATUS_ORDER[item.status], score)

    return sorted(items, key=key)


class MetricsService:
    """Service for volume aggregation, fatigue scoring and workout history."""

    def __init__(self, db: Session):
        self.db = db

    @translate_data_errors
    def get_set_volumes(self, user_id: int, start: datetime, end: datetime) -> List[SetVolume]:
        """Sets from counted sessions finished in [start, end), with tonnage."""
        rows = (
            self.db.query(
                WorkoutSet.session_id,
                WorkoutSession.finished_at,
                WorkoutSet.actual_reps,
                WorkoutSet.actual_weight,
                WorkoutSet.target_reps,
                WorkoutSet.target_weight,
                Exercise.primary_muscle_group,
                Exercise.equipment,
            )
            .join(WorkoutSession, WorkoutSession.id == WorkoutSet.session_id)
            .outerjoin(Exercise, Exercise.id == WorkoutSet.exercise_id)
            .filter(
                WorkoutSession.user_id == user_id,
                *WorkoutSession.counts_for_analytics(),
                WorkoutSession.finished_at >= start,
                WorkoutSession.finished_at < end,
            )
            .all()
        )

        return [
            SetVolume(
                session_id=row.session_id,
                finished_at=row.finished_at,
                muscle_group=(row.primary_muscle_group or "other").lower(),
                volume=set_volume(
                    row.actual_reps,
                    row.actual_weight,
                    row.target_reps,
                    row.target_weight,
                    row.equipment,
                ),
            )
            for row in rows
        ]

    def volume_by_muscle(self, user_id: int, start: datetime, end: datetime) -> Dict[str, float]:
        """Total tonnage per muscle group over [start, end)."""
        volumes: Dict[str, float] = defaultdict(float)
        for item in self.get_set_volumes(user_id, start, end):
            volumes[item.muscle_group] += item.volume
        return dict(volumes)

    def get_fatigue_scores(self, user_id: int, now: Optional[datetime] = None) -> FatigueResult:
        """
        Compute per-muscle fatigue for the last 7 days.

        Windows:
        - recent: [now - 7d, now)
        - baseline: [now - 35d, now - 7d), expressed as a weekly average

        fatigue_score = 100 x recent / baseline_weekly, or 50 with no baseline.
        """
        now = now or utc_now()
        recent_start = now - timedelta(days=RECENT_WINDOW_DAYS)
        baseline_start = recent_start - timedelta(weeks=BASELINE_WEEKS)

        set_volumes = self.get_set_volumes(user_id, baseline_start, now)

        recent: Dict[str, float] = defaultdict(float)
        baseline: Dict[str, float] = defaultdict(float)
        for item in set_volumes:
            if item.finished_at >= recent_start:
                recent[item.muscle_group] += item.volume
            else:
                baseline[item.muscle_group] += item.volume

        last_sessions = self._last_session_stats(set_volumes)

        muscles = list(TRACKED_MUSCLES)
        for name in sorted(set(recent) | set(baseline)):
            if name not in muscles:
                muscles.append(name)

        per_muscle: List[MuscleFatigue] = []
        recent_total = 0.0
        baseline_total = 0.0

        for muscle in muscles:
            recent_volume = recent.get(muscle, 0.0)
            baseline_weekly = baseline.get(muscle, 0.0) / BASELINE_WEEKS
            baseline_missing = baseline_weekly == 0
            has_data = recent_volume > 0 or not baseline_missing

            score = fatigue_score(recent_volume, baseline_weekly)
            status = status_from_score(score, has_data)
            last = last_sessions.get(muscle)

            per_muscle.append(
                MuscleFatigue(
                    muscle_group=muscle,
                    last_7_days_volume=recent_volume,
                    baseline_volume=None if baseline_missing else baseline_weekly,
                    fatigue_score=score,
                    status=status,
                    color=STATUS_COLORS[status],
                    fatigued=status == "high-fatigue",
                    under_trained=status == "under-trained" and score > 0,
                    baseline_missing=baseline_missing,
                    last_trained_at=last["finished_at"] if last else None,
                    last_session_sets=last["sets"] if last else 0,
                    last_session_volume=last["volume"] if last else 0,
                )
            )
            recent_total += recent_volume
            baseline_total += baseline_weekly

        total_baseline = baseline_total if baseline_total > 0 else None
        total_score = fatigue_score(recent_total, total_baseline)

        return FatigueResult(
            generated_at=now,
            window_days=RECENT_WINDOW_DAYS,
            baseline_weeks=BASELINE_WEEKS,
            per_muscle=sort_muscles(per_muscle),
            deload_week_detected=(
                total_baseline is not None and recent_total < total_baseline * 0.5
            ),
            readiness_score=round_half_up(clamp(150 - total_score, 0, 100)),
            fresh_muscles=[
                m.muscle_group
                for m in per_muscle
                if m.status == "under-trained" or m.fatigue_score <= 90
            ],
            last_workout_at=self.get_last_workout_at(user_id),
            totals=FatigueTotals(
                last_7_days_volume=recent_total,
                baseline_volume=total_baseline,
                fatigue_score=total_score,
            ),
        )

    @staticmethod
    def _last_session_stats(set_volumes: List[SetVolume]) -> Dict[str, dict]:
        """Sets and tonnage from the most recent session that trained each muscle."""
        latest: Dict[str, dict] = {}
        for item in sorted(set_volumes, key=lambda s: (s.finished_at, s.session_id), reverse=True):
            entry = latest.get(item.muscle_group)
            if entry is None:
                latest[item.muscle_group] = {
                    "session_id": item.session_id,
                    "finished_at": item.finished_at,
                    "sets": 1,
                    "volume": item.volume,
                }
            elif entry["session_id"] == item.session_id:
                entry["sets"] += 1
                entry["volume"] += item.volume
        return latest

    # ============== Workout history ==============

    @translate_data_errors
    def get_last_workout_at(self, user_id: int) -> Optional[datetime]:
        session = (
            self.db.query(WorkoutSession.finished_at)
            .filter(WorkoutSession.user_id == user_id, *WorkoutSession.counts_for_analytics())
            .order_by(WorkoutSession.finished_at.desc())
            .first()
        )
        return session.finished_at if session else None

    @translate_data_errors
    def count_workouts_between(self, user_id: int, start: datetime, end: datetime) -> int:
        """Counted sessions finished in [start, end)."""
        return (
            self.db.query(WorkoutSession)
            .filter(
                WorkoutSession.user_id == user_id,
                *WorkoutSession.counts_for_analytics(),
                WorkoutSession.finished_at >= start,
                WorkoutSession.finished_at < end,
            )
            .count()
        )

    @translate_data_errors
    def get_finished_times(self, user_id: int, since: Optional[datetime] = None) -> List[datetime]:
        """Finish timestamps of counted sessions, newest first."""
        query = self.db.query(WorkoutSession.finished_at).filter(
            WorkoutSession.user_id == user_id, *WorkoutSession.counts_for_analytics()
        )
        if since is not None:
            query = query.filter(WorkoutSession.finished_at >= since)
        return [row.finished_at for row in query.order_by(WorkoutSession.finished_at.desc()).all()]

    @translate_data_errors
    def get_recent_workouts(self, user_id: int, limit: int = 5) -> List[RecentWorkout]:
        """Latest finished workouts with their split labels, newest first."""
        sessions = (
            self.db.query(WorkoutSession)
            .filter(WorkoutSession.user_id == user_id, *WorkoutSession.counts_for_analytics())
            .order_by(WorkoutSession.finished_at.desc())
            .limit(limit)
            .all()
        )
        return [
            RecentWorkout(
                session_id=s.id,
                template_name=s.template_name,
                split_type=s.split_type,
                completed_at=s.finished_at,
            )
            for s in sessions
        ]
