"""Recap service - session quality, streaks and highlights over 8 weeks."""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from app.config import get_settings
from app.exceptions import translate_data_errors
from app.models import Exercise, User, WorkoutSession, WorkoutSet
from app.schemas import (
    RecapHighlight,
    RecapQualityDip,
    RecapSessionQuality,
    RecapSlice,
    RecapStreak,
    RecapWinBack,
)
from app.services.metrics_service import set_volume
from app.services.stats import clamp, mean, median, round_half_up
from app.services.streaks import best_streak, current_streak
from app.timeutils import clamp_tz_offset_minutes, local_date, utc_now

logger = logging.getLogger(__name__)

LOOKBACK_WEEKS = 8
TARGET_RPE = 8
MAX_HIGHLIGHTS = 6
WIN_BACK_MIN_DAYS = 5


@dataclass
class SessionStats:
    """Per-session aggregates feeding the quality score."""
    session_id: int
    finished_at: datetime
    template_name: Optional[str]
    total_volume: float
    avg_rpe: Optional[float]
    set_count: int = 0


def quality_status(score: int) -> str:
    if score >= 90:
        return "peak"
    if score >= 75:
        return "solid"
    return "dip"


def compute_quality_score(
    volume: float,
    baseline_volume: Optional[float],
    avg_rpe: Optional[float],
    baseline_rpe: Optional[float],
) -> Tuple[int, str]:
    """
    Score a session against the user's own baseline.

    score = clamp((0.7 x volume_ratio + 0.3 x rpe_component) x 100 x trend, 35, 100)

    - volume_ratio: volume / baseline, clamped to [0.4, 1.6]
    - rpe_component: 1 - |rpe - 8| / 5, clamped to [0.45, 1.05] (0.75 without RPE)
    - trend: +/-10% nudge for effort above/below the baseline RPE
    """
    safe_baseline = baseline_volume if baseline_volume and baseline_volume > 0 else (volume or 1)
    volume_ratio = clamp(volume / safe_baseline, 0.4, 1.6)

    rpe_value = avg_rpe if avg_rpe is not None else baseline_rpe
    if rpe_value is None:
        rpe_component = 0.75
    else:
        rpe_component = clamp(1 - abs(rpe_value - TARGET_RPE) / 5, 0.45, 1.05)

    if baseline_rpe is None or rpe_value is None:
        rpe_trend_boost = 1.0
    else:
        rpe_trend_boost = clamp(1 + ((rpe_value - baseline_rpe) / 3) * 0.1, 0.9, 1.1)

    combined = volume_ratio * 0.7 + rpe_component * 0.3
    score = round_half_up(clamp(combined * 100 * rpe_trend_boost, 35, 100))
    return score, quality_status(score)


def build_highlights(
    quality: List[RecapSessionQuality],
    streak: RecapStreak,
    baseline_volume: Optional[float],
    quality_dip: Optional[RecapQualityDip],
    today_key: str,
) -> List[RecapHighlight]:
    highlights: List[RecapHighlight] = []

    if quality:
        best = max(quality, key=lambda q: q.quality_score)
        highlights.append(
            RecapHighlight(
                id=f"quality-{best.session_id}",
                type="pr",
                title="Standout session",
                subtitle=best.template_name or "Recent workout",
                date=best.finished_at,
                tone="positive",
                value=best.quality_score,
            )
        )

        top_volume = max(quality, key=lambda q: q.total_volume)
        if baseline_volume and top_volume.total_volume > baseline_volume * 1.15:
            highlights.append(
                RecapHighlight(
                    id=f"volume-{top_volume.session_id}",
                    type="volume_high",
                    title="Volume high",
                    subtitle=f"{round_half_up(top_volume.total_volume / 100) / 10}k lbs moved",
                    date=top_volume.finished_at,
                    tone="positive",
                    value=top_volume.total_volume,
                )
            )

    if streak.current >= 3:
        highlights.append(
            RecapHighlight(
                id=f"streak-current-{streak.current}",
                type="streak",
                title=f"{streak.current}-day streak",
                subtitle="Nice consistency, keep it steady",
                date=streak.last_workout_at or today_key,
                tone="info",
            )
        )
    elif streak.best >= 5:
        highlights.append(
            RecapHighlight(
                id=f"streak-best-{streak.best}",
                type="streak",
                title=f"Best streak: {streak.best} days",
                subtitle="You've hit this before, time to match it",
                date=streak.last_workout_at or today_key,
                tone="info",
            )
        )

    if quality_dip:
        highlights.append(
            RecapHighlight(
                id=f"dip-{quality_dip.since}",
                type="dip",
                title="Quality dip detected",
                subtitle=quality_dip.suggestion,
                date=quality_dip.since,
                tone="warning",
            )
        )

    highlights.sort(key=lambda h: h.date, reverse=True)
    return highlights[:MAX_HIGHLIGHTS]


def build_recap_slice(
    sessions: Sequence[SessionStats],
    now: datetime,
    tz_offset_minutes: int = 0,
) -> RecapSlice:
    """Assemble the recap from sessions ordered newest first."""
    if not sessions:
        return RecapSlice(
            generated_at=now,
            lookback_weeks=LOOKBACK_WEEKS,
            streak=RecapStreak(),
            quality=[],
            highlights=[],
        )

    volumes = [max(0, round_half_up(s.total_volume)) for s in sessions]
    positive_volumes = [v for v in volumes if v > 0]
    rpes = [s.avg_rpe for s in sessions if s.avg_rpe is not None]

    if len(positive_volumes) >= 3:
        baseline_volume = median(positive_volumes)
    else:
        baseline_volume = positive_volumes[0] if positive_volumes else None
    if len(rpes) >= 3:
        baseline_rpe = mean(rpes)
    else:
        baseline_rpe = rpes[0] if rpes else None

    quality: List[RecapSessionQuality] = []
    for session, volume in zip(sessions, volumes):
        score, status = compute_quality_score(volume, baseline_volume, session.avg_rpe, baseline_rpe)
        quality.append(
            RecapSessionQuality(
                session_id=session.session_id,
                finished_at=local_date(session.finished_at, tz_offset_minutes).isoformat(),
                template_name=session.template_name,
                quality_score=score,
                status=status,
                total_volume=volume,
                avg_rpe=session.avg_rpe,
            )
        )

    today = local_date(now, tz_offset_minutes)
    session_days = [local_date(s.finished_at, tz_offset_minutes) for s in sessions]
    streak = RecapStreak(
        current=current_streak(session_days, today),
        best=best_streak(session_days),
        last_workout_at=quality[0].finished_at,
    )

    consecutive_dips = 0
    for entry in quality:
        if entry.status != "dip":
            break
        consecutive_dips += 1

    quality_dip = None
    if consecutive_dips >= 2:
        quality_dip = RecapQualityDip(
            consecutive=consecutive_dips,
            since=quality[0].finished_at,
            suggestion=(
                "Dial back intensity and try a short recovery session"
                if consecutive_dips >= 3
                else "Ease back in with focused form and lighter loads"
            ),
            last_score=quality[0].quality_score,
        )

    days_since_last = (today - session_days[0]).days
    win_back = None
    if quality_dip and days_since_last >= WIN_BACK_MIN_DAYS:
        win_back = RecapWinBack(
            headline="Quality dipped, take an easy win",
            message=(
                f"Last workout was {days_since_last} days ago. "
                "Try a short recovery or technique session to reset."
            ),
            since=quality_dip.since,
        )

    return RecapSlice(
        generated_at=now,
        lookback_weeks=LOOKBACK_WEEKS,
        baseline_volume=baseline_volume,
        baseline_rpe=baseline_rpe,
        streak=streak,
        quality=quality,
        highlights=build_highlights(quality, streak, baseline_volume, quality_dip, today.isoformat()),
        quality_dip=quality_dip,
        win_back=win_back,
    )


class RecapCache:
    """Per-user TTL cache. Concurrent misses just recompute the same value."""

    def __init__(self, ttl_seconds: float, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[int, Tuple[float, RecapSlice]] = {}

    def get(self, user_id: int) -> Optional[RecapSlice]:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        expires, data = entry
        if expires <= self._clock():
            self._entries.pop(user_id, None)
            return None
        return data

    def set(self, user_id: int, data: RecapSlice) -> None:
        self._entries[user_id] = (self._clock() + self.ttl_seconds, data)

    def clear(self) -> None:
        self._entries.clear()


recap_cache = RecapCache(get_settings().recap_cache_ttl_seconds)


class RecapService:
    """Builds and caches the recap slice for a user."""

    def __init__(self, db: Session, cache: Optional[RecapCache] = None):
        self.db = db
        self.cache = cache if cache is not None else recap_cache

    @translate_data_errors
    def fetch_sessions(self, user_id: int, since: datetime) -> List[SessionStats]:
        """Counted sessions finished since ``since``, newest first, with set aggregates."""
        sessions = (
            self.db.query(WorkoutSession)
            .filter(
                WorkoutSession.user_id == user_id,
                *WorkoutSession.counts_for_analytics(),
                WorkoutSession.finished_at >= since,
            )
            .order_by(WorkoutSession.finished_at.desc(), WorkoutSession.id.desc())
            .all()
        )
        if not sessions:
            return []

        rows = (
            self.db.query(
                WorkoutSet.session_id,
                WorkoutSet.actual_reps,
                WorkoutSet.actual_weight,
                WorkoutSet.target_reps,
                WorkoutSet.target_weight,
                WorkoutSet.rpe,
                Exercise.equipment,
            )
            .outerjoin(Exercise, Exercise.id == WorkoutSet.exercise_id)
            .filter(WorkoutSet.session_id.in_([s.id for s in sessions]))
            .all()
        )

        volumes: Dict[int, float] = defaultdict(float)
        rpes: Dict[int, List[float]] = defaultdict(list)
        counts: Dict[int, int] = defaultdict(int)
        for row in rows:
            volumes[row.session_id] += set_volume(
                row.actual_reps, row.actual_weight, row.target_reps, row.target_weight, row.equipment
            )
            counts[row.session_id] += 1
            if row.rpe is not None:
                rpes[row.session_id].append(row.rpe)

        return [
            SessionStats(
                session_id=s.id,
                finished_at=s.finished_at,
                template_name=s.template_name,
                total_volume=volumes.get(s.id, 0.0),
                avg_rpe=mean(rpes[s.id]) if rpes.get(s.id) else None,
                set_count=counts.get(s.id, 0),
            )
            for s in sessions
        ]

    def build_recap(self, user: User, now: Optional[datetime] = None) -> RecapSlice:
        now = now or utc_now()
        since = now - timedelta(weeks=LOOKBACK_WEEKS)
        sessions = self.fetch_sessions(user.id, since)
        return build_recap_slice(sessions, now, clamp_tz_offset_minutes(user.timezone_offset_minutes))

    def get_recap_slice(self, user: User, now: Optional[datetime] = None) -> RecapSlice:
        cached = self.cache.get(user.id)
        if cached is not None:
            return cached

        data = self.build_recap(user, now)
        self.cache.set(user.id, data)
        logger.debug("Recap rebuilt for user %s (%d sessions)", user.id, len(data.quality))
        return data
