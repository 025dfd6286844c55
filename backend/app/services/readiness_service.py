"""Muscle readiness - how recovered each muscle group is right now.

Readiness is a 0-100 recovery estimate that ignores the weekly baseline:

- with a precomputed ``recovery_load`` (fraction of capacity still loaded):
  ``100 x (1 - min(1, load))``
- otherwise from the last session that trained the muscle: its intensity sets
  an initial dip and a recovery time of 12-96h, after which readiness ramps
  linearly back to 100
- with no usable history it falls back to the fatigue score
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from app.schemas import FatigueResult, MuscleFatigue, MuscleReadiness, ReadinessResponse
from app.services.stats import clamp, round_half_up
from app.timeutils import utc_now


READINESS_BLOCKED_THRESHOLD = 30
READINESS_HIGH_THRESHOLD = 45
READINESS_MODERATE_THRESHOLD = 65
READINESS_FRESH_THRESHOLD = 85

MIN_RECOVERY_HOURS = 12
MAX_EXTRA_RECOVERY_HOURS = 84
DEFAULT_SESSION_VOLUME_REFERENCE = 8000

CANONICAL_MUSCLES = (
    "chest",
    "back",
    "shoulders",
    "biceps",
    "triceps",
    "legs",
    "glutes",
    "core",
    "other",
)

MUSCLE_ALIASES = {
    "back": "back",
    "upper back": "back",
    "lower back": "back",
    "trapezius": "back",
    "traps": "back",
    "lats": "back",
    "latissimus dorsi": "back",
    "rhomboids": "back",
    "chest": "chest",
    "pectorals": "chest",
    "pecs": "chest",
    "shoulders": "shoulders",
    "deltoids": "shoulders",
    "delts": "shoulders",
    "front delts": "shoulders",
    "rear delts": "shoulders",
    "biceps": "biceps",
    "triceps": "triceps",
    "legs": "legs",
    "quadriceps": "legs",
    "quads": "legs",
    "hamstring": "legs",
    "hamstrings": "legs",
    "calves": "legs",
    "calves both": "legs",
    "adductors": "legs",
    "glutes": "glutes",
    "gluteal": "glutes",
    "abductors": "glutes",
    "core": "core",
    "abs": "core",
    "abdominals": "core",
    "obliques": "core",
    "other": "other",
}

# Checked in order; the first rule with a matching fragment wins.
SUBSTRING_FALLBACK = (
    (("back", "lat", "trap"), "back"),
    (("shoulder", "delt"), "shoulders"),
    (("chest", "pec"), "chest"),
    (("bicep",), "biceps"),
    (("tricep",), "triceps"),
    (("quad", "ham", "calf", "leg"), "legs"),
    (("glute",), "glutes"),
    (("ab", "core", "oblique"), "core"),
)


def normalize_muscle_group(value: Optional[str]) -> str:
    """Map a free-text muscle label onto the canonical taxonomy."""
    key = " ".join((value or "").lower().replace("_", " ").replace("-", " ").split())
    if not key:
        return "other"

    if key in MUSCLE_ALIASES:
        return MUSCLE_ALIASES[key]

    for fragments, canonical in SUBSTRING_FALLBACK:
        if any(fragment in key for fragment in fragments):
            return canonical

    return "other"


def readiness_band(readiness: int) -> str:
    if readiness <= READINESS_BLOCKED_THRESHOLD:
        return "blocked"
    if readiness <= READINESS_HIGH_THRESHOLD:
        return "high-fatigue"
    if readiness <= READINESS_MODERATE_THRESHOLD:
        return "moderate"
    if readiness >= READINESS_FRESH_THRESHOLD:
        return "fresh"
    return "recovering"


def _readiness_from_fatigue(fatigue_score: float) -> int:
    return round_half_up(clamp(120 - (fatigue_score - 70) * 1.2, 0, 100))


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def readiness_from_muscle(muscle: MuscleFatigue, now: Optional[datetime] = None) -> int:
    """Instantaneous readiness (0-100) for one muscle."""
    load = muscle.recovery_load
    if _is_number(load):
        return round_half_up(clamp(100 * (1 - min(1, load)), 0, 100))

    if muscle.last_trained_at is None:
        return _readiness_from_fatigue(muscle.fatigue_score)

    now = now or utc_now()
    hours_since = (now - muscle.last_trained_at).total_seconds() / 3600
    if not math.isfinite(hours_since) or hours_since < 0:
        return _readiness_from_fatigue(muscle.fatigue_score)

    session_sets = max(0, muscle.last_session_sets or 0)
    session_volume = muscle.last_session_volume if _is_number(muscle.last_session_volume) else 0
    session_volume = max(0, session_volume)
    if session_sets == 0 and session_volume == 0:
        return _readiness_from_fatigue(muscle.fatigue_score)

    baseline_weekly = muscle.baseline_volume
    intensity_from_sets = clamp((session_sets - 1) / 5, 0, 1)
    if _is_number(baseline_weekly) and baseline_weekly > 0:
        intensity_from_volume = clamp(session_volume / (baseline_weekly * 0.4), 0, 1)
    else:
        intensity_from_volume = clamp(session_volume / DEFAULT_SESSION_VOLUME_REFERENCE, 0, 1)
    intensity = max(intensity_from_sets, intensity_from_volume)

    initial = round_half_up(clamp(100 - intensity * 100, 0, 100))
    recovery_hours = MIN_RECOVERY_HOURS + intensity * MAX_EXTRA_RECOVERY_HOURS
    progress = clamp(hours_since / recovery_hours, 0, 1)
    return round_half_up(initial + (100 - initial) * progress)


@dataclass
class CanonicalMuscleStats:
    readiness: int
    fatigue_score: int
    has_data: bool = True


def build_canonical_muscle_stats(
    fatigue: Optional[FatigueResult], now: Optional[datetime] = None
) -> Dict[str, CanonicalMuscleStats]:
    """Fold per-muscle entries into canonical groups.

    Aliased entries merge conservatively: lowest readiness, highest fatigue.
    """
    stats: Dict[str, CanonicalMuscleStats] = {}
    if fatigue is None:
        return stats

    now = now or utc_now()
    for muscle in fatigue.per_muscle:
        canonical = normalize_muscle_group(muscle.muscle_group)
        readiness = readiness_from_muscle(muscle, now)
        has_data = muscle.status != "no-data"
        existing = stats.get(canonical)
        if existing is None:
            stats[canonical] = CanonicalMuscleStats(readiness, muscle.fatigue_score, has_data)
            continue

        stats[canonical] = CanonicalMuscleStats(
            readiness=min(existing.readiness, readiness),
            fatigue_score=max(existing.fatigue_score, muscle.fatigue_score),
            has_data=existing.has_data or has_data,
        )

    return stats


def get_muscle_readiness(fatigue: FatigueResult, now: Optional[datetime] = None) -> ReadinessResponse:
    """Readiness per canonical muscle, least recovered first."""
    now = now or utc_now()
    stats = build_canonical_muscle_stats(fatigue, now)
    muscles: List[MuscleReadiness] = [
        MuscleReadiness(
            muscle_group=name,
            readiness=entry.readiness,
            fatigue_score=entry.fatigue_score,
            band=readiness_band(entry.readiness),
        )
        for name, entry in stats.items()
    ]
    muscles.sort(key=lambda m: (m.readiness, CANONICAL_MUSCLES.index(m.muscle_group)))
    return ReadinessResponse(generated_at=now, muscles=muscles)
