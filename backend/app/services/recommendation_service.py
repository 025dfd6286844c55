"""Next-workout recommendation - picks the next split from cycle position and fatigue."""

import re
from datetime import datetime
from typing import List, Optional, Sequence

from app.schemas import FatigueResult, NextWorkoutRecommendation, RecentWorkout, WorkoutCandidate
from app.services.readiness_service import (
    READINESS_FRESH_THRESHOLD,
    READINESS_HIGH_THRESHOLD,
    build_canonical_muscle_stats,
    normalize_muscle_group,
)
from app.services.stats import clamp, mean


BASE_SCORE = 100
ON_CYCLE_BONUS = 18
REPETITION_PENALTY = 6
REPETITION_LOOKBACK = 3
AVOID_PENALTY = 18
SHORT_SESSION_MINUTES = 30
SHORT_SESSION_BIAS = 6
READY_READINESS = 70
MAX_CANDIDATES = 5

SPLIT_CYCLES = {
    "ppl": ["push", "pull", "legs"],
    "ppl_upper_lower": ["push", "pull", "legs", "upper", "lower"],
    "arnold_split": ["chest_back", "arms_shoulders", "legs"],
    "upper_lower": ["upper", "lower"],
    "full_body": ["full_body"],
}

SPLIT_LABELS = {
    "push": "Push",
    "pull": "Pull",
    "legs": "Legs",
    "upper": "Upper",
    "lower": "Lower",
    "full_body": "Full Body",
    "chest_back": "Chest/Back",
    "arms_shoulders": "Arms/Shoulders",
    "chest": "Chest",
    "back": "Back",
    "shoulders": "Shoulders",
    "arms": "Arms",
}

SPLIT_PRIMARY_MUSCLES = {
    "push": ["chest", "shoulders", "triceps"],
    "pull": ["back", "biceps"],
    "legs": ["legs", "glutes", "core"],
    "lower": ["legs", "glutes", "core"],
    "upper": ["chest", "back", "shoulders", "biceps", "triceps"],
    "full_body": ["chest", "back", "shoulders", "biceps", "triceps", "legs", "glutes", "core"],
    "chest_back": ["chest", "back", "biceps"],
    "arms_shoulders": ["shoulders", "biceps", "triceps"],
    "chest": ["chest", "triceps", "shoulders"],
    "back": ["back", "biceps"],
    "shoulders": ["shoulders", "triceps"],
    "arms": ["biceps", "triceps"],
}

SPLIT_FOCUS_MUSCLES = {
    "push": ["chest", "shoulders"],
    "pull": ["back"],
    "legs": ["legs", "glutes"],
    "lower": ["legs", "glutes"],
    "upper": ["chest", "back", "shoulders"],
    "full_body": ["chest", "back", "legs", "glutes"],
    "chest_back": ["chest", "back"],
    "arms_shoulders": ["biceps", "triceps", "shoulders"],
    "chest": ["chest"],
    "back": ["back"],
    "shoulders": ["shoulders"],
    "arms": ["biceps", "triceps"],
}


def normalize_split_key(value: Optional[str]) -> Optional[str]:
    """Map a template name or split label onto a split key."""
    raw = (value or "").lower().strip()
    if not raw:
        return None

    if "chest" in raw and "back" in raw:
        return "chest_back"
    has_arms = any(token in raw for token in ("arm", "bicep", "tricep", "bi", "tri"))
    has_shoulders = "shoulder" in raw or "delt" in raw
    if has_arms and has_shoulders:
        return "arms_shoulders"

    for fragment, key in (
        ("push", "push"),
        ("pull", "pull"),
        ("leg", "legs"),
        ("upper", "upper"),
        ("lower", "lower"),
        ("full", "full_body"),
        ("chest", "chest"),
        ("back", "back"),
        ("shoulder", "shoulders"),
        ("arm", "arms"),
    ):
        if fragment in raw:
            return key

    return re.sub(r"\s+", "_", raw)


def canonical_preferred_split(preferred_split: Optional[str]) -> str:
    raw = (preferred_split or "").lower().strip()
    if not raw:
        return "full_body"
    if raw in ("push_pull_legs", "ppl"):
        return "ppl"
    if raw in ("ppl_upper_lower", "ppl_upper/lower"):
        return "ppl_upper_lower"
    if raw in ("arnold", "arnold_split", "arnold split"):
        return "arnold_split"
    return raw


def split_label(split_key: str) -> str:
    return SPLIT_LABELS.get(split_key) or split_key.replace("_", " ").title()


def _recent_split(workout: Optional[RecentWorkout]) -> Optional[str]:
    if workout is None:
        return None
    return normalize_split_key(workout.split_type or workout.template_name)


def next_in_cycle(cycle: List[str], last_split: Optional[str]) -> Optional[str]:
    if not cycle:
        return None
    if len(cycle) == 1 or last_split not in cycle:
        return cycle[0]
    return cycle[(cycle.index(last_split) + 1) % len(cycle)]


def previous_in_cycle(cycle: List[str], last_split: Optional[str]) -> Optional[str]:
    if not cycle:
        return None
    if len(cycle) == 1:
        return cycle[0]
    if last_split not in cycle:
        return cycle[-1]
    return cycle[(cycle.index(last_split) - 1) % len(cycle)]


def custom_candidates(fatigue: Optional[FatigueResult]) -> List[str]:
    """Heuristic candidates for custom splits: steer away from fatigued regions."""
    if fatigue is None:
        return ["full_body", "upper", "lower"]

    fatigued = {
        normalize_muscle_group(m.muscle_group)
        for m in fatigue.per_muscle
        if m.fatigued or m.status == "high-fatigue"
    }
    legs_fatigued = bool(fatigued & {"legs", "glutes"})
    upper_fatigued = bool(fatigued & {"chest", "back", "shoulders"})

    if legs_fatigued and not upper_fatigued:
        return ["upper", "full_body", "pull"]
    if upper_fatigued and not legs_fatigued:
        return ["lower", "full_body", "legs"]
    return ["full_body", "upper", "lower"]


def fatigue_penalty(avg_fatigue: Optional[float]) -> int:
    """Penalty from average focus-muscle fatigue; well-rested muscles earn a bonus."""
    if avg_fatigue is None:
        return 0
    if avg_fatigue >= 140:
        return 26
    if avg_fatigue >= 125:
        return 16
    if avg_fatigue >= 110:
        return 8
    if avg_fatigue <= 80:
        return -8
    return 0


def _time_bias(split_key: str, session_duration: Optional[int]) -> int:
    if not session_duration or session_duration > SHORT_SESSION_MINUTES:
        return 0
    if split_key == "full_body":
        return SHORT_SESSION_BIAS
    if split_key in ("upper", "lower"):
        return -SHORT_SESSION_BIAS
    return 0


def recommend_next_workout(
    preferred_split: Optional[str],
    recent_workouts: Sequence[RecentWorkout],
    fatigue: Optional[FatigueResult],
    session_duration: Optional[int] = None,
    avoid_muscles: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> NextWorkoutRecommendation:
    """
    Rank candidate splits for the next session.

    score = 100 + on_cycle(18) + time_bias(+/-6) - repetition(6 per repeat in
    the last 3 workouts) - avoid(18 per avoided primary muscle) - fatigue penalty

    Candidates keep construction order on ties (next, previous, rest of cycle).
    """
    preferred = canonical_preferred_split(preferred_split)
    cycle = SPLIT_CYCLES.get(preferred, [])
    last_split = _recent_split(recent_workouts[0] if recent_workouts else None)
    cycle_next = next_in_cycle(cycle, last_split)
    cycle_prev = previous_in_cycle(cycle, last_split)
    stats = build_canonical_muscle_stats(fatigue, now)

    if cycle:
        base = []
        for key in [cycle_next, cycle_prev, *cycle]:
            if key and key not in base:
                base.append(key)
    else:
        base = custom_candidates(fatigue)

    avoid = {normalize_muscle_group(m) for m in (avoid_muscles or [])}
    recent_splits = [_recent_split(w) for w in list(recent_workouts)[:REPETITION_LOOKBACK]]
    is_short = bool(session_duration) and session_duration <= SHORT_SESSION_MINUTES

    candidates: List[WorkoutCandidate] = []
    any_ready = False
    for split_key in base[:MAX_CANDIDATES]:
        primary = SPLIT_PRIMARY_MUSCLES.get(split_key, [])
        focus = [stats[m] for m in SPLIT_FOCUS_MUSCLES.get(split_key, []) if m in stats]
        focus_with_data = [entry for entry in focus if entry.has_data]

        avg_fatigue = mean([e.fatigue_score for e in focus_with_data]) if focus_with_data else None
        avg_readiness = mean([e.readiness for e in focus]) if focus else None
        min_readiness = min(e.readiness for e in focus) if focus else None
        ready_count = sum(1 for e in focus if e.readiness >= READY_READINESS)
        any_ready = any_ready or ready_count > 0

        avoid_hits = [m for m in primary if m in avoid]
        on_cycle = ON_CYCLE_BONUS if cycle_next and split_key == cycle_next else 0
        repetition = REPETITION_PENALTY * recent_splits.count(split_key)
        penalty = fatigue_penalty(avg_fatigue)

        score = (
            BASE_SCORE
            + on_cycle
            + _time_bias(split_key, session_duration)
            - repetition
            - AVOID_PENALTY * len(avoid_hits)
            - penalty
        )

        high_risk = (min_readiness is not None and min_readiness <= READINESS_HIGH_THRESHOLD) or penalty >= 16
        fresh = avg_readiness is not None and avg_readiness >= READINESS_FRESH_THRESHOLD

        tags: List[str] = []
        reasons: List[str] = []
        if on_cycle:
            tags.append("On-cycle")
            reasons.append("Next in your split")
        if avoid_hits:
            tags.append(f"Avoids {' & '.join(avoid_hits[:2])}")
            reasons.append(f"Less stress on {' & '.join(avoid_hits[:2])}")
        if high_risk:
            tags.append("High fatigue risk")
            reasons.append("Adjusted for recovery")
        elif fresh:
            tags.append("Fresh")
            reasons.append("Good recovery window")
        if is_short:
            tags.append("Quick")
            reasons.append("Fits a short session")
        if repetition:
            reasons.append("Trained recently")

        candidates.append(
            WorkoutCandidate(
                split_key=split_key,
                label=split_label(split_key),
                tags=tags[:3],
                reason=" • ".join(reasons) if reasons else "Best fit for today",
                score=clamp(score, 0, 200),
            )
        )

    ranked = sorted(candidates, key=lambda c: -c.score)
    if ranked:
        selected = ranked[0]
    else:
        selected = WorkoutCandidate(
            split_key="full_body",
            label="Full Body",
            tags=["Fallback"],
            reason="Balanced default when data is limited",
            score=80,
        )

    return NextWorkoutRecommendation(
        preferred_split=preferred,
        selected=selected,
        alternates=[c for c in ranked if c.split_key != selected.split_key][:2],
        rest_recommended=bool(stats) and not any_ready,
    )
