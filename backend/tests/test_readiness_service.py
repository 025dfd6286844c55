from datetime import timedelta

import pytest

from app.schemas import FatigueResult, FatigueTotals, MuscleFatigue
from app.services.readiness_service import (
    build_canonical_muscle_stats,
    get_muscle_readiness,
    normalize_muscle_group,
    readiness_band,
    readiness_from_muscle,
)


def make_fatigue(now, muscles):
    return FatigueResult(
        generated_at=now,
        per_muscle=muscles,
        deload_week_detected=False,
        readiness_score=50,
        fresh_muscles=[],
        totals=FatigueTotals(last_7_days_volume=0, fatigue_score=50),
    )


def test_recovery_load_path(now):
    muscle = MuscleFatigue(muscle_group="chest", fatigue_score=100, status="optimal", recovery_load=0.8)
    assert readiness_from_muscle(muscle, now) == 20

    overloaded = MuscleFatigue(muscle_group="chest", fatigue_score=100, status="optimal", recovery_load=1.7)
    assert readiness_from_muscle(overloaded, now) == 0


def test_linear_ramp_midpoint(now):
    # 6 sets -> intensity 1 -> 96h to recover, starting from 0
    muscle = MuscleFatigue(
        muscle_group="legs",
        fatigue_score=120,
        status="moderate-fatigue",
        last_trained_at=now - timedelta(hours=48),
        last_session_sets=6,
        last_session_volume=500,
    )
    assert readiness_from_muscle(muscle, now) == 50
    assert readiness_from_muscle(muscle, now + timedelta(hours=48)) == 100


def test_volume_drives_intensity_against_baseline(now):
    # 1 set, 2000 lb against a 5000 lb weekly baseline -> intensity 1
    muscle = MuscleFatigue(
        muscle_group="back",
        fatigue_score=100,
        status="optimal",
        baseline_volume=5000,
        last_trained_at=now,
        last_session_sets=1,
        last_session_volume=2000,
    )
    assert readiness_from_muscle(muscle, now) == 0


@pytest.mark.parametrize(
    "fatigue_score, expected",
    [(70, 100), (100, 84), (150, 24), (200, 0)],
)
def test_fatigue_fallback_without_history(now, fatigue_score, expected):
    muscle = MuscleFatigue(muscle_group="chest", fatigue_score=fatigue_score, status="optimal")
    assert readiness_from_muscle(muscle, now) == expected


def test_fallback_when_last_session_is_empty(now):
    muscle = MuscleFatigue(
        muscle_group="chest",
        fatigue_score=150,
        status="high-fatigue",
        last_trained_at=now - timedelta(hours=5),
        last_session_sets=0,
        last_session_volume=0,
    )
    assert readiness_from_muscle(muscle, now) == 24


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Upper Back", "back"),
        ("lats", "back"),
        ("quads", "legs"),
        ("Hamstrings", "legs"),
        ("rear_delts", "shoulders"),
        ("Rear Delt Raise", "shoulders"),
        ("Pectorals", "chest"),
        ("Obliques", "core"),
        ("gluteal", "glutes"),
        ("Hip Flexors", "other"),
        ("", "other"),
        (None, "other"),
    ],
)
def test_normalize_muscle_group(label, expected):
    assert normalize_muscle_group(label) == expected


def test_readiness_bands():
    assert readiness_band(0) == "blocked"
    assert readiness_band(30) == "blocked"
    assert readiness_band(45) == "high-fatigue"
    assert readiness_band(65) == "moderate"
    assert readiness_band(70) == "recovering"
    assert readiness_band(85) == "fresh"
    assert readiness_band(100) == "fresh"


def test_aliases_merge_conservatively(now):
    fatigue = make_fatigue(
        now,
        [
            MuscleFatigue(muscle_group="upper back", fatigue_score=140, status="high-fatigue", recovery_load=0.1),
            MuscleFatigue(muscle_group="lats", fatigue_score=80, status="optimal", recovery_load=0.6),
        ],
    )

    stats = build_canonical_muscle_stats(fatigue, now)

    assert list(stats) == ["back"]
    assert stats["back"].readiness == 40
    assert stats["back"].fatigue_score == 140


def test_muscle_readiness_is_bounded_and_sorted(now):
    fatigue = make_fatigue(
        now,
        [
            MuscleFatigue(muscle_group="chest", fatigue_score=300, status="high-fatigue"),
            MuscleFatigue(muscle_group="legs", fatigue_score=20, status="under-trained"),
            MuscleFatigue(muscle_group="biceps", fatigue_score=100, status="optimal", recovery_load=-0.5),
        ],
    )

    response = get_muscle_readiness(fatigue, now)

    values = [m.readiness for m in response.muscles]
    assert all(0 <= v <= 100 for v in values)
    assert values == sorted(values)
    assert response.muscles[0].muscle_group == "chest"
    assert response.muscles[0].band == "blocked"
