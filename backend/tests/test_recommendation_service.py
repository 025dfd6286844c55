from datetime import timedelta

import pytest

from app.schemas import FatigueResult, FatigueTotals, MuscleFatigue, RecentWorkout
from app.services.metrics_service import TRACKED_MUSCLES
from app.services.recommendation_service import (
    canonical_preferred_split,
    custom_candidates,
    fatigue_penalty,
    next_in_cycle,
    normalize_split_key,
    previous_in_cycle,
    recommend_next_workout,
)


def recent(now, *labels):
    return [
        RecentWorkout(session_id=i + 1, template_name=label, completed_at=now - timedelta(days=i + 1))
        for i, label in enumerate(labels)
    ]


def fatigue_result(now, muscles):
    return FatigueResult(
        generated_at=now,
        per_muscle=muscles,
        deload_week_detected=False,
        readiness_score=50,
        fresh_muscles=[],
        totals=FatigueTotals(last_7_days_volume=0, fatigue_score=50),
    )


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Push Day", "push"),
        ("Pull - Biceps", "pull"),
        ("Leg Day", "legs"),
        ("Upper Body A", "upper"),
        ("Chest & Back", "chest_back"),
        ("Arms + Shoulders", "arms_shoulders"),
        ("Full Body", "full_body"),
        ("Mobility Flow", "mobility_flow"),
        ("", None),
    ],
)
def test_normalize_split_key(label, expected):
    assert normalize_split_key(label) == expected


def test_canonical_preferred_split():
    assert canonical_preferred_split(None) == "full_body"
    assert canonical_preferred_split("push_pull_legs") == "ppl"
    assert canonical_preferred_split("Arnold") == "arnold_split"
    assert canonical_preferred_split("custom") == "custom"


def test_cycle_navigation():
    cycle = ["push", "pull", "legs"]
    assert next_in_cycle(cycle, "push") == "pull"
    assert next_in_cycle(cycle, "legs") == "push"
    assert next_in_cycle(cycle, None) == "push"
    assert previous_in_cycle(cycle, "push") == "legs"
    assert previous_in_cycle(cycle, "upper") == "legs"
    assert next_in_cycle([], "push") is None


@pytest.mark.parametrize(
    "avg, expected",
    [(None, 0), (150, 26), (140, 26), (130, 16), (115, 8), (100, 0), (80, -8), (40, -8)],
)
def test_fatigue_penalty(avg, expected):
    assert fatigue_penalty(avg) == expected


def test_ppl_after_push_without_fatigue_data_picks_pull(now):
    result = recommend_next_workout("ppl", recent(now, "Push Day"), None, now=now)

    assert result.selected.split_key == "pull"
    assert result.selected.score == 118
    assert "On-cycle" in result.selected.tags
    assert [c.split_key for c in result.alternates] == ["legs", "push"]
    assert result.alternates[1].score == 94
    assert result.rest_recommended is False


def test_avoided_muscles_push_candidate_down(now):
    result = recommend_next_workout("ppl", recent(now, "Pull Day"), None, avoid_muscles=["quads", "Glutes"], now=now)

    scores = {c.split_key: c.score for c in [result.selected, *result.alternates]}
    assert scores["legs"] == 100 + 18 - 36
    assert result.selected.split_key == "push"


def test_short_session_favours_full_body(now):
    result = recommend_next_workout("full_body", [], None, session_duration=20, now=now)

    assert result.selected.split_key == "full_body"
    assert result.selected.score == 124
    assert "Quick" in result.selected.tags


def test_upper_lower_starts_with_upper(now):
    result = recommend_next_workout("upper_lower", [], None, now=now)

    assert result.selected.split_key == "upper"
    assert [c.split_key for c in result.alternates] == ["lower"]


def test_ties_keep_construction_order(now):
    result = recommend_next_workout("custom", [], None, now=now)

    assert result.selected.split_key == "full_body"
    assert [c.split_key for c in result.alternates] == ["upper", "lower"]
    assert {c.score for c in result.alternates} == {result.selected.score}


def test_custom_split_avoids_fatigued_legs(now):
    fatigue = fatigue_result(
        now,
        [
            MuscleFatigue(muscle_group="quadriceps", fatigue_score=150, status="high-fatigue", recovery_load=0.9),
            MuscleFatigue(muscle_group="chest", fatigue_score=90, status="optimal", recovery_load=0.0),
        ],
    )

    result = recommend_next_workout("custom", [], fatigue, now=now)

    keys = [result.selected.split_key] + [c.split_key for c in result.alternates]
    assert keys == ["upper", "pull", "full_body"]
    scores = {c.split_key: c.score for c in [result.selected, *result.alternates]}
    assert scores["full_body"] == 92
    assert result.rest_recommended is False


def test_high_fatigue_penalises_focus_muscles(now):
    fatigue = fatigue_result(
        now,
        [
            MuscleFatigue(muscle_group="back", fatigue_score=150, status="high-fatigue"),
            MuscleFatigue(muscle_group="chest", fatigue_score=75, status="optimal"),
            MuscleFatigue(muscle_group="shoulders", fatigue_score=75, status="optimal"),
        ],
    )

    result = recommend_next_workout("ppl", recent(now, "Push Day"), fatigue, now=now)

    scores = {c.split_key: c.score for c in [result.selected, *result.alternates]}
    assert scores["pull"] == 100 + 18 - 26
    assert "High fatigue risk" in next(
        c for c in [result.selected, *result.alternates] if c.split_key == "pull"
    ).tags


def test_rest_recommended_when_nothing_is_ready(now):
    fatigue = fatigue_result(
        now,
        [
            MuscleFatigue(muscle_group=m, fatigue_score=140, status="high-fatigue", recovery_load=0.9)
            for m in TRACKED_MUSCLES
        ],
    )

    result = recommend_next_workout("ppl", recent(now, "Legs"), fatigue, now=now)

    assert result.rest_recommended is True
    assert 0 <= result.selected.score <= 200


def test_custom_split_uses_fatigue_even_when_recovered(now):
    # five days out the legs read as recovered, but the week's load is still high
    fatigue = fatigue_result(
        now,
        [
            MuscleFatigue(
                muscle_group="legs",
                fatigue_score=150,
                status="high-fatigue",
                fatigued=True,
                recovery_load=0.0,
            ),
        ],
    )

    assert custom_candidates(fatigue) == ["upper", "full_body", "pull"]

    result = recommend_next_workout("custom", [], fatigue, now=now)

    keys = {result.selected.split_key} | {c.split_key for c in result.alternates}
    assert keys == {"upper", "full_body", "pull"}


def test_custom_candidates_by_fatigued_region(now):
    upper = fatigue_result(
        now,
        [MuscleFatigue(muscle_group="upper back", fatigue_score=140, status="high-fatigue", fatigued=True)],
    )
    both = fatigue_result(
        now,
        [
            MuscleFatigue(muscle_group="chest", fatigue_score=140, status="high-fatigue", fatigued=True),
            MuscleFatigue(muscle_group="glutes", fatigue_score=140, status="high-fatigue", fatigued=True),
        ],
    )
    rested = fatigue_result(now, [MuscleFatigue(muscle_group="legs", fatigue_score=120, status="moderate-fatigue")])

    assert custom_candidates(upper) == ["lower", "full_body", "legs"]
    assert custom_candidates(both) == ["full_body", "upper", "lower"]
    assert custom_candidates(rested) == ["full_body", "upper", "lower"]
    assert custom_candidates(None) == ["full_body", "upper", "lower"]
