"""Consecutive-day workout streaks over local calendar dates."""

from datetime import date, timedelta
from typing import Iterable, Optional, Tuple


def current_streak(days: Iterable[date], today: date) -> int:
    """Consecutive days with a workout, ending today."""
    day_set = set(days)
    streak = 0
    cursor = today
    while cursor in day_set:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def best_streak(days: Iterable[date]) -> int:
    ordered = sorted(set(days))
    if not ordered:
        return 0

    best = current = 1
    for previous, day in zip(ordered, ordered[1:]):
        current = current + 1 if day - previous == timedelta(days=1) else 1
        best = max(best, current)
    return best


def latest_run(days: Iterable[date]) -> Tuple[int, Optional[date]]:
    """Length and last day of the most recent run, wherever it ends."""
    ordered = sorted(set(days), reverse=True)
    if not ordered:
        return 0, None

    length = 1
    for newer, older in zip(ordered, ordered[1:]):
        if newer - older != timedelta(days=1):
            break
        length += 1
    return length, ordered[0]
