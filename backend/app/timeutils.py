"""Local-time helpers based on a fixed UTC-minute offset.

A user's offset follows the JavaScript ``getTimezoneOffset`` convention sent by
the mobile client: minutes *behind* UTC, so UTC-5 is stored as ``300`` and
``local = utc - offset``. There is no zone database behind it; daylight-saving
changes only show up when the client reports a new offset.

All datetimes handled here are naive UTC (or naive "local" wall-clock values
produced by :func:`to_local`).
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

MAX_TZ_OFFSET_MINUTES = 14 * 60


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clamp_tz_offset_minutes(value: Optional[float]) -> int:
    """Coerce a stored offset into [-840, 840]; anything unusable becomes 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    return max(-MAX_TZ_OFFSET_MINUTES, min(MAX_TZ_OFFSET_MINUTES, int(value)))


def to_local(moment: datetime, tz_offset_minutes: int) -> datetime:
    return moment - timedelta(minutes=tz_offset_minutes)


def to_utc(local_moment: datetime, tz_offset_minutes: int) -> datetime:
    return local_moment + timedelta(minutes=tz_offset_minutes)


def local_date(moment: datetime, tz_offset_minutes: int) -> date:
    return to_local(moment, tz_offset_minutes).date()


def local_date_key(moment: datetime, tz_offset_minutes: int) -> str:
    return local_date(moment, tz_offset_minutes).isoformat()


def local_day_start(now: datetime, tz_offset_minutes: int) -> datetime:
    """Local midnight of ``now`` as a naive local datetime."""
    local_now = to_local(now, tz_offset_minutes)
    return local_now.replace(hour=0, minute=0, second=0, microsecond=0)


def sunday_weekday(day: date) -> int:
    """Day of week with Sunday = 0 ... Saturday = 6."""
    return (day.weekday() + 1) % 7


@dataclass
class LocalWeek:
    """The user's current local week (Sunday 00:00 to next Sunday 00:00)."""

    tz_offset_minutes: int
    local_now: datetime
    local_week_start: datetime
    week_start_utc: datetime
    week_end_utc: datetime

    @property
    def weekday(self) -> int:
        return sunday_weekday(self.local_now.date())

    @property
    def days_left(self) -> int:
        """Whole days remaining before Saturday ends the week."""
        return 6 - self.weekday

    @property
    def previous_week_start_utc(self) -> datetime:
        return self.week_start_utc - timedelta(days=7)


def local_week_range(now: datetime, tz_offset_minutes: int) -> LocalWeek:
    local_now = to_local(now, tz_offset_minutes)
    day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    local_week_start = day_start - timedelta(days=sunday_weekday(day_start.date()))
    local_week_end = local_week_start + timedelta(days=7)
    return LocalWeek(
        tz_offset_minutes=tz_offset_minutes,
        local_now=local_now,
        local_week_start=local_week_start,
        week_start_utc=to_utc(local_week_start, tz_offset_minutes),
        week_end_utc=to_utc(local_week_end, tz_offset_minutes),
    )


def is_quiet_hour(local_hour: int, quiet_start: int, quiet_end: int) -> bool:
    """Whether ``local_hour`` falls in [start, end), wrapping past midnight."""
    if quiet_start > quiet_end:
        return local_hour >= quiet_start or local_hour < quiet_end
    return quiet_start <= local_hour < quiet_end


def stable_hash(value: str) -> int:
    """31-multiplier string hash folded to signed 32 bits, then made positive."""
    hash_value = 0
    for char in value:
        hash_value = (hash_value * 31 + ord(char)) & 0xFFFFFFFF
    if hash_value >= 0x80000000:
        hash_value -= 0x100000000
    return abs(hash_value)


def compute_next_notification_at(
    user_id,
    tz_offset_minutes: int,
    now: Optional[datetime] = None,
    local_hour: int = 15,
    local_minute: int = 0,
    window_minutes: int = 30,
    not_today: bool = False,
) -> datetime:
    """Next delivery slot in UTC: local ``local_hour:local_minute`` plus a
    per-user jitter in ``[0, window_minutes]``.

    The slot is today's when it is still ahead of ``now``, otherwise
    tomorrow's. ``not_today`` always picks tomorrow's slot; the engine uses it
    after a due pass so a user is evaluated at most once per local day.
    """
    now = now or utc_now()
    jitter = stable_hash(str(user_id)) % (window_minutes + 1) if window_minutes > 0 else 0

    local_now = to_local(now, tz_offset_minutes)
    local_target = local_now.replace(
        hour=local_hour, minute=local_minute, second=0, microsecond=0
    ) + timedelta(minutes=jitter)

    if not_today or local_now >= local_target:
        local_target += timedelta(days=1)

    return to_utc(local_target, tz_offset_minutes)
