"""Next-trigger arithmetic for alarm slots.

Works in epoch milliseconds on top of the local calendar of ``now``: the
candidate is built on today's date, shifted by whole days to reach the wanted
weekday, and finally corrected for any UTC offset change (DST) between the
base candidate and the resolved instant so the wall-clock time survives.
"""

from __future__ import annotations

from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo

from alarmclock.datetime_utils import (
    MS_PER_DAY,
    MS_PER_HOUR,
    MS_PER_MINUTE,
    js_weekday,
    to_epoch_ms,
    utc_offset_ms,
)

from .models import SAT, SUN, Action, TimeSpec, Transition, WakeDay, weekday_index


def _calendar_zone(now: datetime) -> tzinfo | None:
    # Fixed-offset tzinfo (datetime.now().astimezone()) carries no DST rules;
    # fall back to the system zone for those.
    if isinstance(now.tzinfo, ZoneInfo):
        return now.tzinfo
    return None


def _candidate_today(now: datetime, hour: int, minute: int) -> datetime:
    if isinstance(now.tzinfo, ZoneInfo):
        return now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    local = now.astimezone() if now.tzinfo is not None else now
    return local.replace(hour=hour, minute=minute, second=0, microsecond=0, tzinfo=None).astimezone()


def next_trigger(
    now: datetime,
    time_spec: TimeSpec,
    day: WakeDay,
    transition: Transition,
    *,
    action: Action,
) -> int:
    """Return the epoch-ms instant at which the alarm must fire next."""
    now_ms = to_epoch_ms(now)
    if time_spec.relative:
        return now_ms + time_spec.hours * MS_PER_HOUR + time_spec.minutes * MS_PER_MINUTE

    zone = _calendar_zone(now)
    base_ms = to_epoch_ms(_candidate_today(now, time_spec.hour_24, time_spec.minutes))
    trigger_ms = base_ms
    if transition.is_fading and action == "play":
        # Reach the wake volume at the configured time, not start fading then.
        trigger_ms -= transition.minutes * MS_PER_MINUTE

    today = js_weekday(now)
    wake_day = weekday_index(day)
    days_to_skip = 0
    if wake_day is not None:
        days_to_skip = (wake_day + 7 - today) % 7

    if days_to_skip == 0 and trigger_ms < now_ms:
        if wake_day is not None:
            days_to_skip = 7
        else:
            days_to_skip = 1
            today = (today + 1) % 7

    if day == "weekdays":
        if today == SUN:
            days_to_skip += 1
        elif today == SAT:
            days_to_skip += 2
    elif day == "weekend" and SUN < today < SAT:
        days_to_skip += SAT - today

    trigger_ms += days_to_skip * MS_PER_DAY
    offset_shift = utc_offset_ms(trigger_ms, zone) - utc_offset_ms(base_ms, zone)
    if offset_shift:
        trigger_ms -= offset_shift
    return trigger_ms
