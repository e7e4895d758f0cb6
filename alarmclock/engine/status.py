"""Human-readable status text and alarm titles."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from alarmclock.datetime_utils import js_weekday

from .models import WEEKDAY_CODES, WEEKDAY_NAMES, Alarm, PendingAlarmEntry

NO_ACTIVE_ALARMS = "No active alarms"

_DAY_PHRASES = {
    "once": "once",
    "daily": "daily",
    "weekdays": "on weekdays",
    "weekend": "in weekend",
}


def action_label(alarm: Alarm) -> str:
    label = alarm.action.capitalize()
    if alarm.transition.is_fading and alarm.action != "transfer":
        return f"Faded {label}"
    if alarm.transition.kind == "track_boundary" and alarm.action in ("stop", "standby"):
        return f"{label} at track end"
    return label


def describe_pending(alarm: Alarm, when: datetime) -> str:
    """One status line, e.g. ``Faded Play on Monday @ 07:00``."""
    return f"{action_label(alarm)} on {WEEKDAY_NAMES[js_weekday(when)]} @ {when:%H:%M}"


def format_status(entries: Iterable[PendingAlarmEntry]) -> str:
    lines = [entry.description for entry in entries]
    if not lines:
        return NO_ACTIVE_ALARMS
    return "\n".join(lines)


def _day_phrase(alarm: Alarm) -> str:
    if alarm.day in WEEKDAY_CODES:
        return f"on {WEEKDAY_NAMES[WEEKDAY_CODES.index(alarm.day)]}"
    return _DAY_PHRASES[alarm.day]


def alarm_title(alarm: Alarm, slot: int) -> str:
    """Short summary used in slot pickers, e.g. ``Kitchen: Play on Mondays @ 7:00``."""
    if not alarm.active or alarm.zone is None:
        return f"Alarm {slot + 1} not set"

    suffix = ""
    if alarm.repeat:
        if alarm.day == "weekdays":
            suffix = " (weekly)"
        elif alarm.day not in ("once", "daily"):
            suffix = "s"
    elif alarm.day in ("weekdays", "daily"):
        suffix = " (this week)"

    title = f"{alarm.zone.label}: {alarm.action.capitalize()} {_day_phrase(alarm)}{suffix}"
    if alarm.action == "transfer" and alarm.transfer_zone is not None:
        title += f" to {alarm.transfer_zone.label}"
    return f"{title} @ {alarm.time}"
