"""Persistent alarm slots (the configuration holder).

Alarms live in a small JSON document::

    {"alarms": [{"active": true, "zone": {"output_id": "media_player.kitchen"}, ...}], "selected": 0}

Writes go through a temporary file and an atomic rename.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

from .models import ACTIONS, TRANSITION_KINDS, WAKE_DAYS, Alarm, TimeSpec, Transition, VolumeInfo, ZoneOutputRef

LOGGER = logging.getLogger("alarmclock.settings")

DEFAULT_ALARM_COUNT = 5
MAX_ALARM_COUNT = 10
MAX_TRANSITION_MINUTES = 30


class AlarmConfigError(ValueError):
    """An alarm definition failed validation."""


def validate_alarm(alarm: Alarm, volume_range: VolumeInfo | None = None) -> None:
    if alarm.action not in ACTIONS:
        raise AlarmConfigError(f"Unknown action: {alarm.action!r}")
    if alarm.day not in WAKE_DAYS:
        raise AlarmConfigError(f"Unknown wake day: {alarm.day!r}")
    if alarm.transition.kind not in TRANSITION_KINDS:
        raise AlarmConfigError(f"Unknown transition: {alarm.transition.kind!r}")
    time = alarm.time
    if time.relative and alarm.day != "once":
        raise AlarmConfigError("Relative times are only allowed for one-off alarms")
    if time.relative:
        if time.hours < 0 or not 0 <= time.minutes <= 59:
            raise AlarmConfigError(f"Invalid relative time: {time}")
    else:
        if time.ampm is not None and not 1 <= time.hours <= 12:
            raise AlarmConfigError(f"Invalid hour for {time.ampm}: {time.hours}")
        if not 0 <= time.hour_24 <= 23:
            raise AlarmConfigError(f"Invalid hour: {time.hours}")
        if not 0 <= time.minutes <= 59:
            raise AlarmConfigError(f"Invalid minute: {time.minutes}")
    if not 0 <= alarm.transition.minutes <= MAX_TRANSITION_MINUTES:
        raise AlarmConfigError(f"Transition must be 0-{MAX_TRANSITION_MINUTES} minutes")
    if alarm.wake_volume is not None and volume_range is not None:
        if not volume_range.min <= alarm.wake_volume <= volume_range.max:
            raise AlarmConfigError(
                f"Wake volume must be between {volume_range.min} and {volume_range.max}"
            )
    if alarm.active and alarm.zone is None:
        raise AlarmConfigError("An active alarm needs a zone")
    if alarm.active and alarm.action == "transfer" and alarm.transfer_zone is None:
        raise AlarmConfigError("A transfer alarm needs a target zone")


def _zone_from_value(value: Any) -> ZoneOutputRef | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return ZoneOutputRef(value)
    if isinstance(value, dict) and value.get("output_id"):
        name = value.get("name")
        return ZoneOutputRef(str(value["output_id"]), str(name) if name else None)
    raise AlarmConfigError(f"Invalid zone reference: {value!r}")


def _zone_to_value(zone: ZoneOutputRef | None) -> dict[str, Any] | None:
    if zone is None:
        return None
    payload: dict[str, Any] = {"output_id": zone.output_id}
    if zone.name:
        payload["name"] = zone.name
    return payload


def alarm_from_dict(data: dict[str, Any]) -> Alarm:
    if not isinstance(data, dict):
        raise AlarmConfigError("Alarm must be an object")
    defaults = Alarm()
    try:
        time_value = data.get("time")
        time = TimeSpec.parse(str(time_value)) if time_value not in (None, "") else defaults.time
        transition_data = data.get("transition") or {}
        if isinstance(transition_data, str):
            transition_data = {"kind": transition_data}
        if not isinstance(transition_data, dict):
            raise AlarmConfigError(f"Invalid transition: {transition_data!r}")
        transition = Transition(
            kind=transition_data.get("kind", "instant"),
            minutes=int(transition_data.get("minutes", 0) or 0),
        )
        wake_volume = data.get("wake_volume")
        alarm = Alarm(
            active=bool(data.get("active", defaults.active)),
            zone=_zone_from_value(data.get("zone")),
            action=data.get("action", defaults.action),
            day=data.get("day", defaults.day),
            time=time,
            wake_volume=None if wake_volume in (None, "") else int(wake_volume),
            transition=transition,
            transfer_zone=_zone_from_value(data.get("transfer_zone")),
            repeat=bool(data.get("repeat", defaults.repeat)),
        )
    except (TypeError, ValueError) as exc:
        if isinstance(exc, AlarmConfigError):
            raise
        raise AlarmConfigError(str(exc)) from exc
    validate_alarm(alarm)
    return alarm


def alarm_to_dict(alarm: Alarm) -> dict[str, Any]:
    return {
        "active": alarm.active,
        "zone": _zone_to_value(alarm.zone),
        "action": alarm.action,
        "day": alarm.day,
        "time": str(alarm.time),
        "wake_volume": alarm.wake_volume,
        "transition": {"kind": alarm.transition.kind, "minutes": alarm.transition.minutes},
        "transfer_zone": _zone_to_value(alarm.transfer_zone),
        "repeat": alarm.repeat,
    }


class AlarmSettingsStore:
    """Fixed number of alarm slots, saved as JSON after every change."""

    def __init__(
        self,
        path: Path | None,
        alarm_count: int = DEFAULT_ALARM_COUNT,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        if not 1 <= alarm_count <= MAX_ALARM_COUNT:
            raise ValueError(f"alarm_count must be between 1 and {MAX_ALARM_COUNT}")
        self._path = path
        self._logger = logger or LOGGER
        self._alarms: list[Alarm] = [Alarm() for _ in range(alarm_count)]
        self.selected = 0

    @property
    def alarm_count(self) -> int:
        return len(self._alarms)

    def snapshot(self) -> tuple[Alarm, ...]:
        return tuple(self._alarms)

    def alarm(self, slot: int) -> Alarm:
        self._check_slot(slot)
        return self._alarms[slot]

    def update(self, slot: int, alarm: Alarm, *, volume_range: VolumeInfo | None = None) -> Alarm:
        self._check_slot(slot)
        validate_alarm(alarm, volume_range)
        if alarm.day == "once" and alarm.repeat:
            alarm = replace(alarm, repeat=False)
        self._alarms[slot] = alarm
        self.selected = slot
        self.save()
        return alarm

    def set_active(self, slot: int, active: bool) -> None:
        self._check_slot(slot)
        current = self._alarms[slot]
        if current.active == active:
            return
        self._alarms[slot] = current.with_active(active)
        self.save()

    def _check_slot(self, slot: int) -> None:
        if not 0 <= slot < len(self._alarms):
            raise AlarmConfigError(f"Alarm slot {slot + 1} does not exist")

    def load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            self._logger.warning("[settings] Failed to load alarm file %s: %s", self._path, exc)
            return
        items = data.get("alarms") if isinstance(data, dict) else None
        if not isinstance(items, list):
            self._logger.warning("[settings] Alarm file %s has no alarm list", self._path)
            return
        for slot, item in enumerate(items[: len(self._alarms)]):
            try:
                self._alarms[slot] = alarm_from_dict(item)
            except AlarmConfigError as exc:
                self._logger.debug("[settings] Skipping invalid alarm %d: %s", slot + 1, exc, exc_info=True)
        selected = data.get("selected", 0)
        if isinstance(selected, int) and 0 <= selected < len(self._alarms):
            self.selected = selected
        self._logger.info("[settings] Loaded %d alarm slot(s) from %s", len(self._alarms), self._path)

    def save(self) -> None:
        if self._path is None:
            return
        payload = {"alarms": [alarm_to_dict(alarm) for alarm in self._alarms], "selected": self.selected}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)
