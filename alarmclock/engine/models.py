"""Alarm and zone records shared by the scheduling core and its adapters."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal

from alarmclock.datetime_utils import parse_relative_time, parse_time_of_day

Action = Literal["play", "stop", "standby", "transfer"]
WakeDay = Literal["sun", "mon", "tue", "wed", "thu", "fri", "sat", "once", "daily", "weekdays", "weekend"]
TransitionKind = Literal["instant", "fading", "track_boundary"]
PlaybackState = Literal["playing", "paused", "loading", "stopped"]

ACTIONS: tuple[Action, ...] = ("play", "stop", "standby", "transfer")
TRANSITION_KINDS: tuple[TransitionKind, ...] = ("instant", "fading", "track_boundary")

SUN, MON, TUE, WED, THU, FRI, SAT = range(7)

# Sunday first, matching the weekday indices used by the time calculator.
WEEKDAY_CODES: tuple[WakeDay, ...] = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
WAKE_DAYS: tuple[WakeDay, ...] = (*WEEKDAY_CODES, "once", "daily", "weekdays", "weekend")
WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def weekday_index(day: WakeDay) -> int | None:
    """Return 0..6 for an explicit weekday, None for once/daily/ranges."""
    if day in WEEKDAY_CODES:
        return WEEKDAY_CODES.index(day)
    return None


@dataclass(frozen=True, slots=True)
class TimeSpec:
    hours: int
    minutes: int
    relative: bool = False
    ampm: Literal["am", "pm"] | None = None

    @property
    def hour_24(self) -> int:
        if self.relative or self.ampm is None:
            return self.hours
        hour = 0 if self.hours == 12 else self.hours
        return hour + 12 if self.ampm == "pm" else hour

    def __str__(self) -> str:
        if self.relative:
            return f"+{self.hours:02d}:{self.minutes:02d}"
        if self.ampm:
            return f"{self.hours}:{self.minutes:02d} {self.ampm}"
        return f"{self.hours}:{self.minutes:02d}"

    @classmethod
    def parse(cls, value: str) -> TimeSpec:
        text = (value or "").strip()
        if text.startswith("+"):
            offset = parse_relative_time(text)
            if offset is None:
                raise ValueError(f"Invalid relative time: {value!r}")
            return cls(hours=offset[0], minutes=offset[1], relative=True)
        parsed = parse_time_of_day(text)
        if parsed is None:
            raise ValueError(f"Invalid time of day: {value!r}")
        hours, minutes, ampm = parsed
        return cls(hours=hours, minutes=minutes, ampm=ampm)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class Transition:
    kind: TransitionKind = "instant"
    minutes: int = 0

    @property
    def is_fading(self) -> bool:
        return self.kind == "fading" and self.minutes > 0


@dataclass(frozen=True, slots=True)
class ZoneOutputRef:
    output_id: str
    name: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.output_id


@dataclass(frozen=True, slots=True)
class Alarm:
    active: bool = False
    zone: ZoneOutputRef | None = None
    action: Action = "play"
    day: WakeDay = "once"
    time: TimeSpec = field(default_factory=lambda: TimeSpec(7, 0))
    wake_volume: int | None = None
    transition: Transition = field(default_factory=Transition)
    transfer_zone: ZoneOutputRef | None = None
    repeat: bool = False

    def with_active(self, active: bool) -> Alarm:
        return replace(self, active=active)


@dataclass(frozen=True, slots=True)
class PendingAlarmEntry:
    trigger_ms: int
    description: str
    slot: int


@dataclass(frozen=True, slots=True)
class VolumeInfo:
    value: int
    min: int = 0
    max: int = 100
    step: int = 1
    type: str = "number"


@dataclass(frozen=True, slots=True)
class OutputState:
    output_id: str
    display_name: str
    volume: VolumeInfo | None = None


@dataclass(frozen=True, slots=True)
class ZoneState:
    zone_id: str
    display_name: str
    state: PlaybackState
    outputs: tuple[OutputState, ...] = ()
    is_play_allowed: bool = False
    is_pause_allowed: bool = False
    is_previous_allowed: bool = False
    seek_position: int | None = None
    track_length: int | None = None

    @property
    def is_playing(self) -> bool:
        return self.state == "playing"

    @property
    def remaining_seconds(self) -> int | None:
        if self.track_length is None or self.seek_position is None:
            return None
        return max(0, self.track_length - self.seek_position)

    def output(self, output_id: str) -> OutputState | None:
        for output in self.outputs:
            if output.output_id == output_id:
                return output
        return None
