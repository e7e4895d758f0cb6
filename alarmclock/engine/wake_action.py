"""What happens to a zone when an alarm fires."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from alarmclock.datetime_utils import js_weekday, local_now

from .fade import FadeEngine
from .models import FRI, SAT, SUN, WEEKDAY_CODES, Action, Alarm, ZoneOutputRef, ZoneState
from .zone_port import ZoneCommandError, ZoneControlPort
from .zone_wait import ZoneExpectation, ZoneWaitRegistry

LOGGER = logging.getLogger("alarmclock.wake_action")

# Seek position reported right after a new track starts (allowing one second of lag).
TRACK_RESTART_POSITION = 1


class AlarmSettings(Protocol):
    def snapshot(self) -> tuple[Alarm, ...]: ...

    def set_active(self, slot: int, active: bool) -> None: ...


def expires_after_firing(alarm: Alarm, weekday: int) -> bool:
    """True when a non-repeating alarm has no further occurrence this week."""
    if alarm.repeat:
        return False
    if alarm.day in WEEKDAY_CODES or alarm.day == "once":
        return True
    if alarm.day == "weekend":
        return weekday == SUN
    if alarm.day == "weekdays":
        return weekday == FRI
    if alarm.day == "daily":
        return weekday == SAT
    return False


class WakeActionController:
    """Resolve the zone, optionally postpone, then play/stop/standby/transfer it."""

    def __init__(
        self,
        port: ZoneControlPort,
        fades: FadeEngine,
        waits: ZoneWaitRegistry,
        settings: AlarmSettings,
        *,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._port = port
        self._fades = fades
        self._waits = waits
        self._settings = settings
        self._clock = clock or local_now
        self._logger = logger or LOGGER

    async def fire(self, slot: int, alarm: Alarm) -> None:
        """Handle a fired alarm. Bookkeeping runs even when the zone is gone."""
        fired_at = self._clock()
        zone = self._port.resolve_zone_by_output(alarm.zone) if alarm.zone else None
        if zone is None:
            label = alarm.zone.label if alarm.zone else "<none>"
            self._logger.warning("[wake] Alarm %d: zone for %s is unavailable, skipping action", slot + 1, label)
        else:
            self._logger.info("[wake] Alarm %d fired: %s on %s", slot + 1, alarm.action, zone.display_name)
            try:
                await self._dispatch(slot, alarm, zone)
            except ZoneCommandError as exc:
                self._logger.warning("[wake] Alarm %d: %s", slot + 1, exc)

        if expires_after_firing(alarm, js_weekday(fired_at)):
            self._logger.info("[wake] Alarm %d has no further occurrence, disabling", slot + 1)
            self._settings.set_active(slot, False)

    async def _dispatch(self, slot: int, alarm: Alarm, zone: ZoneState) -> None:
        if self._postpone_until_track_end(slot, alarm, zone):
            return
        if await self._postpone_until_playable(slot, alarm, zone):
            return
        await self.execute(slot, alarm, zone)

    def _deferred(self, slot: int, alarm: Alarm) -> tuple[Callable, Callable]:
        async def _resume(zone: ZoneState) -> None:
            await self.execute(slot, alarm, zone)

        async def _resume_after_timeout() -> None:
            zone = self._port.resolve_zone_by_output(alarm.zone) if alarm.zone else None
            if zone is None:
                self._logger.warning("[wake] Alarm %d: zone vanished while waiting", slot + 1)
                return
            await self.execute(slot, alarm, zone)

        return _resume, _resume_after_timeout

    def _postpone_until_track_end(self, slot: int, alarm: Alarm, zone: ZoneState) -> bool:
        transition = alarm.transition
        if not (zone.is_playing and transition.kind == "track_boundary" and alarm.action in ("stop", "standby")):
            return False
        remaining = zone.remaining_seconds
        if remaining is None or remaining >= transition.minutes * 60:
            return False
        resume, fallback = self._deferred(slot, alarm)
        self._waits.await_zone(
            zone.zone_id,
            ZoneExpectation(seek_position=TRACK_RESTART_POSITION, state="stopped"),
            resume,
            on_timeout=fallback,
        )
        self._logger.info(
            "[wake] Alarm %d: %ss left in current track, %s at track end", slot + 1, remaining, alarm.action
        )
        return True

    async def _postpone_until_playable(self, slot: int, alarm: Alarm, zone: ZoneState) -> bool:
        if alarm.action != "play" or zone.is_play_allowed or not zone.is_previous_allowed:
            return False
        output = alarm.zone
        if output is None:
            return False
        resume, fallback = self._deferred(slot, alarm)
        self._waits.await_zone(zone.zone_id, ZoneExpectation(is_play_allowed=True), resume, on_timeout=fallback)
        self._logger.info("[wake] Alarm %d: queue ended, stepping back to the previous track", slot + 1)
        try:
            await self._port.issue_command(output, "previous")
        except ZoneCommandError as exc:
            self._logger.warning("[wake] Alarm %d: %s", slot + 1, exc)
            self._waits.cancel(zone.zone_id)
            return False
        try:
            await self._port.issue_command(output, "continuous_playback", {"enabled": True})
        except ZoneCommandError as exc:
            self._logger.debug("[wake] Alarm %d: continuous playback not enabled: %s", slot + 1, exc)
        return True

    async def execute(self, slot: int, alarm: Alarm, zone: ZoneState) -> None:
        output = alarm.zone
        if output is None:
            return
        action: Action | None = alarm.action
        volume = self._port.current_volume(zone, output)
        end_volume = alarm.wake_volume
        if end_volume is None and volume is not None:
            end_volume = volume.max

        if volume is not None and alarm.transition.is_fading and action != "transfer":
            start_volume = volume.value if zone.is_playing else volume.min
            target = volume.min if action in ("stop", "standby") else end_volume
            if target is not None and target != start_volume:
                completion = action if zone.is_playing and action in ("stop", "standby") else None
                self._fades.start_fade(
                    slot,
                    output,
                    start_volume,
                    target,
                    alarm.transition.minutes,
                    completion=completion,
                )
                if completion is not None:
                    # Fade engine stops the zone once the volume bottoms out.
                    action = None
                end_volume = start_volume

        if action == "play":
            await self._play(output, zone, end_volume)
        elif action == "stop":
            await self._stop(output, zone)
        elif action == "standby":
            await self._standby(output, zone)
        elif action == "transfer":
            await self._transfer(slot, alarm, end_volume)

    async def _play(self, output: ZoneOutputRef, zone: ZoneState, volume: int | None) -> None:
        if volume is not None:
            await self._port.set_volume_absolute(output, volume)
        if not zone.is_playing:
            await self._port.issue_command(output, "play")

    async def _stop(self, output: ZoneOutputRef, zone: ZoneState) -> None:
        if not zone.is_playing:
            return
        if zone.is_pause_allowed:
            try:
                await self._port.issue_command(output, "pause")
                return
            except ZoneCommandError as exc:
                self._logger.debug("[wake] Pause rejected, stopping instead: %s", exc)
        await self._port.issue_command(output, "stop")

    async def _standby(self, output: ZoneOutputRef, zone: ZoneState) -> None:
        try:
            await self._port.issue_command(output, "standby")
        except ZoneCommandError as exc:
            self._logger.info("[wake] Standby not available on %s (%s), stopping instead", output.label, exc)
            await self._stop(output, zone)

    async def _transfer(self, slot: int, alarm: Alarm, volume: int | None) -> None:
        source, target = alarm.zone, alarm.transfer_zone
        if source is None or target is None:
            self._logger.warning("[wake] Alarm %d: transfer without a target zone", slot + 1)
            return
        if volume is not None:
            await self._port.set_volume_absolute(target, volume)
        await self._port.transfer(source, target)
