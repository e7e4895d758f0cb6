"""Stepwise volume fades that yield to anyone else touching the volume knob."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from alarmclock.utils import current_task_or_none

from .models import Action, ZoneOutputRef, ZoneState
from .zone_port import ZoneCommandError, ZoneControlPort
from .zone_wait import ZoneExpectation, ZoneWaitRegistry

LOGGER = logging.getLogger("alarmclock.fade")

SleepFunc = Callable[[float], Awaitable[None]]

# Reported volume may trail the last written value by one step.
COLLISION_TOLERANCE = 1


@dataclass
class FadeSession:
    slot: int
    output: ZoneOutputRef
    start_volume: int
    end_volume: int
    current_volume: int
    interval_s: float
    completion: Action | None = None
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def step(self) -> int:
        return 1 if self.start_volume < self.end_volume else -1

    @property
    def reached(self) -> bool:
        return self.current_volume == self.end_volume


class FadeEngine:
    """Drive one fade session per alarm slot."""

    def __init__(
        self,
        port: ZoneControlPort,
        waits: ZoneWaitRegistry,
        *,
        sleep: SleepFunc | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._port = port
        self._waits = waits
        self._sleep = sleep or asyncio.sleep
        self._logger = logger or LOGGER
        self._sessions: dict[int, FadeSession] = {}

    def session(self, slot: int) -> FadeSession | None:
        return self._sessions.get(slot)

    def start_fade(
        self,
        slot: int,
        output: ZoneOutputRef,
        start_volume: int,
        end_volume: int,
        duration_minutes: float,
        *,
        completion: Action | None = None,
    ) -> FadeSession | None:
        """Start fading ``output`` from start to end volume, replacing any session of the slot."""
        self.cancel(slot)
        if start_volume == end_volume:
            return None
        interval_s = (duration_minutes * 60) / abs(end_volume - start_volume)
        session = FadeSession(
            slot=slot,
            output=output,
            start_volume=start_volume,
            end_volume=end_volume,
            current_volume=start_volume,
            interval_s=interval_s,
            completion=completion,
        )
        self._sessions[slot] = session
        session.task = asyncio.create_task(self._run(session), name=f"fade-{slot + 1}")
        self._logger.info(
            "[fade] Alarm %d: fading %s from %d to %d, one step every %.1fs",
            slot + 1,
            output.label,
            start_volume,
            end_volume,
            interval_s,
        )
        return session

    def cancel(self, slot: int) -> bool:
        session = self._sessions.pop(slot, None)
        if session is None:
            return False
        task = session.task
        session.task = None
        if task and not task.done() and task is not current_task_or_none():
            task.cancel()
        return True

    def stop(self) -> None:
        for slot in list(self._sessions):
            self.cancel(slot)

    async def _run(self, session: FadeSession) -> None:
        try:
            while True:
                await self._sleep(session.interval_s)
                if self._sessions.get(session.slot) is not session:
                    return
                if not await self.tick(session):
                    return
        finally:
            if self._sessions.get(session.slot) is session:
                del self._sessions[session.slot]

    async def tick(self, session: FadeSession) -> bool:
        """Advance the session by one step. Returns False once the session has ended."""
        output = session.output
        zone = self._port.resolve_zone_by_output(output)
        volume = self._port.current_volume(zone, output)
        if zone is None or volume is None:
            self._logger.debug("[fade] Alarm %d: %s not reporting volume, waiting", session.slot + 1, output.label)
            return True

        if abs(volume.value - session.current_volume) > COLLISION_TOLERANCE:
            self._logger.info(
                "[fade] Alarm %d: volume changed externally to %d, fading terminated",
                session.slot + 1,
                volume.value,
            )
            return False

        if zone.state not in ("playing", "loading"):
            self._logger.info("[fade] Alarm %d: playback stopped during fade, restoring volume", session.slot + 1)
            await self._restore(session)
            return False

        if not session.reached:
            session.current_volume += session.step
            try:
                await self._port.set_volume_absolute(output, session.current_volume)
            except ZoneCommandError as exc:
                self._logger.warning("[fade] Alarm %d: %s, fading terminated", session.slot + 1, exc)
                return False
            return True

        self._logger.info("[fade] Alarm %d: target volume %d reached", session.slot + 1, session.end_volume)
        if session.completion in ("stop", "standby"):
            await self._complete(session, zone)
        return False

    async def _complete(self, session: FadeSession, zone: ZoneState) -> None:
        output = session.output
        command = "pause" if zone.is_pause_allowed else "stop"

        async def _after_stopped(_zone: ZoneState | None = None) -> None:
            await self._restore(session)
            if session.completion != "standby":
                return
            try:
                await self._port.issue_command(output, "standby")
            except ZoneCommandError as exc:
                self._logger.info("[fade] Alarm %d: standby rejected (%s), staying paused", session.slot + 1, exc)

        # Registered first: the paused notification may arrive before the command returns.
        self._waits.await_zone(
            zone.zone_id,
            ZoneExpectation(is_play_allowed=True),
            _after_stopped,
            on_timeout=_after_stopped,
        )
        try:
            await self._port.issue_command(output, command)
        except ZoneCommandError as exc:
            self._waits.cancel(zone.zone_id)
            self._logger.warning("[fade] Alarm %d: unable to end playback: %s", session.slot + 1, exc)

    async def _restore(self, session: FadeSession) -> None:
        try:
            await self._port.set_volume_absolute(session.output, session.start_volume)
        except ZoneCommandError as exc:
            self._logger.warning("[fade] Alarm %d: unable to restore volume: %s", session.slot + 1, exc)
        else:
            session.current_volume = session.start_volume

    async def wait_idle(self, slot: int) -> None:
        """Wait until the slot's session (if any) has finished."""
        session = self._sessions.get(slot)
        if session is None or session.task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await session.task
