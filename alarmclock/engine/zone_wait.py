"""Deferred continuations that run once a zone reports an expected state."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from alarmclock.utils import current_task_or_none

from .models import PlaybackState, ZoneState

LOGGER = logging.getLogger("alarmclock.zone_wait")

Continuation = Callable[[ZoneState], Awaitable[None] | None]
TimeoutFallback = Callable[[], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class ZoneExpectation:
    seek_position: int | None = None
    is_play_allowed: bool | None = None
    is_pause_allowed: bool | None = None
    state: PlaybackState | None = None

    def matches(self, zone: ZoneState) -> bool:
        if self.seek_position is not None and zone.seek_position is not None:
            # Zones may report the position one second behind.
            if zone.seek_position in (self.seek_position, self.seek_position - 1):
                return True
        if self.is_play_allowed is not None and zone.is_play_allowed == self.is_play_allowed:
            return True
        if self.is_pause_allowed is not None and zone.is_pause_allowed == self.is_pause_allowed:
            return True
        if self.state is not None and zone.state == self.state:
            return True
        return False


@dataclass
class ZoneWaitEntry:
    zone_id: str
    expected: ZoneExpectation
    continuation: Continuation
    on_timeout: TimeoutFallback | None = None
    timeout_task: asyncio.Task | None = field(default=None, repr=False)


async def _invoke(callback: Callable[..., Awaitable[None] | None], *args: object) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ZoneWaitRegistry:
    """One pending wait per zone id; a newer registration replaces the older one."""

    def __init__(self, *, timeout: float | None = None, logger: logging.Logger | None = None) -> None:
        self._timeout = timeout if timeout and timeout > 0 else None
        self._logger = logger or LOGGER
        self._waits: dict[str, ZoneWaitEntry] = {}

    def await_zone(
        self,
        zone_id: str,
        expected: ZoneExpectation,
        continuation: Continuation,
        *,
        on_timeout: TimeoutFallback | None = None,
    ) -> None:
        previous = self._waits.pop(zone_id, None)
        if previous is not None:
            self._discard(previous)
            self._logger.debug("[zone_wait] Replacing pending wait for zone %s", zone_id)
        entry = ZoneWaitEntry(zone_id, expected, continuation, on_timeout)
        if self._timeout is not None:
            entry.timeout_task = asyncio.create_task(self._expire(entry))
        self._waits[zone_id] = entry
        self._logger.debug("[zone_wait] Waiting for zone %s to report %s", zone_id, expected)

    def is_pending(self, zone_id: str) -> bool:
        return zone_id in self._waits

    def cancel(self, zone_id: str) -> bool:
        entry = self._waits.pop(zone_id, None)
        if entry is None:
            return False
        self._discard(entry)
        return True

    def clear(self) -> None:
        for entry in self._waits.values():
            self._discard(entry)
        self._waits.clear()

    async def notify(self, zone: ZoneState) -> None:
        entry = self._waits.get(zone.zone_id)
        if entry is None or not entry.expected.matches(zone):
            return
        del self._waits[zone.zone_id]
        self._discard(entry)
        try:
            await _invoke(entry.continuation, zone)
        except Exception as exc:
            self._logger.error(
                "[zone_wait] Continuation for zone %s failed: %s", zone.zone_id, exc, exc_info=True
            )

    async def _expire(self, entry: ZoneWaitEntry) -> None:
        try:
            await asyncio.sleep(self._timeout or 0)
        except asyncio.CancelledError:
            return
        if self._waits.get(entry.zone_id) is not entry:
            return
        del self._waits[entry.zone_id]
        self._logger.warning(
            "[zone_wait] Zone %s did not report %s within %.0fs", entry.zone_id, entry.expected, self._timeout
        )
        if entry.on_timeout is None:
            return
        try:
            await _invoke(entry.on_timeout)
        except Exception as exc:
            self._logger.error("[zone_wait] Timeout fallback for zone %s failed: %s", entry.zone_id, exc, exc_info=True)

    @staticmethod
    def _discard(entry: ZoneWaitEntry) -> None:
        task = entry.timeout_task
        entry.timeout_task = None
        if task is None or task.done() or task is current_task_or_none():
            return
        task.cancel()
