"""One timer per alarm slot plus the sorted list of upcoming triggers."""

from __future__ import annotations

import asyncio
import bisect
import logging
from collections.abc import Callable
from datetime import datetime

from alarmclock.datetime_utils import MS_PER_MINUTE, from_epoch_ms, local_now, to_epoch_ms
from alarmclock.utils import current_task_or_none

from .models import Alarm, PendingAlarmEntry
from .status import describe_pending, format_status
from .time_calc import next_trigger
from .wake_action import AlarmSettings, WakeActionController

LOGGER = logging.getLogger("alarmclock.timers")

StatusSink = Callable[[str], None]
PendingSink = Callable[[tuple[PendingAlarmEntry, ...]], None]


class AlarmTimerManager:
    def __init__(
        self,
        settings: AlarmSettings,
        controller: WakeActionController,
        *,
        status_sink: StatusSink | None = None,
        pending_sink: PendingSink | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = settings
        self._controller = controller
        self._status_sink = status_sink
        self._pending_sink = pending_sink
        self._clock = clock or local_now
        self._logger = logger or LOGGER
        self._handles: dict[int, asyncio.Task | None] = {}
        self._pending: list[PendingAlarmEntry] = []

    @property
    def pending(self) -> tuple[PendingAlarmEntry, ...]:
        return tuple(self._pending)

    def handle(self, slot: int) -> asyncio.Task | None:
        return self._handles.get(slot)

    def reschedule(self, alarms: tuple[Alarm, ...] | list[Alarm], *, reset: bool = False) -> None:
        """Recompute timers.

        ``reset`` recomputes every active slot (settings changed). Without it only
        slots whose timer is no longer armed are recomputed (an alarm just fired)
        and elapsed pending entries are pruned.
        """
        now = self._clock()
        now_ms = to_epoch_ms(now)
        if reset:
            self._pending.clear()
        else:
            self._pending = [entry for entry in self._pending if entry.trigger_ms > now_ms]

        for slot, alarm in enumerate(alarms):
            if not alarm.active or alarm.zone is None:
                self._cancel(slot)
                self._drop_pending(slot)
                continue
            if not reset and self._handles.get(slot) is not None:
                continue
            trigger_ms = next_trigger(now, alarm.time, alarm.day, alarm.transition, action=alarm.action)
            self._insert_pending(PendingAlarmEntry(trigger_ms, self._describe(alarm, trigger_ms, now), slot))
            self._arm(slot, trigger_ms, now_ms)

        for slot in [slot for slot in self._handles if slot >= len(alarms)]:
            self._cancel(slot)
            self._drop_pending(slot)

        self._report()

    def stop(self) -> None:
        for slot in list(self._handles):
            self._cancel(slot)
        self._pending.clear()

    def _describe(self, alarm: Alarm, trigger_ms: int, now: datetime) -> str:
        wake_ms = trigger_ms
        if alarm.transition.is_fading and alarm.action == "play" and not alarm.time.relative:
            wake_ms += alarm.transition.minutes * MS_PER_MINUTE
        return describe_pending(alarm, from_epoch_ms(wake_ms, now.tzinfo))

    def _insert_pending(self, entry: PendingAlarmEntry) -> None:
        self._drop_pending(entry.slot)
        keys = [item.trigger_ms for item in self._pending]
        self._pending.insert(bisect.bisect_right(keys, entry.trigger_ms), entry)

    def _drop_pending(self, slot: int) -> None:
        self._pending = [entry for entry in self._pending if entry.slot != slot]

    def _arm(self, slot: int, trigger_ms: int, now_ms: int) -> None:
        self._cancel(slot)
        task = asyncio.create_task(self._wait_for_alarm(slot, trigger_ms), name=f"alarm-{slot + 1}")
        self._handles[slot] = task
        self._logger.debug("[timers] Alarm %d armed, firing in %.0fs", slot + 1, max(0, trigger_ms - now_ms) / 1000)

    def _cancel(self, slot: int) -> None:
        task = self._handles.pop(slot, None)
        if task and not task.done() and task is not current_task_or_none():
            task.cancel()

    async def _wait_for_alarm(self, slot: int, trigger_ms: int) -> None:
        try:
            # The loop clock is monotonic; keep sleeping until the wall clock agrees.
            remaining_ms = trigger_ms - to_epoch_ms(self._clock())
            while remaining_ms > 0:
                await asyncio.sleep(remaining_ms / 1000)
                remaining_ms = trigger_ms - to_epoch_ms(self._clock())
        except asyncio.CancelledError:
            return
        await self.fire(slot)

    async def fire(self, slot: int) -> None:
        """Run the wake action for ``slot`` and re-arm whatever is left unarmed."""
        # Disarm first so a concurrent reset cannot cancel the running action.
        self._cancel(slot)
        self._handles[slot] = None
        alarms = self._settings.snapshot()
        alarm = alarms[slot] if slot < len(alarms) else None
        if alarm is not None and alarm.active:
            try:
                await self._controller.fire(slot, alarm)
            except Exception as exc:
                self._logger.error("[timers] Alarm %d action failed: %s", slot + 1, exc, exc_info=True)
        self.reschedule(self._settings.snapshot(), reset=False)

    def _report(self) -> None:
        if self._status_sink is not None:
            self._status_sink(format_status(self._pending))
        if self._pending_sink is not None:
            self._pending_sink(self.pending)
