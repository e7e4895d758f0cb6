"""Wires the alarm engine to Home Assistant zones, MQTT and the settings file."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from alarmclock.datetime_utils import local_now, resolve_timezone

from .config import AlarmClockConfig
from .fade import FadeEngine
from .ha_zones import HomeAssistantZonePort
from .home_assistant import HomeAssistantClient, HomeAssistantError
from .mqtt import AlarmMqtt
from .publisher import AlarmStatusPublisher
from .settings_store import AlarmConfigError, AlarmSettingsStore, alarm_from_dict
from .timer_manager import AlarmTimerManager
from .wake_action import WakeActionController
from .zone_port import ZoneControlPort
from .zone_wait import ZoneWaitRegistry

LOGGER = logging.getLogger("alarmclock.service")


class AlarmClockService:
    def __init__(
        self,
        config: AlarmClockConfig,
        *,
        zone_port: ZoneControlPort | None = None,
        home_assistant: HomeAssistantClient | None = None,
        mqtt: AlarmMqtt | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        tz = resolve_timezone(config.timezone)
        if config.timezone and tz is None:
            LOGGER.warning("[service] Unknown timezone %s; using the system zone", config.timezone)
        self._clock = clock or (lambda: local_now(tz))

        self.home_assistant = home_assistant
        if zone_port is None:
            if self.home_assistant is None:
                self.home_assistant = HomeAssistantClient(config.home_assistant)
            zone_port = HomeAssistantZonePort(self.home_assistant, transfer_service=config.transfer_service)
        self.zone_port = zone_port

        self.store = AlarmSettingsStore(config.settings_path, config.alarm_count)
        self.waits = ZoneWaitRegistry(timeout=config.zone_wait_timeout)
        self.fades = FadeEngine(self.zone_port, self.waits)
        self.controller = WakeActionController(
            self.zone_port, self.fades, self.waits, self.store, clock=self._clock
        )
        self.mqtt = mqtt or AlarmMqtt(config.mqtt)
        self.publisher = AlarmStatusPublisher(self.mqtt, config.mqtt.topic_base, tz=tz)
        self.timers = AlarmTimerManager(
            self.store,
            self.controller,
            status_sink=self._publish_status,
            pending_sink=self.publisher.publish_pending,
            clock=self._clock,
        )
        self._unsubscribe: Callable[[], None] | None = None
        self._listener_task: asyncio.Task | None = None
        self._shutdown = asyncio.Event()

    async def start(self) -> None:
        self.store.load()
        self.mqtt.connect()
        self.publisher.listen_for_commands(asyncio.get_running_loop(), self.apply_alarm_update)
        self._unsubscribe = self.zone_port.subscribe(self.waits.notify)
        if isinstance(self.zone_port, HomeAssistantZonePort):
            try:
                await self.zone_port.refresh()
            except HomeAssistantError as exc:
                LOGGER.warning("[service] Unable to load media players yet: %s", exc)
            self._listener_task = asyncio.create_task(self.zone_port.run(), name="ha-zone-events")
        self.timers.reschedule(self.store.snapshot(), reset=True)
        self.publisher.publish_titles(self.store.snapshot())
        LOGGER.info("[service] Alarm clock ready with %d slot(s)", self.store.alarm_count)

    async def run(self) -> None:
        await self.start()
        await self._shutdown.wait()

    async def shutdown(self) -> None:
        self._shutdown.set()
        self.timers.stop()
        self.fades.stop()
        self.waits.clear()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._listener_task is not None:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None
        self.mqtt.disconnect()
        if self.home_assistant is not None:
            await self.home_assistant.close()

    async def apply_alarm_update(self, slot: int, payload: dict[str, Any]) -> None:
        """Validate and store an edited alarm, then rebuild every timer."""
        try:
            alarm = alarm_from_dict(payload)
            volume_range = None
            if alarm.zone is not None:
                zone = self.zone_port.resolve_zone_by_output(alarm.zone)
                volume_range = self.zone_port.current_volume(zone, alarm.zone)
            self.store.update(slot, alarm, volume_range=volume_range)
        except AlarmConfigError as exc:
            LOGGER.warning("[service] Rejected alarm %d update: %s", slot + 1, exc)
            return
        LOGGER.info("[service] Alarm %d updated", slot + 1)
        self.timers.reschedule(self.store.snapshot(), reset=True)
        self.publisher.publish_titles(self.store.snapshot())

    def _publish_status(self, text: str) -> None:
        LOGGER.info("[status] %s", text.replace("\n", "; "))
        self.publisher.publish_status(text)
