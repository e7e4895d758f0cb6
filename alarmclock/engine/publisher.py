"""MQTT status publishing and remote alarm edits.

Topics (under the configured topic base):

- ``status``: human-readable status text (retained)
- ``alarms/pending``: JSON list of upcoming triggers (retained)
- ``alarms/titles``: JSON list of one-line slot summaries (retained)
- ``alarms/set``: inbound ``{"slot": n, "alarm": {...}}`` edits, slot is 1-based
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import tzinfo
from typing import Any

from alarmclock.datetime_utils import from_epoch_ms

from .models import Alarm, PendingAlarmEntry
from .mqtt import AlarmMqtt
from .status import alarm_title

LOGGER = logging.getLogger("alarmclock.publisher")

CommandHandler = Callable[[int, dict[str, Any]], Awaitable[None]]


class AlarmStatusPublisher:
    def __init__(
        self,
        mqtt: AlarmMqtt,
        topic_base: str,
        logger: logging.Logger | None = None,
        *,
        tz: tzinfo | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.tz = tz
        self.logger = logger or LOGGER
        base_topic = topic_base.rstrip("/")
        self.status_topic = f"{base_topic}/status"
        self.pending_topic = f"{base_topic}/alarms/pending"
        self.titles_topic = f"{base_topic}/alarms/titles"
        self.command_topic = f"{base_topic}/alarms/set"
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_command: CommandHandler | None = None

    def publish_status(self, text: str) -> None:
        self.mqtt.publish(self.status_topic, text, retain=True)

    def publish_pending(self, entries: Iterable[PendingAlarmEntry]) -> None:
        payload = [
            {
                "slot": entry.slot + 1,
                "trigger": from_epoch_ms(entry.trigger_ms, self.tz).isoformat(),
                "description": entry.description,
            }
            for entry in entries
        ]
        self.mqtt.publish(self.pending_topic, json.dumps(payload), retain=True)

    def publish_titles(self, alarms: Iterable[Alarm]) -> None:
        titles = [alarm_title(alarm, slot) for slot, alarm in enumerate(alarms)]
        self.mqtt.publish(self.titles_topic, json.dumps(titles), retain=True)

    def listen_for_commands(self, loop: asyncio.AbstractEventLoop, on_command: CommandHandler) -> None:
        self._loop = loop
        self._on_command = on_command
        self.mqtt.subscribe(self.command_topic, self.handle_command_message)

    def handle_command_message(self, payload: str) -> None:
        """Runs on the MQTT network thread; hands valid edits to the event loop."""
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            self.logger.warning("[publisher] Ignoring non-JSON alarm command: %s", payload)
            return
        if not isinstance(parsed, dict):
            self.logger.warning("[publisher] Alarm command must be an object")
            return
        slot = parsed.get("slot")
        alarm = parsed.get("alarm")
        if not isinstance(slot, int) or isinstance(slot, bool) or slot < 1 or not isinstance(alarm, dict):
            self.logger.warning("[publisher] Alarm command needs a slot number and an alarm object")
            return
        if self._loop is None or self._on_command is None:
            self.logger.error("[publisher] Cannot apply alarm command: event loop not initialized")
            return
        asyncio.run_coroutine_threadsafe(self._on_command(slot - 1, alarm), self._loop)
