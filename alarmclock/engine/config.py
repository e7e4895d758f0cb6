"""Configuration helpers for the alarm clock daemon."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path

from alarmclock.utils import (
    clamp,
    parse_bool,
    parse_float,
    parse_int,
    sanitize_hostname_for_entity_id,
)

from .settings_store import DEFAULT_ALARM_COUNT, MAX_ALARM_COUNT

DEFAULT_SETTINGS_FILE = "~/.config/alarm-clock/settings.json"
DEFAULT_TRANSFER_SERVICE = "music_assistant.transfer_queue"


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class HomeAssistantConfig:
    base_url: str | None
    token: str | None
    verify_ssl: bool


@dataclass(frozen=True)
class AlarmClockConfig:
    hostname: str
    alarm_count: int
    settings_path: Path
    timezone: str | None
    zone_wait_timeout: float
    transfer_service: str
    mqtt: MqttConfig
    home_assistant: HomeAssistantConfig

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> AlarmClockConfig:
        source = env or os.environ
        hostname = source.get("ALARM_CLOCK_HOSTNAME") or socket.gethostname()

        alarm_count = clamp(parse_int(source.get("ALARM_CLOCK_COUNT"), DEFAULT_ALARM_COUNT), 1, MAX_ALARM_COUNT)
        settings_path = Path(source.get("ALARM_CLOCK_SETTINGS_FILE") or DEFAULT_SETTINGS_FILE).expanduser()
        zone_wait_timeout = max(0.0, parse_float(source.get("ALARM_ZONE_WAIT_TIMEOUT_S"), 0.0))
        transfer_service = _strip_or_none(source.get("ALARM_TRANSFER_SERVICE")) or DEFAULT_TRANSFER_SERVICE
        if "." not in transfer_service:
            transfer_service = DEFAULT_TRANSFER_SERVICE

        topic_base = source.get("ALARM_CLOCK_TOPIC_BASE") or f"alarm-clock/{sanitize_hostname_for_entity_id(hostname)}"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base.rstrip("/"),
        )

        ha_base_url = source.get("HOME_ASSISTANT_BASE_URL")
        if ha_base_url:
            ha_base_url = ha_base_url.rstrip("/")
        home_assistant = HomeAssistantConfig(
            base_url=ha_base_url or None,
            token=source.get("HOME_ASSISTANT_TOKEN") or source.get("HOME_ASSISTANT_LONG_LIVED_TOKEN"),
            verify_ssl=parse_bool(source.get("HOME_ASSISTANT_VERIFY_SSL"), True),
        )

        return AlarmClockConfig(
            hostname=hostname,
            alarm_count=alarm_count,
            settings_path=settings_path,
            timezone=_strip_or_none(source.get("ALARM_CLOCK_TIMEZONE")),
            zone_wait_timeout=zone_wait_timeout,
            transfer_service=transfer_service,
            mqtt=mqtt,
            home_assistant=home_assistant,
        )
