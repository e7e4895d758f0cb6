"""Shared test fixtures for the alarm clock test suite.

This module provides reusable fixtures for common test scenarios including:
- An in-memory Zone Control Port that records every command
- Home Assistant client mocking
- MQTT client mocking
- Configuration objects
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any
from unittest.mock import AsyncMock, Mock

import httpx
import paho.mqtt.client as mqtt
import pytest
from alarmclock.engine.config import HomeAssistantConfig, MqttConfig
from alarmclock.engine.models import OutputState, VolumeInfo, ZoneOutputRef, ZoneState
from alarmclock.engine.zone_port import ZoneCommandError, volume_for_output

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


@pytest.fixture
def mock_logger():
    return Mock(spec=logging.Logger)


# ============================================================================
# Zone Fixtures
# ============================================================================


class FakeZonePort:
    """Zone Control Port backed by a dict; output id == zone id."""

    def __init__(self) -> None:
        self.zones: dict[str, ZoneState] = {}
        self.commands: list[tuple[str, str, dict[str, Any] | None]] = []
        self.volume_writes: list[tuple[str, int]] = []
        self.transfers: list[tuple[str, str]] = []
        self.rejected: set[str] = set()
        self.listeners: list[Any] = []

    def add_zone(
        self,
        zone_id: str = "kitchen",
        *,
        state: str = "paused",
        volume: int | None = 20,
        volume_min: int = 0,
        volume_max: int = 100,
        **fields: Any,
    ) -> ZoneOutputRef:
        info = None if volume is None else VolumeInfo(value=volume, min=volume_min, max=volume_max)
        defaults: dict[str, Any] = {
            "is_play_allowed": state != "playing",
            "is_pause_allowed": state == "playing",
            "is_previous_allowed": True,
        }
        defaults.update(fields)
        self.zones[zone_id] = ZoneState(
            zone_id=zone_id,
            display_name=zone_id.title(),
            state=state,  # type: ignore[arg-type]
            outputs=(OutputState(zone_id, zone_id.title(), info),),
            **defaults,
        )
        return ZoneOutputRef(zone_id, zone_id.title())

    def update(self, zone_id: str, **changes: Any) -> ZoneState:
        self.zones[zone_id] = replace(self.zones[zone_id], **changes)
        return self.zones[zone_id]

    def set_reported_volume(self, zone_id: str, value: int) -> None:
        zone = self.zones[zone_id]
        output = zone.outputs[0]
        if output.volume is None:
            return
        volume = replace(output.volume, value=value)
        self.zones[zone_id] = replace(zone, outputs=(replace(output, volume=volume),))

    def command_names(self) -> list[str]:
        return [command for _, command, _ in self.commands]

    def resolve_zone_by_output(self, output: ZoneOutputRef) -> ZoneState | None:
        return self.zones.get(output.output_id)

    def current_volume(self, zone: ZoneState | None, output: ZoneOutputRef) -> VolumeInfo | None:
        if zone is None:
            zone = self.resolve_zone_by_output(output)
        return volume_for_output(zone, output.output_id)

    async def issue_command(self, output: ZoneOutputRef, command: str, args: dict[str, Any] | None = None) -> None:
        if command in self.rejected:
            raise ZoneCommandError(command, output.output_id, "is not supported")
        self.commands.append((output.output_id, command, args))

    async def set_volume_absolute(self, output: ZoneOutputRef, value: int) -> None:
        self.volume_writes.append((output.output_id, value))
        if output.output_id in self.zones:
            self.set_reported_volume(output.output_id, value)

    async def transfer(self, source: ZoneOutputRef, target: ZoneOutputRef) -> None:
        self.transfers.append((source.output_id, target.output_id))

    def subscribe(self, listener: Any):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)


@pytest.fixture
def zone_port() -> FakeZonePort:
    return FakeZonePort()


# ============================================================================
# Home Assistant Fixtures
# ============================================================================


@pytest.fixture
def ha_config():
    """Create a basic Home Assistant configuration for testing."""
    return HomeAssistantConfig(
        base_url="http://homeassistant.local:8123",
        token="test_token_123",
        verify_ssl=True,
    )


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx.AsyncClient for Home Assistant tests."""
    client = AsyncMock(spec=httpx.AsyncClient)
    client.headers = {}
    client.base_url = httpx.URL("http://homeassistant.local:8123")
    return client


@pytest.fixture
def mock_ha_response():
    """Create a factory for mock Home Assistant API responses.

    Usage:
        response = mock_ha_response(status_code=200, json_data={"state": "on"})
    """

    def _create_response(
        status_code: int = 200,
        json_data: Any = None,
        text: str = "",
    ) -> Mock:
        response = Mock(spec=httpx.Response)
        response.status_code = status_code
        response.json = Mock(return_value=json_data if json_data is not None else {})
        response.text = text
        response.headers = {"content-type": "application/json"}
        return response

    return _create_response


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mqtt_config():
    """Create a basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        topic_base="alarm-clock/test",
        username=None,
        password=None,
        tls_enabled=False,
        ca_cert=None,
        cert=None,
        key=None,
    )


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client."""
    client = Mock(spec=mqtt.Client)
    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))
    client.is_connected = Mock(return_value=True)
    return client
