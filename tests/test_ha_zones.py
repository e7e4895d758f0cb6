"""Tests for the Home Assistant backed zone port."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest
from alarmclock.engine.ha_zones import (
    SUPPORT_PAUSE,
    SUPPORT_PLAY,
    SUPPORT_PREVIOUS_TRACK,
    SUPPORT_REPEAT_SET,
    SUPPORT_STOP,
    SUPPORT_TURN_OFF,
    SUPPORT_VOLUME_SET,
    HomeAssistantZonePort,
    zone_from_state,
)
from alarmclock.engine.home_assistant import HomeAssistantError
from alarmclock.engine.models import ZoneOutputRef
from alarmclock.engine.zone_port import ZoneCommandError

pytestmark = pytest.mark.anyio

ALL_FEATURES = (
    SUPPORT_PAUSE
    | SUPPORT_PLAY
    | SUPPORT_PREVIOUS_TRACK
    | SUPPORT_REPEAT_SET
    | SUPPORT_STOP
    | SUPPORT_TURN_OFF
    | SUPPORT_VOLUME_SET
)
KITCHEN = ZoneOutputRef("media_player.kitchen", "Kitchen")


def _state(state: str = "playing", features: int = ALL_FEATURES, **attrs: Any) -> dict[str, Any]:
    attributes: dict[str, Any] = {
        "friendly_name": "Kitchen",
        "supported_features": features,
        "volume_level": 0.35,
        "media_title": "Morning Song",
    }
    attributes.update(attrs)
    return {"entity_id": "media_player.kitchen", "state": state, "attributes": attributes}


@pytest.fixture
def ha_client():
    client = Mock()
    client.call_service = AsyncMock()
    client.list_entities = AsyncMock(return_value=[_state()])
    client.listen_events = AsyncMock()
    return client


@pytest.fixture
async def port(ha_client):
    zones = HomeAssistantZonePort(ha_client)
    await zones.refresh()
    return zones


class TestZoneFromState:
    def test_playing_zone(self):
        zone = zone_from_state(_state(media_position=30, media_duration=200))
        assert zone is not None
        assert zone.state == "playing"
        assert zone.display_name == "Kitchen"
        assert zone.outputs[0].volume is not None
        assert zone.outputs[0].volume.value == 35
        assert zone.is_pause_allowed is True
        assert zone.is_play_allowed is False
        assert zone.track_length == 200
        assert zone.seek_position == 30

    @pytest.mark.parametrize(
        ("ha_state", "expected"),
        [("paused", "paused"), ("buffering", "loading"), ("idle", "stopped"), ("off", "stopped")],
    )
    def test_state_mapping(self, ha_state, expected):
        zone = zone_from_state(_state(ha_state))
        assert zone is not None and zone.state == expected

    def test_unavailable_player_is_missing(self):
        assert zone_from_state(_state("unavailable")) is None

    def test_other_domains_ignored(self):
        assert zone_from_state({"entity_id": "light.kitchen", "state": "on"}) is None

    def test_idle_without_media_cannot_play_but_can_go_back(self):
        zone = zone_from_state(_state("idle", media_title=None))
        assert zone is not None
        assert zone.is_play_allowed is False
        assert zone.is_previous_allowed is True

    def test_no_volume_without_feature(self):
        zone = zone_from_state(_state(features=SUPPORT_PLAY))
        assert zone is not None and zone.outputs[0].volume is None

    def test_position_advances_while_playing(self):
        zone = zone_from_state(
            _state(media_position=10, media_position_updated_at="2000-01-01T00:00:00+00:00")
        )
        assert zone is not None and zone.seek_position is not None and zone.seek_position > 10


class TestPort:
    async def test_resolve_and_volume(self, port):
        zone = port.resolve_zone_by_output(KITCHEN)
        assert zone is not None
        volume = port.current_volume(None, KITCHEN)
        assert volume is not None and (volume.value, volume.min, volume.max) == (35, 0, 100)
        assert port.resolve_zone_by_output(ZoneOutputRef("media_player.nowhere")) is None

    @pytest.mark.parametrize(
        ("command", "service"),
        [
            ("play", "media_play"),
            ("pause", "media_pause"),
            ("stop", "media_stop"),
            ("previous", "media_previous_track"),
            ("standby", "turn_off"),
        ],
    )
    async def test_commands_map_to_services(self, port, ha_client, command, service):
        await port.issue_command(KITCHEN, command)
        ha_client.call_service.assert_awaited_once_with(
            "media_player", service, {"entity_id": "media_player.kitchen"}
        )

    async def test_continuous_playback_sets_repeat(self, port, ha_client):
        await port.issue_command(KITCHEN, "continuous_playback", {"enabled": True})
        ha_client.call_service.assert_awaited_once_with(
            "media_player", "repeat_set", {"entity_id": "media_player.kitchen", "repeat": "all"}
        )

    async def test_standby_unsupported(self, ha_client):
        ha_client.list_entities.return_value = [_state(features=ALL_FEATURES & ~SUPPORT_TURN_OFF)]
        port = HomeAssistantZonePort(ha_client)
        await port.refresh()
        with pytest.raises(ZoneCommandError):
            await port.issue_command(KITCHEN, "standby")
        ha_client.call_service.assert_not_awaited()

    async def test_unknown_player_rejected(self, port):
        with pytest.raises(ZoneCommandError):
            await port.issue_command(ZoneOutputRef("media_player.nowhere"), "play")

    async def test_service_failure_becomes_command_error(self, port, ha_client):
        ha_client.call_service.side_effect = HomeAssistantError("500")
        with pytest.raises(ZoneCommandError):
            await port.issue_command(KITCHEN, "play")

    async def test_set_volume(self, port, ha_client):
        await port.set_volume_absolute(KITCHEN, 42)
        ha_client.call_service.assert_awaited_once_with(
            "media_player", "volume_set", {"entity_id": "media_player.kitchen", "volume_level": 0.42}
        )

    async def test_transfer_uses_configured_service(self, ha_client):
        port = HomeAssistantZonePort(ha_client, transfer_service="music_assistant.transfer_queue")
        await port.transfer(KITCHEN, ZoneOutputRef("media_player.office"))
        ha_client.call_service.assert_awaited_once_with(
            "music_assistant",
            "transfer_queue",
            {"entity_id": "media_player.office", "source_player": "media_player.kitchen"},
        )

    async def test_state_changed_updates_cache_and_notifies(self, port):
        listener = AsyncMock()
        unsubscribe = port.subscribe(listener)
        await port.handle_event(
            {"data": {"entity_id": "media_player.kitchen", "new_state": _state("paused", volume_level=0.5)}}
        )
        zone = port.resolve_zone_by_output(KITCHEN)
        assert zone is not None and zone.state == "paused"
        listener.assert_awaited_once_with(zone)

        unsubscribe()
        await port.handle_event({"data": {"entity_id": "media_player.kitchen", "new_state": _state("playing")}})
        listener.assert_awaited_once()

    async def test_removed_entity_is_forgotten(self, port):
        await port.handle_event({"data": {"entity_id": "media_player.kitchen", "new_state": None}})
        assert port.resolve_zone_by_output(KITCHEN) is None

    async def test_run_listens_for_state_changes(self, port, ha_client):
        await port.run()
        ha_client.listen_events.assert_awaited_once_with(
            "state_changed", port.handle_event, on_connect=port.refresh
        )
