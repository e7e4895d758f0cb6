"""Zone Control Port backed by Home Assistant ``media_player`` entities.

Each media player is one zone with a single output whose id is the entity id.
States are cached from ``/api/states`` and kept current from ``state_changed``
events on the websocket API.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from alarmclock.datetime_utils import utc_now

from .home_assistant import HomeAssistantClient, HomeAssistantError
from .models import OutputState, PlaybackState, VolumeInfo, ZoneOutputRef, ZoneState
from .zone_port import ZoneCommand, ZoneCommandError, ZoneListener, volume_for_output

LOGGER = logging.getLogger("alarmclock.ha_zones")

MEDIA_PLAYER_PREFIX = "media_player."

# MediaPlayerEntityFeature bits
SUPPORT_PAUSE = 1
SUPPORT_VOLUME_SET = 4
SUPPORT_PREVIOUS_TRACK = 16
SUPPORT_TURN_OFF = 256
SUPPORT_STOP = 4096
SUPPORT_PLAY = 16384
SUPPORT_REPEAT_SET = 262144

_STATE_MAP: dict[str, PlaybackState] = {
    "playing": "playing",
    "paused": "paused",
    "buffering": "loading",
}
_MISSING_STATES = {"unavailable", "unknown"}

_SERVICES: dict[str, tuple[str, int]] = {
    "play": ("media_play", SUPPORT_PLAY),
    "pause": ("media_pause", SUPPORT_PAUSE),
    "stop": ("media_stop", SUPPORT_STOP),
    "previous": ("media_previous_track", SUPPORT_PREVIOUS_TRACK),
    "standby": ("turn_off", SUPPORT_TURN_OFF),
    "continuous_playback": ("repeat_set", SUPPORT_REPEAT_SET),
}


def _as_int(value: Any) -> int | None:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _seek_position(attrs: dict[str, Any], playing: bool) -> int | None:
    position = attrs.get("media_position")
    try:
        seconds = float(position)
    except (TypeError, ValueError):
        return None
    updated_at = attrs.get("media_position_updated_at")
    if playing and isinstance(updated_at, str):
        try:
            updated = datetime.fromisoformat(updated_at)
        except ValueError:
            updated = None
        if updated is not None and updated.tzinfo is not None:
            seconds += max(0.0, (utc_now() - updated).total_seconds())
    return int(seconds)


def zone_from_state(payload: dict[str, Any]) -> ZoneState | None:
    """Convert a HA state object into a zone snapshot, None if the player is gone."""
    entity_id = str(payload.get("entity_id") or "")
    if not entity_id.startswith(MEDIA_PLAYER_PREFIX):
        return None
    raw_state = str(payload.get("state") or "unknown")
    if raw_state in _MISSING_STATES:
        return None
    attrs = payload.get("attributes") or {}
    features = _as_int(attrs.get("supported_features")) or 0
    state = _STATE_MAP.get(raw_state, "stopped")
    name = str(attrs.get("friendly_name") or entity_id)

    volume = None
    level = attrs.get("volume_level")
    if features & SUPPORT_VOLUME_SET and isinstance(level, (int, float)):
        volume = VolumeInfo(value=int(round(float(level) * 100)))

    has_media = bool(attrs.get("media_content_id") or attrs.get("media_title"))
    return ZoneState(
        zone_id=entity_id,
        display_name=name,
        state=state,
        outputs=(OutputState(entity_id, name, volume),),
        is_play_allowed=bool(features & SUPPORT_PLAY) and state != "playing" and (state == "paused" or has_media),
        is_pause_allowed=bool(features & SUPPORT_PAUSE) and state in ("playing", "loading"),
        is_previous_allowed=bool(features & SUPPORT_PREVIOUS_TRACK) and raw_state != "off",
        seek_position=_seek_position(attrs, state == "playing"),
        track_length=_as_int(attrs.get("media_duration")),
    )


class HomeAssistantZonePort:
    def __init__(
        self,
        client: HomeAssistantClient,
        *,
        transfer_service: str = "music_assistant.transfer_queue",
        logger: logging.Logger | None = None,
    ) -> None:
        self._client = client
        domain, _, service = transfer_service.partition(".")
        self._transfer_domain = domain
        self._transfer_service = service
        self._logger = logger or LOGGER
        self._zones: dict[str, ZoneState] = {}
        self._features: dict[str, int] = {}
        self._listeners: list[ZoneListener] = []

    async def refresh(self) -> None:
        """Reload every media player state."""
        states = await self._client.list_entities("media_player")
        self._zones.clear()
        self._features.clear()
        for payload in states:
            self._store(payload)
        self._logger.info("[ha_zones] Tracking %d media player(s)", len(self._zones))

    async def run(self) -> None:
        """Follow state changes until cancelled."""
        await self._client.listen_events("state_changed", self.handle_event, on_connect=self.refresh)

    async def handle_event(self, event: dict[str, Any]) -> None:
        data = event.get("data") or {}
        entity_id = str(data.get("entity_id") or "")
        if not entity_id.startswith(MEDIA_PLAYER_PREFIX):
            return
        new_state = data.get("new_state")
        if not isinstance(new_state, dict):
            self._zones.pop(entity_id, None)
            self._features.pop(entity_id, None)
            return
        zone = self._store(new_state)
        if zone is None:
            return
        for listener in list(self._listeners):
            try:
                await listener(zone)
            except Exception as exc:
                self._logger.error("[ha_zones] Zone listener failed: %s", exc, exc_info=True)

    def _store(self, payload: dict[str, Any]) -> ZoneState | None:
        entity_id = str(payload.get("entity_id") or "")
        zone = zone_from_state(payload)
        if zone is None:
            self._zones.pop(entity_id, None)
            self._features.pop(entity_id, None)
            return None
        self._zones[entity_id] = zone
        self._features[entity_id] = _as_int((payload.get("attributes") or {}).get("supported_features")) or 0
        return zone

    def resolve_zone_by_output(self, output: ZoneOutputRef) -> ZoneState | None:
        return self._zones.get(output.output_id)

    def current_volume(self, zone: ZoneState | None, output: ZoneOutputRef) -> VolumeInfo | None:
        if zone is None:
            zone = self.resolve_zone_by_output(output)
        return volume_for_output(zone, output.output_id)

    async def issue_command(
        self,
        output: ZoneOutputRef,
        command: ZoneCommand,
        args: dict[str, Any] | None = None,
    ) -> None:
        if command not in _SERVICES:
            raise ZoneCommandError(command, output.output_id, "is unknown")
        service, feature = _SERVICES[command]
        features = self._features.get(output.output_id)
        if features is None:
            raise ZoneCommandError(command, output.output_id, "has no such player")
        if not features & feature:
            raise ZoneCommandError(command, output.output_id, "is not supported")
        payload: dict[str, Any] = {"entity_id": output.output_id}
        if command == "continuous_playback":
            enabled = True if args is None else bool(args.get("enabled", True))
            payload["repeat"] = "all" if enabled else "off"
        await self._call(command, output, "media_player", service, payload)

    async def set_volume_absolute(self, output: ZoneOutputRef, value: int) -> None:
        volume = volume_for_output(self.resolve_zone_by_output(output), output.output_id)
        low, high = (volume.min, volume.max) if volume else (0, 100)
        level = max(low, min(high, value)) / 100
        payload = {"entity_id": output.output_id, "volume_level": round(level, 2)}
        await self._call("volume", output, "media_player", "volume_set", payload)

    async def transfer(self, source: ZoneOutputRef, target: ZoneOutputRef) -> None:
        payload = {"entity_id": target.output_id, "source_player": source.output_id}
        await self._call("transfer", source, self._transfer_domain, self._transfer_service, payload)

    async def _call(
        self,
        command: str,
        output: ZoneOutputRef,
        domain: str,
        service: str,
        payload: dict[str, Any],
    ) -> None:
        try:
            await self._client.call_service(domain, service, payload)
        except HomeAssistantError as exc:
            raise ZoneCommandError(command, output.output_id, f"failed: {exc}") from exc

    def subscribe(self, listener: ZoneListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe
