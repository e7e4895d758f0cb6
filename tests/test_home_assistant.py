"""Tests for Home Assistant client."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from alarmclock.engine.config import HomeAssistantConfig
from alarmclock.engine.home_assistant import (
    HomeAssistantAuthError,
    HomeAssistantClient,
    HomeAssistantError,
)

# Mark all tests in this module as anyio
pytestmark = pytest.mark.anyio


class FakeWebSocket:
    """Scripted websocket: ``recv`` and async iteration drain the same queue."""

    def __init__(self, messages: list[Any]) -> None:
        self._incoming = [message if isinstance(message, bytes) else json.dumps(message) for message in messages]
        self.sent: list[dict[str, Any]] = []

    async def __aenter__(self) -> FakeWebSocket:
        return self

    async def __aexit__(self, *_exc: object) -> bool:
        return False

    async def recv(self) -> str | bytes:
        return self._incoming.pop(0)

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> str | bytes:
        if not self._incoming:
            raise StopAsyncIteration
        return self._incoming.pop(0)


class TestHomeAssistantClientInit:
    """Test Home Assistant client initialization."""

    def test_init_success(self, ha_config):
        client = HomeAssistantClient(ha_config)
        assert client.config == ha_config
        assert client.timeout == 10.0
        assert not client._closed

    def test_init_strips_trailing_slash(self):
        config = HomeAssistantConfig(base_url="http://homeassistant.local:8123/", token="test_token", verify_ssl=True)
        client = HomeAssistantClient(config)
        assert client._client.base_url == httpx.URL("http://homeassistant.local:8123")

    def test_init_sets_auth_header(self, ha_config):
        client = HomeAssistantClient(ha_config)
        assert client._client.headers["Authorization"] == "Bearer test_token_123"

    def test_init_missing_base_url(self):
        with pytest.raises(ValueError, match="base URL"):
            HomeAssistantClient(HomeAssistantConfig(base_url=None, token="t", verify_ssl=True))

    def test_init_missing_token(self):
        with pytest.raises(ValueError, match="token"):
            HomeAssistantClient(HomeAssistantConfig(base_url="http://ha:8123", token=None, verify_ssl=True))

    def test_websocket_uri(self):
        config = HomeAssistantConfig(base_url="https://ha.example.com", token="t", verify_ssl=True)
        assert HomeAssistantClient(config).websocket_uri() == "wss://ha.example.com/api/websocket"


class TestRestCalls:
    async def test_list_entities_filters_domain(self, ha_config):
        client = HomeAssistantClient(ha_config)
        with patch.object(HomeAssistantClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = [
                {"entity_id": "media_player.kitchen"},
                {"entity_id": "light.kitchen"},
                "garbage",
            ]
            result = await client.list_entities("media_player")
        assert result == [{"entity_id": "media_player.kitchen"}]
        mock_request.assert_called_once_with("GET", "/api/states")

    async def test_call_service(self, ha_config):
        client = HomeAssistantClient(ha_config)
        with patch.object(HomeAssistantClient, "_request", new_callable=AsyncMock) as mock_request:
            await client.call_service("media_player", "media_play", {"entity_id": "media_player.kitchen"})
        mock_request.assert_called_once_with(
            "POST",
            "/api/services/media_player/media_play",
            json={"entity_id": "media_player.kitchen"},
        )

    async def test_request_auth_error(self, ha_config, mock_httpx_client, mock_ha_response):
        client = HomeAssistantClient(ha_config)
        client._client = mock_httpx_client
        mock_httpx_client.request.return_value = mock_ha_response(status_code=401)
        with pytest.raises(HomeAssistantAuthError):
            await client.list_states()

    async def test_request_server_error(self, ha_config, mock_httpx_client, mock_ha_response):
        client = HomeAssistantClient(ha_config)
        client._client = mock_httpx_client
        mock_httpx_client.request.return_value = mock_ha_response(status_code=500, text="boom")
        with pytest.raises(HomeAssistantError, match="500"):
            await client.call_service("media_player", "media_play", {"entity_id": "media_player.kitchen"})

    async def test_request_returns_json(self, ha_config, mock_httpx_client, mock_ha_response):
        client = HomeAssistantClient(ha_config)
        client._client = mock_httpx_client
        payload = [{"entity_id": "media_player.kitchen"}, "garbage"]
        mock_httpx_client.request.return_value = mock_ha_response(json_data=payload)
        assert await client.list_states() == [{"entity_id": "media_player.kitchen"}]

    async def test_close_idempotent(self, ha_config):
        client = HomeAssistantClient(ha_config)
        with patch.object(client._client, "aclose", new_callable=AsyncMock) as mock_close:
            await client.close()
            await client.close()
        mock_close.assert_awaited_once()


class TestEventStream:
    async def test_listen_once_authenticates_and_dispatches(self, ha_config):
        client = HomeAssistantClient(ha_config)
        event = {"event_type": "state_changed", "data": {"entity_id": "media_player.kitchen"}}
        ws = FakeWebSocket(
            [
                {"type": "auth_required"},
                {"type": "auth_ok"},
                {"id": 1, "type": "result", "success": True},
                b"\x00",
                {"id": 1, "type": "event", "event": event},
            ]
        )
        handler = AsyncMock()
        on_connect = AsyncMock()
        with patch("alarmclock.engine.home_assistant.websockets.connect", Mock(return_value=ws)) as connect:
            await client._listen_once("state_changed", handler, on_connect)

        connect.assert_called_once_with("ws://homeassistant.local:8123/api/websocket", ssl=None)
        assert ws.sent[0] == {"type": "auth", "access_token": "test_token_123"}
        assert ws.sent[1] == {"id": 1, "type": "subscribe_events", "event_type": "state_changed"}
        on_connect.assert_awaited_once()
        handler.assert_awaited_once_with(event)

    async def test_listen_once_rejected_token(self, ha_config):
        client = HomeAssistantClient(ha_config)
        ws = FakeWebSocket([{"type": "auth_required"}, {"type": "auth_invalid"}])
        with patch("alarmclock.engine.home_assistant.websockets.connect", Mock(return_value=ws)):
            with pytest.raises(HomeAssistantAuthError):
                await client._listen_once("state_changed", AsyncMock(), None)

    async def test_listen_once_failed_subscription(self, ha_config):
        client = HomeAssistantClient(ha_config)
        ws = FakeWebSocket(
            [{"type": "auth_required"}, {"type": "auth_ok"}, {"id": 1, "type": "result", "success": False}]
        )
        with patch("alarmclock.engine.home_assistant.websockets.connect", Mock(return_value=ws)):
            with pytest.raises(HomeAssistantError, match="subscription"):
                await client._listen_once("state_changed", AsyncMock(), None)

    async def test_handler_errors_do_not_drop_stream(self, ha_config):
        client = HomeAssistantClient(ha_config)
        ws = FakeWebSocket(
            [
                {"type": "auth_required"},
                {"type": "auth_ok"},
                {"type": "event", "event": {"n": 1}},
                {"type": "event", "event": {"n": 2}},
            ]
        )
        handler = AsyncMock(side_effect=[RuntimeError("bad"), None])
        with patch("alarmclock.engine.home_assistant.websockets.connect", Mock(return_value=ws)):
            await client._listen_once("state_changed", handler, None)
        assert handler.await_count == 2

    async def test_listen_events_reconnects(self, ha_config):
        client = HomeAssistantClient(ha_config)
        attempts = AsyncMock(side_effect=[OSError("refused"), None, asyncio.CancelledError()])
        with patch.object(HomeAssistantClient, "_listen_once", attempts):
            with pytest.raises(asyncio.CancelledError):
                await client.listen_events("state_changed", AsyncMock(), reconnect_delay=0)
        assert attempts.await_count == 3

    async def test_listen_events_stops_on_auth_error(self, ha_config):
        client = HomeAssistantClient(ha_config)
        attempts = AsyncMock(side_effect=HomeAssistantAuthError("nope"))
        with patch.object(HomeAssistantClient, "_listen_once", attempts):
            with pytest.raises(HomeAssistantAuthError):
                await client.listen_events("state_changed", AsyncMock(), reconnect_delay=0)
        attempts.assert_awaited_once()
