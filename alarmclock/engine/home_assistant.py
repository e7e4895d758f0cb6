"""Async client helpers for the Home Assistant REST and websocket APIs."""

from __future__ import annotations

import asyncio
import json
import logging
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import websockets
from websockets.exceptions import WebSocketException

from .config import HomeAssistantConfig

LOGGER = logging.getLogger("alarmclock.home_assistant")

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]
ConnectHook = Callable[[], Awaitable[None]]

RECONNECT_DELAY_MAX = 60.0


class HomeAssistantError(RuntimeError):
    """Generic Home Assistant API failure."""


class HomeAssistantAuthError(HomeAssistantError):
    """Raised when HA returns 401/403."""


@dataclass(slots=True)
class HomeAssistantClient:
    config: HomeAssistantConfig
    timeout: float = 10.0
    _client: httpx.AsyncClient = field(init=False, repr=False)
    _closed: bool = field(init=False, default=True, repr=False)

    def __post_init__(self) -> None:
        if not self.config.base_url:
            raise ValueError("Home Assistant base URL is not configured")
        if not self.config.token:
            raise ValueError("Home Assistant token is not configured")
        base_url = self.config.base_url.rstrip("/")
        headers = {
            "Authorization": f"Bearer {self.config.token}",
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=self.timeout,
            verify=self.config.verify_ssl,
            trust_env=False,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def list_states(self) -> list[dict[str, Any]]:
        """Return all entity state payloads."""
        payload = await self._request("GET", "/api/states")
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)]
        return []

    async def list_entities(self, domain: str | None = None) -> list[dict[str, Any]]:
        """List entities, optionally filtered by domain (e.g., 'media_player')."""
        states = await self.list_states()
        if not domain:
            return states
        prefix = f"{domain}."
        return [state for state in states if str(state.get("entity_id") or "").startswith(prefix)]

    async def call_service(self, domain: str, service: str, data: dict[str, Any] | None = None) -> Any:
        path = f"/api/services/{domain}/{service}"
        return await self._request("POST", path, json=data or {})

    def websocket_uri(self) -> str:
        base_url = (self.config.base_url or "").rstrip("/")
        ws_url = base_url.replace("http://", "ws://").replace("https://", "wss://")
        return f"{ws_url}/api/websocket"

    def _ssl_context(self, ws_uri: str) -> ssl.SSLContext | None:
        if not ws_uri.startswith("wss://"):
            return None
        ssl_context = ssl.create_default_context()
        if not self.config.verify_ssl:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        return ssl_context

    async def listen_events(
        self,
        event_type: str,
        handler: EventHandler,
        *,
        on_connect: ConnectHook | None = None,
        reconnect_delay: float = 5.0,
    ) -> None:
        """Stream HA events to ``handler`` until cancelled, reconnecting with backoff.

        ``on_connect`` runs after every successful subscription so callers can
        resync state they may have missed while disconnected.
        """
        delay = reconnect_delay
        while True:
            try:
                await self._listen_once(event_type, handler, on_connect)
                delay = reconnect_delay
                LOGGER.info("[ha] Event stream closed by Home Assistant")
            except HomeAssistantAuthError:
                raise
            except (OSError, TimeoutError, WebSocketException, HomeAssistantError) as exc:
                LOGGER.warning("[ha] Event stream failed: %s (retrying in %.0fs)", exc, delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, RECONNECT_DELAY_MAX)

    async def _listen_once(self, event_type: str, handler: EventHandler, on_connect: ConnectHook | None) -> None:
        ws_uri = self.websocket_uri()
        async with websockets.connect(ws_uri, ssl=self._ssl_context(ws_uri)) as ws:
            auth_msg = json.loads(await asyncio.wait_for(ws.recv(), timeout=self.timeout))
            if auth_msg.get("type") != "auth_required":
                raise HomeAssistantError("Expected auth_required message")

            await ws.send(json.dumps({"type": "auth", "access_token": self.config.token}))
            auth_result = json.loads(await asyncio.wait_for(ws.recv(), timeout=self.timeout))
            if auth_result.get("type") != "auth_ok":
                raise HomeAssistantAuthError("WebSocket authentication failed")

            await ws.send(json.dumps({"id": 1, "type": "subscribe_events", "event_type": event_type}))
            LOGGER.info("[ha] Subscribed to %s events", event_type)
            if on_connect is not None:
                await on_connect()

            async for raw in ws:
                # Binary frames are never sent for subscriptions
                if isinstance(raw, bytes):
                    continue
                message = json.loads(raw)
                kind = message.get("type")
                if kind == "result":
                    if not message.get("success"):
                        raise HomeAssistantError(f"Event subscription failed: {message.get('error')}")
                    continue
                if kind != "event":
                    continue
                event = message.get("event")
                if not isinstance(event, dict):
                    continue
                try:
                    await handler(event)
                except Exception as exc:
                    LOGGER.error("[ha] Event handler failed: %s", exc, exc_info=True)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:  # pragma: no cover - network errors
            raise HomeAssistantError(f"Failed to contact Home Assistant: {exc}") from exc
        if response.status_code in (401, 403):
            raise HomeAssistantAuthError("Home Assistant rejected the token")
        if response.status_code >= 400:
            raise HomeAssistantError(f"Home Assistant error {response.status_code}: {response.text}")
        if response.headers.get("content-type", "").startswith("application/json"):
            return response.json()
        return response.text
