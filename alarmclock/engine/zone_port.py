"""Interface between the alarm engine and the host that owns the audio zones."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Literal, Protocol

from .models import VolumeInfo, ZoneOutputRef, ZoneState

ZoneCommand = Literal["play", "pause", "stop", "previous", "standby", "continuous_playback"]
ZoneListener = Callable[[ZoneState], Awaitable[None]]


class ZoneCommandError(RuntimeError):
    """A zone rejected a command or does not support it."""

    def __init__(self, command: str, output_id: str, reason: str = "failed") -> None:
        super().__init__(f"Zone command '{command}' on {output_id} {reason}")
        self.command = command
        self.output_id = output_id
        self.reason = reason


class ZoneControlPort(Protocol):
    def resolve_zone_by_output(self, output: ZoneOutputRef) -> ZoneState | None: ...

    def current_volume(self, zone: ZoneState | None, output: ZoneOutputRef) -> VolumeInfo | None: ...

    async def issue_command(
        self,
        output: ZoneOutputRef,
        command: ZoneCommand,
        args: dict[str, Any] | None = None,
    ) -> None: ...

    async def set_volume_absolute(self, output: ZoneOutputRef, value: int) -> None: ...

    async def transfer(self, source: ZoneOutputRef, target: ZoneOutputRef) -> None: ...

    def subscribe(self, listener: ZoneListener) -> Callable[[], None]: ...


def volume_for_output(zone: ZoneState | None, output_id: str) -> VolumeInfo | None:
    """Volume of one output inside a zone snapshot."""
    if zone is None:
        return None
    output = zone.output(output_id)
    if output is None:
        return None
    return output.volume
