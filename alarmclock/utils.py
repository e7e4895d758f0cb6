"""
Shared utility functions for parsing configuration values

Provides common helpers for:
- String parsing: Environment variable conversion (parse_bool, parse_int, parse_float)
- Entity ID sanitization: Converting hostnames to MQTT / Home Assistant safe identifiers
- Numeric clamping for volume values
- Task lookup that tolerates a missing event loop
"""

from __future__ import annotations

import asyncio


def sanitize_hostname_for_entity_id(hostname: str) -> str:
    """Convert hostnames to Home Assistant–safe entity IDs."""
    return hostname.lower().replace("-", "_").replace(".", "_")


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def current_task_or_none() -> asyncio.Task | None:
    """Return the running task, or None when called outside the event loop."""
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
