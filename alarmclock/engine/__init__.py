"""Alarm engine: scheduling core plus the Home Assistant and MQTT adapters."""
