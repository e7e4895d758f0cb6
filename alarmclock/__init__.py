"""
Zone Alarm Clock - wake-up scheduling for networked audio zones

Root package holding shared helpers used by the alarm engine.

Core modules:
- utils: Environment parsing helpers
- datetime_utils: Local time, epoch conversions and time-of-day parsing
- engine: Alarm scheduling, volume fades, zone control and adapters
"""

__version__ = "0.3.0"
