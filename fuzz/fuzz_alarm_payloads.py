import json
import sys

import atheris

with atheris.instrument_imports():
    from alarmclock.engine.settings_store import AlarmConfigError, alarm_from_dict, alarm_to_dict


def TestOneInput(data: bytes) -> None:
    """Fuzz alarm decoding the way MQTT edits and the settings file reach it."""
    try:
        payload = json.loads(data.decode("utf-8", errors="ignore"))
    except json.JSONDecodeError:
        return

    try:
        alarm = alarm_from_dict(payload)
    except AlarmConfigError:
        return  # Expected for invalid input

    # Accepted alarms must survive a save/load cycle
    assert alarm_from_dict(alarm_to_dict(alarm)) == alarm


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
