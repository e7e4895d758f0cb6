import sys

import atheris

with atheris.instrument_imports():
    from alarmclock.datetime_utils import parse_relative_time, parse_time_of_day
    from alarmclock.engine.models import TimeSpec


def TestOneInput(data: bytes) -> None:
    """Fuzz alarm time parsing with arbitrary input."""
    value = data.decode("utf-8", errors="ignore")

    # Parsers return None for invalid input
    parse_time_of_day(value)
    parse_relative_time(value)

    try:
        spec = TimeSpec.parse(value)
    except ValueError:
        return  # Expected for invalid input

    # Whatever parses must render back to the same time
    assert TimeSpec.parse(str(spec)) == spec


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
