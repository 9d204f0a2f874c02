"""
Duration codec for wire timeouts.

Timeouts travel as Go-style duration strings ("1h", "1h30m", "90s", "1h0m0s",
"250ms"). They are parsed into datetime.timedelta and rendered back in the
canonical "1h0m0s" form so translated specs are byte-stable.
"""

import re
from datetime import timedelta
from typing import Optional, Union


_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_UNIT_MICROSECONDS = {
    "ns": 0.001,
    "us": 1,
    "µs": 1,
    "ms": 1_000,
    "s": 1_000_000,
    "m": 60_000_000,
    "h": 3_600_000_000,
}


class DurationError(ValueError):
    """Raised when a duration string cannot be parsed."""
    pass


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """
    Parse a duration into a timedelta.

    Args:
        value: Go-style duration string, a number of seconds, or a timedelta

    Returns:
        The parsed timedelta (may be negative; callers decide if that is valid)

    Raises:
        DurationError: If the string is not a valid duration
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise DurationError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return timedelta(seconds=value)
        except OverflowError as e:
            raise DurationError(f"invalid duration: {value!r}: out of range") from e
    if not isinstance(value, str):
        raise DurationError(f"invalid duration: {value!r}")

    text = value.strip()
    sign = 1
    if text[:1] in ("-", "+"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        raise DurationError(f"invalid duration: {value!r}")

    total_us = 0.0
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        if match is None:
            raise DurationError(f"invalid duration: {value!r}")
        total_us += float(match.group(1)) * _UNIT_MICROSECONDS[match.group(2)]
        pos = match.end()

    try:
        return timedelta(microseconds=sign * round(total_us))
    except OverflowError as e:
        raise DurationError(f"invalid duration: {value!r}: out of range") from e


def format_duration(value: timedelta) -> str:
    """
    Render a timedelta in canonical Go form.

    Examples:
        >>> format_duration(timedelta(hours=1))
        '1h0m0s'
        >>> format_duration(timedelta(seconds=90))
        '1m30s'
        >>> format_duration(timedelta(milliseconds=250))
        '250ms'
    """
    total_us = value // timedelta(microseconds=1)
    if total_us == 0:
        return "0s"

    sign = "-" if total_us < 0 else ""
    total_us = abs(total_us)

    if total_us < 1_000_000:
        if total_us % 1_000 == 0:
            return f"{sign}{total_us // 1_000}ms"
        return f"{sign}{total_us}us"

    hours, rem = divmod(total_us, 3_600_000_000)
    minutes, rem = divmod(rem, 60_000_000)
    seconds, micros = divmod(rem, 1_000_000)

    sec_text = str(seconds)
    if micros:
        sec_text += "." + f"{micros:06d}".rstrip("0")

    if hours:
        return f"{sign}{hours}h{minutes}m{sec_text}s"
    if minutes:
        return f"{sign}{minutes}m{sec_text}s"
    return f"{sign}{sec_text}s"


def format_optional_duration(value: Optional[timedelta]) -> Optional[str]:
    """format_duration() that passes None through."""
    if value is None:
        return None
    return format_duration(value)
