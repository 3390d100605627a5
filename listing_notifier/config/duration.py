"""Duration strings used throughout the configuration.

Two spellings are accepted: compact unit strings ("500ms", "5s", "15m",
"1h30m", "2d") and ISO-8601 ("PT15M", "P1D"). Values come back in seconds as
floats so sub-second delivery delays survive parsing.
"""

import re
from typing import Dict


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed or is out of range."""


UNIT_SECONDS: Dict[str, float] = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}

_COMPACT_TOKEN = re.compile(r"(\d+(?:\.\d+)?)(ms|[smhd])")
_ISO_8601 = re.compile(
    r"^P(?:(?P<d>\d+)D)?(?:T(?:(?P<h>\d+)H)?(?:(?P<m>\d+)M)?(?:(?P<s>\d+(?:\.\d+)?)S)?)?$"
)


def parse_duration(value: str, allow_zero: bool = False) -> float:
    """
    Parse a duration string into seconds.

    Args:
        value: Compact ("1h30m", "500ms") or ISO-8601 ("PT1H30M") duration
        allow_zero: Accept a zero duration (the cutoff window uses "0s" as "off")

    Raises:
        DurationParseError: If the string is malformed, or zero without ``allow_zero``

    Examples:
        >>> parse_duration("15m")
        900.0
        >>> parse_duration("PT1H")
        3600.0
        >>> parse_duration("250ms")
        0.25
    """
    if not isinstance(value, str):
        raise DurationParseError(f"Duration must be a string, got: {value!r}")

    text = re.sub(r"\s+", "", value).lower()
    if not text:
        raise DurationParseError("Duration string cannot be empty")

    seconds = _parse_iso8601(text.upper()) if text.startswith("p") else _parse_compact(text)

    if seconds == 0 and not allow_zero:
        raise DurationParseError(f"Duration cannot be zero: '{value}'")
    return seconds


def _parse_iso8601(text: str) -> float:
    match = _ISO_8601.match(text)
    if not match or not any(match.groupdict().values()):
        raise DurationParseError(
            f"Invalid ISO-8601 duration: '{text}'. Expected e.g. 'P1D', 'PT1H30M' or 'PT30S'"
        )

    parts = match.groupdict()
    return sum(
        float(parts[key]) * UNIT_SECONDS[unit]
        for key, unit in (("d", "d"), ("h", "h"), ("m", "m"), ("s", "s"))
        if parts[key]
    )


def _parse_compact(text: str) -> float:
    tokens = _COMPACT_TOKEN.findall(text)
    if not tokens or "".join(number + unit for number, unit in tokens) != text:
        raise DurationParseError(
            f"Invalid duration: '{text}'. Use a number followed by ms, s, m, h or d "
            "(combinations like '1h30m' are allowed)"
        )
    return sum(float(number) * UNIT_SECONDS[unit] for number, unit in tokens)


def validate_duration_range(
    seconds: float,
    min_seconds: float = 60,
    max_seconds: float = 86400,
    label: str = "Interval",
) -> None:
    """
    Raise DurationParseError unless ``min_seconds <= seconds <= max_seconds``.
    """
    if seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {format_duration(seconds)}. Minimum is {format_duration(min_seconds)}."
        )
    if seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {format_duration(seconds)}. Maximum is {format_duration(max_seconds)}."
        )


def format_duration(seconds: float) -> str:
    """Largest whole unit that fits: "500 ms", "15 minutes", "2 days"."""
    if seconds < 1:
        return f"{round(seconds * 1000)} ms"

    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = int(seconds // size)
            return f"{count} {unit}{'s' if count != 1 else ''}"

    count = int(seconds)
    return f"{count} second{'s' if count != 1 else ''}"
