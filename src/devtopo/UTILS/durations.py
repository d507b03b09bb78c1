"""
Parsing helpers for human-readable durations and memory sizes.
"""
import re
from typing import Optional, Union

NANOSECONDS_PER_SECOND = 1_000_000_000

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|ms|s|m|h|d)")
_MEMORY = re.compile(r"^(\d+(?:\.\d+)?)\s*([bkmg])?b?$")
_MEMORY_UNITS = {
    "b": 1,
    "k": 1024,
    "m": 1024 ** 2,
    "g": 1024 ** 3,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parses a duration such as ``30s``, ``1m30s``, ``500ms`` or a bare number
    of seconds.

    :param value: The duration string or number of seconds.
    :return: The duration in seconds.
    :raises ValueError: If the value cannot be parsed or is negative.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return float(value)

    text = str(value).strip().lower()
    if not text:
        raise ValueError("Empty duration")
    try:
        return parse_duration(float(text))
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


def to_nanoseconds(value: Union[str, int, float, None]) -> Optional[int]:
    """
    Converts a duration to the integer nanoseconds the engine API expects.
    """
    if value is None:
        return None
    return int(round(parse_duration(value) * NANOSECONDS_PER_SECOND))


def parse_memory(value: Union[str, int, None]) -> Optional[int]:
    """
    Parses a memory size like ``512m`` or ``2g`` into bytes.

    :raises ValueError: If the size cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, int):
        return value
    match = _MEMORY.match(str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid memory size: {value!r}")
    unit = match.group(2) or "b"
    return int(float(match.group(1)) * _MEMORY_UNITS[unit])
