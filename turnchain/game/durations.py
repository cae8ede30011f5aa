"""Duration strings, turn patterns and the UTC clock.

Durations use the compact notation ``3d``, ``2d5m``, ``1h30m``: one or
more ``<digits><unit>`` parts with units ordered d > h > m > s.
"""
import re
from datetime import datetime, timedelta, timezone

from turnchain.game import constants as C
from turnchain.game.errors import ValidationError

_FORMAT_RE = re.compile(r"^(\d+[dhms])+$")
_PART_RE = re.compile(r"(\d+)([dhms])")

_UNIT_ORDER = "dhms"
_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}

_PATTERN_TYPES = {"writing": C.TURN_WRITING, "drawing": C.TURN_DRAWING}


def utcnow() -> datetime:
    """Naive UTC now; every timestamp column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_duration(value: str) -> timedelta:
    if not value or not value.strip():
        raise ValidationError("Duration string cannot be empty", key="invalid_duration",
                              data={"value": value})
    value = value.strip()
    if not _FORMAT_RE.match(value):
        raise ValidationError(
            f"Invalid duration format {value!r}; use forms like 3d, 2d5m, 1h30m",
            key="invalid_duration", data={"value": value},
        )

    total = 0
    last_index = -1
    for amount, unit in _PART_RE.findall(value):
        index = _UNIT_ORDER.index(unit)
        if index <= last_index:
            raise ValidationError(
                "Units must be ordered from largest to smallest (d > h > m > s)",
                key="invalid_duration", data={"value": value},
            )
        last_index = index
        total += int(amount) * _UNIT_SECONDS[unit]
    return timedelta(seconds=total)


def format_duration(delta: timedelta) -> str:
    seconds = int(delta.total_seconds())
    if seconds < 0:
        raise ValueError("Duration cannot be negative")
    if seconds == 0:
        return "0s"
    parts = []
    for unit in _UNIT_ORDER:
        amount, seconds = divmod(seconds, _UNIT_SECONDS[unit])
        if amount:
            parts.append(f"{amount}{unit}")
    return "".join(parts)


def parse_turn_pattern(value: str) -> list[str]:
    """Parse ``"writing,drawing"`` into ``["WRITING", "DRAWING"]``."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Turn pattern cannot be empty", key="invalid_turn_pattern",
                              data={"value": value})
    parts = [part.strip().lower() for part in value.split(",")]
    pattern = []
    for position, part in enumerate(parts, start=1):
        if part not in _PATTERN_TYPES:
            raise ValidationError(
                f"Invalid turn type {part!r} at position {position}; "
                "must be 'writing' or 'drawing'",
                key="invalid_turn_pattern", data={"value": value, "position": position},
            )
        pattern.append(_PATTERN_TYPES[part])
    return pattern
