"""Wire encoders for subject alternative names and durations.

Backends that take flat string parameters want SAN lists comma-joined and
durations as canonical duration text ("720h0m0s"). Encoders are pure; an
empty SAN list encodes to None so the field is left out of the request
instead of being sent as an empty string.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

SAN_SEPARATOR = ","

_MICROS_PER_UNIT = {
    "ns": 0.001,
    "us": 1,
    "µs": 1,
    "μs": 1,
    "ms": 1_000,
    "s": 1_000_000,
    "m": 60_000_000,
    "h": 3_600_000_000,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def encode_sans(values: Iterable[str] | None) -> str | None:
    """Join SANs into a single comma-separated value.

    Args:
        values: SAN strings in the order they should appear.

    Returns:
        The joined string, or None when there is nothing to encode.
    """
    if not values:
        return None
    joined = SAN_SEPARATOR.join(values)
    return joined or None


def decode_sans(value: str | None) -> list[str]:
    """Split a comma-joined SAN value back into its parts."""
    if not value:
        return []
    return value.split(SAN_SEPARATOR)


def encode_duration(value: timedelta) -> str:
    """Render a duration as canonical duration text.

    Hours are not folded into days, so 30 days renders as "720h0m0s".
    Durations under a second use "ms" or "µs".

    Args:
        value: Duration to render.

    Returns:
        Duration text such as "24h0m0s", "1m30s" or "1.5ms".
    """
    micros = (value.days * 86_400 + value.seconds) * 1_000_000 + value.microseconds
    if micros == 0:
        return "0s"

    sign = "-" if micros < 0 else ""
    micros = abs(micros)

    if micros < 1_000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        return f"{sign}{_with_fraction(micros, 1_000, 3)}ms"

    seconds = _with_fraction(micros % 60_000_000, 1_000_000, 6) + "s"
    total_minutes = micros // 60_000_000
    if total_minutes == 0:
        return sign + seconds

    hours, minutes = divmod(total_minutes, 60)
    if hours == 0:
        return f"{sign}{minutes}m{seconds}"
    return f"{sign}{hours}h{minutes}m{seconds}"


def parse_duration(text: str) -> timedelta:
    """Parse duration text such as "30m", "1h30m" or "720h0m0s".

    Args:
        text: Duration text; a bare "0" is accepted.

    Returns:
        Parsed duration.

    Raises:
        ValueError: If the text is not a valid duration.
    """
    raw = text.strip()
    sign = 1
    if raw[:1] in ("+", "-"):
        sign = -1 if raw[0] == "-" else 1
        raw = raw[1:]

    if raw == "0":
        return timedelta(0)
    if not raw:
        msg = f"invalid duration {text!r}"
        raise ValueError(msg)

    micros = 0.0
    position = 0
    for match in _DURATION_PART.finditer(raw):
        if match.start() != position:
            break
        micros += float(match.group(1)) * _MICROS_PER_UNIT[match.group(2)]
        position = match.end()

    if position != len(raw):
        msg = f"invalid duration {text!r}"
        raise ValueError(msg)

    return timedelta(microseconds=sign * round(micros))


def _with_fraction(value: int, unit: int, digits: int) -> str:
    """Format value/unit with trailing zeros of the fraction removed."""
    whole, fraction = divmod(value, unit)
    if not fraction:
        return str(whole)
    return f"{whole}." + f"{fraction:0{digits}d}".rstrip("0")
