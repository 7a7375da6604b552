"""Parsing and formatting of duration strings such as ``"300ms"`` or ``"2h45m"``.

Durations are represented as a non-negative integer number of nanoseconds.
"""

from __future__ import annotations

NANOSECOND = 1
MICROSECOND = 1000 * NANOSECOND
MILLISECOND = 1000 * MICROSECOND
SECOND = 1000 * MILLISECOND
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE
DAY = 24 * HOUR
WEEK = 7 * DAY

_U64_MAX = (1 << 64) - 1
_I64_MAX = (1 << 63) - 1

_UNITS = {
    b"ns": NANOSECOND,
    b"us": MICROSECOND,
    "\u00b5s".encode(): MICROSECOND,
    "\u03bcs".encode(): MICROSECOND,
    b"ms": MILLISECOND,
    b"s": SECOND,
    b"m": MINUTE,
    b"h": HOUR,
    b"d": DAY,
    b"w": WEEK,
}

BAD_INTEGER = "bad integer"
INVALID_DURATION = "invalid duration"
MISSING_UNIT = "missing unit"
UNKNOWN_UNIT = "unknown unit"


class DurationError(ValueError):
    """Raised when a duration string cannot be parsed."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _is_digit(c: int) -> bool:
    return 0x30 <= c <= 0x39


def _count_digits(data: bytes) -> int:
    count = 0
    for c in data:
        if not _is_digit(c):
            break
        count += 1
    return count


def _leading_int(data: bytes) -> tuple[int, bytes]:
    """Consume the leading ``[0-9]*`` from ``data``."""
    consumed = _count_digits(data)
    value = 0
    for c in data[:consumed]:
        if value > _U64_MAX // 10:
            raise DurationError(BAD_INTEGER)
        value = 10 * value + (c - 0x30)
        if value > _U64_MAX:
            raise DurationError(BAD_INTEGER)
    return value, data[consumed:]


def _leading_fraction(data: bytes) -> tuple[int, float, bytes]:
    """Consume the leading ``[0-9]*`` of a fraction.

    On overflow it stops accumulating precision instead of failing.
    """
    consumed = _count_digits(data)
    value = 0
    scale = 1.0
    overflow = False
    for c in data[:consumed]:
        if overflow:
            continue
        if value > _I64_MAX // 10:
            overflow = True
            continue
        candidate = value * 10 + (c - 0x30)
        if candidate > _I64_MAX:
            overflow = True
            continue
        scale *= 10.0
        value = candidate
    return value, scale, data[consumed:]


def parse_duration(text: str) -> int:
    """Parse a duration string into nanoseconds.

    A duration is an optionally ``+``-signed sequence of decimal numbers, each
    with an optional fraction and a unit suffix. Valid units are ``ns``,
    ``us`` (or ``µs``/``μs``), ``ms``, ``s``, ``m``, ``h``, ``d`` and ``w``.
    Negative durations are rejected.
    """
    s = text.encode("utf-8")
    negative = False

    if s and s[0] in b"-+":
        negative = s[0] == ord("-")
        s = s[1:]

    if negative:
        raise DurationError(INVALID_DURATION)

    if s == b"0":
        return 0

    if not s:
        raise DurationError(INVALID_DURATION)

    total = 0
    while s:
        fraction = 0
        scale = 1.0

        if not (s[0] == ord(".") or _is_digit(s[0])):
            raise DurationError(INVALID_DURATION)

        before = len(s)
        value, s = _leading_int(s)
        pre = before != len(s)

        post = False
        if s and s[0] == ord("."):
            s = s[1:]
            before = len(s)
            fraction, scale, s = _leading_fraction(s)
            post = before != len(s)

        if not pre and not post:
            raise DurationError(INVALID_DURATION)

        end = 0
        for c in s:
            if c == ord(".") or _is_digit(c):
                break
            end += 1
        if end == 0:
            raise DurationError(MISSING_UNIT)

        unit_text, s = s[:end], s[end:]
        unit = _UNITS.get(unit_text)
        if unit is None:
            raise DurationError(UNKNOWN_UNIT)

        if value > _U64_MAX // unit:
            raise DurationError(INVALID_DURATION)
        value *= unit

        if fraction > 0:
            # float is needed to be nanosecond accurate for fractions of hours
            value += int(float(fraction) * (float(unit) / scale))
            if value > _U64_MAX:
                raise DurationError(INVALID_DURATION)

        total += value
        if total > _U64_MAX:
            raise DurationError(INVALID_DURATION)

    return total


def _fmt_frac(value: int, precision: int) -> tuple[str, int]:
    """Format ``value / 10**precision``'s fraction without trailing zeros."""
    digits: list[str] = []
    printing = False
    for _ in range(precision):
        digit = value % 10
        printing = printing or digit != 0
        if printing:
            digits.append(str(digit))
        value //= 10
    if not printing:
        return "", value
    return "." + "".join(reversed(digits)), value


def format_duration(nanos: int) -> str:
    """Format nanoseconds in the form ``"72h3m0.5s"``.

    Leading zero units are omitted; durations below one second use ``ms``,
    ``us`` or ``ns`` so the leading digit is non-zero. Zero formats as ``0s``.
    """
    if nanos < 0:
        raise ValueError("duration must not be negative")
    u = nanos & _U64_MAX

    if u == 0:
        return "0s"

    if u < SECOND:
        if u < MICROSECOND:
            prefix, precision = "n", 0
        elif u < MILLISECOND:
            prefix, precision = "u", 3
        else:
            prefix, precision = "m", 6
        fraction, whole = _fmt_frac(u, precision)
        return f"{whole}{fraction}{prefix}s"

    fraction, u = _fmt_frac(u, 9)
    result = f"{u % 60}{fraction}s"
    u //= 60
    if u > 0:
        result = f"{u % 60}m{result}"
        u //= 60
        # stop at hours because days can be different lengths
        if u > 0:
            result = f"{u}h{result}"
    return result