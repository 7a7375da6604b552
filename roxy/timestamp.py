"""UTC timestamps rendered as ISO 8601 strings over the full 64-bit range."""

from __future__ import annotations

import time
from dataclasses import dataclass

_NANOS_PER_SECOND = 1_000_000_000
_SECS_PER_DAY = 86_400

# 2000-03-01, the first day of a 400-year cycle right after a leap day
_LEAPOCH = 946_684_800 + _SECS_PER_DAY * (31 + 29)
_DAYS_PER_400Y = 365 * 400 + 97
_DAYS_PER_100Y = 365 * 100 + 24
_DAYS_PER_4Y = 365 * 4 + 1
# month lengths starting from March
_DAYS_IN_MONTH = (31, 30, 31, 30, 31, 31, 30, 31, 30, 31, 31, 29)


@dataclass(frozen=True)
class DateTime:
    """A broken-down UTC date and time with nanosecond precision."""

    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int
    nanos: int = 0

    @classmethod
    def from_timestamp(cls, secs: int, nanos: int = 0) -> DateTime:
        """Build from seconds (and extra nanoseconds) since the Unix epoch."""
        secs, nanos = divmod(secs * _NANOS_PER_SECOND + nanos, _NANOS_PER_SECOND)

        days = secs // _SECS_PER_DAY - _LEAPOCH // _SECS_PER_DAY
        remsecs = secs % _SECS_PER_DAY

        qc_cycles, remdays = divmod(days, _DAYS_PER_400Y)

        c_cycles = min(remdays // _DAYS_PER_100Y, 3)
        remdays -= c_cycles * _DAYS_PER_100Y

        q_cycles = min(remdays // _DAYS_PER_4Y, 24)
        remdays -= q_cycles * _DAYS_PER_4Y

        remyears = min(remdays // 365, 3)
        remdays -= remyears * 365

        years = remyears + 4 * q_cycles + 100 * c_cycles + 400 * qc_cycles

        months = 0
        for length in _DAYS_IN_MONTH:
            if length > remdays:
                break
            remdays -= length
            months += 1

        if months >= 10:
            months -= 12
            years += 1

        return cls(
            year=years + 2000,
            month=months + 3,
            day=remdays + 1,
            hour=remsecs // 3600,
            minute=remsecs // 60 % 60,
            second=remsecs % 60,
            nanos=nanos,
        )

    @classmethod
    def now(cls) -> DateTime:
        """Return the current UTC time."""
        return cls.from_timestamp(*divmod(time.time_ns(), _NANOS_PER_SECOND))

    def __str__(self) -> str:
        if self.year > 9999:
            year = f"+{self.year}"
        elif self.year < 0:
            year = f"{self.year:05d}"
        else:
            year = f"{self.year:04d}"
        return (
            f"{year}-{self.month:02d}-{self.day:02d}"
            f"T{self.hour:02d}:{self.minute:02d}:{self.second:02d}"
            f".{self.nanos // 1000:06d}Z"
        )