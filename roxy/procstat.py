"""Resource statistics of the running process, read from ``/proc``."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from pathlib import Path

MAXFD_PATTERN = "Max open files"
USER_HZ = 100.0


def _parse_float(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        return 0.0


def _parse_uint(text: str) -> int:
    if text.isascii() and text.isdigit():
        return int(text)
    return 0


def find_statistic(text: str, pattern: str) -> int:
    """Return the first number following ``pattern`` in ``text``."""
    index = text.find(pattern)
    if index >= 0:
        tokens = text[index + len(pattern):].split()
        if tokens:
            value = tokens[0]
            if value.isascii() and value.isdigit():
                return int(value)
            raise ValueError(f"invalid value {value!r} for {pattern!r}")
    raise ValueError(f"statistic {pattern!r} not found")


def get_proc_stat(root: str | os.PathLike, pid: int) -> tuple[float, int, float, int, int]:
    """Read ``<root>/<pid>/stat``.

    Returns CPU seconds, thread count, start time in seconds, virtual memory
    size and resident memory size in bytes.
    """
    content = (Path(root) / str(pid) / "stat").read_text()
    parts = content.split()
    if len(parts) < 24:
        raise ValueError(f"malformed stat file, only {len(parts)} fields")

    utime = _parse_float(parts[13])
    stime = _parse_float(parts[14])
    threads = _parse_uint(parts[19])
    start_time = _parse_float(parts[21])
    vsize = _parse_uint(parts[22])
    rss = _parse_uint(parts[23])

    page_size = os.sysconf("SC_PAGE_SIZE")
    return (
        (utime + stime) / USER_HZ,
        threads,
        start_time / USER_HZ,
        vsize,
        rss * page_size,
    )


@dataclass(frozen=True)
class ProcStat:
    """Open files, CPU, thread and memory usage of this process."""

    open_fds: int
    max_fds: int
    cpu_seconds: float
    threads: int
    start: float
    vss: int
    rss: int

    @classmethod
    def read(cls) -> ProcStat:
        """Collect the statistics of the current process."""
        pid = os.getpid()
        base = Path("/proc") / str(pid)

        with os.scandir(base / "fd") as entries:
            open_fds = sum(1 for entry in entries if not entry.is_dir(follow_symlinks=False))

        max_fds = find_statistic((base / "limits").read_text(), MAXFD_PATTERN)
        cpu_seconds, threads, start, vss, rss = get_proc_stat("/proc", pid)

        return cls(
            open_fds=open_fds,
            max_fds=max_fds,
            cpu_seconds=cpu_seconds,
            threads=threads,
            start=start,
            vss=vss,
            rss=rss,
        )

    def to_dict(self) -> dict[str, int | float]:
        """Return the statistics as a JSON-ready mapping."""
        return asdict(self)