"""Upstream proxy servers, their latency history and load balancing."""

from __future__ import annotations

import enum
import ipaddress
import logging
import threading
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from roxy.hashing import fnv, jumphash
from roxy.timestamp import DateTime

MAX_HISTORY = 10
_PICK_ATTEMPTS = 5
_MASK64 = (1 << 64) - 1
_U32_MAX = (1 << 32) - 1
_NANOS_PER_SECOND = 1_000_000_000

_log = logging.getLogger(__name__)

# Public suffixes made of two labels that are common enough to matter.
_TWO_LABEL_SUFFIXES = frozenset(
    {
        "co.uk", "org.uk", "ac.uk", "gov.uk", "me.uk", "net.uk",
        "com.cn", "net.cn", "org.cn", "gov.cn", "edu.cn",
        "com.au", "net.au", "org.au", "edu.au",
        "co.jp", "ne.jp", "or.jp", "ac.jp",
        "com.hk", "com.tw", "co.kr", "com.br", "co.nz", "co.in", "com.sg",
    }
)


def etld_plus_one(host: str) -> str | None:
    """Return the registrable domain of ``host``, or None if it has none.

    Uses a built-in list of common multi-label public suffixes; any other
    name is treated as having a single-label suffix.
    """
    name = host.strip().rstrip(".").lower()
    try:
        ipaddress.ip_address(name)
        return None
    except ValueError:
        pass
    labels = name.split(".")
    if len(labels) < 2 or not all(labels):
        return None
    suffix_len = 2 if ".".join(labels[-2:]) in _TWO_LABEL_SUFFIXES else 1
    if len(labels) <= suffix_len:
        return None
    return ".".join(labels[-(suffix_len + 1):])


class LoadBalanceType(str, enum.Enum):
    """How a server is chosen for a connection."""

    BEST = "best"
    ETLD = "etld"


@dataclass(frozen=True)
class Latency:
    """One check result in milliseconds; zero means the check failed."""

    value: int
    timestamp: float = field(default_factory=time.monotonic)

    def to_dict(self) -> dict[str, Any]:
        """Return the sample with its approximate wall-clock time."""
        elapsed = int((time.monotonic() - self.timestamp) * _NANOS_PER_SECOND)
        wall = time.time_ns() - elapsed
        when = DateTime.from_timestamp(*divmod(wall, _NANOS_PER_SECOND))
        return {"timestamp": str(when), "value": self.value}


class Server:
    """An upstream server and its most recent latencies.

    A server with no recorded check counts as down.
    """

    def __init__(self, address: str, remarks: str | None = None, config: Any = None) -> None:
        self.address = address
        self.remarks = remarks
        self.config = config
        self._latencies: deque[Latency] = deque(maxlen=MAX_HISTORY)
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Server(address={self.address!r}, remarks={self.remarks!r})"

    def alive(self) -> bool:
        """Whether the last check succeeded."""
        return self.latency() > 0

    def report_failure(self) -> None:
        """Record a failed use of this server."""
        self.push_latency(0)

    def push_latency(self, value: int) -> None:
        """Record a check result, dropping the oldest beyond the history size."""
        if not 0 <= value <= _U32_MAX:
            raise ValueError(f"latency out of range: {value}")
        with self._lock:
            self._latencies.append(Latency(value))

    def latency(self) -> int:
        """The latest latency, or 0 when down or never checked."""
        with self._lock:
            return self._latencies[-1].value if self._latencies else 0

    def stat(self) -> dict[str, Any]:
        """Return remarks, address and latency history as a mapping."""
        with self._lock:
            history = list(self._latencies)
        return {
            "remarks": self.remarks,
            "address": self.address,
            "latencies": [latency.to_dict() for latency in history],
        }


class Peers:
    """A fixed set of servers with a remembered best one."""

    def __init__(self, servers: Iterable[Server]) -> None:
        self.servers = list(servers)
        self._best = 0

    @property
    def best_index(self) -> int:
        return self._best

    def _require_servers(self) -> None:
        if not self.servers:
            raise LookupError("no upstream servers")

    def best(self) -> Server:
        """The best server if alive, otherwise the first alive one."""
        self._require_servers()
        server = self.servers[self._best]
        if server.alive():
            return server
        return self.fallback()

    def by_etld(self, host: str) -> Server:
        """Pick a server by hashing the registrable domain of ``host``."""
        self._require_servers()
        key = fnv(etld_plus_one(host) or host)
        for _ in range(_PICK_ATTEMPTS):
            server = self.servers[jumphash(key, len(self.servers))]
            if server.alive():
                return server
            key = (key + 1) & _MASK64

        _log.warning("pick tcp server by etld+1 failed, use first alive peer host=%r", host)
        return self.fallback()

    def fallback(self) -> Server:
        """The first alive server, or the first server if none is alive."""
        self._require_servers()
        for server in self.servers:
            if server.alive():
                return server
        _log.warning("no alive proxy, return the first one")
        return self.servers[0]

    def choose_best(self) -> Server | None:
        """Remember the alive server with the lowest latency and return it."""
        if not self.servers:
            return None
        best_index, best_latency = 0, _U32_MAX
        for index, server in enumerate(self.servers):
            latency = server.latency()
            if latency == 0:
                continue
            if latency < best_latency:
                best_index, best_latency = index, latency
        self._best = best_index
        chosen = self.servers[best_index]
        _log.info("choose best server addr=%s", chosen.address)
        return chosen


class Upstream:
    """Chooses servers for connections; its server set can be replaced."""

    def __init__(
        self,
        servers: Iterable[Server],
        lb_type: LoadBalanceType | str = LoadBalanceType.BEST,
    ) -> None:
        self.lb_type = LoadBalanceType(lb_type)
        self._lock = threading.Lock()
        self._peers = Peers(servers)

    @property
    def peers(self) -> Peers:
        with self._lock:
            return self._peers

    def pick(self, host: str) -> Server:
        """Choose a server for a connection to ``host``."""
        peers = self.peers
        if self.lb_type is LoadBalanceType.ETLD:
            return peers.by_etld(host)
        return peers.best()

    def stats(self) -> list[dict[str, Any]]:
        """Return the stat mapping of every server."""
        return [server.stat() for server in self.peers.servers]

    def replace(self, servers: Iterable[Server]) -> Peers:
        """Swap in a new server set, choosing its best server first."""
        new = Peers(servers)
        new.choose_best()
        with self._lock:
            self._peers = new
        _log.info("update servers success total=%d", len(new.servers))
        return new