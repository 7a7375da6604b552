"""Configuration of the proxy, loaded from a YAML document."""

from __future__ import annotations

import ipaddress
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from roxy.controller import parse_listen
from roxy.duration import SECOND, DurationError, parse_duration
from roxy.log import Level
from roxy.servers import LoadBalanceType

DEFAULT_CHECK_INTERVAL = 10 * SECOND
"""Interval between two health checks of the upstream servers."""
DEFAULT_CHECK_TIMEOUT = 5 * SECOND
"""Timeout of one health check."""

CONFIG_ENV = "ROXY_CONFIG"
DEFAULT_CONFIG_PATH = "config.yaml"


class ConfigError(Exception):
    """Raised when the configuration cannot be read or is invalid."""


@dataclass(frozen=True)
class LogConfig:
    level: Level = Level.INFO
    timestamp: bool = True


@dataclass(frozen=True)
class CacheConfig:
    size: int
    ttl: int  # nanoseconds


@dataclass(frozen=True)
class RejectConfig:
    endpoint: str
    interval: int | None = None  # nanoseconds


@dataclass(frozen=True)
class HijackConfig:
    endpoint: str
    hijack: ipaddress.IPv4Address | ipaddress.IPv6Address
    interval: int | None = None  # nanoseconds


@dataclass(frozen=True)
class DnsUpstreamConfig:
    nameservers: list[tuple[str, int]]


@dataclass(frozen=True)
class DnsConfig:
    listen: str
    upstream: DnsUpstreamConfig
    cache: CacheConfig | None = None
    hosts: dict[str, str] | None = None
    reject: RejectConfig | None = None
    hijack: HijackConfig | None = None


@dataclass(frozen=True)
class CheckConfig:
    timeout: int = DEFAULT_CHECK_TIMEOUT
    interval: int = DEFAULT_CHECK_INTERVAL


@dataclass(frozen=True)
class ProviderConfig:
    endpoint: str
    interval: int  # nanoseconds


@dataclass(frozen=True)
class UpstreamConfig:
    check: CheckConfig
    provider: ProviderConfig
    load_balance: LoadBalanceType = LoadBalanceType.BEST


@dataclass(frozen=True)
class ControllerConfig:
    listen: str


@dataclass(frozen=True)
class ThpConfig:
    listen: list[tuple[str, int]]


@dataclass(frozen=True)
class Config:
    """The whole configuration of the proxy."""

    dns: DnsConfig
    upstream: UpstreamConfig
    worker_threads: int | None = None
    resolvers: list[tuple[str, int]] = field(default_factory=list)
    log: LogConfig = field(default_factory=LogConfig)
    controller: ControllerConfig | None = None
    thp: ThpConfig | None = None

    @classmethod
    def from_yaml(cls, text: str | bytes) -> Config:
        """Parse a YAML document."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"deserialize config failed, {exc}") from exc
        try:
            return _config(data)
        except ValueError as exc:
            raise ConfigError(f"deserialize config failed, {exc}") from exc

    @classmethod
    def load(cls) -> Config:
        """Load the file named by ``ROXY_CONFIG``, or ``config.yaml``."""
        path = os.environ.get(CONFIG_ENV, DEFAULT_CONFIG_PATH)
        try:
            content = Path(path).read_bytes()
        except OSError as exc:
            raise ConfigError(f"read config failed, {exc}") from exc
        return cls.from_yaml(content)

    def worker(self) -> int:
        """Number of worker threads; the CPU count when not configured."""
        if self.worker_threads is not None:
            return self.worker_threads
        return os.cpu_count() or 1


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what}: expected a mapping")
    return data


def _required(data: Mapping[str, Any], key: str, what: str) -> Any:
    if key not in data or data[key] is None:
        raise ValueError(f"{what}: missing field `{key}`")
    return data[key]


def _string(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what}: expected a string")
    return value


def _uint(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{what}: expected a non-negative integer")
    return value


def _duration(value: Any, what: str) -> int:
    try:
        return parse_duration(_string(value, what))
    except DurationError as exc:
        raise ValueError(f"{what}: {exc}") from exc


def _optional_duration(data: Mapping[str, Any], key: str, what: str) -> int | None:
    value = data.get(key)
    return None if value is None else _duration(value, f"{what}.{key}")


def _socket_addr(value: Any, what: str) -> tuple[str, int]:
    try:
        return parse_listen(_string(value, what))
    except ValueError as exc:
        raise ValueError(f"{what}: {exc}") from exc


def _socket_addrs(value: Any, what: str) -> list[tuple[str, int]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{what}: expected a list")
    return [_socket_addr(item, f"{what}[{index}]") for index, item in enumerate(value)]


def _log_config(data: Any) -> LogConfig:
    if data is None:
        return LogConfig()
    section = _mapping(data, "log")
    unknown = sorted(set(section) - {"level", "timestamp"})
    if unknown:
        raise ValueError(
            f"log: unknown field `{unknown[0]}`, expected `level` or `timestamp`"
        )
    level = _required(section, "level", "log")
    if not isinstance(level, str):
        raise ValueError("log.level: expected trace, debug, info, warn and error")
    try:
        parsed = Level.parse(level)
    except ValueError as exc:
        raise ValueError(f"log.level: invalid level {exc}") from exc
    timestamp = section.get("timestamp", True)
    if not isinstance(timestamp, bool):
        raise ValueError("log.timestamp: expected a boolean")
    return LogConfig(level=parsed, timestamp=timestamp)


def _dns_config(data: Any) -> DnsConfig:
    section = _mapping(data, "dns")
    listen = _string(_required(section, "listen", "dns"), "dns.listen")

    upstream = _mapping(_required(section, "upstream", "dns"), "dns.upstream")
    nameservers = _required(upstream, "nameservers", "dns.upstream")
    if not isinstance(nameservers, list):
        raise ValueError("dns.upstream.nameservers: expected a list")

    cache = None
    if section.get("cache") is not None:
        raw = _mapping(section["cache"], "dns.cache")
        cache = CacheConfig(
            size=_uint(_required(raw, "size", "dns.cache"), "dns.cache.size"),
            ttl=_duration(_required(raw, "ttl", "dns.cache"), "dns.cache.ttl"),
        )

    hosts = None
    if section.get("hosts") is not None:
        raw = _mapping(section["hosts"], "dns.hosts")
        hosts = {
            _string(key, "dns.hosts"): _string(value, f"dns.hosts.{key}")
            for key, value in sorted(raw.items(), key=lambda item: str(item[0]))
        }

    reject = None
    if section.get("reject") is not None:
        raw = _mapping(section["reject"], "dns.reject")
        reject = RejectConfig(
            endpoint=_string(_required(raw, "endpoint", "dns.reject"), "dns.reject.endpoint"),
            interval=_optional_duration(raw, "interval", "dns.reject"),
        )

    hijack = None
    if section.get("hijack") is not None:
        raw = _mapping(section["hijack"], "dns.hijack")
        address = _string(_required(raw, "hijack", "dns.hijack"), "dns.hijack.hijack")
        try:
            ip = ipaddress.ip_address(address)
        except ValueError as exc:
            raise ValueError(f"dns.hijack.hijack: {exc}") from exc
        hijack = HijackConfig(
            endpoint=_string(_required(raw, "endpoint", "dns.hijack"), "dns.hijack.endpoint"),
            hijack=ip,
            interval=_optional_duration(raw, "interval", "dns.hijack"),
        )

    return DnsConfig(
        listen=listen,
        upstream=DnsUpstreamConfig(
            nameservers=_socket_addrs(nameservers, "dns.upstream.nameservers")
        ),
        cache=cache,
        hosts=hosts,
        reject=reject,
        hijack=hijack,
    )


def _upstream_config(data: Any) -> UpstreamConfig:
    section = _mapping(data, "upstream")

    load_balance = section.get("load_balance")
    if load_balance is None:
        lb_type = LoadBalanceType.BEST
    else:
        try:
            lb_type = LoadBalanceType(_string(load_balance, "upstream.load_balance"))
        except ValueError as exc:
            raise ValueError(
                f"upstream.load_balance: unknown variant {load_balance!r}, expected `best` or `etld`"
            ) from exc

    check = _mapping(_required(section, "check", "upstream"), "upstream.check")
    timeout = _optional_duration(check, "timeout", "upstream.check")
    interval = _optional_duration(check, "interval", "upstream.check")

    provider = _mapping(_required(section, "provider", "upstream"), "upstream.provider")

    return UpstreamConfig(
        load_balance=lb_type,
        check=CheckConfig(
            timeout=DEFAULT_CHECK_TIMEOUT if timeout is None else timeout,
            interval=DEFAULT_CHECK_INTERVAL if interval is None else interval,
        ),
        provider=ProviderConfig(
            endpoint=_string(
                _required(provider, "endpoint", "upstream.provider"),
                "upstream.provider.endpoint",
            ),
            interval=_duration(
                _required(provider, "interval", "upstream.provider"),
                "upstream.provider.interval",
            ),
        ),
    )


def _config(data: Any) -> Config:
    root = _mapping(data, "config")

    worker = root.get("worker")
    controller = None
    if root.get("controller") is not None:
        raw = _mapping(root["controller"], "controller")
        controller = ControllerConfig(
            listen=_string(_required(raw, "listen", "controller"), "controller.listen")
        )

    thp = None
    if root.get("thp") is not None:
        raw = _mapping(root["thp"], "thp")
        thp = ThpConfig(listen=_socket_addrs(_required(raw, "listen", "thp"), "thp.listen"))

    return Config(
        worker_threads=None if worker is None else _uint(worker, "worker"),
        resolvers=_socket_addrs(root.get("resolvers"), "resolvers"),
        log=_log_config(root.get("log")),
        dns=_dns_config(_required(root, "dns", "config")),
        controller=controller,
        upstream=_upstream_config(_required(root, "upstream", "config")),
        thp=thp,
    )