"""A DNS server with caching, hijacking and rejecting rules."""

from __future__ import annotations

import ipaddress
import logging
import socket
import socketserver
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import dns.exception
import dns.message
import dns.name
import dns.nameserver
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.resolver
import dns.rrset

from roxy.trie import RuleLoadError, Trie, load_rules

_log = logging.getLogger(__name__)

HIJACK_TTL = 60 * 60
MAX_MESSAGE_SIZE = 512
_RESOLVER_CACHE_SIZE = 1024
_NANOS_PER_SECOND = 1_000_000_000

Lookup = Callable[[dns.name.Name], Sequence[dns.rrset.RRset]]


class DnsError(Exception):
    """Raised when a DNS request cannot be answered."""

    def __init__(self, message: str, *, no_records: bool = False) -> None:
        super().__init__(message)
        self.no_records = no_records


def _question(message: dns.message.Message) -> dns.rrset.RRset:
    if not message.question:
        raise DnsError("message has no question")
    return message.question[0]


def _query_key(message: dns.message.Message) -> tuple[dns.name.Name, int, int]:
    question = _question(message)
    return question.name, question.rdtype, question.rdclass


@dataclass(frozen=True)
class _Entry:
    expire_at: float
    answer: tuple[dns.rrset.RRset, ...]
    authority: tuple[dns.rrset.RRset, ...]
    additional: tuple[dns.rrset.RRset, ...]


class Cache:
    """A least-recently-used cache of answers, each kept for ``ttl`` seconds."""

    def __init__(self, size: int, ttl: float) -> None:
        self.size = size
        self.ttl = ttl
        self._entries: OrderedDict[tuple[dns.name.Name, int, int], _Entry] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, request: dns.message.Message) -> dns.message.Message | None:
        """Return a cached answer to ``request``, or None."""
        key = _query_key(request)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expire_at <= time.monotonic():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)

        response = dns.message.make_response(request)
        response.set_rcode(dns.rcode.NOERROR)
        response.answer = list(entry.answer)
        response.authority = list(entry.authority)
        response.additional = list(entry.additional)
        return response

    def put(self, response: dns.message.Message) -> None:
        """Remember ``response`` unless its question is already cached."""
        key = _query_key(response)
        with self._lock:
            if key in self._entries or self.size <= 0:
                return
            self._entries[key] = _Entry(
                expire_at=time.monotonic() + self.ttl,
                answer=tuple(response.answer),
                authority=tuple(response.authority),
                additional=tuple(response.additional),
            )
            while len(self._entries) > self.size:
                self._entries.popitem(last=False)


class _Upstream:
    """Resolves names to address records through the configured nameservers."""

    def __init__(self, nameservers: Iterable[tuple[str, int]]) -> None:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [
            dns.nameserver.Do53Nameserver(host, port) for host, port in nameservers
        ]
        resolver.cache = dns.resolver.LRUCache(_RESOLVER_CACHE_SIZE)
        self._resolver = resolver

    def lookup(self, name: dns.name.Name) -> list[dns.rrset.RRset]:
        for rdtype in (dns.rdatatype.A, dns.rdatatype.AAAA):
            try:
                answer = self._resolver.resolve(name, rdtype, search=False)
            except dns.resolver.NXDOMAIN as exc:
                raise DnsError(f"no record found for {name}", no_records=True) from exc
            except dns.resolver.NoAnswer:
                continue
            except dns.exception.DNSException as exc:
                raise DnsError(f"resolve {name} failed, {exc}") from exc
            return list(answer.response.answer)
        raise DnsError(f"no record found for {name}", no_records=True)


class Handler:
    """Answers requests from the cache, hijack and reject rules, or upstream."""

    def __init__(
        self,
        nameservers: Iterable[tuple[str, int]] = (),
        *,
        cache: Cache | None = None,
        reject: Trie | None = None,
        hijack: Trie | None = None,
        hijack_to: Any = None,
        lookup: Lookup | None = None,
    ) -> None:
        if (hijack is None) != (hijack_to is None):
            raise ValueError("hijack rules and hijack address go together")
        self.cache = cache
        self.reject = reject
        self.hijack = hijack
        self.hijack_to = None if hijack_to is None else ipaddress.ip_address(hijack_to)
        self._lookup = lookup if lookup is not None else _Upstream(nameservers).lookup

    def handle(self, request: dns.message.Message) -> dns.message.Message:
        """Return the response to ``request``."""
        name = _question(request).name

        if self.cache is not None:
            cached = self.cache.get(request)
            if cached is not None:
                return cached

        if self.hijack is not None and self.hijack.contain(name):
            _log.debug("hijack dns request name=%s to=%s", name, self.hijack_to)
            rdtype = dns.rdatatype.A if self.hijack_to.version == 4 else dns.rdatatype.AAAA
            response = dns.message.make_response(request)
            response.answer.append(
                dns.rrset.from_text(
                    name, HIJACK_TTL, dns.rdataclass.IN, rdtype, str(self.hijack_to)
                )
            )
            return response

        if self.reject is not None and self.reject.contain(name):
            _log.debug("request match reject rules name=%s", name)
            return dns.message.make_response(request)

        records = self._lookup(name)
        response = dns.message.make_response(request)
        response.answer = list(records)
        if self.cache is not None:
            self.cache.put(response)
        return response


def sanitize_src_address(host: str, port: int) -> None:
    """Raise ValueError if responses must not be sent to ``host:port``."""
    ip = ipaddress.ip_address(host)
    src = f"[{ip}]:{port}" if ip.version == 6 else f"{ip}:{port}"
    if port == 0:
        raise ValueError(f"cannot respond to src on port 0: {src}")
    if ip.version == 4:
        if ip.is_unspecified:
            raise ValueError(f"cannot respond to unspecified v4 addr: {ip}")
        if ip == ipaddress.IPv4Address("255.255.255.255"):
            raise ValueError(f"cannot respond to broadcast v4 addr: {ip}")
    elif ip.is_unspecified:
        raise ValueError(f"cannot respond to unspecified v6 addr: {ip}")


def _split_listen(listen: str) -> tuple[str, int]:
    host, sep, port = listen.rpartition(":")
    if not sep or not (port.isascii() and port.isdigit()) or int(port) > 0xFFFF:
        raise ValueError(f"invalid listen address: {listen!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


def _load_rule_set(endpoint: str, interval: int | None, kind: str) -> Trie:
    try:
        trie, total = load_rules(endpoint)
    except RuleLoadError as exc:
        raise DnsError(f"load {kind} rules failed, {exc}") from exc
    _log.info("load %s rules success total=%d", kind, total)

    if interval is not None:
        def reload() -> None:
            while True:
                time.sleep(interval / _NANOS_PER_SECOND)
                try:
                    new, count = load_rules(endpoint)
                except RuleLoadError as exc:
                    _log.warning("reload %s rules failed err=%r", kind, exc)
                    continue
                trie.swap(new)
                _log.info("reload %s rules success total=%d", kind, count)

        threading.Thread(target=reload, name=f"{kind}-rules", daemon=True).start()
    return trie


def _handler_from_config(config: Any) -> Handler:
    cache = None
    if config.cache is not None:
        cache = Cache(config.cache.size, config.cache.ttl / _NANOS_PER_SECOND)
    reject = None
    if config.reject is not None:
        reject = _load_rule_set(config.reject.endpoint, config.reject.interval, "reject")
    hijack = hijack_to = None
    if config.hijack is not None:
        hijack = _load_rule_set(config.hijack.endpoint, config.hijack.interval, "hijack")
        hijack_to = config.hijack.hijack
    return Handler(
        config.upstream.nameservers,
        cache=cache,
        reject=reject,
        hijack=hijack,
        hijack_to=hijack_to,
    )


class _UdpRequestHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        data, sock = self.request
        reply = self.server.dns_server.handle_datagram(data, self.client_address)
        if reply is not None:
            try:
                sock.sendto(reply, self.client_address)
            except OSError as exc:
                _log.warning("send dns response failed err=%r src=%s", exc, self.client_address)


class _TcpRequestHandler(socketserver.StreamRequestHandler):
    def _read_exact(self, count: int) -> bytes | None:
        data = self.rfile.read(count)
        return data if len(data) == count else None

    def handle(self) -> None:
        src = self.client_address
        try:
            sanitize_src_address(src[0], src[1])
        except ValueError as exc:
            _log.warning("address can not be responded to src=%s err=%s", src, exc)
            return
        dns_server = self.server.dns_server
        while True:
            header = self._read_exact(2)
            if header is None:
                return
            body = self._read_exact(int.from_bytes(header, "big"))
            if body is None:
                _log.warning("error in TCP request stream src=%s", src)
                return
            reply = dns_server._respond(body, src)
            if reply is None:
                continue
            try:
                self.wfile.write(len(reply).to_bytes(2, "big") + reply)
                self.wfile.flush()
            except OSError as exc:
                _log.warning("send response message failed src=%s err=%r", src, exc)
                return


class _UdpServer(socketserver.ThreadingUDPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], family: int, dns_server: DnsServer) -> None:
        self.address_family = family
        self.dns_server = dns_server
        super().__init__(address, _UdpRequestHandler)


class _TcpServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address: tuple[str, int], family: int, dns_server: DnsServer) -> None:
        self.address_family = family
        self.dns_server = dns_server
        super().__init__(address, _TcpRequestHandler)


class DnsServer:
    """Listens for DNS requests on UDP and TCP."""

    def __init__(self, config: Any, handler: Handler | None = None) -> None:
        self.listen = config.listen
        self.handler = handler if handler is not None else _handler_from_config(config)

    def _respond(self, data: bytes, src: Any) -> bytes | None:
        try:
            request = dns.message.from_wire(data)
        except dns.exception.DNSException as exc:
            _log.warning("decode dns request failed err=%r src=%s", exc, src)
            return None
        if len(request.question) != 1:
            _log.warning(
                "decode dns request failed, bad query count %d src=%s",
                len(request.question),
                src,
            )
            return None

        name = request.question[0].name
        _log.debug("serve dns request name=%s", name)
        try:
            response = self.handler.handle(request)
        except DnsError as exc:
            if exc.no_records:
                _log.debug("no record name=%s", name)
            else:
                _log.warning("handle dns request failed err=%s name=%s", exc, name)
            return None

        try:
            return response.to_wire(max_size=MAX_MESSAGE_SIZE)
        except dns.exception.DNSException as exc:
            _log.error("encode response message failed err=%r src=%s", exc, src)
            return None

    def handle_datagram(self, data: bytes, src: Sequence[Any]) -> bytes | None:
        """Answer one datagram from ``src``; None when nothing is to be sent."""
        try:
            sanitize_src_address(src[0], src[1])
        except ValueError as exc:
            _log.warning("address can not be responded to err=%s src=%s", exc, src)
            return None
        return self._respond(data, src)

    def serve(self) -> None:
        """Serve UDP and TCP until either of them fails."""
        host, port = _split_listen(self.listen)
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        _log.info("Starting DNS service addr=%s", self.listen)

        udp = _UdpServer((host, port), family, self)
        try:
            tcp = _TcpServer((host, port), family, self)
        except OSError:
            udp.server_close()
            raise

        stopped = threading.Event()
        errors: list[BaseException] = []

        def run(server: socketserver.BaseServer) -> None:
            try:
                server.serve_forever()
            except BaseException as exc:
                errors.append(exc)
            finally:
                stopped.set()

        threads = [
            threading.Thread(target=run, args=(server,), name=name, daemon=True)
            for server, name in ((udp, "dns-udp"), (tcp, "dns-tcp"))
        ]
        for thread in threads:
            thread.start()
        try:
            stopped.wait()
        finally:
            for server in (udp, tcp):
                server.shutdown()
                server.server_close()
        if errors:
            raise errors[0]
        raise OSError("unexpected close of socket")