"""The RESTful controller exposing process and upstream statistics."""

from __future__ import annotations

import ipaddress
import json
import logging
import socket
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import urlsplit

from roxy.procstat import ProcStat
from roxy.servers import Upstream

_log = logging.getLogger(__name__)

Reply = tuple[HTTPStatus, "str | None", bytes]


def parse_listen(listen: str) -> tuple[str, int]:
    """Parse ``ip:port`` or ``[ipv6]:port`` into a host and port."""
    host, sep, port_text = listen.rpartition(":")
    if not sep or not host:
        raise ValueError(f"invalid socket address syntax: {listen!r}")
    try:
        if host.startswith("[") and host.endswith("]"):
            ip: ipaddress.IPv4Address | ipaddress.IPv6Address = ipaddress.IPv6Address(host[1:-1])
        else:
            ip = ipaddress.IPv4Address(host)
    except ValueError as exc:
        raise ValueError(f"invalid socket address syntax: {listen!r}") from exc
    if not (port_text.isascii() and port_text.isdigit()) or int(port_text) > 0xFFFF:
        raise ValueError(f"invalid socket address syntax: {listen!r}")
    return str(ip), int(port_text)


def _json_reply(value: Any) -> Reply:
    body = json.dumps(value, separators=(",", ":")).encode("utf-8")
    return HTTPStatus.OK, "application/json", body


def _error_reply(status: HTTPStatus, error: BaseException) -> Reply:
    return status, "text/plain", str(error).encode("utf-8")


class _HTTPServer4(ThreadingHTTPServer):
    address_family = socket.AF_INET
    daemon_threads = True


class _HTTPServer6(ThreadingHTTPServer):
    address_family = socket.AF_INET6
    daemon_threads = True


class Controller:
    """Serves ``GET /stats`` and ``GET /upstream`` as JSON."""

    def __init__(self, config: Any, upstream: Upstream) -> None:
        self.listen = parse_listen(config.listen)
        self.upstream = upstream

    def handle(self, method: str, path: str) -> Reply:
        """Answer one request with ``(status, content type, body)``."""
        route = urlsplit(path).path
        if method == "GET" and route == "/stats":
            try:
                stats = ProcStat.read()
            except (OSError, ValueError) as exc:
                _log.error("read proc stats failed err=%r", exc)
                return _error_reply(HTTPStatus.INTERNAL_SERVER_ERROR, exc)
            return _json_reply(stats.to_dict())
        if method == "GET" and route == "/upstream":
            return _json_reply(self.upstream.stats())
        return HTTPStatus.NOT_FOUND, None, b"Not Found"

    def serve(self) -> None:
        """Serve HTTP requests until the process exits."""
        controller = self

        class _RequestHandler(BaseHTTPRequestHandler):
            def _respond(self) -> None:
                status, content_type, body = controller.handle(self.command, self.path)
                self.send_response(status)
                if content_type is not None:
                    self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(body)

            do_GET = do_POST = do_PUT = do_DELETE = do_PATCH = do_HEAD = _respond

            def log_message(self, format: str, *args: Any) -> None:
                _log.debug(format, *args)

        host, _ = self.listen
        server_class = _HTTPServer6 if ":" in host else _HTTPServer4
        with server_class(self.listen, _RequestHandler) as server:
            _log.info("controller start listen=%s:%d", *self.listen)
            try:
                server.serve_forever()
            except Exception as exc:  # keep the process alive, as a failed controller is not fatal
                _log.error("controller server exit err=%r", exc)