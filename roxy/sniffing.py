"""Detect the destination host of a connection from its first bytes.

Plain HTTP requests give their ``Host`` header; TLS connections give the
server name indication of their ClientHello.
"""

from __future__ import annotations

UNKNOWN_PROTOCOL = "unknown protocol"
HOST_NOT_FOUND = "Host header not found"
INVALID_REQUEST_HEADER = "invalid request header"
INVALID_SNI = "invalid sni"
TLS_EXTENSION_MISSING = "TLS extension is not present"
TRUNCATED = "unexpected end of data"

_CONTENT_TYPE_HANDSHAKE = 22
_HANDSHAKE_TYPE_CLIENT_HELLO = 1
_EXTENSION_TYPE_SNI = 0
_NAME_TYPE_HOST_NAME = 0
_HTTP_METHOD_INITIALS = b"GPDHCOT"


class SniffError(ValueError):
    """Raised when no destination can be found in the sniffed bytes."""

    def __init__(self, reason: str, detail: object = None) -> None:
        super().__init__(reason if detail is None else f"{reason} {detail}")
        self.reason = reason
        self.detail = detail


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise SniffError(TRUNCATED)
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def skip(self, count: int) -> None:
        self.take(count)

    def u8(self) -> int:
        return self.take(1)[0]

    def u16(self) -> int:
        return int.from_bytes(self.take(2), "big")

    def u24(self) -> int:
        return int.from_bytes(self.take(3), "big")


def http_host(buf: bytes) -> str:
    """Return the value of the ``Host`` header of an HTTP request head."""
    data = bytes(buf)
    start = 0
    while True:
        newline = data.find(b"\n", start)
        if newline < 0:
            raise SniffError(HOST_NOT_FOUND)
        if newline == start:
            break
        line = data[start:newline]
        start = newline + 1
        if len(line) < 5 or line[:5] != b"Host:":
            continue
        try:
            value = line[5:].decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SniffError(INVALID_REQUEST_HEADER, exc) from exc
        return value.strip()
    raise SniffError(HOST_NOT_FOUND)


def tls_sni(buf: bytes) -> str:
    """Return the server name from a TLS ClientHello record."""
    reader = _Reader(bytes(buf))

    # TLSPlaintext: content type, protocol version, length
    reader.skip(1 + 2)
    reader.u16()

    # Handshake: type and 24-bit length
    if reader.u8() != _HANDSHAKE_TYPE_CLIENT_HELLO:
        raise SniffError(UNKNOWN_PROTOCOL)
    reader.u24()

    # ClientHello: client_version + random
    reader.skip(2 + (4 + 28))
    reader.skip(reader.u8())  # session id
    reader.skip(reader.u16())  # cipher suites
    reader.skip(reader.u8())  # compression methods

    if reader.u16() == 0:
        raise SniffError(TLS_EXTENSION_MISSING)

    while True:
        ext_type = reader.u16()
        ext_len = reader.u16()
        if ext_type != _EXTENSION_TYPE_SNI:
            reader.skip(ext_len)
            continue

        reader.u16()  # server name list length
        while True:
            if reader.u8() != _NAME_TYPE_HOST_NAME:
                reader.skip(2)
                continue
            name = reader.take(reader.u16())
            try:
                return name.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise SniffError(INVALID_SNI, exc) from exc


def destination_addr(data: bytes) -> tuple[str, int]:
    """Return ``(host, port)`` sniffed from the first bytes of a connection."""
    data = bytes(data)
    first = data[0] if data else 0
    if first == _CONTENT_TYPE_HANDSHAKE:
        return tls_sni(data), 443
    if first in _HTTP_METHOD_INITIALS:
        return http_host(data), 80
    raise SniffError(UNKNOWN_PROTOCOL)