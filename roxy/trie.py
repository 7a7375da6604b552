"""Domain rule sets used to reject or hijack DNS queries.

A rule such as ``bar.com`` matches exactly that name, while a rule with a
leading dot such as ``.foo.com`` matches ``foo.com`` and every name below it.
"""

from __future__ import annotations

import urllib.error
import urllib.request
from collections.abc import Iterable

import dns.name


class RuleLoadError(Exception):
    """Raised when a rule list cannot be fetched or decoded."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _labels(name: str | dns.name.Name) -> list[str]:
    if isinstance(name, dns.name.Name):
        return [label.decode("utf-8", "replace") for label in name.labels if label]
    text = str(name)
    if text.endswith("."):
        text = text[:-1]
    if not text:
        return []
    return text.split(".")


class Trie:
    """A set of domain rules stored with their labels reversed."""

    def __init__(self) -> None:
        self._entries: set[str] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def swap(self, other: Trie) -> None:
        """Replace this trie's rules with those of ``other``."""
        self._entries = other._entries

    def insert(self, host: str) -> None:
        """Add a rule; a leading dot makes it match all subdomains."""
        self._entries.add(".".join(reversed(host.split("."))))

    def contain(self, name: str | dns.name.Name) -> bool:
        """Whether ``name`` matches any rule."""
        labels = _labels(name)
        last = len(labels) - 1
        key = ""
        for index, label in enumerate(reversed(labels)):
            key += label

            # exact match
            if key in self._entries:
                if index == last:
                    return True
                key += "."
                continue

            # wildcard match
            key += "."
            if key in self._entries:
                return True

        return False


def _code(c: str | int) -> int:
    if isinstance(c, str):
        if len(c) != 1:
            raise ValueError(f"expected a single character, got {c!r}")
        return ord(c)
    return int(c)


def validate(c: str | int) -> bool:
    """Whether ``c`` may appear in a rule: ``a-z``, ``0-9``, ``.`` or ``-``."""
    code = _code(c)
    return (
        0x30 <= code <= 0x39
        or ord("a") <= code <= ord("z")
        or code in (ord("."), ord("-"))
    )


def ascii_to_index(c: str | int) -> int:
    """Return the slot of a valid domain character in ``.-0-9a-z`` order."""
    code = _code(c)
    if ord("a") <= code <= ord("z"):
        return code - ord("a") + 2 + 10
    if 0x30 <= code <= 0x39:
        return code - 0x30 + 2
    if code == ord("."):
        return 0
    if code == ord("-"):
        return 1
    raise ValueError(f"invalid domain character {chr(code)!r}")


def parse_rules(lines: Iterable[str | bytes]) -> tuple[Trie, int]:
    """Build a trie from rule lines; return it with the number of lines read."""
    trie = Trie()
    total = 0
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        total += 1
        trie.insert(line.strip())
    return trie, total


def load_rules(endpoint: str) -> tuple[Trie, int]:
    """Fetch a rule list over HTTP(S) and parse it."""
    try:
        with urllib.request.urlopen(endpoint) as response:
            status = response.status
            if status != 200:
                raise RuleLoadError(f"unexpected status code {status}", status)
            body = response.read()
    except urllib.error.HTTPError as exc:
        raise RuleLoadError(f"unexpected status code {exc.code}", exc.code) from exc
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise RuleLoadError(str(exc)) from exc

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise RuleLoadError(f"invalid rule data, {exc}") from exc
    return parse_rules(text.splitlines())