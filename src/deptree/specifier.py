# deptree/specifier.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Union
from urllib.parse import urlsplit

REMOTE_SCHEMES = ("http", "https")


@dataclass(frozen=True, order=True)
class Position:
    """
    0-based line, 0-based character offset within the line.
    Characters are Unicode code points, not bytes.
    """

    line: int
    character: int

    def to_dict(self, *, one_based: bool = False) -> dict[str, int]:
        off = 1 if one_based else 0
        return {"line": self.line + off, "character": self.character + off}


@dataclass(frozen=True)
class SourceSpan:
    # end is exclusive; span covers the string literal including its quotes
    start: Position
    end: Position

    def to_dict(self, *, one_based: bool = False) -> dict[str, dict[str, int]]:
        return {
            "start": self.start.to_dict(one_based=one_based),
            "end": self.end.to_dict(one_based=one_based),
        }


@dataclass(frozen=True)
class LocalSpecifier:
    text: str
    span: SourceSpan


@dataclass(frozen=True)
class RemoteSpecifier:
    text: str
    span: SourceSpan


# Only LocalSpecifier is ever routed through an import map.
RawSpecifier = Union[LocalSpecifier, RemoteSpecifier]


def is_remote(specifier: str) -> bool:
    """True exactly for well-formed absolute http(s) URLs. No network access."""
    s = (specifier or "").strip()
    if not s or s != specifier:
        return False
    try:
        parts = urlsplit(s)
    except ValueError:
        return False
    if parts.scheme.lower() not in REMOTE_SCHEMES:
        return False
    if not parts.netloc or not parts.hostname:
        return False
    try:
        # raises on malformed ports, e.g. "https://host:abc/"
        parts.port
    except ValueError:
        return False
    return True


def classify(text: str, span: SourceSpan) -> RawSpecifier:
    if is_remote(text):
        return RemoteSpecifier(text, span)
    return LocalSpecifier(text, span)
