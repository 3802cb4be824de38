# deptree/extract.py
from __future__ import annotations

import re
import threading
from bisect import bisect_right
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterator, Optional

import tree_sitter_typescript as tsts
from tree_sitter import Language, Node, Parser

from deptree.errors import ParseError
from deptree.specifier import Position, RawSpecifier, SourceSpan, classify

# --------------------------------------------------------------------------------------
# JS/TS dependency extraction (tree-sitter, single TSX grammar for .ts/.tsx/.js/.jsx)
# --------------------------------------------------------------------------------------

# /// <reference path="..." />  and  /// <reference types="..." />
TRIPLE_SLASH_REFERENCE_RE = re.compile(
    r"""^///\s*<reference\s+(?:path|types)\s*=\s*(?P<lit>(?P<q>["'])(?P<spec>.*?)(?P=q))"""
)

# // @deno-types="..."
DENO_TYPES_RE = re.compile(r"""^//\s*@deno-types\s*=\s*(?P<lit>(?P<q>["'])(?P<spec>.*?)(?P=q))""")

KIND_IMPORT = "import"
KIND_EXPORT_FROM = "export_from"
KIND_IMPORT_REQUIRE = "import_require"
KIND_DYNAMIC_IMPORT = "dynamic_import"
KIND_REFERENCE = "reference_directive"
KIND_DENO_TYPES = "deno_types"

_SIMPLE_ESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}


@lru_cache(maxsize=1)
def tsx_language() -> Language:
    return Language(tsts.language_tsx())


_local = threading.local()


def _parser() -> Parser:
    # tree-sitter parsers are not thread-safe; one per worker thread
    p: Optional[Parser] = getattr(_local, "parser", None)
    if p is None:
        p = Parser(tsx_language())
        _local.parser = p
    return p


class _LineIndex:
    """Byte offset -> 0-based (line, code-point column)."""

    def __init__(self, src: bytes):
        self.src = src
        self.starts = [0]
        start = src.find(b"\n")
        while start != -1:
            self.starts.append(start + 1)
            start = src.find(b"\n", start + 1)

    def position(self, byte_offset: int) -> Position:
        line = bisect_right(self.starts, byte_offset) - 1
        line_start = self.starts[line]
        col = len(self.src[line_start:byte_offset].decode("utf-8", errors="replace"))
        return Position(line, col)

    def span(self, start_byte: int, end_byte: int) -> SourceSpan:
        return SourceSpan(self.position(start_byte), self.position(end_byte))


@dataclass(frozen=True)
class ExtractedDependency:
    kind: str
    specifier: RawSpecifier


@dataclass
class Extraction:
    path: str
    dependencies: list[ExtractedDependency] = field(default_factory=list)
    has_syntax_errors: bool = False
    skipped_statements: int = 0

    @property
    def specifiers(self) -> list[RawSpecifier]:
        return [d.specifier for d in self.dependencies]


def _string_value(node: Node) -> str | None:
    """
    Literal value of a string / template_string node; None if not a plain literal.
    """
    if node.type not in ("string", "template_string"):
        return None

    named = node.named_children
    if any(ch.type == "template_substitution" for ch in named):
        return None
    if not any(ch.type == "escape_sequence" for ch in named):
        # fragments are not always exposed as named nodes; the raw body is the value
        raw = node.text.decode("utf-8", errors="replace")
        return raw[1:-1] if len(raw) >= 2 else ""

    parts: list[str] = []
    for ch in named:
        text = ch.text.decode("utf-8", errors="replace")
        if ch.type == "string_fragment":
            parts.append(text)
        elif ch.type == "escape_sequence":
            parts.append(_unescape(text))
    try:
        # joins escaped surrogate pairs; a lone surrogate is not a usable module name
        return "".join(parts).encode("utf-16-le", "surrogatepass").decode("utf-16-le")
    except UnicodeDecodeError:
        return None


def _unescape(seq: str) -> str:
    body = seq[1:]
    if not body:
        return ""
    if body[0] in ("u", "x"):
        hex_digits = body[1:].strip("{}")
        try:
            return chr(int(hex_digits, 16))
        except ValueError:
            return seq
    if body[0] in ("\n", "\r"):
        return ""  # line continuation
    return _SIMPLE_ESCAPES.get(body[0], body)


def _iter_nodes(root: Node) -> Iterator[Node]:
    # pre-order, source order; explicit stack avoids recursion limits on deep trees
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def _dynamic_import_argument(node: Node) -> Node | None:
    fn = node.child_by_field_name("function")
    if fn is None or fn.type != "import":
        return None
    args = node.child_by_field_name("arguments")
    if args is None or not args.named_children:
        return None
    first = args.named_children[0]
    if first.type in ("string", "template_string"):
        return first
    return None


class DependencyExtractor:
    """
    Extracts module specifiers with their literal spans from one file's text.

    Recognised forms (source order):
      - import ... from "x" / import "x" / import type ... from "x"
      - export ... from "x" / export * from "x"
      - import x = require("x")
      - import("x")
      - /// <reference path|types="x" />
      - // @deno-types="x"
    """

    def parse(self, file_text: str, file_path: str) -> Extraction:
        try:
            src = file_text.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ParseError(file_path, f"text is not encodable as UTF-8: {e}") from e

        try:
            tree = _parser().parse(src)
        except (ValueError, RuntimeError) as e:
            raise ParseError(file_path, str(e)) from e

        root = tree.root_node
        if root is None:
            raise ParseError(file_path, "parser returned no syntax tree")

        lines = _LineIndex(src)
        out = Extraction(path=file_path, has_syntax_errors=root.has_error)

        for node in _iter_nodes(root):
            t = node.type
            if t == "import_statement":
                source = node.child_by_field_name("source")
                kind = KIND_IMPORT
                if source is None:
                    clause = next((c for c in node.named_children if c.type == "import_require_clause"), None)
                    source = clause.child_by_field_name("source") if clause is not None else None
                    kind = KIND_IMPORT_REQUIRE
                self._add_literal(out, lines, source, kind)
            elif t == "export_statement":
                source = node.child_by_field_name("source")
                if source is not None:
                    self._add_literal(out, lines, source, KIND_EXPORT_FROM)
            elif t == "call_expression":
                arg = _dynamic_import_argument(node)
                if arg is not None:
                    self._add_literal(out, lines, arg, KIND_DYNAMIC_IMPORT)
            elif t == "comment":
                self._add_comment_directive(out, lines, node)

        return out

    def _add_literal(
            self,
            out: Extraction,
            lines: _LineIndex,
            literal: Node | None,
            kind: str,
    ) -> None:
        if literal is None:
            return
        if literal.has_error or literal.is_missing:
            # the literal itself is unfinished; an unfinished clause around it is tolerated
            out.skipped_statements += 1
            return
        value = _string_value(literal)
        if not value:
            return
        span = lines.span(literal.start_byte, literal.end_byte)
        out.dependencies.append(ExtractedDependency(kind, classify(value, span)))

    def _add_comment_directive(self, out: Extraction, lines: _LineIndex, node: Node) -> None:
        text = node.text.decode("utf-8", errors="replace")
        if not text.startswith("//"):
            return
        for kind, rx in ((KIND_REFERENCE, TRIPLE_SLASH_REFERENCE_RE), (KIND_DENO_TYPES, DENO_TYPES_RE)):
            m = rx.match(text)
            if not m:
                continue
            value = m.group("spec")
            if not value:
                return
            start = node.start_byte + len(text[: m.start("lit")].encode("utf-8"))
            end = node.start_byte + len(text[: m.end("lit")].encode("utf-8"))
            out.dependencies.append(ExtractedDependency(kind, classify(value, lines.span(start, end))))
            return


_DEFAULT_EXTRACTOR = DependencyExtractor()


def parse_dependencies(file_text: str, file_path: str) -> Extraction:
    return _DEFAULT_EXTRACTOR.parse(file_text, file_path)


def extract(file_text: str, file_path: str) -> list[RawSpecifier]:
    """Raw specifiers in source order. Raises ParseError if the text cannot be parsed."""
    return parse_dependencies(file_text, file_path).specifiers
