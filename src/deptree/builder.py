# deptree/builder.py
from __future__ import annotations

import logging
import os
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Union

from deptree.errors import (
    DIAG_BINARY_FILE,
    DIAG_FILE_TOO_LARGE,
    DIAG_FILE_UNREADABLE,
    DIAG_IMPORT_MAP_UNAVAILABLE,
    DIAG_PARSE_FAILED,
    DIAG_SYNTAX_ERRORS,
    BuildCancelled,
    BuildTimeout,
    Diagnostic,
    ParseError,
)
from deptree.extract import Extraction, parse_dependencies
from deptree.file_walker import check_root, walk
from deptree.import_map import ImportMap
from deptree.path_matcher import DEFAULT_WALK_FILTER, WalkFilter
from deptree.specifier import LocalSpecifier, RemoteSpecifier, SourceSpan, is_remote
from deptree.utils import is_probably_binary

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class DependencyEdge:
    filepath: str
    span: SourceSpan

    def to_dict(self, *, one_based: bool = False) -> dict[str, Any]:
        return {"filepath": self.filepath, "location": self.span.to_dict(one_based=one_based)}


@dataclass
class DependencyIndex:
    """
    Remote specifier -> edges, in walk order then in-file extraction order.
    Every key satisfies is_remote().
    """

    root: str
    entries: dict[str, list[DependencyEdge]] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    files_scanned: int = 0
    files_indexed: int = 0

    def add(self, specifier: str, edge: DependencyEdge) -> None:
        if not is_remote(specifier):
            raise ValueError(f"Refusing to index non-remote specifier {specifier!r}")
        self.entries.setdefault(specifier, []).append(edge)

    @property
    def edge_count(self) -> int:
        return sum(len(v) for v in self.entries.values())

    def to_payload(self, *, one_based: bool = False) -> dict[str, list[dict[str, Any]]]:
        return {url: [e.to_dict(one_based=one_based) for e in edges] for url, edges in self.entries.items()}


# -----------------------------
# Per-file stages: each returns a value or a Diagnostic (never raises for per-file problems)
# -----------------------------
FileStage = Union[str, Diagnostic]


def read_source(path: str, *, max_file_bytes: int = DEFAULT_MAX_FILE_BYTES) -> FileStage:
    try:
        size = os.stat(path).st_size
    except OSError as e:
        return Diagnostic(DIAG_FILE_UNREADABLE, path, e.strerror or str(e))

    if size > max_file_bytes:
        return Diagnostic(DIAG_FILE_TOO_LARGE, path, f"{size} bytes exceeds limit of {max_file_bytes}")

    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        return Diagnostic(DIAG_FILE_UNREADABLE, path, e.strerror or str(e))

    if is_probably_binary(raw):
        return Diagnostic(DIAG_BINARY_FILE, path, "file looks binary")

    return raw.decode("utf-8", errors="replace")


def extract_source(path: str, text: str) -> Union[Extraction, Diagnostic]:
    try:
        return parse_dependencies(text, path)
    except ParseError as e:
        return Diagnostic(DIAG_PARSE_FAILED, path, e.reason)


@dataclass
class _FileOutcome:
    path: str
    extraction: Optional[Extraction] = None
    diagnostics: list[Diagnostic] = field(default_factory=list)


def _process_file(path: str, max_file_bytes: int) -> _FileOutcome:
    outcome = _FileOutcome(path)

    text = read_source(path, max_file_bytes=max_file_bytes)
    if isinstance(text, Diagnostic):
        outcome.diagnostics.append(text)
        return outcome

    extracted = extract_source(path, text)
    if isinstance(extracted, Diagnostic):
        outcome.diagnostics.append(extracted)
        return outcome

    if extracted.has_syntax_errors:
        outcome.diagnostics.append(
            Diagnostic(
                DIAG_SYNTAX_ERRORS,
                path,
                f"syntax errors present; {extracted.skipped_statements} import statement(s) skipped",
            )
        )
    outcome.extraction = extracted
    return outcome


def resolve_specifier(raw: Union[LocalSpecifier, RemoteSpecifier], import_map: ImportMap) -> str:
    if isinstance(raw, RemoteSpecifier):
        return raw.text
    return import_map.resolve_module(raw.text)


class DependencyIndexBuilder:
    """
    Drives walk -> read -> extract -> resolve -> classify -> aggregate for one root.

    Instances hold no state between build() calls; concurrent builds for
    different roots may use separate builders or the same one.
    """

    def __init__(
            self,
            *,
            walk_filter: WalkFilter = DEFAULT_WALK_FILTER,
            max_workers: int = 1,
            max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    ):
        self.walk_filter = walk_filter
        self.max_workers = max(1, int(max_workers))
        self.max_file_bytes = max_file_bytes

    def build(
            self,
            root: str,
            import_map_path: str | None = None,
            *,
            import_map: ImportMap | None = None,
            cancel_event: threading.Event | None = None,
            deadline: float | None = None,
    ) -> DependencyIndex:
        """
        Contract:
        - FatalRootError propagates; every per-directory/per-file problem becomes a Diagnostic.
        - cancel_event / deadline (time.monotonic()) are checked before each file;
          on trigger, BuildCancelled/BuildTimeout is raised and partial results are dropped.
        """
        abs_root = check_root(root)
        if import_map is None:
            import_map = ImportMap.create(import_map_path)

        index = DependencyIndex(root=abs_root)
        if import_map.load_error is not None:
            index.diagnostics.append(
                Diagnostic(DIAG_IMPORT_MAP_UNAVAILABLE, import_map.source_path or "", str(import_map.load_error))
            )

        paths = walk(abs_root, self.walk_filter, on_error=index.diagnostics.append)

        started = time.monotonic()
        if self.max_workers == 1:
            outcomes = self._run_sequential(paths, cancel_event, deadline)
        else:
            outcomes = self._run_pooled(paths, cancel_event, deadline)

        for outcome in outcomes:
            self._accumulate(index, outcome, import_map)

        logger.info(
            "Indexed %d/%d files under %s: %d remote specifiers, %d edges, %d diagnostics (%.0f ms)",
            index.files_indexed,
            index.files_scanned,
            abs_root,
            len(index.entries),
            index.edge_count,
            len(index.diagnostics),
            (time.monotonic() - started) * 1000,
        )
        return index

    # -----------------------------
    # scheduling
    # -----------------------------
    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None, deadline: float | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise BuildCancelled("Dependency index build was cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            raise BuildTimeout("Dependency index build exceeded its deadline")

    def _run_sequential(
            self,
            paths: Iterator[str],
            cancel_event: threading.Event | None,
            deadline: float | None,
    ) -> Iterator[_FileOutcome]:
        for path in paths:
            self._check_cancelled(cancel_event, deadline)
            yield _process_file(path, self.max_file_bytes)

    def _run_pooled(
            self,
            paths: Iterator[str],
            cancel_event: threading.Event | None,
            deadline: float | None,
    ) -> Iterator[_FileOutcome]:
        # bounded in-flight window; results drained in submission (= walk) order
        window = self.max_workers * 2
        pending: deque[Future[_FileOutcome]] = deque()
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="deptree")
        try:
            for path in paths:
                self._check_cancelled(cancel_event, deadline)
                pending.append(pool.submit(_process_file, path, self.max_file_bytes))
                while len(pending) >= window:
                    yield pending.popleft().result()
            while pending:
                self._check_cancelled(cancel_event, deadline)
                yield pending.popleft().result()
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    # -----------------------------
    # aggregation (single owner: the calling thread)
    # -----------------------------
    @staticmethod
    def _accumulate(index: DependencyIndex, outcome: _FileOutcome, import_map: ImportMap) -> None:
        index.files_scanned += 1
        index.diagnostics.extend(outcome.diagnostics)
        if outcome.extraction is None:
            return
        index.files_indexed += 1

        for raw in outcome.extraction.specifiers:
            resolved = resolve_specifier(raw, import_map)
            if is_remote(resolved):
                index.add(resolved, DependencyEdge(outcome.path, raw.span))


def build(
        root: str,
        import_map_path: str | None = None,
        *,
        walk_filter: WalkFilter = DEFAULT_WALK_FILTER,
        max_workers: int = 1,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
) -> DependencyIndex:
    builder = DependencyIndexBuilder(walk_filter=walk_filter, max_workers=max_workers, max_file_bytes=max_file_bytes)
    return builder.build(root, import_map_path, cancel_event=cancel_event, deadline=deadline)
