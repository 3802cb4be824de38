# deptree/file_walker.py
from __future__ import annotations

import logging
import os
from typing import Callable, Iterator, Optional

from deptree.errors import DIAG_DIRECTORY_UNREADABLE, Diagnostic, FatalRootError
from deptree.path_matcher import DEFAULT_WALK_FILTER, WalkFilter

logger = logging.getLogger(__name__)

OnError = Callable[[Diagnostic], None]


def _dir_identity(path: str) -> tuple[int, int] | None:
    try:
        st = os.stat(path)  # follows symlinks: identity of the real directory
    except OSError:
        return None
    return st.st_dev, st.st_ino


def check_root(root: str) -> str:
    """
    Returns the absolute root path or raises FatalRootError.
    Listing the root up front makes an unreadable root fatal instead of a skipped subtree.
    """
    abs_root = os.path.abspath(root)
    if not os.path.exists(abs_root):
        raise FatalRootError(abs_root, "does not exist")
    if not os.path.isdir(abs_root):
        raise FatalRootError(abs_root, "is not a directory")
    try:
        with os.scandir(abs_root) as it:
            next(it, None)
    except OSError as e:
        raise FatalRootError(abs_root, f"cannot be read ({e.strerror or e})") from e
    return abs_root


def walk(
        root: str,
        walk_filter: WalkFilter = DEFAULT_WALK_FILTER,
        on_error: Optional[OnError] = None,
) -> Iterator[str]:
    """
    Lazily yield absolute paths of every non-excluded, included file under root.

    Contract:
    - FatalRootError is raised before the first yield if root is unusable.
    - Each call is a fresh traversal (depth-first, names sorted per directory).
    - Symlinked directories are followed; a directory whose real identity was
      already visited is not entered again (cycle guard).
    - An unreadable subdirectory is reported through on_error and skipped.
    """
    abs_root = check_root(root)
    return _walk(abs_root, walk_filter, on_error)


def _walk(abs_root: str, walk_filter: WalkFilter, on_error: Optional[OnError]) -> Iterator[str]:
    visited: set[tuple[int, int]] = set()
    root_id = _dir_identity(abs_root)
    if root_id is not None:
        visited.add(root_id)

    def _onerror(err: OSError) -> None:
        path = err.filename if isinstance(err.filename, str) else abs_root
        diag = Diagnostic(DIAG_DIRECTORY_UNREADABLE, path, err.strerror or str(err))
        logger.warning("Skipping unreadable directory %s: %s", path, diag.message)
        if on_error is not None:
            on_error(diag)

    for dirpath, dirs, filenames in os.walk(abs_root, onerror=_onerror, followlinks=True):
        kept: list[str] = []
        for d in sorted(dirs):
            if not walk_filter.should_descend(d):
                continue
            ident = _dir_identity(os.path.join(dirpath, d))
            if ident is None:
                # dangling symlink or vanished entry; os.walk would not list it anyway
                continue
            if ident in visited:
                logger.debug("Not re-entering already visited directory %s", os.path.join(dirpath, d))
                continue
            visited.add(ident)
            kept.append(d)
        dirs[:] = kept

        for fn in sorted(filenames):
            if walk_filter.should_yield(fn):
                yield os.path.join(dirpath, fn)
