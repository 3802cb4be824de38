# deptree/errors.py
from __future__ import annotations

from dataclasses import dataclass

# -----------------------------
# Diagnostic kinds (non-fatal, contained per directory/file)
# -----------------------------
DIAG_DIRECTORY_UNREADABLE = "directory_unreadable"
DIAG_FILE_UNREADABLE = "file_unreadable"
DIAG_FILE_TOO_LARGE = "file_too_large"
DIAG_BINARY_FILE = "binary_file"
DIAG_PARSE_FAILED = "parse_failed"
DIAG_SYNTAX_ERRORS = "syntax_errors"
DIAG_IMPORT_MAP_UNAVAILABLE = "import_map_unavailable"


class DeptreeError(RuntimeError):
    pass


class FatalRootError(DeptreeError):
    """The project root is missing, not a directory, or unreadable. Aborts the build."""

    def __init__(self, root: str, reason: str):
        super().__init__(f"Project root {root!r} is not usable: {reason}")
        self.root = root
        self.reason = reason


class ImportMapLoadError(DeptreeError):
    """Never propagated out of ImportMap.create(); kept on ImportMap.load_error."""


class ParseError(DeptreeError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to parse {path}: {reason}")
        self.path = path
        self.reason = reason


class BuildCancelled(DeptreeError):
    pass


class BuildTimeout(BuildCancelled):
    pass


@dataclass(frozen=True)
class Diagnostic:
    kind: str
    path: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "path": self.path, "message": self.message}
