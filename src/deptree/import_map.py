# deptree/import_map.py
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

from deptree.errors import ImportMapLoadError
from deptree.utils import strip_js_comments

logger = logging.getLogger(__name__)

LOCAL_TARGET_PREFIXES = ("./", "../", "/")


def _load_table(path: Path) -> dict[str, str]:
    """
    Accepts either a standard import map ({"imports": {...}}) or a bare alias table.
    Comments are allowed (JSONC), as in tsconfig/deno.json files.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ImportMapLoadError(f"cannot read import map {path}: {e}") from e

    cleaned = strip_js_comments(raw).strip()
    if not cleaned:
        raise ImportMapLoadError(f"import map {path} is empty")
    try:
        obj: Any = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ImportMapLoadError(f"import map {path} is not valid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ImportMapLoadError(f"import map {path} must be a JSON object")

    imports = obj.get("imports")
    table_src = imports if isinstance(imports, dict) else obj

    base_dir = path.parent
    table: dict[str, str] = {}
    for alias, target in table_src.items():
        if not isinstance(alias, str) or not alias:
            continue
        if not isinstance(target, str) or not target:
            continue
        if target.startswith(LOCAL_TARGET_PREFIXES):
            # keep a trailing slash: prefix targets must stay prefixes after resolution
            resolved = os.path.normpath(str(base_dir / target))
            if target.endswith("/") and not resolved.endswith(os.sep):
                resolved += os.sep
            target = resolved
        table[alias] = target
    return table


class ImportMap:
    """
    Alias -> target table, immutable after load.

    Resolution precedence:
      1) exact alias match
      2) longest alias ending in "/" that prefixes the specifier (remainder preserved)
      3) identity
    """

    def __init__(
            self,
            table: Optional[Mapping[str, str]] = None,
            *,
            source_path: str | None = None,
            load_error: ImportMapLoadError | None = None,
    ):
        self._table: Mapping[str, str] = MappingProxyType(dict(table or {}))
        self._prefixes: tuple[str, ...] = tuple(
            sorted((a for a in self._table if a.endswith("/")), key=lambda a: (-len(a), a))
        )
        self.source_path = source_path
        self.load_error = load_error

    @classmethod
    def create(cls, path: str | os.PathLike[str] | None = None) -> "ImportMap":
        """
        Never raises: a missing, unreadable or malformed file yields an identity map
        with the failure kept on load_error.
        """
        if path is None or str(path) == "":
            return cls()

        p = Path(path)
        if not p.is_file():
            err = ImportMapLoadError(f"import map {p} does not exist or is not a file")
            logger.warning("%s; using identity resolution", err)
            return cls(source_path=str(p), load_error=err)

        try:
            table = _load_table(p)
        except ImportMapLoadError as err:
            logger.warning("%s; using identity resolution", err)
            return cls(source_path=str(p), load_error=err)

        logger.debug("Loaded import map %s with %d aliases", p, len(table))
        return cls(table, source_path=str(p))

    @property
    def table(self) -> Mapping[str, str]:
        return self._table

    def __len__(self) -> int:
        return len(self._table)

    def resolve_module(self, specifier: str) -> str:
        exact = self._table.get(specifier)
        if exact is not None:
            return exact
        for alias in self._prefixes:
            if specifier.startswith(alias):
                return self._table[alias] + specifier[len(alias):]
        return specifier
