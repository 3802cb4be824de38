# deptree/validate_basic.py
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from deptree.path_matcher import WalkFilter
from deptree.specifier import is_remote
from deptree.utils import has_parent_traversal


def _load_json(path: str | Path, label: str) -> Any:
    p = Path(path)
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise RuntimeError(f"Invalid JSON for {label} at {p}: {e}") from e


def _position_tuple(pos: Any, label: str) -> tuple[int, int]:
    if not isinstance(pos, dict):
        raise RuntimeError(f"{label}: position must be an object, got {type(pos).__name__}")
    line = pos.get("line")
    character = pos.get("character")
    if not isinstance(line, int) or not isinstance(character, int) or line < 0 or character < 0:
        raise RuntimeError(f"{label}: invalid position {pos!r}")
    return line, character


def validate_index_payload(payload: Any, *, root: str, walk_filter: WalkFilter) -> None:
    """
    Minimal sanity validation of a serialized dependency index:
    - every key is a remote (http/https) specifier
    - every edge references a file under root that the walk filter accepts
    - every location has start <= end with non-negative coordinates
    """
    if not isinstance(payload, dict):
        raise RuntimeError("Dependency index must be a JSON object")

    for url, edges in payload.items():
        if not is_remote(url):
            raise RuntimeError(f"Non-remote specifier indexed as key: {url!r}")
        if not isinstance(edges, list) or not edges:
            raise RuntimeError(f"Index entry for {url!r} must be a non-empty list")

        for i, edge in enumerate(edges):
            label = f"{url}[{i}]"
            if not isinstance(edge, dict):
                raise RuntimeError(f"{label}: edge must be an object")

            fp = edge.get("filepath")
            if not isinstance(fp, str) or not fp:
                raise RuntimeError(f"{label}: missing filepath")
            rel = os.path.relpath(fp, root)
            if has_parent_traversal(rel):
                raise RuntimeError(f"{label}: filepath {fp} is outside project root {root}")
            if not walk_filter.accepts_file(rel):
                raise RuntimeError(f"{label}: filepath {fp} is excluded by the walk filter")

            loc = edge.get("location")
            if not isinstance(loc, dict):
                raise RuntimeError(f"{label}: missing location")
            start = _position_tuple(loc.get("start"), f"{label}.start")
            end = _position_tuple(loc.get("end"), f"{label}.end")
            if end < start:
                raise RuntimeError(f"{label}: location ends before it starts")


def validate_output_file(path: str | Path, *, root: str, walk_filter: WalkFilter) -> None:
    p = Path(path)
    if not p.exists() or not p.is_file():
        raise RuntimeError(f"Missing output artifact at {p}")
    obj = _load_json(p, "dependency_index")
    index = obj.get("index") if isinstance(obj, dict) else None
    validate_index_payload(index, root=root, walk_filter=walk_filter)
