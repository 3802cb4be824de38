# src/deptree/utils.py
from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def utc_ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")


def sha256_bytes(b: bytes) -> str:
    h = hashlib.sha256()
    h.update(b)
    return h.hexdigest()


def sha256_text(s: str) -> str:
    return sha256_bytes(s.encode("utf-8"))


def is_probably_binary(data: bytes, *, sample_size: int = 8192, min_utf8_ratio: float = 0.85) -> bool:
    """
    Deterministic binary heuristic:
      - If sample contains NUL bytes -> binary.
      - Else, if UTF-8 "ignore" decoding preserves too little -> binary.
    """
    if not data:
        return False

    sample = data[:sample_size]

    if b"\x00" in sample:
        return True

    try:
        sample.decode("utf-8")
        return False
    except UnicodeDecodeError:
        pass

    decoded = sample.decode("utf-8", errors="ignore")
    preserved = len(decoded.encode("utf-8"))
    ratio = preserved / max(1, len(sample))
    return ratio < min_utf8_ratio


# -----------------------------
# Comment stripping (JSONC import maps)
# -----------------------------
def strip_js_comments(text: str) -> str:
    """
    Remove // and /* */ comments while preserving newlines and string contents,
    so JSON error positions still point at the original line.
    """
    out: list[str] = []
    i = 0
    n = len(text)

    in_line = False
    in_block = False
    quote = ""
    esc = False

    while i < n:
        c = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if in_line:
            if c == "\n":
                in_line = False
                out.append("\n")
            else:
                out.append(" ")
            i += 1
            continue

        if in_block:
            if c == "*" and nxt == "/":
                in_block = False
                out.append("  ")
                i += 2
            else:
                out.append("\n" if c == "\n" else " ")
                i += 1
            continue

        if quote:
            out.append(c)
            if esc:
                esc = False
            elif c == "\\":
                esc = True
            elif c == quote:
                quote = ""
            i += 1
            continue

        if c == "/" and nxt == "/":
            in_line = True
            out.append("  ")
            i += 2
            continue

        if c == "/" and nxt == "*":
            in_block = True
            out.append("  ")
            i += 2
            continue

        if c in ("'", '"', "`"):
            quote = c

        out.append(c)
        i += 1

    return "".join(out)


# -----------------------------
# Stable fingerprint helpers
# -----------------------------
# Used for the index fingerprint in build results. Must be stable across
# processes/reruns for the same logical input.

VOLATILE_KEYS_DEFAULT: set[str] = {
    "generated_at",
    "elapsed_ms",
}


def _strip_volatile(obj: Any, volatile_keys: set[str]) -> Any:
    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for k, v in obj.items():
            if k in volatile_keys:
                continue
            out[k] = _strip_volatile(v, volatile_keys)
        return out
    if isinstance(obj, list):
        return [_strip_volatile(x, volatile_keys) for x in obj]
    return obj


def stable_json_dumps(obj: Any) -> str:
    """
    Deterministic JSON serialization for JSON-like objects.
    - sort keys
    - stable separators
    - no ASCII-forcing (keep unicode stable)
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def stable_json_fingerprint_sha256(obj: Any, volatile_keys: set[str] | None = None) -> str:
    vk = set(VOLATILE_KEYS_DEFAULT) if volatile_keys is None else set(volatile_keys)
    stripped = _strip_volatile(obj, vk)
    canonical = stable_json_dumps(stripped)
    return sha256_text(canonical)


# -----------------------------
# Deterministic normalization helpers
# -----------------------------

_PATH_SEP_RE = re.compile(r"[\\]+")


def norm_relpath(path: str) -> str:
    """
    - converts backslashes to forward slashes
    - strips leading "./" and leading "/"
    - collapses duplicate slashes
    - does NOT resolve ".."
    """
    p = (path or "").strip()
    p = _PATH_SEP_RE.sub("/", p)
    while p.startswith("./"):
        p = p[2:]
    p = p.lstrip("/")
    p = re.sub(r"/{2,}", "/", p)
    return p


def has_parent_traversal(path: str) -> bool:
    p = norm_relpath(path)
    return p == ".." or p.startswith("../") or "/../" in f"/{p}/"


def write_json(path: str | Path, obj: dict) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Path(path).write_text(json.dumps(obj, indent=2), encoding="utf-8")
