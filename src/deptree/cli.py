# src/deptree/cli.py
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from . import __version__
from . import main as main_module

STAGE_PARSE_JOB = "parse_job"
JOB_ENV_VAR = "DEPTREE_JOB_JSON"


def _parse_dotenv_line(line: str) -> tuple[str, str] | None:
    """
    Minimal .env parser.
    Supports:
      - KEY=VALUE
      - export KEY=VALUE
      - comments (#...) when not inside quotes
      - quoted values with '...' or "..."
    No variable expansion (${...}).
    """
    s = line.strip()
    if not s or s.startswith("#"):
        return None

    if s.startswith("export "):
        s = s[len("export ") :].lstrip()
        if not s:
            return None

    if "=" not in s:
        return None

    key, rest = s.split("=", 1)
    key = key.strip()
    if not key:
        return None

    val = rest.strip()
    if not val:
        return key, ""

    if val[0] in ("'", '"'):
        quote = val[0]
        out = []
        escaped = False
        i = 1
        while i < len(val):
            ch = val[i]
            if escaped:
                out.append(ch)
                escaped = False
            else:
                if quote == '"' and ch == "\\":
                    escaped = True
                elif ch == quote:
                    break
                else:
                    out.append(ch)
            i += 1
        # anything after the closing quote (including comments) is ignored
        return key, "".join(out)

    out2 = []
    for ch in val:
        if ch == "#":
            break
        out2.append(ch)
    return key, "".join(out2).strip()


def _load_dotenv_file(path: str, *, override: bool = False) -> bool:
    """
    Loads key/value pairs from a .env file into os.environ.
    Returns True if the file existed and was read.
    """
    p = Path(path)
    if not p.exists() or not p.is_file():
        return False

    for raw_line in p.read_text(encoding="utf-8").splitlines():
        parsed = _parse_dotenv_line(raw_line)
        if not parsed:
            continue
        k, v = parsed
        if not override and k in os.environ:
            continue
        os.environ[k] = v
    return True


def _apply_cli_overrides(payload: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    if args.import_map:
        payload["import_map"] = args.import_map
    if args.output:
        payload["output_path"] = args.output
    if args.one_based:
        payload["one_based_positions"] = True
    return payload


def _read_job_payload(args: argparse.Namespace, payload_src_hint: str | None) -> tuple[dict[str, Any], str]:
    """
    Contract:
      - A positional ROOT builds the job from CLI flags.
      - Otherwise the job is DEPTREE_JOB_JSON (env JSON string), optionally populated from .env.

    Returns: (payload_dict, payload_src_string)
    """
    if args.root:
        return _apply_cli_overrides({"root": args.root}, args), "argv"

    raw = os.environ.get(JOB_ENV_VAR)
    if not raw or not raw.strip():
        raise RuntimeError(f"Missing job: pass a project ROOT or set {JOB_ENV_VAR} to a JSON object string.")

    payload = json.loads(raw)

    if not isinstance(payload, dict):
        raise TypeError(f"{JOB_ENV_VAR} must decode to a JSON object (dict).")

    # CLI flags still win over the env payload where given
    return _apply_cli_overrides(payload, args), payload_src_hint or f"env:{JOB_ENV_VAR}"


def _print_success(obj: dict[str, Any]) -> None:
    print(json.dumps(obj, separators=(",", ":")), file=sys.stdout)


def _print_failure(stage: str, err: Exception) -> None:
    inner = getattr(err, "inner", err)
    out = {
        "ok": False,
        "stage": stage,
        "error": type(inner).__name__,
        "error_code": f"DEPTREE_FAILED_{stage.upper()}",
        "error_message": str(err),
    }
    print(json.dumps(out, separators=(",", ":")), file=sys.stdout)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="deptree",
        description="Reverse index of remote (http/https) module imports in a TS/JS project",
    )
    parser.add_argument(
        "root",
        nargs="?",
        default=None,
        metavar="ROOT",
        help=f"Project root directory (otherwise the job is read from {JOB_ENV_VAR}).",
    )
    parser.add_argument(
        "--import-map",
        dest="import_map",
        metavar="PATH",
        help="Optional import map file; relative paths are resolved against ROOT.",
    )
    parser.add_argument(
        "--output",
        metavar="PATH",
        help="Optional: also write the full result document to this JSON file.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        metavar="N",
        help="Parse files on N worker threads (default: DEPTREE_MAX_WORKERS or 1).",
    )
    parser.add_argument(
        "--one-based",
        dest="one_based",
        action="store_true",
        help="Report line/character positions 1-based instead of 0-based.",
    )
    parser.add_argument(
        "--dotenv",
        nargs="?",
        const=".env",
        default=None,
        metavar="PATH",
        help="Optional: load env vars from a local .env file (default: ./.env).",
    )
    parser.add_argument(
        "--dotenv-override",
        action="store_true",
        help="Optional: allow .env values to override already-set environment variables.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Debug logging on stderr.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"deptree {__version__}",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    # stdout carries exactly one JSON document; logs go to stderr
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    payload_src_hint: str | None = None
    had_payload_before = bool(os.environ.get(JOB_ENV_VAR, "").strip())

    if args.dotenv:
        loaded = _load_dotenv_file(str(args.dotenv), override=bool(args.dotenv_override))
        if loaded and not had_payload_before and bool(os.environ.get(JOB_ENV_VAR, "").strip()):
            payload_src_hint = f"dotenv:{args.dotenv}#{JOB_ENV_VAR}"

    try:
        payload, payload_src = _read_job_payload(args, payload_src_hint)

        result = main_module.run(
            job_payload=payload,
            payload_src=payload_src,
            max_workers=args.workers,
        )
        _print_success(result)
        return 0

    except Exception as e:  # noqa: BLE001 - top-level CLI error handler
        from deptree.graph import DeptreeStageError

        if isinstance(e, DeptreeStageError):
            _print_failure(e.stage, e)
            return 1

        # Payload / argument issues are parse_job
        if isinstance(e, (json.JSONDecodeError, RuntimeError, TypeError)):
            _print_failure(STAGE_PARSE_JOB, e)
            return 1

        _print_failure("unknown", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
