# src/deptree/main.py
from __future__ import annotations

from typing import Any, Dict, Optional


def run(
        job_payload: Dict[str, Any],
        *,
        payload_src: str = "unknown",
        max_workers: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Core entrypoint used by deptree.cli.

    deptree.graph owns the full workflow
    (parse job → load import map → build index → write output → validate → emit result).
    max_workers overrides the job's limits; DEPTREE_MAX_WORKERS is read by job.Limits.
    """
    from deptree.graph import run_deptree_graph

    # Let DeptreeStageError bubble up so the CLI can render stage-aware JSON.
    return run_deptree_graph(
        payload=job_payload,
        payload_src=payload_src,
        max_workers=max_workers,
    )
