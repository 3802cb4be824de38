# deptree/graph.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, TypedDict

from deptree.builder import DependencyIndex, DependencyIndexBuilder
from deptree.import_map import ImportMap
from deptree.job import Job, Limits
from deptree.path_matcher import WalkFilter
from deptree.utils import stable_json_fingerprint_sha256, utc_ts, write_json
from deptree.validate_basic import validate_index_payload, validate_output_file

try:
    from langgraph.graph import END, StateGraph
except Exception as e:  # pragma: no cover
    raise RuntimeError("LangGraph is required. Install 'langgraph'.") from e

logger = logging.getLogger(__name__)


# -----------------------------
# Stages (canonical)
# -----------------------------
STAGE_INIT = "init"
STAGE_PARSE_JOB = "parse_job"
STAGE_LOAD_IMPORT_MAP = "load_import_map"
STAGE_BUILD_INDEX = "build_index"
STAGE_WRITE_OUTPUT = "write_output"
STAGE_VALIDATE_BASIC = "validate_basic"
STAGE_EMIT_RESULT = "emit_result"
STAGE_DONE = "done"


class DeptreeStageError(RuntimeError):
    def __init__(self, stage: str, inner: Exception):
        super().__init__(str(inner))
        self.stage = stage
        self.inner = inner


@dataclass(frozen=True)
class RuntimeConfig:
    max_workers: int | None = None


class DeptreeState(TypedDict, total=False):
    payload: dict[str, Any]
    payload_src: str
    config: RuntimeConfig
    stage: str

    job: Job
    walk_filter: WalkFilter
    import_map: ImportMap

    index: DependencyIndex
    index_payload: dict[str, Any]
    elapsed_ms: int

    result: dict[str, Any]


def node_load_job(state: DeptreeState) -> DeptreeState:
    stage = STAGE_PARSE_JOB
    try:
        job = Job.model_validate(state["payload"]).finalize()
        cfg = state.get("config") or RuntimeConfig()
        if cfg.max_workers:
            # re-validate so the override obeys the same bounds as the job payload
            job.limits = Limits.model_validate({**job.limits.model_dump(), "max_workers": cfg.max_workers})

        state["stage"] = stage
        state["job"] = job
        state["walk_filter"] = job.filters.to_walk_filter()
        return state
    except Exception as e:
        raise DeptreeStageError(stage, e) from e


def node_load_import_map(state: DeptreeState) -> DeptreeState:
    stage = STAGE_LOAD_IMPORT_MAP
    try:
        # never raises for a bad map file; failures are kept on load_error
        state["import_map"] = ImportMap.create(state["job"].import_map)
        state["stage"] = stage
        return state
    except Exception as e:
        raise DeptreeStageError(stage, e) from e


def node_build_index(state: DeptreeState) -> DeptreeState:
    stage = STAGE_BUILD_INDEX
    try:
        job = state["job"]
        builder = DependencyIndexBuilder(
            walk_filter=state["walk_filter"],
            max_workers=job.limits.max_workers,
            max_file_bytes=job.limits.max_file_bytes,
        )
        started = time.monotonic()
        deadline = started + job.limits.timeout_seconds if job.limits.timeout_seconds else None

        index = builder.build(job.root, import_map=state["import_map"], deadline=deadline)

        state["stage"] = stage
        state["index"] = index
        state["index_payload"] = index.to_payload(one_based=job.one_based_positions)
        state["elapsed_ms"] = int((time.monotonic() - started) * 1000)
        return state
    except Exception as e:
        raise DeptreeStageError(stage, e) from e


def _result_document(state: DeptreeState) -> dict[str, Any]:
    job = state["job"]
    index = state["index"]
    import_map = state["import_map"]
    payload = state["index_payload"]
    return {
        "generated_at": utc_ts(),
        "job_id": job.job_id,
        "root": job.root,
        "import_map": {
            "path": import_map.source_path,
            "aliases": len(import_map),
            "loaded": import_map.load_error is None and import_map.source_path is not None,
        },
        "positions": "one_based" if job.one_based_positions else "zero_based",
        "counts": {
            "files_scanned": index.files_scanned,
            "files_indexed": index.files_indexed,
            "remote_specifiers": len(index.entries),
            "edges": index.edge_count,
            "diagnostics": len(index.diagnostics),
        },
        "elapsed_ms": state.get("elapsed_ms", 0),
        "index_sha256": stable_json_fingerprint_sha256(payload),
        "diagnostics": [d.to_dict() for d in index.diagnostics],
        "index": payload,
    }


def node_write_output(state: DeptreeState) -> DeptreeState:
    stage = STAGE_WRITE_OUTPUT
    try:
        job = state["job"]
        if job.output_path:
            write_json(job.output_path, _result_document(state))
            logger.info("Wrote dependency index to %s", job.output_path)
        state["stage"] = stage
        return state
    except Exception as e:
        raise DeptreeStageError(stage, e) from e


def node_validate_basic(state: DeptreeState) -> DeptreeState:
    stage = STAGE_VALIDATE_BASIC
    try:
        job = state["job"]
        validate_index_payload(state["index_payload"], root=job.root, walk_filter=state["walk_filter"])
        if job.output_path:
            validate_output_file(job.output_path, root=job.root, walk_filter=state["walk_filter"])
        state["stage"] = stage
        return state
    except Exception as e:
        raise DeptreeStageError(stage, e) from e


def node_emit_result(state: DeptreeState) -> DeptreeState:
    stage = STAGE_EMIT_RESULT
    try:
        doc = _result_document(state)
        doc["ok"] = True
        doc["stage"] = STAGE_DONE
        doc["job_payload_source"] = state.get("payload_src", "unknown")
        doc["output_path"] = state["job"].output_path
        state["result"] = doc
        state["stage"] = stage
        return state
    except Exception as e:
        raise DeptreeStageError(stage, e) from e


def build_deptree_graph():
    g = StateGraph(DeptreeState)

    g.add_node("load_job", node_load_job)
    g.add_node("load_import_map", node_load_import_map)
    g.add_node("build_index", node_build_index)
    g.add_node("write_output", node_write_output)
    g.add_node("validate_basic", node_validate_basic)
    g.add_node("emit_result", node_emit_result)

    g.set_entry_point("load_job")
    g.add_edge("load_job", "load_import_map")
    g.add_edge("load_import_map", "build_index")
    g.add_edge("build_index", "write_output")
    g.add_edge("write_output", "validate_basic")
    g.add_edge("validate_basic", "emit_result")
    g.add_edge("emit_result", END)

    return g.compile()


def run_deptree_graph(
        *,
        payload: dict[str, Any],
        payload_src: str,
        max_workers: Optional[int] = None,
) -> dict[str, Any]:
    app = build_deptree_graph()
    state: DeptreeState = {
        "payload": payload,
        "payload_src": payload_src,
        "config": RuntimeConfig(max_workers=max_workers),
        "stage": STAGE_INIT,
    }
    final_state = app.invoke(state)
    return final_state["result"]
