# src/deptree/job.py
from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deptree.builder import DEFAULT_MAX_FILE_BYTES
from deptree.path_matcher import DEFAULT_EXCLUDE_NAMES, DEFAULT_EXCLUDE_REGEX, DEFAULT_INCLUDE_REGEX, WalkFilter
from deptree.utils import stable_json_fingerprint_sha256


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Limits(BaseModel):
    model_config = ConfigDict(validate_default=True)

    max_file_bytes: int = Field(default_factory=lambda: _int_from_env("DEPTREE_MAX_FILE_BYTES", DEFAULT_MAX_FILE_BYTES))
    max_workers: int = Field(default_factory=lambda: _int_from_env("DEPTREE_MAX_WORKERS", 1), ge=1, le=64)
    # 0 / None disables the deadline
    timeout_seconds: float | None = None


class Filters(BaseModel):
    exclude_names: list[str] = list(DEFAULT_EXCLUDE_NAMES)
    exclude_regex: list[str] = list(DEFAULT_EXCLUDE_REGEX)
    include_regex: list[str] = list(DEFAULT_INCLUDE_REGEX)

    def to_walk_filter(self) -> WalkFilter:
        return WalkFilter.from_strings(
            exclude_names=self.exclude_names,
            exclude_regex=self.exclude_regex,
            include_regex=self.include_regex,
        )


class Job(BaseModel):
    job_id: str | None = None
    root: str
    import_map: str | None = None
    filters: Filters = Field(default_factory=Filters)
    limits: Limits = Field(default_factory=Limits)
    output_path: str | None = None
    one_based_positions: bool = False

    @field_validator("root")
    @classmethod
    def _root_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("root must be a non-empty path")
        return v

    def finalize(self) -> "Job":
        """
        Contract:
        - root becomes absolute.
        - a relative import_map is resolved against root (not the CWD).
        - job_id, if absent, is a deterministic fingerprint of the job content.
        """
        self.root = str(Path(self.root).expanduser().resolve())

        if self.import_map:
            p = Path(self.import_map).expanduser()
            self.import_map = str(p if p.is_absolute() else Path(self.root) / p)

        if not self.job_id:
            fp = stable_json_fingerprint_sha256(self.model_dump(mode="python"))
            self.job_id = fp[:12]

        return self
