# deptree/path_matcher.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Iterable, Union

Pattern = Union[str, re.Pattern]

# -----------------------------
# Defaults (dependency dirs, dot-segments, script extensions)
# -----------------------------
DEFAULT_EXCLUDE_NAMES: tuple[str, ...] = ("node_modules", "bower_components", "vendor")
DEFAULT_EXCLUDE_REGEX: tuple[str, ...] = (r"^\.",)
DEFAULT_INCLUDE_REGEX: tuple[str, ...] = (r"\.tsx?$", r"\.jsx?$")


def matches(name: str, patterns: Iterable[Pattern]) -> bool:
    """
    A str pattern matches a segment by equality; a compiled pattern matches via .search().
    """
    for p in patterns:
        if isinstance(p, str):
            if name == p:
                return True
        elif p.search(name):
            return True
    return False


def _segments(rel_path: str) -> list[str]:
    p = rel_path.replace("\\", "/")
    return [s for s in p.split("/") if s and s != "."]


@dataclass(frozen=True)
class WalkFilter:
    exclude: tuple[Pattern, ...] = ()
    include: tuple[re.Pattern, ...] = ()

    @classmethod
    def from_strings(
            cls,
            *,
            exclude_names: Iterable[str] = (),
            exclude_regex: Iterable[str] = (),
            include_regex: Iterable[str] = (),
    ) -> "WalkFilter":
        exclude: list[Pattern] = list(exclude_names)
        exclude.extend(re.compile(r) for r in exclude_regex)
        return cls(exclude=tuple(exclude), include=tuple(re.compile(r) for r in include_regex))

    def excludes_name(self, name: str) -> bool:
        return matches(name, self.exclude)

    def includes_file_name(self, name: str) -> bool:
        # inclusion only gates files; an empty include set admits nothing
        return matches(name, self.include)

    def should_descend(self, dir_name: str) -> bool:
        return not self.excludes_name(dir_name)

    def should_yield(self, file_name: str) -> bool:
        return not self.excludes_name(file_name) and self.includes_file_name(file_name)

    def is_excluded_path(self, rel_path: str) -> bool:
        """True if any segment of a root-relative path hits an exclusion pattern."""
        return any(self.excludes_name(seg) for seg in _segments(rel_path))

    def accepts_file(self, rel_path: str) -> bool:
        if self.is_excluded_path(rel_path):
            return False
        return self.includes_file_name(os.path.basename(rel_path.replace("\\", "/")))


DEFAULT_WALK_FILTER = WalkFilter.from_strings(
    exclude_names=DEFAULT_EXCLUDE_NAMES,
    exclude_regex=DEFAULT_EXCLUDE_REGEX,
    include_regex=DEFAULT_INCLUDE_REGEX,
)
