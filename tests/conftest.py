from pathlib import Path

import pytest


@pytest.fixture
def make_project(tmp_path):
    """Write {relpath: text} under a fresh project root and return the root."""

    def _make(files: dict[str, str]) -> Path:
        root = tmp_path / "project"
        root.mkdir(exist_ok=True)
        for rel, text in files.items():
            p = root / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(text, encoding="utf-8")
        return root

    return _make
