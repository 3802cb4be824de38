import json
import threading
import time

import pytest

from deptree import builder as builder_module
from deptree.builder import DependencyIndexBuilder, build
from deptree.errors import (
    DIAG_BINARY_FILE,
    DIAG_FILE_TOO_LARGE,
    DIAG_IMPORT_MAP_UNAVAILABLE,
    DIAG_PARSE_FAILED,
    DIAG_SYNTAX_ERRORS,
    BuildCancelled,
    BuildTimeout,
    FatalRootError,
    ParseError,
)
from deptree.specifier import Position, SourceSpan, is_remote


def _write_map(root, table):
    p = root / "import_map.json"
    p.write_text(json.dumps({"imports": table}), encoding="utf-8")
    return str(p)


def test_scenario_a_remote_import_without_map(make_project):
    root = make_project({"main.ts": 'import x from "https://deno.land/std/mod.ts";\n'})
    index = build(str(root))
    assert list(index.entries) == ["https://deno.land/std/mod.ts"]
    [edge] = index.entries["https://deno.land/std/mod.ts"]
    assert edge.filepath == str(root / "main.ts")
    assert edge.span == SourceSpan(Position(0, 14), Position(0, 44))


def test_scenario_b_prefix_alias_maps_to_remote(make_project):
    root = make_project({"main.ts": 'import x from "lib/mod.ts";\n'})
    index = build(str(root), _write_map(root, {"lib/": "https://cdn.test/lib/"}))
    assert list(index.entries) == ["https://cdn.test/lib/mod.ts"]


def test_scenario_c_local_specifier_is_dropped(make_project):
    root = make_project({"main.ts": 'import x from "./local.ts";\n', "local.ts": "export default 1;\n"})
    index = build(str(root))
    assert index.entries == {}
    assert index.files_indexed == 2


def test_scenario_d_excluded_directory_is_not_indexed(make_project):
    root = make_project(
        {
            "node_modules/pkg/a.ts": 'import x from "https://deno.land/std/mod.ts";\n',
            ".hidden/b.ts": 'import x from "https://deno.land/std/mod.ts";\n',
        }
    )
    index = build(str(root))
    assert index.entries == {}
    assert index.files_scanned == 0


def test_scenario_e_syntax_errors_do_not_abort(make_project):
    root = make_project(
        {
            "a_broken.ts": "))) {{{ <<< from ;;; = =\n",
            "b_ok.ts": 'import x from "https://deno.land/std/mod.ts";\n',
        }
    )
    index = build(str(root))
    assert list(index.entries) == ["https://deno.land/std/mod.ts"]
    assert [e.filepath for e in index.entries["https://deno.land/std/mod.ts"]] == [str(root / "b_ok.ts")]
    assert any(d.kind == DIAG_SYNTAX_ERRORS and d.path == str(root / "a_broken.ts") for d in index.diagnostics)


def test_parse_failure_contributes_nothing_and_keeps_other_files(make_project, monkeypatch):
    root = make_project(
        {
            "a.ts": 'import x from "https://one.test/a.ts";\n',
            "b.ts": 'import x from "https://two.test/b.ts";\n',
            "c.ts": 'import x from "https://one.test/a.ts";\n',
        }
    )
    real = builder_module.parse_dependencies

    def flaky(text, path):
        if path.endswith("b.ts"):
            raise ParseError(path, "boom")
        return real(text, path)

    monkeypatch.setattr(builder_module, "parse_dependencies", flaky)
    index = build(str(root))
    assert list(index.entries) == ["https://one.test/a.ts"]
    assert [e.filepath for e in index.entries["https://one.test/a.ts"]] == [str(root / "a.ts"), str(root / "c.ts")]
    assert [(d.kind, d.path) for d in index.diagnostics] == [(DIAG_PARSE_FAILED, str(root / "b.ts"))]
    assert index.files_scanned == 3
    assert index.files_indexed == 2


def test_edges_keep_walk_order_and_are_not_deduplicated(make_project):
    text = 'import a from "https://x.test/m.ts";\nexport { b } from "https://x.test/m.ts";\n'
    root = make_project({"a.ts": text, "sub/b.ts": text})
    index = build(str(root))
    edges = index.entries["https://x.test/m.ts"]
    assert [(e.filepath, e.span.start.line) for e in edges] == [
        (str(root / "a.ts"), 0),
        (str(root / "a.ts"), 1),
        (str(root / "sub/b.ts"), 0),
        (str(root / "sub/b.ts"), 1),
    ]


def test_remote_specifiers_bypass_the_import_map(make_project):
    root = make_project({"main.ts": 'import x from "https://deno.land/std/mod.ts";\n'})
    # an alias that would rewrite the URL if it were consulted
    im = _write_map(root, {"https://deno.land/std/": "https://mirror.test/std/"})
    index = build(str(root), im)
    assert list(index.entries) == ["https://deno.land/std/mod.ts"]


def test_every_key_is_remote(make_project):
    root = make_project(
        {
            "main.ts": "\n".join(
                [
                    'import a from "https://a.test/a.ts";',
                    'import b from "npm:b";',
                    'import c from "file:///c.ts";',
                    'import d from "lib/d.ts";',
                    'import e from "alias";',
                    "",
                ]
            )
        }
    )
    index = build(str(root), _write_map(root, {"lib/": "./vendor/lib/", "alias": "https://e.test/e.ts"}))
    assert sorted(index.entries) == ["https://a.test/a.ts", "https://e.test/e.ts"]
    assert all(is_remote(k) for k in index.entries)


def test_bad_import_map_is_reported_but_not_fatal(make_project):
    root = make_project({"main.ts": 'import x from "https://a.test/a.ts";\n', "import_map.json": "{oops"})
    index = build(str(root), str(root / "import_map.json"))
    assert list(index.entries) == ["https://a.test/a.ts"]
    assert [d.kind for d in index.diagnostics] == [DIAG_IMPORT_MAP_UNAVAILABLE]


def test_missing_root_is_fatal(tmp_path):
    with pytest.raises(FatalRootError):
        build(str(tmp_path / "missing"))


def test_oversized_and_binary_files_are_skipped(make_project):
    root = make_project({"big.ts": "// " + "x" * 200 + "\n", "ok.ts": 'import "https://a.test/a.ts";\n'})
    (root / "bin.js").write_bytes(b"\x00\x01import")
    index = DependencyIndexBuilder(max_file_bytes=100).build(str(root))
    assert [(d.kind, d.path) for d in index.diagnostics] == [
        (DIAG_FILE_TOO_LARGE, str(root / "big.ts")),
        (DIAG_BINARY_FILE, str(root / "bin.js")),
    ]
    assert list(index.entries) == ["https://a.test/a.ts"]


def test_build_is_deterministic(make_project):
    files = {f"m{i}/f{i}.ts": f'import x from "https://h{i % 3}.test/mod.ts";\n' for i in range(12)}
    root = make_project(files)
    first = build(str(root)).to_payload()
    second = build(str(root)).to_payload()
    assert first == second


def test_parallel_build_matches_sequential(make_project):
    files = {
        f"pkg{i}/file{j}.ts": f'import a from "https://h{j % 4}.test/a.ts";\nimport("https://h{i % 2}.test/b.ts");\n'
        for i in range(6)
        for j in range(5)
    }
    root = make_project(files)
    sequential = build(str(root)).to_payload()
    parallel = build(str(root), max_workers=4).to_payload()
    assert parallel == sequential


def test_cancelled_build_raises_and_returns_nothing(make_project):
    root = make_project({"a.ts": 'import "https://a.test/a.ts";\n'})
    ev = threading.Event()
    ev.set()
    with pytest.raises(BuildCancelled):
        build(str(root), cancel_event=ev)


def test_cancellation_between_files(make_project, monkeypatch):
    root = make_project({f"f{i}.ts": 'import "https://a.test/a.ts";\n' for i in range(5)})
    ev = threading.Event()
    real = builder_module._process_file
    seen = []

    def counting(path, max_file_bytes):
        seen.append(path)
        if len(seen) == 2:
            ev.set()
        return real(path, max_file_bytes)

    monkeypatch.setattr(builder_module, "_process_file", counting)
    with pytest.raises(BuildCancelled):
        build(str(root), cancel_event=ev)
    assert len(seen) == 2


def test_expired_deadline_raises_timeout(make_project):
    root = make_project({"a.ts": 'import "https://a.test/a.ts";\n'})
    with pytest.raises(BuildTimeout):
        build(str(root), deadline=time.monotonic() - 1)


def test_payload_shape_and_one_based_boundary(make_project):
    root = make_project({"main.ts": 'import x from "https://deno.land/std/mod.ts";\n'})
    index = build(str(root))
    assert index.to_payload() == {
        "https://deno.land/std/mod.ts": [
            {
                "filepath": str(root / "main.ts"),
                "location": {"start": {"line": 0, "character": 14}, "end": {"line": 0, "character": 44}},
            }
        ]
    }
    one = index.to_payload(one_based=True)["https://deno.land/std/mod.ts"][0]["location"]
    assert one == {"start": {"line": 1, "character": 15}, "end": {"line": 1, "character": 45}}
