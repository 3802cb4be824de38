import pytest

from deptree.specifier import LocalSpecifier, Position, RemoteSpecifier, SourceSpan, classify, is_remote

SPAN = SourceSpan(Position(0, 0), Position(0, 1))


@pytest.mark.parametrize(
    "spec",
    [
        "https://deno.land/std/mod.ts",
        "http://localhost:8000/mod.ts",
        "HTTPS://EXAMPLE.COM/a.ts",
        "https://user@host.test/x.js",
        "https://cdn.test",
    ],
)
def test_http_urls_are_remote(spec):
    assert is_remote(spec)


@pytest.mark.parametrize(
    "spec",
    [
        "",
        "./local.ts",
        "../up.ts",
        "/abs/path.ts",
        "lib/mod.ts",
        "react",
        "npm:react",
        "file:///tmp/a.ts",
        "ftp://host.test/a.ts",
        "data:text/javascript,export{}",
        "https://",
        "https:///no-host.ts",
        "https://host.test:notaport/a.ts",
        " https://host.test/a.ts",
    ],
)
def test_everything_else_is_local(spec):
    assert not is_remote(spec)


def test_classify_picks_variant():
    assert isinstance(classify("https://a.test/x.ts", SPAN), RemoteSpecifier)
    assert isinstance(classify("./x.ts", SPAN), LocalSpecifier)


def test_one_based_conversion_happens_only_at_the_boundary():
    span = SourceSpan(Position(2, 5), Position(2, 9))
    assert span.to_dict() == {"start": {"line": 2, "character": 5}, "end": {"line": 2, "character": 9}}
    assert span.to_dict(one_based=True) == {"start": {"line": 3, "character": 6}, "end": {"line": 3, "character": 10}}
