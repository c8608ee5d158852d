import itertools

import pytest

from media_engine.domain.errors import InvalidPathError
from media_engine.security.sandbox import PathSandbox


def _inside(sandbox: PathSandbox, path) -> bool:
    return path == sandbox.root or sandbox.root in path.parents


def test_resolve_simple_logical_path(sandbox):
    resolved = sandbox.resolve("products/widget-42/images/photo.webp")
    assert resolved == sandbox.root / "products" / "widget-42" / "images" / "photo.webp"


def test_resolve_collapses_dot_segments_that_stay_inside(sandbox):
    resolved = sandbox.resolve("products/./a/../b/photo.webp")
    assert resolved == sandbox.root / "products" / "b" / "photo.webp"


@pytest.mark.parametrize(
    "logical",
    [
        "../../etc/passwd",
        "..",
        "./..",
        "products/../../outside.txt",
        "a/b/../../../x",
        "..\\..\\windows\\win.ini",
        "products\\..\\..\\x",
        "products/..\\../x",
        "C:/Windows/system32",
        "c:\\boot.ini",
        "evil\x00.webp",
        "",
        "   ",
        "/",
    ],
)
def test_resolve_rejects_escaping_or_empty_paths(sandbox, logical):
    with pytest.raises(InvalidPathError):
        sandbox.resolve(logical)


def test_leading_slashes_are_root_relative(sandbox):
    resolved = sandbox.resolve("/etc/passwd")
    assert resolved == sandbox.root / "etc" / "passwd"
    assert _inside(sandbox, resolved)


def test_resolve_never_returns_outside_root(sandbox):
    segments = ["..", ".", "a", "/", "\\", "b/..", "../a"]
    for combo in itertools.product(segments, repeat=4):
        logical = "/".join(combo)
        try:
            resolved = sandbox.resolve(logical)
        except InvalidPathError:
            continue
        assert _inside(sandbox, resolved), logical


def test_resolve_directory_refuses_root(sandbox):
    with pytest.raises(InvalidPathError):
        sandbox.resolve_directory("products/..")
    assert sandbox.resolve_directory("products/p1") == sandbox.root / "products" / "p1"


@pytest.mark.parametrize("filename", ["", ".", "..", "a/b.webp", "..\\x.webp", "x\x00.webp"])
def test_join_requires_single_segment(sandbox, filename):
    with pytest.raises(InvalidPathError):
        sandbox.join("products/p1", filename)


def test_join_rejects_escaping_directory(sandbox):
    with pytest.raises(InvalidPathError):
        sandbox.join("../outside", "x.webp")


def test_join_normalizes_directory(sandbox):
    assert sandbox.join("\\products//p1/", "x.webp") == "products/p1/x.webp"


def test_to_logical_is_inverse_of_resolve(sandbox):
    logical = "products/p1/images/x.webp"
    assert sandbox.to_logical(sandbox.resolve(logical)) == logical


def test_to_logical_rejects_foreign_paths(sandbox, tmp_path):
    with pytest.raises(InvalidPathError):
        sandbox.to_logical(tmp_path / "elsewhere.txt")
    with pytest.raises(InvalidPathError):
        sandbox.to_logical(sandbox.root)


def test_public_url_mapping(sandbox):
    assert sandbox.to_public_url("products/p1/x.webp") == "/uploads/products/p1/x.webp"
    assert sandbox.from_public_url("/uploads/products/p1/x.webp") == "products/p1/x.webp"
    assert sandbox.from_public_url("uploads/_tmp/x.webp") == "_tmp/x.webp"
    assert sandbox.from_public_url("https://cdn.example.com/x.webp") is None
    assert sandbox.from_public_url("/uploads/") is None


def test_logical_reference_accepts_url_or_path(sandbox):
    assert sandbox.to_logical_reference("/uploads/_tmp/x.webp") == "_tmp/x.webp"
    assert sandbox.to_logical_reference("_tmp/x.webp") == "_tmp/x.webp"
    assert sandbox.to_logical_reference("uploads/_tmp/x.webp") == "_tmp/x.webp"
    assert sandbox.to_logical_reference("\\uploads\\_tmp\\x.webp") == "_tmp/x.webp"
    with pytest.raises(InvalidPathError):
        sandbox.to_logical_reference("/uploads/../../etc/passwd")
    with pytest.raises(InvalidPathError):
        sandbox.to_public_url("../x")
