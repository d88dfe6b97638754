"""Repository tree filtering tests."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from wikicube.repo.file_filter import TreeEntry, filter_tree, format_tree, is_excluded


@pytest.mark.parametrize(
    "path",
    [
        "node_modules/react/index.js",
        "vendor/github.com/x/y.go",
        ".git/config",
        "dist/bundle.js",
        "build/output.js",
        "yarn.lock",
        "frontend/package-lock.json",
        "static/app.min.js",
        "static/app.js.map",
        "docs/logo.PNG",
        "tests/fixtures/data.json",
        ".github/workflows/ci.yml",
        "migrations/0001_init.py",
        ".env.local",
    ],
)
def test_excluded_paths(path):
    assert is_excluded(path)


@pytest.mark.parametrize(
    "path",
    [
        "src/main.py",
        "README.md",
        "package.json",
        "lib/builder.ts",
        "src/distance.rs",
        "app/models/vendor_account.rb",
    ],
)
def test_source_paths_are_kept(path):
    assert not is_excluded(path)


def test_filter_tree_keeps_blobs_in_order():
    entries = [
        TreeEntry(path="src", type="tree"),
        TreeEntry(path="src/b.py", type="blob"),
        TreeEntry(path="node_modules/x.js", type="blob"),
        TreeEntry(path="src/a.py", type="blob"),
    ]

    assert [e.path for e in filter_tree(entries)] == ["src/b.py", "src/a.py"]


def test_format_tree_lists_paths():
    assert format_tree(["a.py", "b/c.py"]) == "a.py\nb/c.py"


def test_format_tree_reports_omitted_paths():
    text = format_tree([f"f{i}.py" for i in range(5)], max_paths=2)

    assert text.splitlines() == ["f0.py", "f1.py", "... (3 more files)"]


@given(st.lists(st.sampled_from(["src/a.py", "node_modules/b.js", "dist/c.js", "lib/d.go"])))
@settings(max_examples=100)
def test_property_filtered_tree_never_contains_excluded_paths(paths):
    entries = [TreeEntry(path=p, type="blob") for p in paths]

    kept = filter_tree(entries)

    assert all(not is_excluded(e.path) for e in kept)
    assert len(kept) == sum(1 for p in paths if not is_excluded(p))
