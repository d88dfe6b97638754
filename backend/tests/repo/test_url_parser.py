"""Tests for repository id parsing and GitHub link building."""

import pytest
from wikicube.repo.url_parser import RepoId, build_github_url, parse_repo_id


class TestParseRepoId:
    """Tests for accepted and rejected repository identifiers."""

    def test_owner_slash_repo(self):
        result = parse_repo_id("vercel/next.js")
        assert result == RepoId(owner="vercel", name="next.js")
        assert result.full_name == "vercel/next.js"

    def test_github_https_url(self):
        result = parse_repo_id("https://github.com/octo-org/hello_world")
        assert result.owner == "octo-org"
        assert result.name == "hello_world"

    def test_github_url_without_scheme(self):
        assert parse_repo_id("github.com/a/b") == RepoId("a", "b")

    def test_www_prefix(self):
        assert parse_repo_id("https://www.github.com/a/b") == RepoId("a", "b")

    def test_trailing_slash_and_git_suffix(self):
        assert parse_repo_id("https://github.com/a/b.git/") == RepoId("a", "b")
        assert parse_repo_id("https://github.com/a/b/") == RepoId("a", "b")

    def test_extra_path_segments_are_ignored(self):
        result = parse_repo_id("https://github.com/a/b/tree/main/src")
        assert result == RepoId("a", "b")

    def test_surrounding_whitespace(self):
        assert parse_repo_id("  a/b \n") == RepoId("a", "b")

    def test_str_is_full_name(self):
        assert str(RepoId("a", "b")) == "a/b"

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "just-a-name",
            "https://gitlab.com/a/b",
            "a/b/c",
            "../b",
            "https://github.com/a",
            "a b/c",
        ],
    )
    def test_invalid_values_raise(self, value):
        with pytest.raises(ValueError, match="Invalid"):
            parse_repo_id(value)


class TestBuildGithubUrl:
    """Tests for blob links used to back-fill citations."""

    def test_file_only(self):
        assert (
            build_github_url("a", "b", "main", "src/x.py")
            == "https://github.com/a/b/blob/main/src/x.py"
        )

    def test_single_line(self):
        assert build_github_url("a", "b", "main", "x.py", 42).endswith("x.py#L42")

    def test_line_range(self):
        assert build_github_url("a", "b", "dev", "x.py", 3, 9).endswith("/dev/x.py#L3-L9")

    def test_same_start_and_end_is_single_line(self):
        assert build_github_url("a", "b", "main", "x.py", 5, 5).endswith("#L5")

    def test_zero_line_means_no_anchor(self):
        assert "#" not in build_github_url("a", "b", "main", "x.py", 0, 0)
