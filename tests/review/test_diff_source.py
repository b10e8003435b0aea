"""Tests for diff sources and per-file diff slicing."""

import pytest

from passwise.review.diff_source import (
    GitDiffSource,
    StaticDiffSource,
    extract_file_slice,
    list_diff_files,
)
from passwise.review.errors import DiffUnavailableError


# =============================================================================
# UNIT TESTS: slicing
# =============================================================================

class TestExtractFileSlice:
    """Slicing one file out of a full diff."""

    def test_slices_each_file(self, two_file_diff):
        app = extract_file_slice(two_file_diff, "src/app.ts")
        util = extract_file_slice(two_file_diff, "src/util.ts")

        assert app.startswith("diff --git a/src/app.ts b/src/app.ts")
        assert "+const b = 2;" in app
        assert "src/util.ts" not in app
        assert util.startswith("diff --git a/src/util.ts b/src/util.ts")
        assert "+export const x = 2;" in util

    def test_slices_concatenate_back(self, two_file_diff):
        parts = [extract_file_slice(two_file_diff, p) for p in ("src/app.ts", "src/util.ts")]
        assert "".join(parts) == two_file_diff

    def test_missing_file(self, two_file_diff):
        assert extract_file_slice(two_file_diff, "src/other.ts") is None

    def test_renamed_file_matches_either_side(self):
        diff = (
            "diff --git a/old/name.ts b/new/name.ts\n"
            "similarity index 90%\n"
            "rename from old/name.ts\n"
            "rename to new/name.ts\n"
        )
        assert extract_file_slice(diff, "new/name.ts") == diff
        assert extract_file_slice(diff, "old/name.ts") == diff

    def test_list_diff_files(self, two_file_diff):
        assert list_diff_files(two_file_diff) == ["src/app.ts", "src/util.ts"]


class TestStaticDiffSource:
    """Serving a diff obtained elsewhere."""

    @pytest.mark.asyncio
    async def test_files_come_from_diff(self, two_file_diff):
        source = StaticDiffSource(two_file_diff, details={"title": "Bump x"})

        assert await source.fetch_changed_files("any") == ["src/app.ts", "src/util.ts"]
        assert await source.fetch_full_diff("any") == two_file_diff
        assert (await source.fetch_change_details("any"))["title"] == "Bump x"

    @pytest.mark.asyncio
    async def test_explicit_files(self, two_file_diff):
        source = StaticDiffSource(two_file_diff, files=["src/util.ts"])
        assert await source.fetch_changed_files("any") == ["src/util.ts"]


# =============================================================================
# UNIT TESTS: git command building
# =============================================================================

class TestDiffCommand:
    """Ref forms understood by GitDiffSource."""

    @pytest.mark.parametrize(
        "ref,expected",
        [
            ("staged", ["diff", "--cached"]),
            ("working", ["diff"]),
            ("main..feature", ["diff", "main..feature"]),
            ("main...feature", ["diff", "main...feature"]),
            ("abc123", ["diff", "abc123^!"]),
        ],
    )
    def test_diff_command(self, ref, expected):
        assert GitDiffSource("/tmp")._diff_command(ref) == expected


# =============================================================================
# INTEGRATION TESTS: real git repository
# =============================================================================

@pytest.mark.integration
class TestGitDiffSourceIntegration:
    """GitDiffSource against a temporary repository."""

    @pytest.mark.asyncio
    async def test_staged_changes(self, temp_git_repo, git):
        (temp_git_repo / "feature.ts").write_text("export const feature = true;\n")
        git("add", "feature.ts")
        source = GitDiffSource(temp_git_repo)

        files = await source.fetch_changed_files("staged")
        diff = await source.fetch_full_diff("staged")

        assert files == ["feature.ts"]
        assert "+export const feature = true;" in diff
        assert source.extract_file_slice(diff, "feature.ts") is not None

    @pytest.mark.asyncio
    async def test_commit_range_details(self, temp_git_repo, git):
        git("checkout", "-b", "feature")
        (temp_git_repo / "initial.ts").write_text("// Initial file\nexport const a = 2;\n")
        git("commit", "-am", "Change a\n\nBumps the constant.")
        source = GitDiffSource(temp_git_repo)

        details = await source.fetch_change_details("HEAD~1..HEAD")
        files = await source.fetch_changed_files("HEAD~1..HEAD")

        assert details["title"] == "Change a"
        assert details["author"] == "Test User"
        assert details["body"] == "Bumps the constant."
        assert details["repo_name"] == "test_repo"
        assert files == ["initial.ts"]

    @pytest.mark.asyncio
    async def test_single_commit(self, temp_git_repo, git):
        (temp_git_repo / "initial.ts").write_text("// Initial file\nexport const a = 3;\n")
        git("commit", "-am", "Set a to 3")
        source = GitDiffSource(temp_git_repo)

        diff = await source.fetch_full_diff("HEAD")

        assert "+export const a = 3;" in diff
        assert "-export const a = 1;" in diff

    @pytest.mark.asyncio
    async def test_empty_diff_raises(self, temp_git_repo):
        source = GitDiffSource(temp_git_repo)
        with pytest.raises(DiffUnavailableError):
            await source.fetch_full_diff("staged")

    @pytest.mark.asyncio
    async def test_bad_ref_raises(self, temp_git_repo):
        source = GitDiffSource(temp_git_repo)
        with pytest.raises(DiffUnavailableError):
            await source.fetch_full_diff("no-such-branch..HEAD")
