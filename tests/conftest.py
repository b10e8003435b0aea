"""
Shared fixtures for passwise tests.

Provides diff builders, mock oracles and a temporary git repository.
"""

import subprocess
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

from passwise.config import ReviewConfig


# =============================================================================
# DIFF FIXTURES
# =============================================================================

def build_file_diff(path: str, hunks: list[list[str]], start_step: int = 20) -> str:
    """
    Build a unified diff for one file.

    Args:
        path: File path used in the headers
        hunks: Line bodies per hunk, each line carrying its +/-/space prefix
        start_step: Distance between hunk start lines

    Returns:
        Diff text ending with a newline
    """
    parts = [
        f"diff --git a/{path} b/{path}",
        "index 1111111..2222222 100644",
        f"--- a/{path}",
        f"+++ b/{path}",
    ]
    for i, lines in enumerate(hunks):
        start = 1 + i * start_step
        old_count = sum(1 for line in lines if not line.startswith("+"))
        new_count = sum(1 for line in lines if not line.startswith("-"))
        parts.append(f"@@ -{start},{old_count} +{start},{new_count} @@ def block_{i}():")
        parts.extend(lines)
    return "\n".join(parts) + "\n"


@pytest.fixture
def diff_factory() -> Callable[..., str]:
    """Factory for single-file unified diffs."""
    return build_file_diff


@pytest.fixture
def small_diff() -> str:
    """A tiny diff, well under any budget (one hunk, 2 lines)."""
    return build_file_diff("src/app.ts", [[" const a = 1;", "+const b = 2;"]])


@pytest.fixture
def two_file_diff() -> str:
    """Full diff touching two files."""
    return (
        build_file_diff("src/app.ts", [[" const a = 1;", "+const b = 2;"]])
        + build_file_diff("src/util.ts", [["-export const x = 1;", "+export const x = 2;"]])
    )


# =============================================================================
# ORACLE FIXTURES
# =============================================================================

LOW_RISK_RESPONSE = """## Syntax Issues
- No syntax problems found

## Risk Level: LOW - straightforward change
"""

HIGH_RISK_RESPONSE = """## Security Issues
- SQL query built with string formatting

## Recommendations
- Use parameterized queries

## Risk Assessment: HIGH - injection possible
"""

MEDIUM_RISK_RESPONSE = """## Logic Concerns
- Missing null check on user input

## Risk Level: MEDIUM - edge case not handled
"""


@pytest.fixture
def risk_responses() -> dict[str, str]:
    """Canned pass responses keyed by the risk level they report."""
    return {
        "LOW": LOW_RISK_RESPONSE,
        "MEDIUM": MEDIUM_RISK_RESPONSE,
        "HIGH": HIGH_RISK_RESPONSE,
    }


@pytest.fixture
def mock_oracle() -> MagicMock:
    """
    Oracle that rates every prompt as low risk.

    Returns:
        Mock with an async complete() method
    """
    oracle = MagicMock()
    oracle.complete = AsyncMock(return_value=LOW_RISK_RESPONSE)
    return oracle


@pytest.fixture
def failing_oracle() -> MagicMock:
    """Oracle whose transport always fails."""
    oracle = MagicMock()
    oracle.complete = AsyncMock(side_effect=ConnectionError("connection refused"))
    return oracle


@pytest.fixture
def test_config() -> ReviewConfig:
    """Config with no cooldown between passes."""
    return ReviewConfig(pass_delay_seconds=0.0)


# =============================================================================
# GIT REPOSITORY FIXTURES
# =============================================================================

def _git(repo_path: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=repo_path, check=True, capture_output=True)


@pytest.fixture
def temp_git_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """
    Create a minimal temporary git repository.

    Yields:
        Path to the initialized git repository
    """
    repo_path = tmp_path / "test_repo"
    repo_path.mkdir()

    _git(repo_path, "init")
    _git(repo_path, "config", "user.email", "test@test.com")
    _git(repo_path, "config", "user.name", "Test User")

    (repo_path / "initial.ts").write_text("// Initial file\nexport const a = 1;\n")
    _git(repo_path, "add", ".")
    _git(repo_path, "commit", "-m", "Initial commit")

    yield repo_path


@pytest.fixture
def git(temp_git_repo: Path) -> Callable[..., None]:
    """Run git commands inside the temporary repository."""
    return lambda *args: _git(temp_git_repo, *args)
