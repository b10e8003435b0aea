"""
Diff Sources

Where changed-file lists and unified diffs come from. The scheduler
fetches the full diff once and slices per-file diffs out of it locally.
"""

import asyncio
import re
from pathlib import Path
from typing import Any, Protocol

import structlog

from .errors import DiffUnavailableError

logger = structlog.get_logger(__name__)

FILE_HEADER = re.compile(r"^diff --git a/(.+) b/(.+)$")


class DiffSource(Protocol):
    """Provides metadata and diffs for a change reference."""

    async def fetch_change_details(self, ref: str) -> dict[str, Any]:
        """Title, body, author and branch information for the change."""
        ...

    async def fetch_changed_files(self, ref: str) -> list[str]:
        """Ordered paths touched by the change."""
        ...

    async def fetch_full_diff(self, ref: str) -> str:
        """Unified diff text for all files."""
        ...

    def extract_file_slice(self, full_diff: str, path: str) -> str | None:
        """One file's diff out of the full diff, None when absent."""
        ...


def extract_file_slice(full_diff: str, path: str) -> str | None:
    """
    Slice one file's section out of a multi-file unified diff.

    The slice runs from the file's ``diff --git`` header up to the next
    file header. Renamed files match on either side of the header.
    """
    collected: list[str] = []
    inside = False

    for line in full_diff.split("\n"):
        header = FILE_HEADER.match(line)
        if header:
            if inside:
                break
            old_path, new_path = header.groups()
            inside = path in (new_path, old_path)
        if inside:
            collected.append(line)

    if not collected:
        return None
    return "\n".join(collected).rstrip("\n") + "\n"


def list_diff_files(full_diff: str) -> list[str]:
    """Paths in the order their sections appear in a unified diff."""
    paths: list[str] = []
    for line in full_diff.split("\n"):
        header = FILE_HEADER.match(line)
        if header and header.group(2) not in paths:
            paths.append(header.group(2))
    return paths


class StaticDiffSource:
    """Serve a diff that was obtained elsewhere (file, API, stdin)."""

    def __init__(
        self,
        full_diff: str,
        details: dict[str, Any] | None = None,
        files: list[str] | None = None,
    ):
        self.full_diff = full_diff
        self.details = details or {}
        self.files = files

    async def fetch_change_details(self, ref: str) -> dict[str, Any]:
        return dict(self.details)

    async def fetch_changed_files(self, ref: str) -> list[str]:
        if self.files is not None:
            return list(self.files)
        return list_diff_files(self.full_diff)

    async def fetch_full_diff(self, ref: str) -> str:
        return self.full_diff

    def extract_file_slice(self, full_diff: str, path: str) -> str | None:
        return extract_file_slice(full_diff, path)


class GitDiffSource:
    """Read changes from a local git repository.

    Ref forms:
        ``base..head`` / ``base...head``  a revision range
        ``staged``                        the index (git diff --cached)
        ``working``                       unstaged working-tree changes
        anything else                     a single commit against its parent
    """

    RANGE = re.compile(r"^(?P<base>.+?)\.\.\.?(?P<head>[^.].*)$")

    def __init__(self, repo_path: str | Path | None = None):
        """Initialize with optional repo path."""
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()

    async def fetch_change_details(self, ref: str) -> dict[str, Any]:
        if ref in ("staged", "working"):
            author = (await self._run_git(["config", "user.name"])).strip()
            branch = (await self._run_git(["rev-parse", "--abbrev-ref", "HEAD"])).strip()
            return {
                "title": f"{ref.capitalize()} changes",
                "body": "",
                "author": author,
                "source_branch": branch,
                "target_branch": branch,
                "repo_name": self.repo_path.name,
            }

        match = self.RANGE.match(ref)
        base, head = (match.group("base"), match.group("head")) if match else (f"{ref}^", ref)
        log = await self._run_git(["log", "-1", "--format=%s%n%an%n%b", head])
        title, _, rest = log.partition("\n")
        author, _, body = rest.partition("\n")
        return {
            "title": title.strip(),
            "body": body.strip(),
            "author": author.strip(),
            "source_branch": head,
            "target_branch": base,
            "repo_name": self.repo_path.name,
        }

    async def fetch_changed_files(self, ref: str) -> list[str]:
        output = await self._run_git(self._diff_command(ref) + ["--name-only"])
        return [f.strip() for f in output.split("\n") if f.strip()]

    async def fetch_full_diff(self, ref: str) -> str:
        output = await self._run_git(self._diff_command(ref))
        if not output.strip():
            raise DiffUnavailableError(f"No diff for {ref!r} in {self.repo_path}")
        return output

    def extract_file_slice(self, full_diff: str, path: str) -> str | None:
        return extract_file_slice(full_diff, path)

    def _diff_command(self, ref: str) -> list[str]:
        """Build git diff command for a ref."""
        if ref == "staged":
            return ["diff", "--cached"]
        elif ref == "working":
            return ["diff"]
        elif self.RANGE.match(ref):
            return ["diff", ref]
        else:
            return ["diff", f"{ref}^!"]

    async def _run_git(self, args: list[str]) -> str:
        """Run git command and return output."""
        cmd = ["git", "-C", str(self.repo_path)] + args

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        stdout, stderr = await proc.communicate()

        if proc.returncode != 0:
            error_msg = stderr.decode().strip()
            # Don't raise for empty diffs
            if "fatal" not in error_msg.lower():
                return ""
            logger.error("git_command_failed", args=args, error=error_msg)
            raise DiffUnavailableError(f"Git command failed: {error_msg}")

        return stdout.decode()
