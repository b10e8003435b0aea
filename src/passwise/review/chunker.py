"""
Diff Chunker

Splits one file's diff into bounded-size units so every unit fits the
model context. Hunk structure is preserved, oversized hunks are split
into overlapping line windows, and neighbouring units lend each other
a few lines of context.
"""

import hashlib
import math
import re
from typing import NamedTuple

import structlog

from .errors import ChunkingError
from .models import ChangeUnit, DiffHunk, DiffLine, LineKind

logger = structlog.get_logger(__name__)


class _Piece(NamedTuple):
    content: str
    start_line: int | None
    end_line: int | None


class DiffChunker:
    """Split file diffs into reviewable units."""

    # Approximate bytes per token (conservative estimate)
    BYTES_PER_TOKEN = 4

    HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")

    def __init__(
        self,
        max_tokens: int = 4000,
        overlap_lines: int = 3,
        context_lines: int = 5,
        min_window_lines: int = 1,
    ):
        """
        Initialize chunker.

        Args:
            max_tokens: Token budget per unit
            overlap_lines: Trailing lines of a window repeated at the start of the next
            context_lines: Lines lent to neighbouring units as context
            min_window_lines: Floor for a computed window size of zero
        """
        self.max_tokens = max_tokens
        self.overlap_lines = overlap_lines
        self.context_lines = context_lines
        self.min_window_lines = max(1, min_window_lines)

    @classmethod
    def from_config(cls, config) -> "DiffChunker":
        return cls(
            max_tokens=config.max_chunk_tokens,
            overlap_lines=config.overlap_lines,
            context_lines=config.context_lines,
            min_window_lines=config.min_window_lines,
        )

    def estimate_tokens(self, text: str) -> int:
        """Estimate token count for text."""
        return math.ceil(len(text.encode("utf-8")) / self.BYTES_PER_TOKEN)

    def needs_chunking(self, diff_text: str) -> bool:
        """Check if a diff is over the budget."""
        return self.estimate_tokens(diff_text) > self.max_tokens

    def chunk(self, file_path: str, diff_text: str) -> list[ChangeUnit]:
        """
        Split a file diff into units.

        Strategy:
        1. Under budget: one complete-file unit
        2. Otherwise one unit per hunk that fits (so a single fitting
           hunk yields exactly one unit)
        3. Hunks over budget are split into overlapping line windows
        4. Neighbouring units get context_before / context_after

        The result is deterministic for a given path and diff.
        """
        tokens = self.estimate_tokens(diff_text)
        if tokens <= self.max_tokens:
            return [
                ChangeUnit(
                    id=self._unit_id(file_path, 0, diff_text),
                    file_path=file_path,
                    size_tokens=tokens,
                    diff_content=diff_text,
                    is_complete_file=True,
                )
            ]

        hunks = self.parse_hunks(diff_text)
        if not hunks:
            # Nothing to split along, keep it whole
            logger.warning(
                "diff_without_hunks", path=file_path, tokens=tokens
            )
            return [
                ChangeUnit(
                    id=self._unit_id(file_path, 0, diff_text),
                    file_path=file_path,
                    size_tokens=tokens,
                    diff_content=diff_text,
                    is_complete_file=True,
                )
            ]

        pieces: list[_Piece] = []
        for hunk in hunks:
            pieces.extend(self._split_hunk(hunk))

        units = self._build_units(file_path, pieces)
        logger.info(
            "chunked_file",
            path=file_path,
            tokens=tokens,
            hunks=len(hunks),
            units=len(units),
        )
        return units

    def parse_hunks(self, diff_text: str) -> list[DiffHunk]:
        """Parse a file diff into hunks, tagging each line."""
        hunks: list[DiffHunk] = []
        current: DiffHunk | None = None
        new_line = 0

        for line in diff_text.rstrip("\n").split("\n"):
            if line.startswith("@@"):
                try:
                    current = self._parse_header(line)
                except ChunkingError as e:
                    logger.warning("malformed_hunk_header", header=line[:80], error=str(e))
                    current = DiffHunk(header=line, malformed=True)
                new_line = current.new_start
                hunks.append(current)
                continue

            # File headers before the first hunk
            if current is None:
                continue

            if line.startswith("+"):
                current.lines.append(DiffLine(line, LineKind.ADDITION, new_line))
                new_line += 1
            elif line.startswith("-"):
                current.lines.append(DiffLine(line, LineKind.DELETION, new_line))
            else:
                current.lines.append(DiffLine(line, LineKind.CONTEXT, new_line))
                new_line += 1

        return hunks

    def _parse_header(self, line: str) -> DiffHunk:
        match = self.HUNK_HEADER.match(line)
        if not match:
            raise ChunkingError(f"Unrecognised hunk header: {line!r}")

        return DiffHunk(
            header=line,
            old_start=int(match.group(1)),
            old_count=int(match.group(2) or "1"),
            new_start=int(match.group(3)),
            new_count=int(match.group(4) or "1"),
        )

    def _split_hunk(self, hunk: DiffHunk) -> list[_Piece]:
        """One piece if the hunk fits, else overlapping windows."""
        content = hunk.content
        if hunk.malformed:
            # Recovered locally: the hunk travels as one (possibly oversized) unit
            return [_Piece(content, None, None)]

        end_line = hunk.new_start + max(hunk.new_count, 1) - 1
        if not hunk.lines or self.estimate_tokens(content) <= self.max_tokens:
            return [_Piece(content, hunk.new_start, end_line)]

        lines = hunk.lines
        header_bytes = len(hunk.header.encode("utf-8"))
        # prefix[i] = bytes of lines[:i], each line counted with its newline
        prefix = [0]
        for line in lines:
            prefix.append(prefix[-1] + len(line.content.encode("utf-8")) + 1)

        def window_tokens(begin: int, end: int) -> int:
            return math.ceil((header_bytes + prefix[end] - prefix[begin]) / self.BYTES_PER_TOKEN)

        budget_bytes = self.max_tokens * self.BYTES_PER_TOKEN - header_bytes
        avg_line_bytes = prefix[-1] / len(lines)
        window = int(budget_bytes // avg_line_bytes) - self.overlap_lines
        if window <= 0:
            window = self.min_window_lines

        pieces: list[_Piece] = []
        position = 0
        while position < len(lines):
            begin = max(0, position - self.overlap_lines) if position else 0
            end = min(position + window, len(lines))

            # Line lengths vary around the average; shrink until it fits
            while end - position > 1 and window_tokens(begin, end) > self.max_tokens:
                end -= 1
            while begin < position and window_tokens(begin, end) > self.max_tokens:
                begin += 1

            window_lines = lines[begin:end]
            pieces.append(
                _Piece(
                    "\n".join([hunk.header] + [line.content for line in window_lines]),
                    window_lines[0].new_line,
                    window_lines[-1].new_line,
                )
            )
            position = end

        return pieces

    def _build_units(self, file_path: str, pieces: list[_Piece]) -> list[ChangeUnit]:
        """Create units, lending each neighbour a few lines of context."""
        units: list[ChangeUnit] = []
        last = len(pieces) - 1

        for index, piece in enumerate(pieces):
            context_before = None
            context_after = None
            if index > 0:
                context_before = self._context(pieces[index - 1].content, tail=True)
            if index < last:
                context_after = self._context(pieces[index + 1].content, tail=False)

            units.append(
                ChangeUnit(
                    id=self._unit_id(file_path, index, piece.content),
                    file_path=file_path,
                    size_tokens=self.estimate_tokens(piece.content),
                    diff_content=piece.content,
                    is_complete_file=False,
                    start_line=piece.start_line,
                    end_line=piece.end_line,
                    context_before=context_before,
                    context_after=context_after,
                )
            )

        return units

    def _context(self, content: str, tail: bool) -> str | None:
        """First or last context_lines lines of a unit, hunk headers dropped."""
        if self.context_lines <= 0:
            return None
        lines = [line for line in content.split("\n") if not line.startswith("@@")]
        picked = lines[-self.context_lines :] if tail else lines[: self.context_lines]
        text = "\n".join(picked)
        return text if text.strip() else None

    @staticmethod
    def _unit_id(file_path: str, index: int, content: str) -> str:
        digest = hashlib.sha1(f"{file_path}\0{index}\0{content}".encode("utf-8"))
        return digest.hexdigest()[:16]
