"""
File Filter

Decides which changed files are worth analyzing, using per-language
extension allow-lists and exclusion globs, and sizes the review upfront.
"""

import math
import re
from dataclasses import dataclass, field

import structlog

from .models import ComplexityEstimate

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LanguageProfile:
    """Extension allow-list and exclusions for one kind of project."""

    language: str
    file_extensions: list[str]
    exclude_patterns: list[str] = field(default_factory=list)


PROFILES: dict[str, LanguageProfile] = {
    "typescript": LanguageProfile(
        language="typescript",
        file_extensions=[".ts", ".tsx", ".js", ".jsx"],
        exclude_patterns=[
            "*.d.ts",  # Type definition files
            "*.min.js",  # Minified files
            "node_modules/**",
            "dist/**",  # Build output
            "build/**",
            ".next/**",
            "coverage/**",
            "*.spec.ts",
            "*.test.ts",
            "*.spec.js",
            "*.test.js",
        ],
    ),
    "javascript": LanguageProfile(
        language="javascript",
        file_extensions=[".js", ".jsx", ".mjs", ".cjs"],
        exclude_patterns=[
            "*.min.js",
            "node_modules/**",
            "dist/**",
            "build/**",
            "coverage/**",
            "*.spec.js",
            "*.test.js",
        ],
    ),
    "python": LanguageProfile(
        language="python",
        file_extensions=[".py", ".pyx", ".pyi"],
        exclude_patterns=[
            "__pycache__/**",
            "*.pyc",
            "venv/**",
            ".venv/**",
            "env/**",
            "dist/**",
            "build/**",
            "*.egg-info/**",
            "test_*.py",
            "*_test.py",
        ],
    ),
    "java": LanguageProfile(
        language="java",
        file_extensions=[".java"],
        exclude_patterns=[
            "target/**",
            "build/**",
            ".gradle/**",
            "*.class",
            "*Test.java",
            "*Tests.java",
        ],
    ),
    "go": LanguageProfile(
        language="go",
        file_extensions=[".go"],
        exclude_patterns=["vendor/**", "*_test.go"],
    ),
}

DEFAULT_LANGUAGE = "typescript"

# Rough sizing: an average file is 2 chunks, each chunk 4 passes of ~30s
CHUNKS_PER_FILE = 2
PASSES_PER_CHUNK = 4
MINUTES_PER_PASS = 0.5


def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a path glob.

    ``**`` spans directories, ``*`` stays inside one path segment.
    Patterns without a slash match the file name in any directory;
    ``dir/**`` matches that directory at any depth.
    """
    parts = re.split(r"(\*\*|\*)", pattern)
    body = "".join(
        ".*" if part == "**" else "[^/]*" if part == "*" else re.escape(part)
        for part in parts
    )
    return re.compile(rf"(^|.*/){body}$")


class FileFilter:
    """Filter changed files down to the analyzable set."""

    def __init__(
        self,
        language: str = "auto",
        file_extensions: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
        max_files: int = 0,
    ):
        """
        Initialize filter.

        Args:
            language: Profile name, "auto" for the default profile
            file_extensions: Override the profile's extensions
            exclude_patterns: Override the profile's exclusions
            max_files: Keep at most this many files (0 = all)
        """
        if language == "auto" or language not in PROFILES:
            if language != "auto":
                logger.warning("unknown_language_profile", language=language)
            language = DEFAULT_LANGUAGE
        profile = PROFILES[language]

        self.language = language
        self.file_extensions = [
            ext.lower() for ext in (file_extensions or profile.file_extensions)
        ]
        self.exclude_patterns = list(
            exclude_patterns if exclude_patterns is not None else profile.exclude_patterns
        )
        self.max_files = max_files
        self._excludes = [(p, _glob_to_regex(p)) for p in self.exclude_patterns]

    @classmethod
    def from_config(cls, config) -> "FileFilter":
        return cls(
            language=config.language,
            file_extensions=config.file_extensions,
            exclude_patterns=config.exclude_patterns,
            max_files=config.max_files,
        )

    def should_analyze(self, path: str) -> bool:
        """Check if a file should be analyzed."""
        return self.exclusion_reason(path) is None

    def exclusion_reason(self, path: str) -> str | None:
        """Why a file is excluded, None when it is kept."""
        if not any(path.lower().endswith(ext) for ext in self.file_extensions):
            return "unsupported extension"

        for pattern, regex in self._excludes:
            if regex.match(path):
                return f"matches pattern: {pattern}"

        return None

    def filter_files(self, paths: list[str]) -> list[str]:
        """Keep analyzable files, preserving order."""
        kept: list[str] = []
        for path in paths:
            reason = self.exclusion_reason(path)
            if reason:
                logger.debug("file_excluded", path=path, reason=reason)
            else:
                kept.append(path)

        if self.max_files and len(kept) > self.max_files:
            logger.info("file_limit_applied", kept=self.max_files, dropped=len(kept) - self.max_files)
            kept = kept[: self.max_files]

        logger.info(
            "files_filtered",
            language=self.language,
            total=len(paths),
            kept=len(kept),
        )
        return kept

    def estimate_complexity(self, paths: list[str]) -> ComplexityEstimate:
        """Estimate analysis size from the file count."""
        total_files = len(paths)
        estimated_chunks = total_files * CHUNKS_PER_FILE
        estimated_passes = estimated_chunks * PASSES_PER_CHUNK
        return ComplexityEstimate(
            total_files=total_files,
            estimated_chunks=estimated_chunks,
            estimated_passes=estimated_passes,
            estimated_minutes=math.ceil(estimated_passes * MINUTES_PER_PASS),
        )
