"""Configuration management for passwise.

All tunables of the review pipeline and the multi-model orchestrator
live here, with defaults that can be overridden from the environment.
"""

import os
from dataclasses import dataclass, field

from passwise.review.errors import ConfigError


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


@dataclass
class ReviewConfig:
    """Review pipeline configuration."""

    # Chunking
    max_chunk_tokens: int = 4000
    overlap_lines: int = 3
    context_lines: int = 5
    min_window_lines: int = 1

    # File filtering ("auto" resolves to the default profile)
    language: str = "auto"
    file_extensions: list[str] | None = None  # None = use language profile
    exclude_patterns: list[str] | None = None
    max_files: int = 0  # 0 = no limit

    # Pass execution
    pass_delay_seconds: float = 1.0  # cooldown between passes
    max_issues: int = 10
    max_recommendations: int = 10
    file_recommendation_cap: int = 15

    # Scheduler
    max_steps: int = 2000

    # Multi-model orchestration
    max_iterations: int = 5
    convergence_threshold: float = 0.85
    word_overlap_threshold: float = 0.5
    final_recommendation_cap: int = 20
    agent_models: list[str] = field(default_factory=list)

    def validate(self) -> "ReviewConfig":
        """Check value ranges, raising ConfigError on the first problem."""
        if self.max_chunk_tokens < 1:
            raise ConfigError("max_chunk_tokens must be at least 1")
        if self.overlap_lines < 0 or self.context_lines < 0:
            raise ConfigError("overlap_lines and context_lines cannot be negative")
        if self.min_window_lines < 1:
            raise ConfigError("min_window_lines must be at least 1")
        if self.max_steps < 1:
            raise ConfigError("max_steps must be at least 1")
        if self.max_iterations < 1:
            raise ConfigError("max_iterations must be at least 1")
        if not 0.0 <= self.convergence_threshold <= 1.0:
            raise ConfigError("convergence_threshold must be between 0 and 1")
        if not 0.0 < self.word_overlap_threshold <= 1.0:
            raise ConfigError("word_overlap_threshold must be in (0, 1]")
        if self.pass_delay_seconds < 0:
            raise ConfigError("pass_delay_seconds cannot be negative")
        return self

    @classmethod
    def from_env(cls) -> "ReviewConfig":
        """Create configuration from environment variables."""
        models = os.getenv("PASSWISE_AGENT_MODELS", "")

        return cls(
            max_chunk_tokens=_env_int("PASSWISE_MAX_CHUNK_TOKENS", 4000),
            overlap_lines=_env_int("PASSWISE_OVERLAP_LINES", 3),
            context_lines=_env_int("PASSWISE_CONTEXT_LINES", 5),
            min_window_lines=_env_int("PASSWISE_MIN_WINDOW_LINES", 1),
            language=os.getenv("PASSWISE_LANGUAGE", "auto"),
            max_files=_env_int("PASSWISE_MAX_FILES", 0),
            pass_delay_seconds=_env_float("PASSWISE_PASS_DELAY", 1.0),
            max_steps=_env_int("PASSWISE_MAX_STEPS", 2000),
            max_iterations=_env_int("PASSWISE_MAX_ITERATIONS", 5),
            convergence_threshold=_env_float("PASSWISE_CONVERGENCE_THRESHOLD", 0.85),
            agent_models=[m.strip() for m in models.split(",") if m.strip()],
        ).validate()
