"""
Error taxonomy for the review pipeline.

Oracle and chunking errors are recovered where they happen. Only
PipelineError subclasses escape run(), and each one carries the last
good pipeline state so partial results are never lost.
"""

from typing import Any


class ReviewError(Exception):
    """Base class for all passwise errors."""


class ConfigError(ReviewError, ValueError):
    """Invalid configuration value."""


class OracleError(ReviewError):
    """The text-completion backend failed to answer."""


class EmptyResponseError(OracleError):
    """The backend answered with nothing usable."""


class ChunkingError(ReviewError):
    """A diff could not be split along its structure."""


class DiffUnavailableError(ReviewError):
    """The diff for a change could not be fetched."""


class PipelineError(ReviewError):
    """A run stopped before reaching its end.

    Attributes:
        state: Last good PipelineState (everything accumulated so far)
        stage: Stage that was about to run or that failed
        stage_trace: Stages executed, in order
    """

    kind = "pipeline_error"

    def __init__(
        self,
        message: str,
        state: Any,
        stage: str | None = None,
        stage_trace: list[str] | None = None,
    ):
        super().__init__(message)
        self.state = state
        self.stage = stage
        self.stage_trace = list(stage_trace or [])


class StageFailedError(PipelineError):
    """A stage raised; the cause is chained."""

    kind = "stage_failed"


class StepLimitExceededError(PipelineError):
    """The step ceiling was reached before the terminal stage."""

    kind = "limit_exceeded"


class OracleUnavailableError(PipelineError):
    """Every pass of every analyzed unit failed to reach the oracle."""

    kind = "oracle_unavailable"
