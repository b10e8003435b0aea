"""
Review Pipeline

Splits a change into bounded units, runs the review passes over each
unit and folds the results into one decision.
"""

from .chunker import DiffChunker
from .diff_source import DiffSource, GitDiffSource, StaticDiffSource, extract_file_slice
from .errors import (
    OracleError,
    OracleUnavailableError,
    PipelineError,
    ReviewError,
    StageFailedError,
    StepLimitExceededError,
)
from .events import EventBus, EventType, PipelineEvent
from .file_filter import FileFilter
from .models import (
    AnalysisPassResult,
    ChangeUnit,
    Decision,
    FileResult,
    PassKind,
    ReviewOutcome,
    RiskLevel,
)
from .oracle import StreamObserver, TextOracle, stream_completion
from .passes import PassRunner
from .persistence import InMemoryReviewStore, ReviewStore
from .scheduler import ReviewScheduler, Stage, review_change
from .state import PipelineState
from .verdict import Verdict, parse_verdict

__all__ = [
    "DiffChunker",
    "DiffSource",
    "GitDiffSource",
    "StaticDiffSource",
    "extract_file_slice",
    "OracleError",
    "OracleUnavailableError",
    "PipelineError",
    "ReviewError",
    "StageFailedError",
    "StepLimitExceededError",
    "EventBus",
    "EventType",
    "PipelineEvent",
    "FileFilter",
    "AnalysisPassResult",
    "ChangeUnit",
    "Decision",
    "FileResult",
    "PassKind",
    "ReviewOutcome",
    "RiskLevel",
    "StreamObserver",
    "TextOracle",
    "stream_completion",
    "PassRunner",
    "InMemoryReviewStore",
    "ReviewStore",
    "ReviewScheduler",
    "Stage",
    "review_change",
    "PipelineState",
    "Verdict",
    "parse_verdict",
]
