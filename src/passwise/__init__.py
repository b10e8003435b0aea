"""passwise: multi-pass review of code changes against a text oracle."""

# review first: config depends on review.errors
from .review import (
    Decision,
    GitDiffSource,
    ReviewOutcome,
    ReviewScheduler,
    StaticDiffSource,
    review_change,
)
from .config import ReviewConfig
from .logging_config import configure_logging
from .orchestration import MultiModelOrchestrator, ReviewContext

__version__ = "0.1.0"

__all__ = [
    "ReviewConfig",
    "configure_logging",
    "MultiModelOrchestrator",
    "ReviewContext",
    "Decision",
    "GitDiffSource",
    "ReviewOutcome",
    "ReviewScheduler",
    "StaticDiffSource",
    "review_change",
]
