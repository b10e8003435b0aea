"""
Data models for the review pipeline.

Defines all types that flow between the chunker, the pass runner,
the synthesis layer and the scheduler.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class RiskLevel(str, Enum):
    """Risk extracted from a pass, ordered LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    @classmethod
    def parse(cls, value: str | None) -> "RiskLevel | None":
        """Map a free-text word onto a level, None when it isn't one."""
        if not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @classmethod
    def highest(cls, levels: "list[RiskLevel]") -> "RiskLevel":
        """Highest level in the list, LOW for an empty list."""
        return max(levels, key=lambda level: level.rank, default=cls.LOW)


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


class PassKind(str, Enum):
    """The fixed set of review passes run against every unit."""

    SYNTAX_LOGIC = "syntax_logic"
    SECURITY_PERFORMANCE = "security_performance"
    ARCHITECTURE_DESIGN = "architecture_design"
    TESTING_DOCS = "testing_docs"

    @property
    def title(self) -> str:
        return self.value.replace("_", " ").upper()


class LineKind(str, Enum):
    """How a line inside a hunk changed."""

    ADDITION = "addition"
    DELETION = "deletion"
    CONTEXT = "context"


class Decision(str, Enum):
    """Final verdict on the whole change."""

    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    REJECT = "reject"


@dataclass
class DiffLine:
    """A single line within a hunk."""

    content: str
    kind: LineKind
    new_line: int  # line number on the new side (next line for deletions)


@dataclass
class DiffHunk:
    """A single hunk within a file diff."""

    header: str
    old_start: int = 0
    old_count: int = 0
    new_start: int = 0
    new_count: int = 0
    lines: list[DiffLine] = field(default_factory=list)
    malformed: bool = False

    @property
    def content(self) -> str:
        """Header plus body, as it appeared in the diff."""
        return "\n".join([self.header] + [line.content for line in self.lines])


@dataclass(frozen=True)
class ChangeUnit:
    """A bounded-size slice of one file's diff plus optional context."""

    id: str
    file_path: str
    size_tokens: int
    diff_content: str
    is_complete_file: bool = False
    start_line: int | None = None
    end_line: int | None = None
    context_before: str | None = None
    context_after: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "size_tokens": self.size_tokens,
            "diff_content": self.diff_content,
            "is_complete_file": self.is_complete_file,
            "context_before": self.context_before,
            "context_after": self.context_after,
        }


@dataclass(frozen=True)
class AnalysisPassResult:
    """Structured verdict of one pass over one unit."""

    id: str
    unit_id: str
    pass_kind: PassKind
    analysis: str
    risk_level: RiskLevel = RiskLevel.LOW
    issues: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    tokens_used: int = 0
    duration_ms: int = 0
    degraded: bool = False  # oracle failed, verdict is a placeholder
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "unit_id": self.unit_id,
            "pass_kind": self.pass_kind.value,
            "analysis": self.analysis,
            "risk_level": self.risk_level.value,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
            "degraded": self.degraded,
        }


# pass kind -> result, for one unit
UnitResults = dict[PassKind, AnalysisPassResult]


@dataclass(frozen=True)
class FileResult:
    """Folded result for one file, built once all its units are drained."""

    file_path: str
    chunk_count: int
    unit_results: dict[str, UnitResults]
    narrative: str
    overall_risk: RiskLevel
    total_issues: int
    recommendations: tuple[str, ...] = ()
    degraded_passes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "chunk_count": self.chunk_count,
            "unit_results": {
                unit_id: {kind.value: r.to_dict() for kind, r in results.items()}
                for unit_id, results in self.unit_results.items()
            },
            "narrative": self.narrative,
            "overall_risk": self.overall_risk.value,
            "total_issues": self.total_issues,
            "recommendations": list(self.recommendations),
            "degraded_passes": self.degraded_passes,
        }


@dataclass
class ChangeContext:
    """What is known about the change before any diff is read."""

    change_ref: str
    repo_name: str = "unknown"
    title: str = ""
    author: str = ""
    source_branch: str = ""
    target_branch: str = ""
    file_count: int = 0
    description: str = ""


@dataclass(frozen=True)
class ComplexityEstimate:
    """Rough upfront sizing of a review."""

    total_files: int
    estimated_chunks: int
    estimated_passes: int
    estimated_minutes: int


@dataclass
class SynthesisData:
    """Buckets and verdict produced by final synthesis."""

    decision: Decision
    reasoning: str
    critical_issues: list[str] = field(default_factory=list)
    important_recommendations: list[str] = field(default_factory=list)
    minor_suggestions: list[str] = field(default_factory=list)
    low_confidence_notes: list[str] = field(default_factory=list)
    overall_assessment: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "reasoning": self.reasoning,
            "critical_issues": self.critical_issues,
            "important_recommendations": self.important_recommendations,
            "minor_suggestions": self.minor_suggestions,
            "low_confidence_notes": self.low_confidence_notes,
            "overall_assessment": self.overall_assessment,
        }


@dataclass
class ReviewOutcome:
    """What run() hands back for one change."""

    change_ref: str
    decision: Decision
    report: str
    file_results: dict[str, FileResult]
    synthesis: SynthesisData
    stage_trace: list[str] = field(default_factory=list)

    @property
    def files_reviewed(self) -> int:
        return len(self.file_results)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "change_ref": self.change_ref,
            "decision": self.decision.value,
            "report": self.report,
            "file_results": {
                path: result.to_dict() for path, result in self.file_results.items()
            },
            "synthesis": self.synthesis.to_dict(),
            "steps": len(self.stage_trace),
        }
