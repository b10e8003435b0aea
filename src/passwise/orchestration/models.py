"""Models for multi-model analysis.

Findings, recommendations and critiques are parsed out of oracle JSON,
so they are pydantic models. The result containers built by the
orchestrator itself are plain dataclasses.
"""

import uuid
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
PRIORITY_ORDER = {"must-fix": 0, "should-fix": 1, "consider": 2}


def _new_id() -> str:
    return str(uuid.uuid4())


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


# Oracles answer in any case ("HIGH", "Must-Fix")
Severity = Annotated[Literal["low", "medium", "high", "critical"], BeforeValidator(_lower)]
Priority = Annotated[Literal["must-fix", "should-fix", "consider"], BeforeValidator(_lower)]
Level = Annotated[Literal["low", "medium", "high"], BeforeValidator(_lower)]


class Finding(BaseModel):
    """An issue reported by an analysis agent."""

    id: str = Field(default_factory=_new_id)
    type: str = "general"
    severity: Severity = "medium"
    message: str
    file: str | None = None
    line_number: int | None = Field(
        default=None, validation_alias=AliasChoices("line_number", "lineNumber", "line")
    )
    evidence: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    @property
    def key(self) -> str:
        """Deduplication key."""
        return f"{self.type}-{self.file}-{self.message[:50]}"


class Recommendation(BaseModel):
    """A suggested change reported by an analysis agent."""

    id: str = Field(default_factory=_new_id)
    priority: Priority = "should-fix"
    category: str = "general"
    description: str
    rationale: str = ""
    implementation: str = ""
    effort: Level = "medium"
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    @property
    def key(self) -> str:
        """Deduplication key."""
        return f"{self.category}-{self.description[:50]}"


class ImprovementArea(BaseModel):
    """Something the self-critique says the analysis should look at again."""

    area: str
    priority: Level = "medium"
    description: str = ""


class SelfCritique(BaseModel):
    """The oracle's critique of the current consensus."""

    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    improvement_areas: list[ImprovementArea] = Field(default_factory=list)
    confidence: float = Field(default=0.6, ge=0.0, le=1.0)


Item = Finding | Recommendation


@dataclass
class SpecializedAnalysis:
    """What one agent produced (or a minimal result if it failed)."""

    agent_type: str
    model_used: str
    findings: list[Finding] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    confidence: float = 0.0
    analysis: str = ""
    processing_ms: int = 0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class Agreement:
    """Two agents reported the same thing."""

    topic: str
    agents: list[str]
    confidence: float
    items: list[Item] = field(default_factory=list)


@dataclass
class Disagreement:
    """An item one agent reported and the other did not."""

    topic: str
    agents: list[str]
    candidates: list[Item] = field(default_factory=list)


@dataclass
class CrossValidationResult:
    """Pairwise comparison outcome across all agents."""

    agreements: list[Agreement] = field(default_factory=list)
    disagreements: list[Disagreement] = field(default_factory=list)
    comparisons: int = 0

    @property
    def consensus_score(self) -> float:
        total = len(self.agreements) + len(self.disagreements)
        return len(self.agreements) / total if total else 1.0


@dataclass
class ConsensusResult:
    """Cross-agent agreed findings and recommendations.

    Refinement appends to findings/recommendations and updates
    confidence in place.
    """

    agreements: list[Agreement] = field(default_factory=list)
    disagreements: list[Disagreement] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    consensus_score: float = 1.0
    confidence: float = 0.0


@dataclass
class MultiModelAnalysisResult:
    """Everything conduct_analysis() produced."""

    agent_results: list[SpecializedAnalysis]
    cross_validation: CrossValidationResult
    consensus: ConsensusResult
    confidence_scores: dict[str, float] = field(default_factory=dict)
    validation_warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agents": [
                {
                    "agent_type": r.agent_type,
                    "model_used": r.model_used,
                    "findings": len(r.findings),
                    "recommendations": len(r.recommendations),
                    "confidence": r.confidence,
                    "error": r.error,
                }
                for r in self.agent_results
            ],
            "consensus_score": self.consensus.consensus_score,
            "confidence": self.consensus.confidence,
            "findings": [f.model_dump() for f in self.consensus.findings],
            "recommendations": [r.model_dump() for r in self.consensus.recommendations],
            "confidence_scores": self.confidence_scores,
            "validation_warnings": self.validation_warnings,
        }


@dataclass
class RefinementIteration:
    """One pass of the refinement loop."""

    iteration: int
    critique: SelfCritique
    areas: list[ImprovementArea]
    new_findings: int
    new_recommendations: int
    convergence_score: float


@dataclass
class RefinedAnalysisResult:
    """Outcome of iterative_refinement()."""

    final_results: MultiModelAnalysisResult
    history: list[RefinementIteration] = field(default_factory=list)
    final_recommendations: list[Recommendation] = field(default_factory=list)

    @property
    def total_iterations(self) -> int:
        return len(self.history)

    @property
    def final_convergence_score(self) -> float:
        return self.history[-1].convergence_score if self.history else 0.0
