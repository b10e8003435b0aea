"""
Analysis agents.

Each agent reviews the whole change along one dimension and reports
structured findings. Agents ask the oracle for JSON and fall back to
the review verdict parser when the answer is free text.
"""

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from ..review.models import RiskLevel
from ..review.oracle import TextOracle, call_oracle
from ..review.verdict import parse_verdict
from .models import Finding, Recommendation, SpecializedAnalysis

logger = structlog.get_logger(__name__)

JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

AGENT_FOCUS: dict[str, str] = {
    "architectural": (
        "design patterns, module boundaries, coupling, API contracts "
        "and long-term maintainability"
    ),
    "security": (
        "injection, authentication and authorization flaws, secrets, "
        "unsafe input handling and data exposure"
    ),
    "performance": (
        "algorithmic complexity, blocking I/O, memory and resource "
        "management, and hot-path inefficiencies"
    ),
    "testing": (
        "test coverage of the change, edge cases, error handling "
        "and documentation of behavior"
    ),
}

_RISK_TO_SEVERITY = {
    RiskLevel.LOW: "low",
    RiskLevel.MEDIUM: "medium",
    RiskLevel.HIGH: "high",
    RiskLevel.CRITICAL: "critical",
}


@dataclass
class ReviewContext:
    """What agents get to see about a change."""

    change_ref: str
    diff: str
    title: str = ""
    description: str = ""
    files: list[str] = field(default_factory=list)

    @classmethod
    def from_state(cls, state: Any) -> "ReviewContext":
        """Build from a finished review's pipeline state."""
        context = state.change_context
        return cls(
            change_ref=state.change_ref,
            diff=state.full_diff or "",
            title=context.title if context else "",
            description=context.description if context else "",
            files=list(state.filtered_files),
        )


class AnalysisAgent(Protocol):
    """A per-dimension reviewer."""

    agent_type: str
    model_name: str

    async def analyze(self, context: ReviewContext) -> SpecializedAnalysis:
        """Review the change. May raise; the orchestrator contains failures."""
        ...


def analysis_confidence(
    findings: list[Finding], recommendations: list[Recommendation]
) -> float:
    """Base 0.5, up to +0.3 from finding confidence, +0.2 with recommendations."""
    confidence = 0.5
    if findings:
        confidence += sum(f.confidence for f in findings) / len(findings) * 0.3
    if recommendations:
        confidence += 0.2
    return min(confidence, 1.0)


def parse_structured(
    text: str, default_type: str, default_file: str | None = None
) -> tuple[list[Finding], list[Recommendation], float | None]:
    """
    Read findings and recommendations from an oracle answer.

    JSON is tried first; items that fail validation are dropped. Free
    text goes through the verdict parser instead.

    Returns:
        (findings, recommendations, confidence reported by the oracle or None)
    """
    match = JSON_OBJECT.search(text)
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            return _from_payload(payload, default_type, default_file)

    verdict = parse_verdict(text)
    severity = _RISK_TO_SEVERITY[verdict.risk_level]
    findings = [
        Finding(type=default_type, severity=severity, message=issue, file=default_file)
        for issue in verdict.issues
        if issue not in verdict.recommendations
    ]
    recommendations = [
        Recommendation(category=default_type, description=rec)
        for rec in verdict.recommendations
    ]
    return findings, recommendations, None


def _from_payload(
    payload: dict[str, Any], default_type: str, default_file: str | None
) -> tuple[list[Finding], list[Recommendation], float | None]:
    findings: list[Finding] = []
    for raw in payload.get("findings") or []:
        if not isinstance(raw, dict):
            continue
        try:
            findings.append(Finding.model_validate(
                {"type": default_type, "file": default_file, **raw}
            ))
        except ValidationError as e:
            logger.debug("finding_dropped", error=str(e))

    recommendations: list[Recommendation] = []
    for raw in payload.get("recommendations") or []:
        if not isinstance(raw, dict):
            continue
        try:
            recommendations.append(
                Recommendation.model_validate({"category": default_type, **raw})
            )
        except ValidationError as e:
            logger.debug("recommendation_dropped", error=str(e))

    confidence = payload.get("confidence")
    if isinstance(confidence, (int, float)) and 0.0 <= confidence <= 1.0:
        return findings, recommendations, float(confidence)
    return findings, recommendations, None


def build_agent_prompt(agent_type: str, context: ReviewContext, max_diff_chars: int) -> str:
    focus = AGENT_FOCUS.get(agent_type, agent_type)
    diff = context.diff
    if len(diff) > max_diff_chars:
        diff = diff[:max_diff_chars] + "\n... (diff truncated)"

    return f"""You are a {agent_type} reviewer. Focus on {focus}.

CHANGE: {context.change_ref}
TITLE: {context.title or 'No title'}
DESCRIPTION: {context.description or 'No description provided'}
FILES: {', '.join(context.files) or 'unknown'}

DIFF:
{diff}

Respond with ONLY a JSON object:
{{
  "findings": [
    {{"type": "{agent_type}", "severity": "low|medium|high|critical",
      "message": "...", "file": "path", "line_number": 0,
      "evidence": ["..."], "confidence": 0.0}}
  ],
  "recommendations": [
    {{"priority": "must-fix|should-fix|consider", "category": "{agent_type}",
      "description": "...", "rationale": "...", "implementation": "...",
      "effort": "low|medium|high", "confidence": 0.0}}
  ],
  "confidence": 0.0
}}"""


class OracleAgent:
    """Agent backed by a text oracle."""

    def __init__(
        self,
        agent_type: str,
        oracle: TextOracle,
        model_name: str = "default",
        max_diff_chars: int = 16000,
    ):
        self.agent_type = agent_type
        self.oracle = oracle
        self.model_name = model_name
        self.max_diff_chars = max_diff_chars

    async def analyze(self, context: ReviewContext) -> SpecializedAnalysis:
        start_time = time.time()
        prompt = build_agent_prompt(self.agent_type, context, self.max_diff_chars)
        response = await call_oracle(self.oracle, prompt)

        default_file = context.files[0] if len(context.files) == 1 else None
        findings, recommendations, reported = parse_structured(
            response, self.agent_type, default_file
        )
        confidence = (
            reported if reported is not None
            else analysis_confidence(findings, recommendations)
        )

        return SpecializedAnalysis(
            agent_type=self.agent_type,
            model_used=self.model_name,
            findings=findings,
            recommendations=recommendations,
            confidence=confidence,
            analysis=response,
            processing_ms=int((time.time() - start_time) * 1000),
        )


def default_agents(
    oracles: list[TextOracle],
    model_names: list[str] | None = None,
) -> list[OracleAgent]:
    """One agent per dimension, oracles and model labels assigned round-robin."""
    if not oracles:
        raise ValueError("At least one oracle is required")

    names = model_names or ["default"]
    return [
        OracleAgent(
            agent_type,
            oracles[i % len(oracles)],
            model_name=names[i % len(names)],
        )
        for i, agent_type in enumerate(AGENT_FOCUS)
    ]
