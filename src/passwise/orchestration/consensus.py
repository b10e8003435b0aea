"""Consensus building from cross-validated agent results."""

import structlog

from .models import (
    PRIORITY_ORDER,
    SEVERITY_ORDER,
    ConsensusResult,
    CrossValidationResult,
    Finding,
    Item,
    Recommendation,
    SpecializedAnalysis,
)

logger = structlog.get_logger(__name__)


def dedupe_by_key(items: list[Item]) -> list[Item]:
    """Keep the first item for each dedup key, preserving order."""
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.key not in seen:
            seen.add(item.key)
            unique.append(item)
    return unique


def sort_findings(findings: list[Finding]) -> list[Finding]:
    """Most severe first; ties keep their original order."""
    return sorted(findings, key=lambda f: SEVERITY_ORDER[f.severity])


def sort_recommendations(recommendations: list[Recommendation]) -> list[Recommendation]:
    """must-fix, should-fix, consider; ties keep their original order."""
    return sorted(recommendations, key=lambda r: PRIORITY_ORDER[r.priority])


class ConsensusBuilder:
    """
    Turn agreements and disagreements into one set of findings.

    Agreed items are kept. A disagreement is resolved by taking its
    first available candidate, candidates being ordered as the agents
    were. This is a placeholder rule, not a weighted vote.
    """

    def build(
        self,
        results: list[SpecializedAnalysis],
        validation: CrossValidationResult,
    ) -> ConsensusResult:
        chosen: list[Item] = []

        for agreement in validation.agreements:
            if agreement.items:
                chosen.append(agreement.items[0])

        for disagreement in validation.disagreements:
            if disagreement.candidates:
                chosen.append(disagreement.candidates[0])

        # Nothing to compare against: a lone agent's items stand unopposed
        if len(results) < 2:
            for result in results:
                chosen.extend(result.findings)
                chosen.extend(result.recommendations)

        findings = dedupe_by_key([i for i in chosen if isinstance(i, Finding)])
        recommendations = dedupe_by_key([i for i in chosen if isinstance(i, Recommendation)])

        score = validation.consensus_score
        avg_confidence = (
            sum(r.confidence for r in results) / len(results) if results else 0.0
        )
        confidence = min(max((score + avg_confidence) / 2, 0.0), 1.0)

        logger.info(
            "consensus_built",
            findings=len(findings),
            recommendations=len(recommendations),
            score=round(score, 3),
            confidence=round(confidence, 3),
        )

        return ConsensusResult(
            agreements=list(validation.agreements),
            disagreements=list(validation.disagreements),
            findings=sort_findings(findings),
            recommendations=sort_recommendations(recommendations),
            consensus_score=score,
            confidence=confidence,
        )
