"""Pairwise cross-validation of agent results."""

import re
from itertools import combinations

import structlog

from .models import (
    Agreement,
    CrossValidationResult,
    Disagreement,
    Finding,
    Item,
    Recommendation,
    SpecializedAnalysis,
)

logger = structlog.get_logger(__name__)

WORD = re.compile(r"\w+")


def significant_words(text: str) -> set[str]:
    """Lowercased words longer than three characters."""
    return {w for w in WORD.findall(text.lower()) if len(w) > 3}


def word_similarity(a: str, b: str) -> float:
    """Shared significant words over the larger word set."""
    words_a, words_b = significant_words(a), significant_words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))


def _topic(item: Item) -> str:
    if isinstance(item, Finding):
        return f"{item.type}: {item.message[:50]}"
    return f"{item.category}: {item.description[:50]}"


class CrossValidator:
    """Compare what every pair of agents reported."""

    def __init__(self, word_overlap_threshold: float = 0.5):
        self.word_overlap_threshold = word_overlap_threshold

    def findings_match(self, a: Finding, b: Finding) -> bool:
        if (a.file, a.type, a.severity) == (b.file, b.type, b.severity):
            return True
        return word_similarity(a.message, b.message) >= self.word_overlap_threshold

    def recommendations_match(self, a: Recommendation, b: Recommendation) -> bool:
        if (a.category, a.priority) == (b.category, b.priority) and (
            a.description[:50] == b.description[:50]
        ):
            return True
        return word_similarity(a.description, b.description) >= self.word_overlap_threshold

    def validate(self, results: list[SpecializedAnalysis]) -> CrossValidationResult:
        """
        Cross-validate every pair of agent results.

        Each item of one agent is checked against the other agent's items:
        a match is an agreement, no match a disagreement. Items of the
        second agent no one matched are disagreements too. Every check
        yields exactly one agreement or disagreement.
        """
        outcome = CrossValidationResult()

        for left, right in combinations(results, 2):
            self._compare(
                left, right, left.findings, right.findings, self.findings_match, outcome
            )
            self._compare(
                left,
                right,
                left.recommendations,
                right.recommendations,
                self.recommendations_match,
                outcome,
            )

        logger.info(
            "cross_validated",
            agents=len(results),
            agreements=len(outcome.agreements),
            disagreements=len(outcome.disagreements),
            score=round(outcome.consensus_score, 3),
        )
        return outcome

    def _compare(self, left, right, left_items, right_items, matches, outcome) -> None:
        matched_right: set[int] = set()

        for item in left_items:
            partner = next(
                (
                    i for i, other in enumerate(right_items)
                    if i not in matched_right and matches(item, other)
                ),
                None,
            )
            outcome.comparisons += 1
            if partner is None:
                outcome.disagreements.append(
                    Disagreement(_topic(item), [left.agent_type], [item])
                )
                continue

            matched_right.add(partner)
            other = right_items[partner]
            outcome.agreements.append(
                Agreement(
                    topic=_topic(item),
                    agents=[left.agent_type, right.agent_type],
                    confidence=(item.confidence + other.confidence) / 2,
                    items=[item, other],
                )
            )

        for i, other in enumerate(right_items):
            if i not in matched_right:
                outcome.comparisons += 1
                outcome.disagreements.append(
                    Disagreement(_topic(other), [right.agent_type], [other])
                )
