"""
Verdict parsing.

Reads the free-text answer of a review pass into a structured verdict.
The heuristics are deliberately forgiving; callers only depend on
parse_verdict() so a stricter structured-output format can replace
them later.
"""

import re
from dataclasses import dataclass

from .models import RiskLevel

RISK_PATTERN = re.compile(
    r"Risk\s+(?:Level|Assessment).*?:[\s*_\[]*(\w+)", re.IGNORECASE
)
BULLET_PATTERN = re.compile(r"^[-•*]\s+(.+?)\s*$")
SECTION_HEADING = re.compile(
    r"^(?:#{1,6}\s*)?[*_]*(?:Recommendations?|Suggestions?)\b", re.IGNORECASE
)

DEFAULT_MAX_ITEMS = 10


@dataclass(frozen=True)
class Verdict:
    """Structured reading of one pass response."""

    risk_level: RiskLevel
    issues: tuple[str, ...]
    recommendations: tuple[str, ...]


def parse_risk(text: str) -> RiskLevel:
    """First "Risk Level/Assessment ...: WORD" match, LOW when absent or unknown."""
    match = RISK_PATTERN.search(text)
    if not match:
        return RiskLevel.LOW
    return RiskLevel.parse(match.group(1)) or RiskLevel.LOW


def parse_issues(text: str, limit: int = DEFAULT_MAX_ITEMS) -> list[str]:
    """Every top-level bullet line, in order."""
    issues: list[str] = []
    for line in text.splitlines():
        match = BULLET_PATTERN.match(line)
        if match:
            issues.append(match.group(1))
            if len(issues) >= limit:
                break
    return issues


def parse_recommendations(text: str, limit: int = DEFAULT_MAX_ITEMS) -> list[str]:
    """Bullets inside Recommendations/Suggestions sections."""
    recommendations: list[str] = []
    in_section = False

    for line in text.splitlines():
        stripped = line.strip()
        if SECTION_HEADING.match(stripped):
            in_section = True
            continue
        if stripped.startswith("#"):
            in_section = False
            continue
        if not in_section:
            continue

        match = BULLET_PATTERN.match(stripped)
        if match:
            recommendations.append(match.group(1))
            if len(recommendations) >= limit:
                break

    return recommendations


def parse_verdict(
    text: str,
    max_issues: int = DEFAULT_MAX_ITEMS,
    max_recommendations: int = DEFAULT_MAX_ITEMS,
) -> Verdict:
    """Parse a pass response into risk, issues and recommendations."""
    return Verdict(
        risk_level=parse_risk(text),
        issues=tuple(parse_issues(text, max_issues)),
        recommendations=tuple(parse_recommendations(text, max_recommendations)),
    )
