"""
Synthesis layer.

Folds unit results into a FileResult per file, then file results into
one decision and report. Oracle narratives are best-effort: when the
oracle fails, a deterministic narrative is produced instead so
aggregation never fails the run.
"""

import structlog

from .errors import OracleError
from .models import (
    ChangeContext,
    Decision,
    FileResult,
    RiskLevel,
    SynthesisData,
    UnitResults,
)
from .oracle import StreamObserver, TextOracle, call_oracle
from .passes import PASS_ORDER
from .prompts import build_file_synthesis_prompt, build_final_synthesis_prompt

logger = structlog.get_logger(__name__)

NO_FILES_REPORT = "No files were analyzed due to filtering or errors."


def dedupe(items, limit: int) -> list[str]:
    """Drop repeats keeping first occurrences, then cap."""
    seen: set[str] = set()
    unique: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique[:limit]


def decide(file_results: dict[str, FileResult]) -> tuple[Decision, str]:
    """Decision rule over file risk buckets."""
    file_count = len(file_results)
    severe = sum(
        1 for r in file_results.values()
        if r.overall_risk in (RiskLevel.CRITICAL, RiskLevel.HIGH)
    )
    medium = sum(1 for r in file_results.values() if r.overall_risk == RiskLevel.MEDIUM)

    if severe:
        decision = Decision.REJECT if severe > file_count / 2 else Decision.REQUEST_CHANGES
        return decision, f"Found {severe} files with critical/high risk issues."
    if medium:
        return (
            Decision.REQUEST_CHANGES,
            f"Found {medium} files that would benefit from improvements.",
        )
    return Decision.APPROVE, "No significant issues found."


class Synthesizer:
    """Builds file results and the final synthesis."""

    def __init__(
        self,
        oracle: TextOracle,
        observer: StreamObserver | None = None,
        recommendation_cap: int = 15,
    ):
        self.oracle = oracle
        self.observer = observer
        self.recommendation_cap = recommendation_cap

    async def synthesize_file(
        self,
        file_path: str,
        unit_results: dict[str, UnitResults],
        expected_units: int | None = None,
    ) -> FileResult:
        """
        Fold every available pass result of a file.

        Units without results are skipped; the file is synthesized over
        the subset that exists.

        Args:
            file_path: File being folded
            unit_results: unit id -> pass results, for this file's units
            expected_units: How many units the chunker produced

        Returns:
            Immutable FileResult
        """
        if expected_units is not None and len(unit_results) < expected_units:
            logger.warning(
                "missing_unit_results",
                path=file_path,
                expected=expected_units,
                available=len(unit_results),
            )

        analysis_parts: list[str] = []
        risks: list[RiskLevel] = []
        recommendations: list[str] = []
        total_issues = 0
        degraded = 0

        for unit_id, results in unit_results.items():
            analysis_parts.append(f"\n## Chunk {unit_id[:8]}")
            for kind in PASS_ORDER:
                result = results.get(kind)
                if result is None:
                    continue
                analysis_parts.extend([
                    f"\n### {kind.title}",
                    f"Risk: {result.risk_level.value}",
                    f"Analysis: {result.analysis}",
                ])
                risks.append(result.risk_level)
                total_issues += len(result.issues)
                recommendations.extend(result.recommendations)
                if result.degraded:
                    degraded += 1

        overall_risk = RiskLevel.highest(risks)
        prompt = build_file_synthesis_prompt(
            file_path, len(unit_results), "\n".join(analysis_parts)
        )

        try:
            narrative = await call_oracle(self.oracle, prompt, self.observer)
        except OracleError as e:
            logger.warning("file_narrative_fallback", path=file_path, error=str(e))
            narrative = (
                f"{file_path}: {total_issues} issues across "
                f"{len(unit_results)} chunks. Overall Risk Level: {overall_risk.value}"
            )

        logger.info(
            "file_synthesized",
            path=file_path,
            chunks=len(unit_results),
            risk=overall_risk.value,
            issues=total_issues,
        )

        return FileResult(
            file_path=file_path,
            chunk_count=len(unit_results),
            unit_results=dict(unit_results),
            narrative=narrative,
            overall_risk=overall_risk,
            total_issues=total_issues,
            recommendations=tuple(dedupe(recommendations, self.recommendation_cap)),
            degraded_passes=degraded,
        )

    async def final_synthesis(
        self,
        context: ChangeContext | None,
        file_results: dict[str, FileResult],
        chunks_count: int,
    ) -> tuple[SynthesisData, str]:
        """Bucket files by risk, decide, and produce the report."""
        if not file_results:
            logger.info("no_file_results")
            synthesis = SynthesisData(
                decision=Decision.APPROVE,
                reasoning="No files were analyzed.",
                overall_assessment="Analyzed 0 files.",
            )
            return synthesis, NO_FILES_REPORT

        critical: list[str] = []
        important: list[str] = []
        minor: list[str] = []
        notes: list[str] = []
        analysis_parts: list[str] = []

        for path, result in file_results.items():
            analysis_parts.extend([
                f"\n## File: {path}",
                f"Risk Level: {result.overall_risk.value}",
                f"Total Issues: {result.total_issues}",
                f"Analysis: {result.narrative}",
            ])

            if result.overall_risk in (RiskLevel.CRITICAL, RiskLevel.HIGH):
                critical.append(
                    f"{path}: {result.total_issues} issues ({result.overall_risk.value})"
                )
            elif result.overall_risk == RiskLevel.MEDIUM:
                important.append(f"{path}: Review recommended")
            else:
                minor.append(f"{path}: Low risk, minor improvements possible")

            if result.degraded_passes:
                total_passes = sum(len(r) for r in result.unit_results.values())
                notes.append(
                    f"{path}: {result.degraded_passes} of {total_passes} passes "
                    "failed, findings are low confidence"
                )

        decision, reasoning = decide(file_results)
        synthesis = SynthesisData(
            decision=decision,
            reasoning=reasoning,
            critical_issues=critical,
            important_recommendations=important,
            minor_suggestions=minor,
            low_confidence_notes=notes,
            overall_assessment=(
                f"Analyzed {len(file_results)} files with "
                f"{decision.value.replace('_', ' ')} recommendation."
            ),
        )

        prompt = build_final_synthesis_prompt(
            context, len(file_results), chunks_count, "\n".join(analysis_parts)
        )
        try:
            report = await call_oracle(self.oracle, prompt, self.observer)
            if notes:
                report = "\n".join(
                    [report.rstrip(), "", "## Low Confidence"] + [f"- {n}" for n in notes]
                )
        except OracleError as e:
            logger.warning("final_report_fallback", error=str(e))
            report = self._fallback_report(synthesis)

        logger.info(
            "final_synthesis",
            decision=decision.value,
            files=len(file_results),
            low_confidence=len(notes),
        )
        return synthesis, report

    def _fallback_report(self, synthesis: SynthesisData) -> str:
        lines = [
            "## Executive Summary",
            synthesis.overall_assessment,
            "",
            f"## Decision Recommendation: {synthesis.decision.name}",
            synthesis.reasoning,
        ]
        for heading, items in (
            ("Critical Issues", synthesis.critical_issues),
            ("Important Recommendations", synthesis.important_recommendations),
            ("Minor Suggestions", synthesis.minor_suggestions),
            ("Low Confidence", synthesis.low_confidence_notes),
        ):
            if items:
                lines.extend(["", f"## {heading}"] + [f"- {item}" for item in items])
        return "\n".join(lines)
