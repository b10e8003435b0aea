"""
Analysis Pass Runner

Runs the fixed set of review passes over one unit. A failing pass
never raises: it yields a degraded result so the other passes, and
every later unit, still run.
"""

import asyncio
import math
import time
import uuid

import structlog

from .errors import OracleError
from .models import AnalysisPassResult, ChangeUnit, PassKind, RiskLevel, UnitResults
from .oracle import StreamObserver, TextOracle, call_oracle
from .prompts import build_pass_prompt
from .verdict import parse_verdict

logger = structlog.get_logger(__name__)

PASS_ORDER: tuple[PassKind, ...] = (
    PassKind.SYNTAX_LOGIC,
    PassKind.SECURITY_PERFORMANCE,
    PassKind.ARCHITECTURE_DESIGN,
    PassKind.TESTING_DOCS,
)


class PassRunner:
    """Drive review passes for units against a text oracle."""

    def __init__(
        self,
        oracle: TextOracle,
        pass_delay_seconds: float = 1.0,
        max_issues: int = 10,
        max_recommendations: int = 10,
        observer: StreamObserver | None = None,
    ):
        """
        Initialize the runner.

        Args:
            oracle: Backend answering the pass prompts
            pass_delay_seconds: Cooldown between consecutive passes
            max_issues: Cap on extracted issues per pass
            max_recommendations: Cap on extracted recommendations per pass
            observer: Receives streamed text of every pass
        """
        self.oracle = oracle
        self.pass_delay_seconds = pass_delay_seconds
        self.max_issues = max_issues
        self.max_recommendations = max_recommendations
        self.observer = observer

    @classmethod
    def from_config(
        cls,
        oracle: TextOracle,
        config,
        observer: StreamObserver | None = None,
    ) -> "PassRunner":
        return cls(
            oracle,
            pass_delay_seconds=config.pass_delay_seconds,
            max_issues=config.max_issues,
            max_recommendations=config.max_recommendations,
            observer=observer,
        )

    async def analyze_unit(self, unit: ChangeUnit) -> UnitResults:
        """Run every pass over a unit, in fixed order."""
        results: UnitResults = {}

        for index, kind in enumerate(PASS_ORDER):
            if index and self.pass_delay_seconds:
                await asyncio.sleep(self.pass_delay_seconds)
            results[kind] = await self.run_pass(unit, kind)

        logger.info(
            "unit_analyzed",
            unit_id=unit.id,
            path=unit.file_path,
            risk=RiskLevel.highest([r.risk_level for r in results.values()]).value,
            degraded=sum(1 for r in results.values() if r.degraded),
        )
        return results

    async def run_pass(self, unit: ChangeUnit, kind: PassKind) -> AnalysisPassResult:
        """Run one pass. Oracle failures come back as a degraded result."""
        prompt = build_pass_prompt(kind, unit)
        start_time = time.time()

        try:
            response = await call_oracle(self.oracle, prompt, self.observer)
        except OracleError as e:
            logger.warning(
                "pass_failed",
                unit_id=unit.id,
                pass_kind=kind.value,
                error=str(e),
            )
            return self._degraded_result(unit, kind, e)

        verdict = parse_verdict(response, self.max_issues, self.max_recommendations)
        duration_ms = int((time.time() - start_time) * 1000)

        logger.debug(
            "pass_completed",
            unit_id=unit.id,
            pass_kind=kind.value,
            risk=verdict.risk_level.value,
            issues=len(verdict.issues),
            duration_ms=duration_ms,
        )

        return AnalysisPassResult(
            id=str(uuid.uuid4()),
            unit_id=unit.id,
            pass_kind=kind,
            analysis=response,
            risk_level=verdict.risk_level,
            issues=verdict.issues,
            recommendations=verdict.recommendations,
            tokens_used=math.ceil(len(prompt) / 4) + math.ceil(len(response) / 4),
            duration_ms=duration_ms,
        )

    def _degraded_result(
        self, unit: ChangeUnit, kind: PassKind, error: Exception
    ) -> AnalysisPassResult:
        return AnalysisPassResult(
            id=str(uuid.uuid4()),
            unit_id=unit.id,
            pass_kind=kind,
            analysis=f"Error during {kind.value} analysis: {error}",
            risk_level=RiskLevel.LOW,
            issues=(f"Analysis failed: {error}",),
            recommendations=(),
            degraded=True,
        )
