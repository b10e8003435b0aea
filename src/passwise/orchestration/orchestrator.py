"""
Multi-Model Orchestrator

Runs per-dimension agents concurrently, cross-validates them, builds a
consensus and then refines it with self-critique and targeted deep
dives. Agent failures never abort the batch.
"""

import asyncio
import json

import structlog
from pydantic import ValidationError

from ..config import ReviewConfig
from ..review.errors import OracleError
from ..review.oracle import StreamObserver, TextOracle, call_oracle
from ..review.verdict import BULLET_PATTERN
from .agents import AnalysisAgent, ReviewContext, default_agents, parse_structured
from .consensus import ConsensusBuilder, sort_recommendations
from .cross_validator import CrossValidator
from .models import (
    ConsensusResult,
    ImprovementArea,
    MultiModelAnalysisResult,
    RefinedAnalysisResult,
    RefinementIteration,
    SelfCritique,
    SpecializedAnalysis,
)

logger = structlog.get_logger(__name__)

LOW_CONFIDENCE = 0.7
DEEP_DIVE_CONFIDENCE = 0.8
HIGH_PRIORITY_WORDS = ("critical", "security", "missing", "incorrect", "vulnerab")


class MultiModelOrchestrator:
    """Coordinate agents, consensus and refinement for one change."""

    def __init__(
        self,
        oracle: TextOracle,
        config: ReviewConfig | None = None,
        agents: list[AnalysisAgent] | None = None,
        observer: StreamObserver | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            oracle: Backend for critiques and deep dives (and default agents)
            config: Iteration cap, convergence threshold, overlap threshold
            agents: Agents used when conduct_analysis() gets none
            observer: Receives streamed critique and deep-dive text
        """
        self.oracle = oracle
        self.config = config or ReviewConfig()
        self.observer = observer
        self.agents = agents or default_agents([oracle], self.config.agent_models)
        self.cross_validator = CrossValidator(self.config.word_overlap_threshold)
        self.consensus_builder = ConsensusBuilder()

    # =========================================================================
    # Analysis
    # =========================================================================

    async def conduct_analysis(
        self,
        context: ReviewContext,
        agents: list[AnalysisAgent] | None = None,
    ) -> MultiModelAnalysisResult:
        """
        Run every agent and build a consensus.

        Never raises on agent failure: a failing agent contributes an
        empty result with its error recorded.
        """
        agents = agents if agents is not None else self.agents
        log = logger.bind(change_ref=context.change_ref)
        log.info("analysis_started", agents=[a.agent_type for a in agents])

        outcomes = await asyncio.gather(
            *[agent.analyze(context) for agent in agents],
            return_exceptions=True,
        )

        results: list[SpecializedAnalysis] = []
        for agent, outcome in zip(agents, outcomes):
            if isinstance(outcome, SpecializedAnalysis):
                results.append(outcome)
                continue
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            log.warning("agent_failed", agent=agent.agent_type, error=str(outcome))
            results.append(
                SpecializedAnalysis(
                    agent_type=agent.agent_type,
                    model_used=agent.model_name,
                    error=str(outcome) or type(outcome).__name__,
                )
            )

        warnings = self._validate(results)
        validation = self.cross_validator.validate(results)
        consensus = self.consensus_builder.build(results, validation)

        confidence_scores = {r.agent_type: r.confidence for r in results}
        confidence_scores["consensus"] = consensus.confidence

        log.info(
            "analysis_completed",
            failed=sum(1 for r in results if r.failed),
            findings=len(consensus.findings),
            confidence=round(consensus.confidence, 3),
        )
        return MultiModelAnalysisResult(
            agent_results=results,
            cross_validation=validation,
            consensus=consensus,
            confidence_scores=confidence_scores,
            validation_warnings=warnings,
        )

    def _validate(self, results: list[SpecializedAnalysis]) -> list[str]:
        """Flag results that are unusable or lack locations."""
        warnings: list[str] = []
        for result in results:
            if result.failed:
                warnings.append(f"{result.agent_type}: agent failed ({result.error})")
                continue
            for finding in result.findings:
                if not finding.file:
                    warnings.append(
                        f"{result.agent_type}: finding '{finding.message[:40]}' "
                        "has no file location"
                    )
        return warnings

    # =========================================================================
    # Refinement
    # =========================================================================

    async def iterative_refinement(
        self,
        initial: MultiModelAnalysisResult,
        context: ReviewContext,
        max_iterations: int | None = None,
    ) -> RefinedAnalysisResult:
        """
        Critique and deepen the consensus until it converges.

        Each iteration critiques the consensus, deep-dives into every
        high-priority area and merges what is new. Convergence is a
        coarse signal: 0.9 once the consensus has both findings and
        recommendations, 0.1 otherwise.
        """
        if max_iterations is None:
            max_iterations = self.config.max_iterations
        consensus = initial.consensus
        history: list[RefinementIteration] = []

        for iteration in range(1, max_iterations + 1):
            critique = await self.generate_self_critique(consensus, context)
            areas = self.identify_deep_dive_areas(critique, consensus)

            new_findings = new_recommendations = 0
            for area in areas:
                added = await self._deep_dive(area, consensus, context)
                new_findings += added[0]
                new_recommendations += added[1]

            consensus.confidence = min(max(consensus.confidence, critique.confidence), 1.0)
            convergence = self.calculate_convergence(consensus)
            history.append(
                RefinementIteration(
                    iteration=iteration,
                    critique=critique,
                    areas=areas,
                    new_findings=new_findings,
                    new_recommendations=new_recommendations,
                    convergence_score=convergence,
                )
            )
            logger.info(
                "refinement_iteration",
                iteration=iteration,
                areas=len(areas),
                new_findings=new_findings,
                convergence=convergence,
            )

            if not areas or convergence >= self.config.convergence_threshold:
                break

        initial.confidence_scores["consensus"] = consensus.confidence
        final_recommendations = sort_recommendations(consensus.recommendations)[
            : self.config.final_recommendation_cap
        ]
        return RefinedAnalysisResult(
            final_results=initial,
            history=history,
            final_recommendations=final_recommendations,
        )

    async def generate_self_critique(
        self, consensus: ConsensusResult, context: ReviewContext
    ) -> SelfCritique:
        """Ask the oracle to critique the consensus; never raises."""
        prompt = self._critique_prompt(consensus, context)
        try:
            response = await call_oracle(self.oracle, prompt, self.observer)
        except OracleError as e:
            logger.warning("self_critique_failed", error=str(e))
            return SelfCritique(
                weaknesses=[f"Self-critique unavailable: {e}"],
                improvement_areas=[
                    ImprovementArea(
                        area="general",
                        priority="medium",
                        description="Self-critique could not be generated",
                    )
                ],
                confidence=0.6,
            )
        return parse_critique(response)

    def identify_deep_dive_areas(
        self, critique: SelfCritique, consensus: ConsensusResult
    ) -> list[ImprovementArea]:
        areas = [a for a in critique.improvement_areas if a.priority == "high"]
        if consensus.confidence < LOW_CONFIDENCE:
            areas.append(
                ImprovementArea(
                    area="confidence",
                    priority="high",
                    description="Overall analysis confidence needs improvement",
                )
            )
        return areas

    def calculate_convergence(self, consensus: ConsensusResult) -> float:
        if consensus.findings and consensus.recommendations:
            return 0.9
        return 0.1

    async def _deep_dive(
        self,
        area: ImprovementArea,
        consensus: ConsensusResult,
        context: ReviewContext,
    ) -> tuple[int, int]:
        """One targeted oracle call; merges new items into the consensus."""
        prompt = self._deep_dive_prompt(area, context)
        try:
            response = await call_oracle(self.oracle, prompt, self.observer)
        except OracleError as e:
            logger.warning("deep_dive_failed", area=area.area, error=str(e))
            return 0, 0

        findings, recommendations, _ = parse_structured(response, area.area)

        known_findings = {f.key: f for f in consensus.findings}
        added_findings = 0
        for finding in findings:
            existing = known_findings.get(finding.key)
            if existing is not None:
                existing.confidence = max(existing.confidence, DEEP_DIVE_CONFIDENCE)
                existing.evidence.extend(e for e in finding.evidence if e not in existing.evidence)
                continue
            finding.confidence = DEEP_DIVE_CONFIDENCE
            consensus.findings.append(finding)
            known_findings[finding.key] = finding
            added_findings += 1

        known_recommendations = {r.key for r in consensus.recommendations}
        added_recommendations = 0
        for recommendation in recommendations:
            if recommendation.key in known_recommendations:
                continue
            consensus.recommendations.append(recommendation)
            known_recommendations.add(recommendation.key)
            added_recommendations += 1

        return added_findings, added_recommendations

    def _critique_prompt(self, consensus: ConsensusResult, context: ReviewContext) -> str:
        findings = "\n".join(
            f"- [{f.severity}] {f.file or 'general'}: {f.message}" for f in consensus.findings
        ) or "- none"
        recommendations = "\n".join(
            f"- [{r.priority}] {r.description}" for r in consensus.recommendations
        ) or "- none"
        return f"""TASK: Critique this code review

CHANGE: {context.change_ref} {context.title}
CONSENSUS CONFIDENCE: {consensus.confidence:.2f}

FINDINGS:
{findings}

RECOMMENDATIONS:
{recommendations}

Identify what the review missed or got wrong. Respond with ONLY a JSON object:
{{"strengths": ["..."], "weaknesses": ["..."],
  "improvement_areas": [{{"area": "...", "priority": "low|medium|high", "description": "..."}}],
  "confidence": 0.0}}"""

    def _deep_dive_prompt(self, area: ImprovementArea, context: ReviewContext) -> str:
        diff = context.diff[:16000]
        return f"""TASK: Deep analysis of {area.area}

CONCERN: {area.description or area.area}
CHANGE: {context.change_ref} {context.title}

DIFF:
{diff}

Report only issues related to the concern. Respond with ONLY a JSON object:
{{"findings": [{{"type": "{area.area}", "severity": "low|medium|high|critical",
  "message": "...", "file": "path", "evidence": ["..."]}}],
  "recommendations": [{{"priority": "must-fix|should-fix|consider",
  "category": "{area.area}", "description": "..."}}]}}"""


def parse_critique(text: str) -> SelfCritique:
    """JSON critique, or bullets read as weaknesses when it isn't JSON."""
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        try:
            return SelfCritique.model_validate(json.loads(text[start:end + 1]))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.debug("critique_not_json", error=str(e))

    weaknesses = []
    for line in text.splitlines():
        match = BULLET_PATTERN.match(line.strip())
        if match:
            weaknesses.append(match.group(1))

    areas = [
        ImprovementArea(
            area=weakness[:50],
            priority="high" if any(w in weakness.lower() for w in HIGH_PRIORITY_WORDS) else "medium",
            description=weakness,
        )
        for weakness in weaknesses
    ]
    return SelfCritique(weaknesses=weaknesses, improvement_areas=areas)
