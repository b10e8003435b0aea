"""
Review Scheduler

Stage machine that walks one change end to end:

    establish_context -> filter_files -> setup_file_chunks -> analyze_chunk*
        -> synthesize_file -> (next file | final_synthesis)

Both queues are strict FIFO. A file's units are all created before any
of them is analyzed, and the unit queue drains before the next file is
set up. Every stage returns a partial update that PipelineState.merge()
folds in; nothing else writes the state.
"""

import asyncio
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from ..config import ReviewConfig
from .chunker import DiffChunker
from .diff_source import DiffSource
from .errors import (
    DiffUnavailableError,
    OracleUnavailableError,
    StageFailedError,
    StepLimitExceededError,
)
from .events import EventBus, EventType, PipelineEvent
from .file_filter import FileFilter
from .models import ChangeContext, ReviewOutcome
from .oracle import StreamObserver, TextOracle
from .passes import PassRunner
from .persistence import InMemoryReviewStore, ReviewStore
from .state import PipelineState
from .synthesis import Synthesizer

logger = structlog.get_logger(__name__)


class Stage(str, Enum):
    """Scheduler stages."""

    ESTABLISH_CONTEXT = "establish_context"
    FILTER_FILES = "filter_files"
    SETUP_FILE_CHUNKS = "setup_file_chunks"
    ANALYZE_CHUNK = "analyze_chunk"
    SYNTHESIZE_FILE = "synthesize_file"
    FINAL_SYNTHESIS = "final_synthesis"


StageHandler = Callable[[PipelineState], Awaitable[dict[str, Any]]]


class ReviewScheduler:
    """
    Runs the staged review of a change.

    Collaborators default to the ones built from config, and can be
    swapped for tests or other backends.
    """

    def __init__(
        self,
        diff_source: DiffSource,
        oracle: TextOracle,
        config: ReviewConfig | None = None,
        store: ReviewStore | None = None,
        event_bus: EventBus | None = None,
        observer: StreamObserver | None = None,
        chunker: DiffChunker | None = None,
        file_filter: FileFilter | None = None,
        pass_runner: PassRunner | None = None,
        synthesizer: Synthesizer | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            diff_source: Where change metadata and diffs come from
            oracle: Text-completion backend for passes and synthesis
            config: Pipeline configuration
            store: Receives units, pass results and failure checkpoints
            event_bus: Receives progress events
            observer: Receives streamed oracle text
        """
        self.config = config or ReviewConfig()
        self.diff_source = diff_source
        self.store = store or InMemoryReviewStore()
        self.events = event_bus or EventBus()

        self.chunker = chunker or DiffChunker.from_config(self.config)
        self.file_filter = file_filter or FileFilter.from_config(self.config)
        self.pass_runner = pass_runner or PassRunner.from_config(
            oracle, self.config, observer
        )
        self.synthesizer = synthesizer or Synthesizer(
            oracle, observer, self.config.file_recommendation_cap
        )

        self._handlers: dict[Stage, StageHandler] = {
            Stage.ESTABLISH_CONTEXT: self.establish_context,
            Stage.FILTER_FILES: self.filter_files,
            Stage.SETUP_FILE_CHUNKS: self.setup_file_chunks,
            Stage.ANALYZE_CHUNK: self.analyze_chunk,
            Stage.SYNTHESIZE_FILE: self.synthesize_file,
            Stage.FINAL_SYNTHESIS: self.final_synthesis,
        }

        self.last_state: PipelineState | None = None
        self._step = 0

    async def run(self, change_ref: str, task_id: str | None = None) -> ReviewOutcome:
        """
        Review one change.

        Args:
            change_ref: Reference understood by the diff source
            task_id: Key for persisted records (generated when omitted)

        Returns:
            Decision, report and per-file results

        Raises:
            StepLimitExceededError: Step ceiling reached; partial state attached
            StageFailedError: A stage crashed; partial state attached
            OracleUnavailableError: No pass reached the oracle
        """
        state = PipelineState(change_ref=change_ref, task_id=task_id or str(uuid.uuid4()))
        stage = Stage.ESTABLISH_CONTEXT
        trace: list[str] = []
        self._step = 0

        log = logger.bind(change_ref=change_ref, task_id=state.task_id)
        log.info("review_started", max_steps=self.config.max_steps)
        await self._emit(EventType.REVIEW_STARTED, state)

        while True:
            if self._step >= self.config.max_steps:
                log.error("step_limit_exceeded", steps=self._step, next_stage=stage.value)
                await self._abort(state, EventType.STEP_LIMIT_EXCEEDED, stage)
                raise StepLimitExceededError(
                    f"Step limit of {self.config.max_steps} reached before {stage.value}",
                    state=state,
                    stage=stage.value,
                    stage_trace=trace,
                )

            self._step += 1
            trace.append(stage.value)

            try:
                update = await self._handlers[stage](state)
            except Exception as e:
                log.error("stage_failed", stage=stage.value, error=str(e))
                await self._abort(state, EventType.STAGE_FAILED, stage, error=str(e))
                raise StageFailedError(
                    f"Stage {stage.value} failed: {e}",
                    state=state,
                    stage=stage.value,
                    stage_trace=trace,
                ) from e

            state = state.merge(update)
            self.last_state = state

            if stage is Stage.FINAL_SYNTHESIS:
                break
            stage = self._route(stage, state)

        self._check_oracle_reachable(state, trace)

        synthesis = state.synthesis
        log.info(
            "review_completed",
            decision=synthesis.decision.value,
            files=len(state.file_results),
            steps=self._step,
        )
        return ReviewOutcome(
            change_ref=change_ref,
            decision=synthesis.decision,
            report=state.final_report or "",
            file_results=dict(state.file_results),
            synthesis=synthesis,
            stage_trace=trace,
        )

    def _route(self, stage: Stage, state: PipelineState) -> Stage:
        """Pick the stage that follows a completed one."""
        if stage is Stage.ESTABLISH_CONTEXT:
            return Stage.FILTER_FILES
        if stage in (Stage.FILTER_FILES, Stage.SYNTHESIZE_FILE):
            return Stage.SETUP_FILE_CHUNKS if state.files_to_process else Stage.FINAL_SYNTHESIS
        if stage in (Stage.SETUP_FILE_CHUNKS, Stage.ANALYZE_CHUNK):
            return Stage.ANALYZE_CHUNK if state.units_to_process else Stage.SYNTHESIZE_FILE
        raise ValueError(f"No route out of {stage.value}")

    # =========================================================================
    # Stages
    # =========================================================================

    async def establish_context(self, state: PipelineState) -> dict[str, Any]:
        details = await self.diff_source.fetch_change_details(state.change_ref)
        context = ChangeContext(
            change_ref=state.change_ref,
            repo_name=details.get("repo_name") or "unknown",
            title=details.get("title", ""),
            author=details.get("author", ""),
            source_branch=details.get("source_branch", ""),
            target_branch=details.get("target_branch", ""),
            description=details.get("body") or "No description provided",
        )
        logger.info("context_established", repo=context.repo_name, title=context.title)
        return {"change_details": details, "change_context": context}

    async def filter_files(self, state: PipelineState) -> dict[str, Any]:
        # both fetches finish before either failure is raised
        fetched = await asyncio.gather(
            self.diff_source.fetch_changed_files(state.change_ref),
            self.diff_source.fetch_full_diff(state.change_ref),
            return_exceptions=True,
        )
        for outcome in fetched:
            if isinstance(outcome, BaseException):
                raise outcome
        changed_files, full_diff = fetched
        if not full_diff:
            raise DiffUnavailableError(f"Could not fetch diff for {state.change_ref}")

        all_files = list(dict.fromkeys(changed_files))
        if len(all_files) < len(changed_files):
            logger.warning(
                "duplicate_paths_dropped", count=len(changed_files) - len(all_files)
            )
        filtered = self.file_filter.filter_files(all_files)
        complexity = self.file_filter.estimate_complexity(filtered)
        logger.info(
            "complexity_estimated",
            files=complexity.total_files,
            chunks=complexity.estimated_chunks,
            passes=complexity.estimated_passes,
            minutes=complexity.estimated_minutes,
        )

        context = state.change_context or ChangeContext(change_ref=state.change_ref)
        context = ChangeContext(**{**vars(context), "file_count": len(filtered)})

        return {
            "all_changed_files": list(all_files),
            "filtered_files": filtered,
            "files_to_process": list(filtered),
            "full_diff": full_diff,
            "change_context": context,
            "progress": {
                "total_files": len(filtered),
                "total_chunks": complexity.estimated_chunks,
                "total_passes": complexity.estimated_passes,
            },
        }

    async def setup_file_chunks(self, state: PipelineState) -> dict[str, Any]:
        current_file, remaining = state.files_to_process[0], state.files_to_process[1:]
        await self._emit(EventType.FILE_STARTED, state, path=current_file)

        diff = self.diff_source.extract_file_slice(state.full_diff or "", current_file)
        if diff is None:
            logger.warning("file_diff_missing", path=current_file)
            return {
                "current_file": current_file,
                "files_to_process": remaining,
                "current_units": [],
                "units_to_process": [],
            }

        units = self.chunker.chunk(current_file, diff)
        for unit in units:
            await self.store.save_unit(state.task_id, unit)

        return {
            "current_file": current_file,
            "files_to_process": remaining,
            "file_units": {current_file: units},
            "current_units": units,
            "units_to_process": list(units),
        }

    async def analyze_chunk(self, state: PipelineState) -> dict[str, Any]:
        unit, remaining = state.units_to_process[0], state.units_to_process[1:]

        results = await self.pass_runner.analyze_unit(unit)
        for result in results.values():
            await self.store.save_pass_result(state.task_id, result)

        progress = {
            "completed_chunks": state.progress["completed_chunks"] + 1,
            "completed_passes": state.progress["completed_passes"] + len(results),
        }
        await self._emit(
            EventType.CHUNK_ANALYZED,
            state,
            path=unit.file_path,
            unit_id=unit.id,
            degraded=sum(1 for r in results.values() if r.degraded),
            **progress,
        )

        return {
            "current_unit": unit,
            "units_to_process": remaining,
            "unit_results": {unit.id: results},
            "progress": progress,
        }

    async def synthesize_file(self, state: PipelineState) -> dict[str, Any]:
        current_file = state.current_file
        progress = {"completed_files": state.progress["completed_files"] + 1}

        if not state.current_units:
            logger.info("file_skipped", path=current_file, reason="no units")
            return {"progress": progress}

        unit_results = {
            unit.id: state.unit_results[unit.id]
            for unit in state.current_units
            if unit.id in state.unit_results
        }
        file_result = await self.synthesizer.synthesize_file(
            current_file, unit_results, expected_units=len(state.current_units)
        )
        await self._emit(
            EventType.FILE_SYNTHESIZED,
            state,
            path=current_file,
            risk=file_result.overall_risk.value,
            issues=file_result.total_issues,
        )
        return {"file_results": {current_file: file_result}, "progress": progress}

    async def final_synthesis(self, state: PipelineState) -> dict[str, Any]:
        synthesis, report = await self.synthesizer.final_synthesis(
            state.change_context, state.file_results, len(state.unit_results)
        )
        await self._emit(
            EventType.FINAL_SYNTHESIS,
            state,
            decision=synthesis.decision.value,
            files=len(state.file_results),
        )
        return {"synthesis": synthesis, "final_report": report}

    # =========================================================================
    # Failure handling
    # =========================================================================

    def _check_oracle_reachable(self, state: PipelineState, trace: list[str]) -> None:
        """Fail the run when passes ran and every one of them degraded."""
        passes = [r for results in state.unit_results.values() for r in results.values()]
        if passes and all(r.degraded for r in passes):
            logger.error("oracle_unavailable", passes=len(passes))
            raise OracleUnavailableError(
                f"All {len(passes)} passes failed to reach the oracle",
                state=state,
                stage=Stage.FINAL_SYNTHESIS.value,
                stage_trace=trace,
            )

    async def _abort(
        self, state: PipelineState, event_type: EventType, stage: Stage, **data: Any
    ) -> None:
        """Persist the last good state and announce the abort."""
        await self.store.save_checkpoint(state.task_id, state.snapshot())
        await self._emit(event_type, state, stage=stage.value, **data)

    async def _emit(self, event_type: EventType, state: PipelineState, **data: Any) -> None:
        await self.events.emit(
            PipelineEvent(
                event_type=event_type,
                change_ref=state.change_ref,
                data=data,
                step=self._step,
            )
        )


async def review_change(
    change_ref: str,
    diff_source: DiffSource,
    oracle: TextOracle,
    config: ReviewConfig | None = None,
    **kwargs: Any,
) -> ReviewOutcome:
    """Convenience wrapper: build a scheduler and run it once."""
    scheduler = ReviewScheduler(diff_source, oracle, config=config, **kwargs)
    return await scheduler.run(change_ref)
