"""
Tests for the review scheduler.

Drive whole reviews through StaticDiffSource and mock oracles, checking
stage order, failure isolation and the abort paths.
"""

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from passwise.config import ReviewConfig
from passwise.review.diff_source import StaticDiffSource
from passwise.review.errors import (
    DiffUnavailableError,
    OracleUnavailableError,
    StageFailedError,
    StepLimitExceededError,
)
from passwise.review.events import EventType
from passwise.review.models import Decision, RiskLevel
from passwise.review.scheduler import ReviewScheduler, Stage, review_change


def replace_config(**changes) -> ReviewConfig:
    return replace(ReviewConfig(pass_delay_seconds=0.0), **changes)


def oracle_returning(text: str) -> MagicMock:
    oracle = MagicMock()
    oracle.complete = AsyncMock(return_value=text)
    return oracle


@pytest.fixture
def large_diff(diff_factory) -> str:
    """One file with 20 hunks, far above a 200 token budget."""
    hunks = [
        [f" context line {i} that stays the same"]
        + [f"+added line {i}.{j} with a fair amount of text" for j in range(8)]
        for i in range(20)
    ]
    return diff_factory("src/big.ts", hunks)


# =============================================================================
# HAPPY PATH
# =============================================================================

class TestRun:
    """End-to-end runs."""

    @pytest.mark.asyncio
    async def test_small_diff_single_unit(self, small_diff, mock_oracle, test_config):
        scheduler = ReviewScheduler(StaticDiffSource(small_diff), mock_oracle, test_config)

        outcome = await scheduler.run("HEAD")

        assert outcome.decision == Decision.APPROVE
        assert outcome.files_reviewed == 1
        result = outcome.file_results["src/app.ts"]
        assert result.chunk_count == 1
        assert len(next(iter(result.unit_results.values()))) == 4
        assert outcome.stage_trace == [
            "establish_context",
            "filter_files",
            "setup_file_chunks",
            "analyze_chunk",
            "synthesize_file",
            "final_synthesis",
        ]
        # 4 passes + file narrative + final report
        assert mock_oracle.complete.await_count == 6

    @pytest.mark.asyncio
    async def test_stage_counts_follow_files_and_units(
        self, large_diff, small_diff, mock_oracle
    ):
        config = replace_config(max_chunk_tokens=200)
        source = StaticDiffSource(large_diff + small_diff)
        scheduler = ReviewScheduler(source, mock_oracle, config)

        outcome = await scheduler.run("HEAD")

        units = len(outcome.file_results["src/big.ts"].unit_results) + 1
        assert units > 2
        assert outcome.stage_trace.count(Stage.SETUP_FILE_CHUNKS.value) == 2
        assert outcome.stage_trace.count(Stage.SYNTHESIZE_FILE.value) == 2
        assert outcome.stage_trace.count(Stage.ANALYZE_CHUNK.value) == units
        assert len(outcome.stage_trace) == 2 + 2 * 2 + units + 1

    @pytest.mark.asyncio
    async def test_units_of_a_file_run_before_next_file(
        self, large_diff, small_diff, mock_oracle
    ):
        config = replace_config(max_chunk_tokens=200)
        scheduler = ReviewScheduler(
            StaticDiffSource(large_diff + small_diff), mock_oracle, config
        )
        seen: list[str] = []

        async def record(event):
            if event.event_type == EventType.CHUNK_ANALYZED:
                seen.append(event.data["path"])

        scheduler.events.subscribe(record)
        await scheduler.run("HEAD")

        assert seen[-1] == "src/app.ts"
        assert set(seen[:-1]) == {"src/big.ts"}

    @pytest.mark.asyncio
    async def test_filtered_files_are_skipped(
        self, diff_factory, small_diff, mock_oracle, test_config
    ):
        diff = small_diff + diff_factory("README.md", [["+docs"]])
        scheduler = ReviewScheduler(StaticDiffSource(diff), mock_oracle, test_config)

        outcome = await scheduler.run("HEAD")

        assert list(outcome.file_results) == ["src/app.ts"]
        assert scheduler.last_state.all_changed_files == ["src/app.ts", "README.md"]

    @pytest.mark.asyncio
    async def test_duplicate_paths_reviewed_once(self, small_diff, mock_oracle, test_config):
        source = StaticDiffSource(small_diff, files=["src/app.ts", "src/app.ts"])
        scheduler = ReviewScheduler(source, mock_oracle, test_config)

        outcome = await scheduler.run("HEAD")

        assert outcome.stage_trace.count(Stage.SETUP_FILE_CHUNKS.value) == 1
        assert list(outcome.file_results) == ["src/app.ts"]
        assert scheduler.last_state.all_changed_files == ["src/app.ts"]
        assert scheduler.last_state.progress["total_files"] == 1
        assert scheduler.last_state.progress["completed_files"] == 1

    @pytest.mark.asyncio
    async def test_nothing_to_review(self, diff_factory, mock_oracle, test_config):
        diff = diff_factory("README.md", [["+docs"]])
        scheduler = ReviewScheduler(StaticDiffSource(diff), mock_oracle, test_config)

        outcome = await scheduler.run("HEAD")

        assert outcome.decision == Decision.APPROVE
        assert outcome.file_results == {}
        assert outcome.stage_trace == ["establish_context", "filter_files", "final_synthesis"]
        mock_oracle.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_file_without_slice_has_no_result(self, small_diff, mock_oracle, test_config):
        source = StaticDiffSource(small_diff, files=["src/app.ts", "src/ghost.ts"])
        scheduler = ReviewScheduler(source, mock_oracle, test_config)

        outcome = await scheduler.run("HEAD")

        assert list(outcome.file_results) == ["src/app.ts"]
        assert scheduler.last_state.progress["completed_files"] == 2

    @pytest.mark.asyncio
    async def test_context_from_details(self, small_diff, mock_oracle, test_config):
        source = StaticDiffSource(small_diff, details={"title": "Add b", "repo_name": "shop"})
        scheduler = ReviewScheduler(source, mock_oracle, test_config)

        await scheduler.run("HEAD")

        context = scheduler.last_state.change_context
        assert context.title == "Add b"
        assert context.repo_name == "shop"
        assert context.description == "No description provided"
        assert context.file_count == 1


# =============================================================================
# DECISIONS
# =============================================================================

class TestDecisions:
    """Risk flowing through to the verdict."""

    @pytest.mark.asyncio
    async def test_high_risk_single_file_rejects(self, small_diff, risk_responses, test_config):
        oracle = oracle_returning(risk_responses["HIGH"])
        scheduler = ReviewScheduler(StaticDiffSource(small_diff), oracle, test_config)

        outcome = await scheduler.run("HEAD")

        assert outcome.decision == Decision.REJECT
        assert outcome.file_results["src/app.ts"].overall_risk == RiskLevel.HIGH
        assert outcome.synthesis.critical_issues

    @pytest.mark.asyncio
    async def test_medium_risk_requests_changes(self, small_diff, risk_responses, test_config):
        oracle = oracle_returning(risk_responses["MEDIUM"])
        scheduler = ReviewScheduler(StaticDiffSource(small_diff), oracle, test_config)

        outcome = await scheduler.run("HEAD")

        assert outcome.decision == Decision.REQUEST_CHANGES


# =============================================================================
# FAILURES
# =============================================================================

class TestFailures:
    """Isolation and abort paths."""

    @pytest.mark.asyncio
    async def test_one_failed_pass_still_completes(
        self, small_diff, risk_responses, test_config
    ):
        calls = {"n": 0}

        async def complete(prompt, observer=None):
            calls["n"] += 1
            if calls["n"] == 1:
                raise TimeoutError("read timeout")
            return risk_responses["LOW"]

        oracle = MagicMock()
        oracle.complete = complete
        scheduler = ReviewScheduler(StaticDiffSource(small_diff), oracle, test_config)

        outcome = await scheduler.run("HEAD")

        assert outcome.stage_trace[-1] == "final_synthesis"
        assert outcome.file_results["src/app.ts"].degraded_passes == 1
        assert outcome.synthesis.low_confidence_notes == [
            "src/app.ts: 1 of 4 passes failed, findings are low confidence"
        ]

    @pytest.mark.asyncio
    async def test_failed_unit_in_multi_unit_file(self, large_diff, risk_responses):
        calls = {"n": 0}

        async def complete(prompt, observer=None):
            calls["n"] += 1
            # every pass of the second unit
            if 5 <= calls["n"] <= 8:
                raise ConnectionError("connection reset")
            return risk_responses["LOW"]

        oracle = MagicMock()
        oracle.complete = complete
        config = replace_config(max_chunk_tokens=200)
        scheduler = ReviewScheduler(StaticDiffSource(large_diff), oracle, config)

        outcome = await scheduler.run("HEAD")

        units = scheduler.last_state.file_units["src/big.ts"]
        assert len(units) > 2
        assert outcome.stage_trace.count(Stage.ANALYZE_CHUNK.value) == len(units)
        assert outcome.stage_trace[-1] == "final_synthesis"
        assert set(scheduler.last_state.unit_results) == {u.id for u in units}
        second = scheduler.last_state.unit_results[units[1].id]
        assert all(r.degraded for r in second.values())

        result = outcome.file_results["src/big.ts"]
        assert result.chunk_count == len(units)
        assert result.degraded_passes == 4
        assert outcome.synthesis.low_confidence_notes == [
            f"src/big.ts: 4 of {4 * len(units)} passes failed, findings are low confidence"
        ]

    @pytest.mark.asyncio
    async def test_every_pass_failing_raises(self, small_diff, failing_oracle, test_config):
        scheduler = ReviewScheduler(StaticDiffSource(small_diff), failing_oracle, test_config)

        with pytest.raises(OracleUnavailableError) as exc_info:
            await scheduler.run("HEAD")

        error = exc_info.value
        assert error.kind == "oracle_unavailable"
        assert error.state.final_report
        assert "src/app.ts" in error.state.file_results

    @pytest.mark.asyncio
    async def test_step_limit(self, small_diff, mock_oracle):
        config = replace_config(max_steps=3)
        scheduler = ReviewScheduler(StaticDiffSource(small_diff), mock_oracle, config)

        with pytest.raises(StepLimitExceededError) as exc_info:
            await scheduler.run("HEAD", task_id="task-1")

        error = exc_info.value
        assert error.kind == "limit_exceeded"
        assert error.stage == Stage.ANALYZE_CHUNK.value
        assert error.stage_trace == ["establish_context", "filter_files", "setup_file_chunks"]
        assert "src/app.ts" in error.state.file_units
        assert error.state.unit_results == {}

        checkpoint = scheduler.store.checkpoints["task-1"]
        assert checkpoint["file_units"] == {
            "src/app.ts": [u.id for u in error.state.file_units["src/app.ts"]]
        }
        limit_events = scheduler.events.get_recent_events(
            event_types=[EventType.STEP_LIMIT_EXCEEDED]
        )
        assert len(limit_events) == 1

    @pytest.mark.asyncio
    async def test_empty_diff_fails_stage(self, mock_oracle, test_config):
        scheduler = ReviewScheduler(StaticDiffSource(""), mock_oracle, test_config)

        with pytest.raises(StageFailedError) as exc_info:
            await scheduler.run("HEAD", task_id="task-2")

        error = exc_info.value
        assert error.kind == "stage_failed"
        assert error.stage == Stage.FILTER_FILES.value
        assert isinstance(error.__cause__, DiffUnavailableError)
        assert "task-2" in scheduler.store.checkpoints

    @pytest.mark.asyncio
    async def test_source_error_fails_stage(self, mock_oracle, test_config):
        source = MagicMock()
        source.fetch_change_details = AsyncMock(side_effect=RuntimeError("api down"))
        scheduler = ReviewScheduler(source, mock_oracle, test_config)

        with pytest.raises(StageFailedError) as exc_info:
            await scheduler.run("HEAD")

        assert exc_info.value.stage == Stage.ESTABLISH_CONTEXT.value
        assert exc_info.value.state.change_ref == "HEAD"

    @pytest.mark.asyncio
    async def test_failed_file_listing_waits_for_diff_fetch(
        self, small_diff, mock_oracle, test_config
    ):
        source = MagicMock()
        source.fetch_change_details = AsyncMock(return_value={})
        source.fetch_changed_files = AsyncMock(side_effect=RuntimeError("listing failed"))
        source.fetch_full_diff = AsyncMock(return_value=small_diff)
        scheduler = ReviewScheduler(source, mock_oracle, test_config)

        with pytest.raises(StageFailedError) as exc_info:
            await scheduler.run("HEAD")

        assert exc_info.value.stage == Stage.FILTER_FILES.value
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        source.fetch_full_diff.assert_awaited_once_with("HEAD")


# =============================================================================
# SIDE CHANNELS
# =============================================================================

class TestSideChannels:
    """Events and persisted records."""

    @pytest.mark.asyncio
    async def test_events_in_order(self, small_diff, mock_oracle, test_config):
        scheduler = ReviewScheduler(StaticDiffSource(small_diff), mock_oracle, test_config)
        received = []

        async def handler(event):
            received.append(event.event_type)

        scheduler.events.subscribe(handler)
        await scheduler.run("HEAD")

        assert received == [
            EventType.REVIEW_STARTED,
            EventType.FILE_STARTED,
            EventType.CHUNK_ANALYZED,
            EventType.FILE_SYNTHESIZED,
            EventType.FINAL_SYNTHESIS,
        ]

    @pytest.mark.asyncio
    async def test_chunk_event_carries_progress(self, small_diff, mock_oracle, test_config):
        scheduler = ReviewScheduler(StaticDiffSource(small_diff), mock_oracle, test_config)

        await scheduler.run("HEAD")

        (event,) = scheduler.events.get_recent_events(event_types=[EventType.CHUNK_ANALYZED])
        assert event.data["completed_chunks"] == 1
        assert event.data["completed_passes"] == 4
        assert event.data["degraded"] == 0

    @pytest.mark.asyncio
    async def test_store_receives_units_and_results(self, small_diff, mock_oracle, test_config):
        scheduler = ReviewScheduler(StaticDiffSource(small_diff), mock_oracle, test_config)

        await scheduler.run("HEAD", task_id="task-3")

        units = scheduler.store.units_for("task-3")
        assert len(units) == 1
        assert len(scheduler.store.results_for("task-3", units[0].id)) == 4
        assert scheduler.store.checkpoints == {}


@pytest.mark.asyncio
async def test_review_change(small_diff, mock_oracle, test_config):
    outcome = await review_change("HEAD", StaticDiffSource(small_diff), mock_oracle, test_config)

    assert outcome.decision == Decision.APPROVE
    assert outcome.to_dict()["steps"] == 6
