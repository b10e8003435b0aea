"""Tests for the analysis pass runner."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from passwise.review.errors import OracleError
from passwise.review.models import ChangeUnit, PassKind, RiskLevel
from passwise.review.passes import PASS_ORDER, PassRunner


@pytest.fixture
def unit() -> ChangeUnit:
    return ChangeUnit(
        id="unit-0001",
        file_path="src/db.ts",
        size_tokens=12,
        diff_content="@@ -1,1 +1,1 @@\n+db.query(`SELECT * FROM t WHERE id=${id}`)",
        start_line=1,
        end_line=1,
        context_before="const db = connect();",
    )


class TestRunPass:
    """Single pass behavior."""

    @pytest.mark.asyncio
    async def test_parses_response(self, unit, risk_responses):
        oracle = MagicMock()
        oracle.complete = AsyncMock(return_value=risk_responses["HIGH"])
        runner = PassRunner(oracle, pass_delay_seconds=0)

        result = await runner.run_pass(unit, PassKind.SECURITY_PERFORMANCE)

        assert result.unit_id == "unit-0001"
        assert result.pass_kind == PassKind.SECURITY_PERFORMANCE
        assert result.risk_level == RiskLevel.HIGH
        assert result.recommendations == ("Use parameterized queries",)
        assert result.analysis == risk_responses["HIGH"]
        assert result.tokens_used > 0
        assert result.degraded is False

    @pytest.mark.asyncio
    async def test_prompt_carries_unit(self, unit, mock_oracle):
        runner = PassRunner(mock_oracle, pass_delay_seconds=0)

        await runner.run_pass(unit, PassKind.SYNTAX_LOGIC)

        prompt = mock_oracle.complete.call_args.args[0]
        assert "FILE: src/db.ts" in prompt
        assert "LINES: 1-1" in prompt
        assert "CONTEXT BEFORE:\nconst db = connect();" in prompt
        assert unit.diff_content in prompt
        assert "Code Quality & Logic Review" in prompt

    @pytest.mark.asyncio
    async def test_observer_is_forwarded(self, unit, mock_oracle):
        observer = MagicMock()
        runner = PassRunner(mock_oracle, pass_delay_seconds=0, observer=observer)

        await runner.run_pass(unit, PassKind.TESTING_DOCS)

        assert mock_oracle.complete.call_args.args[1] is observer

    @pytest.mark.asyncio
    async def test_transport_failure_degrades(self, unit, failing_oracle):
        runner = PassRunner(failing_oracle, pass_delay_seconds=0)

        result = await runner.run_pass(unit, PassKind.SYNTAX_LOGIC)

        assert result.degraded is True
        assert result.risk_level == RiskLevel.LOW
        assert len(result.issues) == 1
        assert result.issues[0].startswith("Analysis failed:")
        assert "connection refused" in result.issues[0]
        assert result.recommendations == ()

    @pytest.mark.asyncio
    async def test_empty_response_degrades(self, unit):
        oracle = MagicMock()
        oracle.complete = AsyncMock(return_value="   ")
        runner = PassRunner(oracle, pass_delay_seconds=0)

        result = await runner.run_pass(unit, PassKind.SYNTAX_LOGIC)

        assert result.degraded is True

    @pytest.mark.asyncio
    async def test_oracle_error_degrades(self, unit):
        oracle = MagicMock()
        oracle.complete = AsyncMock(side_effect=OracleError("rate limited"))
        runner = PassRunner(oracle, pass_delay_seconds=0)

        result = await runner.run_pass(unit, PassKind.ARCHITECTURE_DESIGN)

        assert result.degraded is True
        assert "rate limited" in result.issues[0]


class TestAnalyzeUnit:
    """All four passes over one unit."""

    @pytest.mark.asyncio
    async def test_runs_four_passes_in_order(self, unit, mock_oracle):
        runner = PassRunner(mock_oracle, pass_delay_seconds=0)

        results = await runner.analyze_unit(unit)

        assert list(results) == list(PASS_ORDER)
        assert len(results) == 4
        assert mock_oracle.complete.await_count == 4

    @pytest.mark.asyncio
    async def test_one_failing_pass_is_isolated(self, unit, risk_responses):
        oracle = MagicMock()
        oracle.complete = AsyncMock(
            side_effect=[
                risk_responses["LOW"],
                TimeoutError("read timeout"),
                risk_responses["MEDIUM"],
                risk_responses["LOW"],
            ]
        )
        runner = PassRunner(oracle, pass_delay_seconds=0)

        results = await runner.analyze_unit(unit)

        assert results[PassKind.SECURITY_PERFORMANCE].degraded is True
        assert results[PassKind.ARCHITECTURE_DESIGN].risk_level == RiskLevel.MEDIUM
        assert not results[PassKind.TESTING_DOCS].degraded

    @pytest.mark.asyncio
    async def test_cooldown_between_passes_only(self, unit, mock_oracle):
        runner = PassRunner(mock_oracle, pass_delay_seconds=1.0)

        with patch("passwise.review.passes.asyncio.sleep", new=AsyncMock()) as sleep:
            await runner.analyze_unit(unit)

        assert sleep.await_count == 3
        sleep.assert_awaited_with(1.0)


def test_from_config(mock_oracle, test_config):
    runner = PassRunner.from_config(mock_oracle, test_config)
    assert runner.pass_delay_seconds == 0.0
    assert runner.max_issues == 10
