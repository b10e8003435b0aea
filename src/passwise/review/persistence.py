"""Storage for units, pass results and pipeline checkpoints."""

from typing import Any, Protocol

from .models import AnalysisPassResult, ChangeUnit


class ReviewStore(Protocol):
    """Protocol for review storage backends.

    Writes are keyed by change id + unit id; making repeated writes
    idempotent is the backend's job.
    """

    async def save_unit(self, change_id: str, unit: ChangeUnit) -> None:
        """Store a unit right after it is created.

        Args:
            change_id: Task id of the review
            unit: Unit produced by the chunker
        """
        ...

    async def save_pass_result(
        self, change_id: str, result: AnalysisPassResult
    ) -> None:
        """Store one pass result.

        Args:
            change_id: Task id of the review
            result: Result keyed by its unit id and pass kind
        """
        ...

    async def save_checkpoint(self, change_id: str, snapshot: dict[str, Any]) -> None:
        """Store the last good pipeline state before a run aborts."""
        ...


class InMemoryReviewStore:
    """In-memory storage backend using dicts."""

    def __init__(self) -> None:
        self.units: dict[tuple[str, str], ChangeUnit] = {}
        self.pass_results: dict[tuple[str, str, str], AnalysisPassResult] = {}
        self.checkpoints: dict[str, dict[str, Any]] = {}

    async def save_unit(self, change_id: str, unit: ChangeUnit) -> None:
        self.units[(change_id, unit.id)] = unit

    async def save_pass_result(
        self, change_id: str, result: AnalysisPassResult
    ) -> None:
        self.pass_results[(change_id, result.unit_id, result.pass_kind.value)] = result

    async def save_checkpoint(self, change_id: str, snapshot: dict[str, Any]) -> None:
        self.checkpoints[change_id] = snapshot

    def units_for(self, change_id: str) -> list[ChangeUnit]:
        """Units stored for a change, in insertion order."""
        return [u for (cid, _), u in self.units.items() if cid == change_id]

    def results_for(self, change_id: str, unit_id: str) -> list[AnalysisPassResult]:
        return [
            r for (cid, uid, _), r in self.pass_results.items()
            if cid == change_id and uid == unit_id
        ]
