"""
Pipeline state.

One record threaded through every scheduler stage. Stages never mutate
it: each returns a partial update, and merge() folds that update in
using the reducer declared on each field.
"""

from dataclasses import dataclass, field, fields, replace as dc_replace
from typing import Any, Callable

import structlog

from .models import (
    ChangeContext,
    ChangeUnit,
    FileResult,
    SynthesisData,
    UnitResults,
)

logger = structlog.get_logger(__name__)

Reducer = Callable[[Any, Any], Any]


def replace_latest(existing: Any, update: Any) -> Any:
    return update


def merge_maps(existing: dict | None, update: dict | None) -> dict:
    """Union of two maps; the update wins on shared keys."""
    return {**(existing or {}), **(update or {})}


def merge_additive(existing: dict | None, update: dict | None) -> dict:
    """Union of two maps; entries already present are never replaced."""
    merged = dict(existing or {})
    for key, value in (update or {}).items():
        if key in merged:
            logger.warning("state_key_collision", key=key)
            continue
        merged[key] = value
    return merged


def channel(reducer: Reducer = replace_latest, **kwargs: Any) -> Any:
    """Declare a state field together with its reducer."""
    return field(metadata={"reducer": reducer}, **kwargs)


def new_progress() -> dict[str, int]:
    return {
        "total_files": 0,
        "completed_files": 0,
        "total_chunks": 0,
        "completed_chunks": 0,
        "total_passes": 0,
        "completed_passes": 0,
    }


@dataclass(frozen=True)
class PipelineState:
    """Everything a review has accumulated so far."""

    # Identification
    change_ref: str = channel(default="")
    task_id: str = channel(default="")

    # Context
    change_details: dict[str, Any] | None = channel(default=None)
    change_context: ChangeContext | None = channel(default=None)

    # File queue
    all_changed_files: list[str] = channel(default_factory=list)
    filtered_files: list[str] = channel(default_factory=list)
    files_to_process: list[str] = channel(default_factory=list)
    current_file: str | None = channel(default=None)

    # Fetched once in filter_files
    full_diff: str | None = channel(default=None)

    # Unit queue
    file_units: dict[str, list[ChangeUnit]] = channel(merge_additive, default_factory=dict)
    current_units: list[ChangeUnit] = channel(default_factory=list)
    units_to_process: list[ChangeUnit] = channel(default_factory=list)
    current_unit: ChangeUnit | None = channel(default=None)

    # Results
    unit_results: dict[str, UnitResults] = channel(merge_additive, default_factory=dict)
    file_results: dict[str, FileResult] = channel(merge_additive, default_factory=dict)

    # Final synthesis
    synthesis: SynthesisData | None = channel(default=None)
    final_report: str | None = channel(default=None)

    progress: dict[str, int] = channel(merge_maps, default_factory=new_progress)

    def merge(self, update: dict[str, Any] | None) -> "PipelineState":
        """Return a new state with a stage's partial update folded in.

        Raises:
            KeyError: If the update names a field the state doesn't have
        """
        if not update:
            return self

        reducers = {f.name: f.metadata["reducer"] for f in fields(self)}
        changes: dict[str, Any] = {}
        for key, value in update.items():
            if key not in reducers:
                raise KeyError(f"Unknown pipeline state field: {key}")
            changes[key] = reducers[key](getattr(self, key), value)

        return dc_replace(self, **changes)

    def snapshot(self) -> dict[str, Any]:
        """Serializable summary used for checkpoints."""
        return {
            "change_ref": self.change_ref,
            "task_id": self.task_id,
            "filtered_files": list(self.filtered_files),
            "files_to_process": list(self.files_to_process),
            "current_file": self.current_file,
            "current_unit": self.current_unit.to_dict() if self.current_unit else None,
            "units_to_process": [u.id for u in self.units_to_process],
            "file_units": {
                path: [u.id for u in units] for path, units in self.file_units.items()
            },
            "unit_results": {
                unit_id: {kind.value: r.to_dict() for kind, r in results.items()}
                for unit_id, results in self.unit_results.items()
            },
            "file_results": {
                path: result.to_dict() for path, result in self.file_results.items()
            },
            "progress": dict(self.progress),
            "final_report": self.final_report,
        }
