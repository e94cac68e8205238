"""Run registry with pollable, per-run progress snapshots.

Each run has a single writer (the thread executing it). One lock guards the
registry and makes every write atomic with respect to readers, which always
get deep copies.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any

from .models import (
    PHASE_ORDER,
    TERMINAL_PHASE_STATUSES,
    PhaseStatus,
    PipelineRun,
    RunStatus,
    Section,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProgressTracker:
    def __init__(self) -> None:
        self._runs: dict[str, PipelineRun] = {}
        self._lock = threading.Lock()

    def _require(self, run_id: str) -> PipelineRun:
        run = self._runs.get(run_id)
        if run is None:
            raise KeyError(f"Unknown run: {run_id}")
        return run

    def _require_mutable(self, run_id: str) -> PipelineRun:
        run = self._require(run_id)
        if run.is_terminal:
            raise RuntimeError(f"Run {run_id} is {run.status.value} and can no longer change")
        return run

    def start(self, run_id: str, *, filename: str = "", mime_type: str = "") -> PipelineRun:
        """Register a new run in ``created`` state with five pending phases."""
        run = PipelineRun(id=run_id, filename=filename, mime_type=mime_type)
        with self._lock:
            if run_id in self._runs:
                raise ValueError(f"Run {run_id} already exists")
            self._runs[run_id] = run
        logger.debug("Registered run %s", run_id)
        return run.model_copy(deep=True)

    def mark_running(self, run_id: str) -> None:
        with self._lock:
            self._require_mutable(run_id).status = RunStatus.RUNNING

    def update(
        self,
        run_id: str,
        phase_index: int,
        status: PhaseStatus,
        error: str | None = None,
    ) -> None:
        """Move phase *phase_index* to *status*.

        A phase may only start once every earlier phase is terminal.
        """
        if not 0 <= phase_index < len(PHASE_ORDER):
            raise IndexError(f"Phase index out of range: {phase_index}")
        with self._lock:
            run = self._require_mutable(run_id)
            record = run.phases[phase_index]

            if status == PhaseStatus.RUNNING:
                pending = [p.name.value for p in run.phases[:phase_index] if p.status not in TERMINAL_PHASE_STATUSES]
                if pending:
                    raise RuntimeError(f"Cannot start {record.name.value!r} before {pending[0]!r} finishes")
                record.started_at = _now()
            elif status in TERMINAL_PHASE_STATUSES and record.started_at is not None:
                record.duration_ms = round((_now() - record.started_at).total_seconds() * 1000, 3)

            record.status = status
            if error is not None:
                record.error = error

    def skip_remaining(self, run_id: str, from_index: int) -> None:
        with self._lock:
            run = self._require_mutable(run_id)
            for record in run.phases[from_index:]:
                if record.status not in TERMINAL_PHASE_STATUSES:
                    record.status = PhaseStatus.SKIPPED

    def record_sections(self, run_id: str, sections: list[Section]) -> None:
        """Publish sections completed so far (partial results stay queryable)."""
        copies = [s.model_copy(deep=True) for s in sections]
        with self._lock:
            self._require_mutable(run_id).sections = copies

    def set_metadata(self, run_id: str, **values: Any) -> None:
        with self._lock:
            self._require_mutable(run_id).metadata.update(values)

    def finish(self, run_id: str, status: RunStatus, **result_fields: Any) -> PipelineRun:
        """Move the run to a terminal status; it is immutable afterwards."""
        with self._lock:
            run = self._require_mutable(run_id)
            for key, value in result_fields.items():
                if key not in PipelineRun.model_fields:
                    raise AttributeError(f"PipelineRun has no field {key!r}")
                setattr(run, key, value)
            run.ended_at = _now()
            run.processing_time_ms = round((run.ended_at - run.started_at).total_seconds() * 1000, 3)
            run.status = status
            snapshot = run.model_copy(deep=True)
        logger.info("Run %s finished: %s", run_id, status.value)
        return snapshot

    def get(self, run_id: str) -> PipelineRun | None:
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run is not None else None

    def cancel(self, run_id: str) -> bool:
        """Request cooperative cancellation; False for unknown or finished runs."""
        with self._lock:
            run = self._runs.get(run_id)
            if run is None or run.is_terminal:
                return False
            run.cancel_requested = True
        logger.info("Cancellation requested for run %s", run_id)
        return True

    def is_cancel_requested(self, run_id: str) -> bool:
        with self._lock:
            run = self._runs.get(run_id)
            return bool(run and run.cancel_requested)

    def list_active(self) -> list[PipelineRun]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._runs.values() if not r.is_terminal]
