"""Tests for progress.py — the run registry."""

from __future__ import annotations

import threading

import pytest

from design_module_generator.models import PhaseStatus, RunStatus, Section
from design_module_generator.progress import ProgressTracker


@pytest.fixture
def tracker() -> ProgressTracker:
    t = ProgressTracker()
    t.start("r1", filename="landing.html", mime_type="text/html")
    return t


class TestStart:
    def test_new_run_is_created_with_pending_phases(self, tracker):
        run = tracker.get("r1")
        assert run.status == RunStatus.CREATED
        assert run.filename == "landing.html"
        assert all(p.status == PhaseStatus.PENDING for p in run.phases)

    def test_duplicate_id_rejected(self, tracker):
        with pytest.raises(ValueError):
            tracker.start("r1")

    def test_unknown_run(self, tracker):
        assert tracker.get("nope") is None
        with pytest.raises(KeyError):
            tracker.mark_running("nope")


class TestUpdate:
    def test_phases_advance_in_order(self, tracker):
        tracker.mark_running("r1")
        tracker.update("r1", 0, PhaseStatus.RUNNING)
        tracker.update("r1", 0, PhaseStatus.COMPLETED)
        tracker.update("r1", 1, PhaseStatus.RUNNING)
        run = tracker.get("r1")
        assert run.status == RunStatus.RUNNING
        assert run.phases[0].status == PhaseStatus.COMPLETED
        assert run.phases[0].duration_ms is not None
        assert run.phases[1].status == PhaseStatus.RUNNING

    def test_cannot_start_before_earlier_phase_finishes(self, tracker):
        tracker.update("r1", 0, PhaseStatus.RUNNING)
        with pytest.raises(RuntimeError):
            tracker.update("r1", 1, PhaseStatus.RUNNING)

    def test_index_out_of_range(self, tracker):
        with pytest.raises(IndexError):
            tracker.update("r1", 5, PhaseStatus.RUNNING)

    def test_failure_message_recorded(self, tracker):
        tracker.update("r1", 0, PhaseStatus.RUNNING)
        tracker.update("r1", 0, PhaseStatus.FAILED, error="boom")
        assert tracker.get("r1").phases[0].error == "boom"

    def test_skip_remaining_leaves_finished_phases(self, tracker):
        tracker.update("r1", 0, PhaseStatus.RUNNING)
        tracker.update("r1", 0, PhaseStatus.COMPLETED)
        tracker.skip_remaining("r1", 0)
        statuses = [p.status for p in tracker.get("r1").phases]
        assert statuses == [PhaseStatus.COMPLETED] + [PhaseStatus.SKIPPED] * 4


class TestSnapshots:
    def test_get_returns_copy(self, tracker):
        snapshot = tracker.get("r1")
        snapshot.phases[0].status = PhaseStatus.FAILED
        assert tracker.get("r1").phases[0].status == PhaseStatus.PENDING

    def test_partial_sections_visible(self, tracker):
        tracker.record_sections("r1", [Section(id="s1", quality_score=90)])
        assert [s.id for s in tracker.get("r1").sections] == ["s1"]

    def test_metadata_merges(self, tracker):
        tracker.set_metadata("r1", total_sections=4)
        tracker.set_metadata("r1", warnings=[])
        assert tracker.get("r1").metadata == {"total_sections": 4, "warnings": []}


class TestFinish:
    def test_finish_sets_result_and_timing(self, tracker):
        run = tracker.finish("r1", RunStatus.COMPLETED, quality_score=91.5)
        assert run.status == RunStatus.COMPLETED
        assert run.quality_score == 91.5
        assert run.ended_at is not None
        assert run.processing_time_ms >= 0

    def test_unknown_result_field(self, tracker):
        with pytest.raises(AttributeError):
            tracker.finish("r1", RunStatus.COMPLETED, colour="red")

    def test_terminal_run_is_immutable(self, tracker):
        tracker.finish("r1", RunStatus.FAILED)
        with pytest.raises(RuntimeError):
            tracker.update("r1", 0, PhaseStatus.RUNNING)
        with pytest.raises(RuntimeError):
            tracker.finish("r1", RunStatus.COMPLETED)
        with pytest.raises(RuntimeError):
            tracker.set_metadata("r1", x=1)


class TestCancel:
    def test_cancel_active_run(self, tracker):
        assert tracker.cancel("r1") is True
        assert tracker.is_cancel_requested("r1")

    def test_cancel_unknown_or_finished(self, tracker):
        assert tracker.cancel("nope") is False
        tracker.finish("r1", RunStatus.COMPLETED)
        assert tracker.cancel("r1") is False
        assert not tracker.is_cancel_requested("r1")


class TestRegistry:
    def test_list_active_excludes_finished(self, tracker):
        tracker.start("r2")
        tracker.finish("r2", RunStatus.COMPLETED)
        assert [r.id for r in tracker.list_active()] == ["r1"]
        assert tracker.get("r2").status == RunStatus.COMPLETED

    def test_concurrent_runs_are_isolated(self):
        tracker = ProgressTracker()
        run_ids = [f"run-{i}" for i in range(8)]

        def drive(run_id: str) -> None:
            tracker.start(run_id)
            tracker.mark_running(run_id)
            for index in range(5):
                tracker.update(run_id, index, PhaseStatus.RUNNING)
                tracker.update(run_id, index, PhaseStatus.COMPLETED)
            tracker.finish(run_id, RunStatus.COMPLETED)

        threads = [threading.Thread(target=drive, args=(rid,)) for rid in run_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for run_id in run_ids:
            run = tracker.get(run_id)
            assert run.status == RunStatus.COMPLETED
            assert all(p.status == PhaseStatus.COMPLETED for p in run.phases)
