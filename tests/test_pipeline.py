"""Tests for pipeline.py — end-to-end runs with a scripted backend."""

from __future__ import annotations

import json

import pytest

from conftest import PNG_BYTES, FakeBackend, good_section_response
from design_module_generator.errors import BackendError, InputInvalid
from design_module_generator.logging_config import NullCallbacks
from design_module_generator.models import (
    PHASE_ORDER,
    BackendResponse,
    DesignInput,
    EditableField,
    PhaseName,
    PhaseStatus,
    RunStatus,
)
from design_module_generator.pipeline import PipelineExecutor, validate_design


class RecordingCallbacks(NullCallbacks):
    def __init__(self):
        self.events: list[tuple[str, ...]] = []
        self.warnings: list[str] = []

    def on_phase_start(self, phase, description):
        self.events.append(("start", phase))

    def on_phase_end(self, phase, success):
        self.events.append(("end", phase, success))

    def on_warning(self, message):
        self.warnings.append(message)


class CancelAfterPhase(NullCallbacks):
    """Request cancellation as soon as *phase* completes."""

    def __init__(self, phase: PhaseName):
        self.phase = phase
        self.executor: PipelineExecutor | None = None
        self.run_id = ""

    def on_phase_end(self, phase, success):
        if phase == self.phase.value:
            self.executor.cancel(self.run_id)


@pytest.fixture
def make_executor(config, recovery, schema_provider, callbacks):
    def _make(backend, **overrides):
        cfg = config.model_copy(update=overrides.pop("config_updates", {}))
        return PipelineExecutor(
            cfg,
            backend=backend,
            recovery=overrides.pop("recovery", recovery),
            schema_provider=schema_provider,
            callbacks=overrides.pop("callbacks", callbacks),
        )
    return _make


def _statuses(run) -> list[PhaseStatus]:
    return [p.status for p in run.phases]


class TestValidateDesign:
    def test_accepts_html(self, config, landing_html):
        validate_design(DesignInput(content=landing_html.encode(), mime_type="text/html"), config)

    def test_accepts_png(self, config):
        validate_design(DesignInput(content=PNG_BYTES, mime_type="image/png"), config)

    @pytest.mark.parametrize("content,mime_type", [
        (b"%PDF-1.7", "application/pdf"),
        (b"", "text/html"),
        (b"not really a png", "image/png"),
        (b"RIFF\x00\x00\x00\x00WAVE", "image/webp"),
        (b"\xff\xfe\x00<html>", "text/html"),
    ])
    def test_rejects(self, config, content, mime_type):
        with pytest.raises(InputInvalid):
            validate_design(DesignInput(content=content, mime_type=mime_type), config)

    def test_rejects_allowed_type_that_is_neither_image_nor_markup(self, config):
        lenient = config.model_copy(update={"allowed_mime_types": [*config.allowed_mime_types, "application/json"]})
        with pytest.raises(InputInvalid, match="neither an image nor markup"):
            validate_design(DesignInput(content=b"{}", mime_type="application/json"), lenient)

    def test_rejects_oversized(self, config):
        small = config.model_copy(update={"max_input_bytes": 10})
        with pytest.raises(InputInvalid):
            validate_design(DesignInput(content=b"<p>" + b"x" * 20 + b"</p>", mime_type="text/html"), small)


class TestHappyPath:
    def test_landing_page_completes(self, make_executor, good_backend, landing_html):
        callbacks = RecordingCallbacks()
        executor = make_executor(good_backend, callbacks=callbacks)

        run = executor.execute(landing_html.encode(), "landing.html", "text/html", run_id="run-1")

        assert run.status == RunStatus.COMPLETED
        assert run.error is None
        assert _statuses(run) == [PhaseStatus.COMPLETED] * 5
        assert [e[1] for e in callbacks.events if e[0] == "start"] == [p.value for p in PHASE_ORDER]
        assert [s.order for s in run.sections] == [0, 1, 2, 3]
        assert run.quality_score == 100
        assert run.package is not None
        assert run.package.schema_compatibility.compatible
        assert run.package.aggregate_quality_score == 100
        ids = [f.id for f in run.package.field_manifest]
        assert len(ids) == len(set(ids)) == 8
        assert run.processing_time_ms is not None
        assert run.ended_at is not None

    def test_metadata(self, make_executor, good_backend, landing_html):
        run = make_executor(good_backend).execute(landing_html.encode(), "landing.html", "text/html")
        assert run.metadata["total_sections"] == 4
        assert set(run.metadata["phase_times_ms"]) == {p.value for p in PHASE_ORDER}
        assert run.metadata["token_usage"] == 40
        assert run.metadata["schema_version"] == "2024.1"
        assert 0.7 <= run.metadata["average_confidence"] <= 0.95

    def test_generation_context(self, make_executor, good_backend, landing_html):
        make_executor(good_backend).execute(landing_html.encode(), "landing.html", "text/html")
        section_ids = sorted(ctx["section_id"] for _, ctx in good_backend.calls)
        assert section_ids == ["section_1_header", "section_2_hero", "section_3_content", "section_4_footer"]
        _, context = good_backend.calls[0]
        assert context["role"] == "generator"
        assert context["content_types"] == ["LANDING_PAGE"]
        assert "image_data_url" not in context

    def test_run_is_queryable_after_finish(self, make_executor, good_backend, landing_html):
        executor = make_executor(good_backend)
        run = executor.execute(landing_html.encode(), "landing.html", "text/html", run_id="kept")
        assert executor.get("kept").status == run.status
        assert executor.cancel("kept") is False

    def test_image_design(self, make_executor):
        regions = json.dumps({"regions": [{"type": "hero", "name": "Hero"}, {"type": "footer"}]})

        def handler(prompt, ctx):
            if ctx.get("role") == "detector":
                return BackendResponse(raw=regions)
            return good_section_response(ctx["section_id"])

        backend = FakeBackend(handler)
        run = make_executor(backend).execute(PNG_BYTES, "mock.png", "image/png")

        assert run.status == RunStatus.COMPLETED
        assert [s.id for s in run.sections] == ["section_1_hero", "section_2_footer"]
        generator_contexts = [ctx for _, ctx in backend.calls if ctx.get("role") == "generator"]
        assert len(generator_contexts) == 2
        assert all(ctx["image_data_url"].startswith("data:image/png;base64,") for ctx in generator_contexts)


class TestQualityHandling:
    def test_below_threshold_still_completes(self, make_executor, landing_html):
        backend = FakeBackend(lambda prompt, ctx: BackendResponse(html="<div>plain</div>"))
        callbacks = RecordingCallbacks()
        executor = make_executor(backend, callbacks=callbacks, config_updates={"quality_threshold": 100.0})

        run = executor.execute(landing_html.encode(), "landing.html", "text/html")

        assert run.status == RunStatus.COMPLETED
        # initial attempt plus two refinements per section
        assert len(backend.calls) == 12
        assert any("below quality threshold" in w for w in callbacks.warnings)
        assert run.metadata["warnings"] >= 4

    def test_verification_failure_degrades_section(self, make_executor, landing_html):
        def handler(prompt, ctx):
            heading = f"{ctx['section_id']}_heading"
            return BackendResponse(
                html=f'<section class="md:p-4"><h2>{{{{ module.{heading} }}}}</h2><img src="a.png"></section>',
                fields=[EditableField(id=heading, label="Heading")],
            )

        run = make_executor(FakeBackend(handler)).execute(landing_html.encode(), "landing.html", "text/html")

        assert run.status == RunStatus.COMPLETED
        assert all(s.degraded for s in run.sections)
        assert all(not s.validation.passed for s in run.sections)
        assert "has no alt attribute" in run.sections[0].validation.errors[0]


class TestFailures:
    def test_invalid_input_skips_every_phase(self, make_executor, good_backend, recovery):
        run = make_executor(good_backend).execute(b"%PDF-1.7", "doc.pdf", "application/pdf")
        assert run.status == RunStatus.FAILED
        assert _statuses(run) == [PhaseStatus.SKIPPED] * 5
        assert run.error.kind == "InputInvalid"
        assert run.error.phase is None
        assert run.error.suggestion
        assert good_backend.calls == []
        assert recovery.stats()["by_kind"] == {"InputInvalid": 1}

    def test_no_sections_detected(self, make_executor, good_backend):
        run = make_executor(good_backend).execute(b"<html><body></body></html>", "empty.html", "text/html")
        assert run.status == RunStatus.FAILED
        assert _statuses(run) == [PhaseStatus.FAILED] + [PhaseStatus.SKIPPED] * 4
        assert run.error.kind == "NoSectionsDetected"
        assert run.error.phase == PhaseName.SECTION_DETECTION
        assert run.error.retryable is False

    def test_transient_errors_exhaust_retries(self, make_executor, landing_html, recovery):
        def handler(prompt, ctx):
            raise BackendError("timeout", "upstream timed out")

        backend = FakeBackend(handler)
        run = make_executor(backend).execute(landing_html.encode(), "landing.html", "text/html")

        assert run.status == RunStatus.FAILED
        assert _statuses(run) == [PhaseStatus.COMPLETED, PhaseStatus.FAILED] + [PhaseStatus.SKIPPED] * 3
        assert run.error.kind == "GenerationTransient"
        assert run.error.retryable is True
        assert run.error.phase == PhaseName.AI_GENERATION
        assert recovery.stats()["total"] >= 1
        assert recovery.stats()["resolved"] == 0

    def test_invalid_request_is_fatal(self, make_executor, landing_html):
        def handler(prompt, ctx):
            raise BackendError("invalid_request", "content policy")

        backend = FakeBackend(handler)
        run = make_executor(backend).execute(landing_html.encode(), "landing.html", "text/html")
        assert run.status == RunStatus.FAILED
        assert run.error.kind == "GenerationFatal"
        # fatal errors are never retried
        assert len(backend.calls) <= 4

    def test_schema_incompatible_completes_with_failed_assembly(self, make_executor, landing_html):
        def handler(prompt, ctx):
            field_id = f"{ctx['section_id']}_widget"
            return BackendResponse(
                html=f'<section class="md:p-4"><h2>{{{{ module.{field_id} }}}}</h2></section>',
                fields=[EditableField(id=field_id, label="Widget", type="unknown_type")],
            )

        run = make_executor(FakeBackend(handler)).execute(landing_html.encode(), "landing.html", "text/html")

        assert run.status == RunStatus.COMPLETED
        assert _statuses(run) == [PhaseStatus.COMPLETED] * 4 + [PhaseStatus.FAILED]
        assert run.error.kind == "SchemaIncompatible"
        assert run.package is not None
        assert not run.package.schema_compatibility.compatible
        assert any("unknown_type" in issue for issue in run.package.schema_compatibility.issues)
        assert all(s.mapping_issues for s in run.sections)

    def test_schema_incompatible_can_fail_run(self, make_executor, landing_html):
        def handler(prompt, ctx):
            field_id = f"{ctx['section_id']}_widget"
            return BackendResponse(
                html=f'<section class="md:p-4"><h2>{{{{ module.{field_id} }}}}</h2></section>',
                fields=[EditableField(id=field_id, label="Widget", type="unknown_type")],
            )

        executor = make_executor(FakeBackend(handler), config_updates={"fail_on_schema_incompatible": True})
        run = executor.execute(landing_html.encode(), "landing.html", "text/html")
        assert run.status == RunStatus.FAILED
        assert run.phases[4].status == PhaseStatus.FAILED


class TestCancellation:
    def test_cancel_between_generation_and_verification(self, make_executor, good_backend, landing_html):
        callbacks = CancelAfterPhase(PhaseName.AI_GENERATION)
        executor = make_executor(good_backend, callbacks=callbacks)
        callbacks.executor, callbacks.run_id = executor, "run-c"

        run = executor.execute(landing_html.encode(), "landing.html", "text/html", run_id="run-c")

        assert run.status == RunStatus.CANCELLED
        assert _statuses(run)[:2] == [PhaseStatus.COMPLETED] * 2
        assert _statuses(run)[2:] == [PhaseStatus.SKIPPED] * 3
        assert run.error.kind == "RunCancelled"
        assert run.package is None

    def test_cancel_during_generation(self, make_executor, landing_html):
        executor_ref: dict[str, PipelineExecutor] = {}

        def handler(prompt, ctx):
            executor_ref["executor"].cancel("run-m")
            return good_section_response(ctx["section_id"])

        backend = FakeBackend(handler)
        executor = make_executor(backend, config_updates={"max_workers": 1})
        executor_ref["executor"] = executor

        run = executor.execute(landing_html.encode(), "landing.html", "text/html", run_id="run-m")

        assert run.status == RunStatus.CANCELLED
        assert _statuses(run) == [PhaseStatus.COMPLETED, PhaseStatus.FAILED] + [PhaseStatus.SKIPPED] * 3
        assert run.phases[1].error == "cancelled"
        assert len(backend.calls) == 1
        assert len(run.sections) == 4

    def test_cancel_unknown_run(self, make_executor, good_backend):
        assert make_executor(good_backend).cancel("missing") is False


class TestConcurrentRuns:
    def test_submitted_runs_are_independent(self, make_executor, good_backend, landing_html):
        executor = make_executor(good_backend, config_updates={"max_concurrent_runs": 2})
        try:
            submitted = [
                executor.submit(landing_html.encode(), f"landing-{i}.html", "text/html")
                for i in range(3)
            ]
            runs = [future.result(timeout=30) for _, future in submitted]
        finally:
            executor.shutdown()

        assert len({run.id for run in runs}) == 3
        for (run_id, _), run in zip(submitted, runs):
            assert run.id == run_id
            assert run.status == RunStatus.COMPLETED
            assert executor.get(run_id).filename == run.filename
        assert len(good_backend.calls) == 12
