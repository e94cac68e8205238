"""Tests for Pydantic models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from design_module_generator.models import (
    PHASE_ORDER,
    Candidate,
    DesignInput,
    EditableField,
    ModuleDefinition,
    ModuleMeta,
    ModulePackage,
    PhaseName,
    PhaseStatus,
    PipelineRun,
    ProjectConfig,
    RunStatus,
    Section,
)


class TestPipelineRun:
    def test_new_run_has_five_pending_phases_in_order(self):
        run = PipelineRun(id="r1")
        assert [p.name for p in run.phases] == list(PHASE_ORDER)
        assert [p.name.value for p in run.phases] == [
            "Section Detection",
            "AI Generation",
            "Quality Verification",
            "Template Mapping",
            "Final Assembly",
        ]
        assert all(p.status == PhaseStatus.PENDING for p in run.phases)
        assert run.status == RunStatus.CREATED

    def test_phase_lookup(self):
        run = PipelineRun(id="r1")
        assert run.phase(PhaseName.TEMPLATE_MAPPING) is run.phases[3]

    def test_is_terminal(self):
        assert not PipelineRun(id="a", status=RunStatus.RUNNING).is_terminal
        for status in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED):
            assert PipelineRun(id="a", status=status).is_terminal

    def test_json_roundtrip_keeps_phase_names(self):
        run = PipelineRun(id="r1")
        restored = PipelineRun.model_validate_json(run.model_dump_json())
        assert restored.phases[1].name == PhaseName.AI_GENERATION


class TestSection:
    def test_confidence_capped(self):
        with pytest.raises(ValidationError):
            Section(id="s", detection_confidence=0.99)

    def test_quality_score_bounds(self):
        with pytest.raises(ValidationError):
            Section(id="s", quality_score=101)

    def test_unknown_field_type_is_representable(self):
        f = EditableField(id="x", type="unknown_type")
        assert f.type == "unknown_type"


class TestDesignInput:
    def test_image_and_markup_flags(self):
        assert DesignInput(content=b"x", mime_type="image/png").is_image
        assert DesignInput(content=b"x", mime_type="text/html").is_markup
        assert not DesignInput(content=b"x", mime_type="application/pdf").is_markup

    def test_data_url(self):
        design = DesignInput(content=b"abc", mime_type="image/png")
        assert design.data_url == "data:image/png;base64,YWJj"


class TestModuleViews:
    def test_package_to_module_definition(self):
        package = ModulePackage(
            label="Hero",
            html="<section></section>",
            css=".a{}",
            field_manifest=[EditableField(id="headline")],
            content_types=["LANDING_PAGE"],
        )
        module = package.to_module_definition()
        assert module.template == "<section></section>"
        assert module.meta.label == "Hero"
        assert module.meta.content_types == ["LANDING_PAGE"]
        assert [f.id for f in module.fields] == ["headline"]

    def test_candidate_from_module(self):
        module = ModuleDefinition(
            fields=[EditableField(id="headline")],
            meta=ModuleMeta(label="Test", content_types=["LANDING_PAGE"]),
            template="<h1>{{headline}}</h1>",
        )
        candidate = Candidate.from_module(module)
        assert candidate.html == "<h1>{{headline}}</h1>"
        assert candidate.content_types == ["LANDING_PAGE"]


class TestProjectConfig:
    def test_defaults(self):
        config = ProjectConfig()
        assert config.quality_threshold == 85.0
        assert config.max_iterations == 3
        assert config.retry.max_attempts == 3
        assert config.retry.backoff_multiplier == 2.0
        assert config.max_input_bytes == 10 * 1024 * 1024
        assert "image/png" in config.allowed_mime_types
        assert "text/html" in config.allowed_mime_types

    def test_rejects_threshold_above_100(self):
        with pytest.raises(ValidationError):
            ProjectConfig(quality_threshold=120)
