"""Pydantic models for the design module generation pipeline."""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RunStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})


class PhaseStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_PHASE_STATUSES = frozenset({PhaseStatus.COMPLETED, PhaseStatus.FAILED, PhaseStatus.SKIPPED})


class PhaseName(str, Enum):
    SECTION_DETECTION = "Section Detection"
    AI_GENERATION = "AI Generation"
    QUALITY_VERIFICATION = "Quality Verification"
    TEMPLATE_MAPPING = "Template Mapping"
    FINAL_ASSEMBLY = "Final Assembly"


PHASE_ORDER: tuple[PhaseName, ...] = tuple(PhaseName)


class SectionType(str, Enum):
    HEADER = "header"
    NAVIGATION = "navigation"
    HERO = "hero"
    CONTENT = "content"
    SIDEBAR = "sidebar"
    FOOTER = "footer"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"


class QualityDimension(str, Enum):
    HTML_VALIDITY = "html_validity"
    ACCESSIBILITY = "accessibility"
    FRAMEWORK_OPTIMIZATION = "framework_optimization"
    EDITABILITY = "editability"
    PLATFORM_COMPLIANCE = "platform_compliance"


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

IMAGE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/gif", "image/webp"})
MARKUP_MIME_TYPES = frozenset({"text/html", "text/plain"})


class DesignInput(BaseModel):
    """Raw design asset handed to the pipeline."""
    content: bytes = Field(..., description="Raw uploaded bytes")
    filename: str = Field(default="", description="Original file name")
    mime_type: str = Field(..., description="Declared MIME type")

    @property
    def is_image(self) -> bool:
        return self.mime_type in IMAGE_MIME_TYPES

    @property
    def is_markup(self) -> bool:
        return self.mime_type in MARKUP_MIME_TYPES

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


# ---------------------------------------------------------------------------
# Sections and fields
# ---------------------------------------------------------------------------

class BoundingBox(BaseModel):
    """Region of the source design a section was detected in."""
    x: float = Field(default=0.0)
    y: float = Field(default=0.0)
    width: float = Field(default=0.0, ge=0)
    height: float = Field(default=0.0, ge=0)


class EditableField(BaseModel):
    """Named, typed insertion point in a section's markup."""
    id: str = Field(..., description="Field id, unique within its section")
    name: str = Field(default="", description="Machine name")
    label: str = Field(default="", description="Editor-facing label")
    type: str = Field(default="text", description="Field type from the schema vocabulary")
    selector: str = Field(default="", description="CSS selector locating the field in the markup")
    default_value: Any = Field(default=None, description="Default content")
    required: bool = Field(default=False)
    help_text: str = Field(default="")


class QualityIssue(BaseModel):
    """A single finding from the quality scorer."""
    dimension: QualityDimension = Field(...)
    severity: Severity = Field(...)
    code: str = Field(..., description="Stable machine-readable issue code")
    message: str = Field(...)
    fix: str = Field(default="", description="How to resolve the issue")


class QualityReport(BaseModel):
    """Per-dimension and weighted composite quality scores (0-100)."""
    html_validity: float = Field(default=0.0, ge=0, le=100)
    accessibility: float = Field(default=0.0, ge=0, le=100)
    framework_optimization: float = Field(default=0.0, ge=0, le=100)
    editability: float = Field(default=0.0, ge=0, le=100)
    platform_compliance: float = Field(default=0.0, ge=0, le=100)
    composite: float = Field(default=0.0, ge=0, le=100)
    errors: list[QualityIssue] = Field(default_factory=list)
    warnings: list[QualityIssue] = Field(default_factory=list)
    suggestions: list[QualityIssue] = Field(default_factory=list)

    def dimension_scores(self) -> dict[str, float]:
        return {d.value: getattr(self, d.value) for d in QualityDimension}


class SectionValidation(BaseModel):
    """Outcome of the Quality Verification phase for one section."""
    passed: bool = Field(...)
    score: float = Field(default=0.0)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    schema_issues: list[str] = Field(default_factory=list)


class QualityImprovement(BaseModel):
    before: float = Field(default=0.0)
    after: float = Field(default=0.0)
    improvement: float = Field(default=0.0)


class Section(BaseModel):
    """One logical region of the module with its own markup and fields."""
    id: str = Field(...)
    name: str = Field(default="")
    order: int = Field(default=0, description="Detection index")
    type: SectionType = Field(default=SectionType.UNKNOWN)
    bounding_box: BoundingBox | None = Field(default=None)
    html: str = Field(default="")
    css: str = Field(default="")
    editable_fields: list[EditableField] = Field(default_factory=list)
    quality_score: float = Field(default=0.0, ge=0, le=100)
    detection_confidence: float = Field(default=0.0, ge=0, le=0.95)
    quality_report: QualityReport | None = Field(default=None)
    validation: SectionValidation | None = Field(default=None)
    mapping_issues: list[str] = Field(default_factory=list)
    degraded: bool = Field(default=False, description="Set when quality verification failed")
    refinement: QualityImprovement | None = Field(default=None)


class GenerationAttempt(BaseModel):
    """One generate call for a section, with its score once evaluated."""
    section_id: str = Field(...)
    iteration: int = Field(default=0, ge=0)
    prompt_digest: str = Field(default="")
    candidate_html: str = Field(default="")
    candidate_css: str = Field(default="")
    fields: list[EditableField] = Field(default_factory=list)
    score: float = Field(default=0.0, ge=0, le=100)
    report: QualityReport | None = Field(default=None)
    token_usage: int = Field(default=0)
    model: str = Field(default="")
    timestamp: datetime = Field(default_factory=_utcnow)


class RefinementResult(BaseModel):
    final_section: Section = Field(...)
    attempts: list[GenerationAttempt] = Field(default_factory=list)
    converged: bool = Field(default=False)
    threshold_met: bool = Field(default=False)
    quality_improvement: QualityImprovement = Field(default_factory=QualityImprovement)


# ---------------------------------------------------------------------------
# Schema and module definitions
# ---------------------------------------------------------------------------

class SchemaVocabulary(BaseModel):
    """Versioned set of field and content types a platform accepts."""
    version: str = Field(...)
    valid_field_types: list[str] = Field(default_factory=list)
    valid_content_types: list[str] = Field(default_factory=list)
    reserved_field_names: list[str] = Field(default_factory=list)


class SchemaCompatibility(BaseModel):
    compatible: bool = Field(...)
    schema_version: str = Field(default="")
    issues: list[str] = Field(default_factory=list)


class ModuleMeta(BaseModel):
    label: str = Field(default="")
    content_types: list[str] = Field(default_factory=list)
    description: str = Field(default="")


class ModuleDefinition(BaseModel):
    """Platform-facing view of a module: fields, meta and template."""
    fields: list[EditableField] = Field(default_factory=list)
    meta: ModuleMeta = Field(default_factory=ModuleMeta)
    template: str = Field(default="")
    css: str = Field(default="")


class Candidate(BaseModel):
    """Markup plus fields, the unit the quality scorer evaluates."""
    html: str = Field(default="")
    css: str = Field(default="")
    fields: list[EditableField] = Field(default_factory=list)
    content_types: list[str] = Field(default_factory=list)

    @classmethod
    def from_section(cls, section: Section, content_types: list[str] | None = None) -> Candidate:
        return cls(
            html=section.html,
            css=section.css,
            fields=list(section.editable_fields),
            content_types=list(content_types or []),
        )

    @classmethod
    def from_attempt(cls, attempt: GenerationAttempt, content_types: list[str] | None = None) -> Candidate:
        return cls(
            html=attempt.candidate_html,
            css=attempt.candidate_css,
            fields=list(attempt.fields),
            content_types=list(content_types or []),
        )

    @classmethod
    def from_module(cls, module: ModuleDefinition) -> Candidate:
        return cls(
            html=module.template,
            css=module.css,
            fields=list(module.fields),
            content_types=list(module.meta.content_types),
        )


class ModulePackage(BaseModel):
    """Final assembled output of a run."""
    label: str = Field(default="")
    html: str = Field(default="")
    css: str = Field(default="")
    sections: list[Section] = Field(default_factory=list)
    field_manifest: list[EditableField] = Field(default_factory=list)
    content_types: list[str] = Field(default_factory=list)
    aggregate_quality_score: float = Field(default=0.0, ge=0, le=100)
    schema_compatibility: SchemaCompatibility | None = Field(default=None)

    def to_module_definition(self) -> ModuleDefinition:
        return ModuleDefinition(
            fields=list(self.field_manifest),
            meta=ModuleMeta(label=self.label, content_types=list(self.content_types)),
            template=self.html,
            css=self.css,
        )


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

class PhaseRecord(BaseModel):
    name: PhaseName = Field(...)
    status: PhaseStatus = Field(default=PhaseStatus.PENDING)
    started_at: datetime | None = Field(default=None)
    duration_ms: float | None = Field(default=None)
    error: str | None = Field(default=None)


def _default_phases() -> list[PhaseRecord]:
    return [PhaseRecord(name=name) for name in PHASE_ORDER]


class RunError(BaseModel):
    """Error that stopped (or degraded) a run, in caller-facing form."""
    phase: PhaseName | None = Field(default=None)
    kind: str = Field(...)
    message: str = Field(...)
    retryable: bool = Field(default=False)
    suggestion: str = Field(default="")


class PipelineRun(BaseModel):
    """Full state of one pipeline execution."""
    id: str = Field(...)
    filename: str = Field(default="")
    mime_type: str = Field(default="")
    status: RunStatus = Field(default=RunStatus.CREATED)
    phases: list[PhaseRecord] = Field(default_factory=_default_phases)
    sections: list[Section] = Field(default_factory=list)
    quality_score: float | None = Field(default=None)
    processing_time_ms: float | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)
    package: ModulePackage | None = Field(default=None)
    error: RunError | None = Field(default=None)
    cancel_requested: bool = Field(default=False)
    started_at: datetime = Field(default_factory=_utcnow)
    ended_at: datetime | None = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def phase(self, name: PhaseName) -> PhaseRecord:
        return self.phases[PHASE_ORDER.index(name)]


# ---------------------------------------------------------------------------
# Generative backend
# ---------------------------------------------------------------------------

class BackendResponse(BaseModel):
    """Normalised response from a generative backend call."""
    html: str = Field(default="")
    css: str = Field(default="")
    fields: list[EditableField] = Field(default_factory=list)
    token_usage: int = Field(default=0)
    model: str = Field(default="")
    raw: str = Field(default="", description="Unparsed backend text")


class DetectedRegion(BaseModel):
    """A region returned by the layout detector for image inputs."""
    type: str = Field(..., description="Section type, free-form; unknown values are normalised")
    name: str = Field(default="")
    bounding_box: BoundingBox | None = Field(default=None)
    html: str = Field(default="")
    editable_fields: list[EditableField] = Field(default_factory=list)


class DetectedLayout(BaseModel):
    regions: list[DetectedRegion] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Project Configuration (loaded from YAML)
# ---------------------------------------------------------------------------

class ModelEndpointOverride(BaseModel):
    """Per-model endpoint settings that take precedence over ``azure``."""
    endpoint: str = Field(...)
    api_key: str = Field(default="")
    api_version: str = Field(default="")
    api_type: str | None = Field(default=None, description="Forced AG2 api_type, e.g. 'anthropic'")


class ModelConfig(BaseModel):
    """LLM model configuration per role."""
    default: str = Field(default="gpt-4o", description="Default model")
    generator: str | None = Field(default=None, description="Model for section markup generation")
    detector: str | None = Field(default=None, description="Vision model for layout detection")
    overrides: dict[str, ModelEndpointOverride] = Field(default_factory=dict)


class AzureConfig(BaseModel):
    """Azure OpenAI connection settings."""
    api_key: str = Field(default="", description="Azure OpenAI API key (or ${ENV_VAR})")
    api_version: str = Field(default="", description="API version")
    endpoint: str = Field(default="", description="Azure endpoint URL")


class RetryConfig(BaseModel):
    """Backoff settings for transient generation failures."""
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0, description="Seconds before the first retry")
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=30.0, ge=0)


class ProjectConfig(BaseModel):
    """Full project configuration loaded from config.yaml."""
    project_name: str = Field(default="design-module")

    # Azure OpenAI
    azure: AzureConfig = Field(default_factory=AzureConfig)

    # Models
    models: ModelConfig = Field(default_factory=ModelConfig)
    timeout: int = Field(default=120, description="LLM call timeout in seconds")
    seed: int = Field(default=42, description="LLM seed for reproducibility")

    # Quality gate
    quality_threshold: float = Field(default=85.0, ge=0, le=100)
    max_iterations: int = Field(default=3, ge=0, description="Max refinement iterations per section")
    plateau_epsilon: float = Field(default=1.0, ge=0, description="Minimum gain over two iterations")

    # Concurrency
    max_workers: int = Field(default=4, ge=1, description="Sections generated in parallel")
    max_concurrent_runs: int = Field(default=2, ge=1)

    # Input
    max_input_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: sorted(IMAGE_MIME_TYPES | MARKUP_MIME_TYPES)
    )

    retry: RetryConfig = Field(default_factory=RetryConfig)

    # Platform schema
    schema_version: str = Field(default="2024.1")
    schema_file: str | None = Field(default=None, description="YAML file with extra schema versions")
    content_types: list[str] = Field(default_factory=lambda: ["LANDING_PAGE"])
    module_label: str = Field(default="Generated Module")
    fail_on_schema_incompatible: bool = Field(
        default=False,
        description="Mark the run failed (not completed) when the package is schema-incompatible",
    )
