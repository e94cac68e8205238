"""Pipeline — 5-phase orchestration from design asset to module package.

Phase 1: SECTION DETECTION     — SectionSplitter finds typed regions
Phase 2: AI GENERATION         — RefinementLoop per section, bounded thread pool
Phase 3: QUALITY VERIFICATION  — re-score and schema-check; failures degrade, never abort
Phase 4: TEMPLATE MAPPING      — FieldMapper reconciles field types
Phase 5: FINAL ASSEMBLY        — Assembler builds the package and checks compatibility
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from .backend import AutogenBackend, GenerativeBackend
from .errors import (
    InputInvalid,
    NoSectionsDetected,
    PipelineError,
    RunCancelled,
    SchemaIncompatible,
)
from .generator import ContentGenerator
from .logging_config import PipelineCallbacks, RichCallbacks
from .models import (
    Candidate,
    DesignInput,
    ModulePackage,
    PhaseName,
    PhaseStatus,
    PipelineRun,
    ProjectConfig,
    RefinementResult,
    RunError,
    RunStatus,
    Section,
    SectionValidation,
)
from .progress import ProgressTracker
from .recovery import ErrorRecoverySystem
from .refinement import RefinementLoop
from .schema import SchemaProvider
from .tools.assembler import Assembler, aggregate_score
from .tools.field_mapper import FieldMapper
from .tools.quality_scorer import QualityScorer
from .tools.schema_validator import SchemaValidator
from .tools.section_splitter import SectionSplitter

logger = logging.getLogger(__name__)

_MAGIC_BYTES: dict[str, tuple[bytes, ...]] = {
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/gif": (b"GIF87a", b"GIF89a"),
    "image/webp": (b"RIFF",),
}

PHASE_DESCRIPTIONS: dict[PhaseName, str] = {
    PhaseName.SECTION_DETECTION: "Split the design into sections",
    PhaseName.AI_GENERATION: "Generate and refine markup per section",
    PhaseName.QUALITY_VERIFICATION: "Score and schema-check every section",
    PhaseName.TEMPLATE_MAPPING: "Map editable fields to the platform vocabulary",
    PhaseName.FINAL_ASSEMBLY: "Assemble the module package",
}


@dataclass
class _RunState:
    """Working state owned by the thread executing one run."""
    design: DesignInput
    sections: list[Section] = field(default_factory=list)
    refinements: dict[str, RefinementResult] = field(default_factory=dict)
    package: ModulePackage | None = None
    quality_score: float | None = None
    phase_times_ms: dict[str, float] = field(default_factory=dict)
    token_usage: int = 0
    warnings: int = 0


def validate_design(design: DesignInput, config: ProjectConfig) -> None:
    """Raise ``InputInvalid`` when the upload cannot be processed."""
    if design.mime_type not in config.allowed_mime_types:
        raise InputInvalid(f"Unsupported MIME type {design.mime_type!r}")
    if not design.content:
        raise InputInvalid("Design file is empty")
    if len(design.content) > config.max_input_bytes:
        raise InputInvalid(
            f"Design is {len(design.content)} bytes; the limit is {config.max_input_bytes}"
        )
    if design.is_image:
        signatures = _MAGIC_BYTES.get(design.mime_type, ())
        if signatures and not design.content.startswith(signatures):
            raise InputInvalid(f"Content does not look like {design.mime_type}")
        if design.mime_type == "image/webp" and design.content[8:12] != b"WEBP":
            raise InputInvalid("Content does not look like image/webp")
    elif design.is_markup:
        try:
            design.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InputInvalid(f"Markup is not valid UTF-8: {e}") from e
    else:
        raise InputInvalid(f"{design.mime_type!r} is neither an image nor markup")


class PipelineExecutor:
    """Run designs through the five phases and track their progress.

    Components are injected; anything omitted is built from *config*.
    """

    def __init__(
        self,
        config: ProjectConfig,
        *,
        backend: GenerativeBackend | None = None,
        tracker: ProgressTracker | None = None,
        recovery: ErrorRecoverySystem | None = None,
        schema_provider: SchemaProvider | None = None,
        callbacks: PipelineCallbacks | None = None,
    ) -> None:
        self.config = config
        self.backend = backend if backend is not None else AutogenBackend(config)
        self.tracker = tracker or ProgressTracker()
        self.recovery = recovery or ErrorRecoverySystem(config.retry)
        self.schema_provider = schema_provider or SchemaProvider()
        if config.schema_file:
            self.schema_provider.load_file(config.schema_file)
        self.callbacks = callbacks or RichCallbacks()

        self.validator = SchemaValidator(
            self.schema_provider,
            default_version=config.schema_version,
            content_types=config.content_types,
        )
        vocabulary = self.validator.vocabulary()
        if vocabulary is None:
            logger.warning("Schema version %s is not registered; type checks are disabled", config.schema_version)
        self.scorer = QualityScorer(vocabulary)
        self.splitter = SectionSplitter(self.backend, call_with_retry=self.recovery.with_retry)
        self.refinement = RefinementLoop(
            ContentGenerator(self.backend),
            self.scorer,
            recovery=self.recovery,
            plateau_epsilon=config.plateau_epsilon,
            content_types=config.content_types,
            callbacks=self.callbacks,
        )
        self.field_mapper = FieldMapper(vocabulary)
        self.assembler = Assembler(
            self.validator,
            label=config.module_label,
            content_types=config.content_types,
            schema_version=config.schema_version,
        )

        self._phases: list[tuple[PhaseName, Callable[[str, _RunState], None]]] = [
            (PhaseName.SECTION_DETECTION, self._detect_sections),
            (PhaseName.AI_GENERATION, self._generate_sections),
            (PhaseName.QUALITY_VERIFICATION, self._verify_quality),
            (PhaseName.TEMPLATE_MAPPING, self._map_templates),
            (PhaseName.FINAL_ASSEMBLY, self._assemble),
        ]
        self._run_pool: ThreadPoolExecutor | None = None
        self._pool_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute(
        self,
        design_bytes: bytes,
        filename: str,
        mime_type: str,
        *,
        run_id: str | None = None,
    ) -> PipelineRun:
        """Run the full pipeline synchronously and return the terminal run."""
        run_id = run_id or uuid.uuid4().hex
        self.tracker.start(run_id, filename=filename, mime_type=mime_type)
        return self._execute_registered(run_id, design_bytes, filename, mime_type)

    def submit(
        self,
        design_bytes: bytes,
        filename: str,
        mime_type: str,
        *,
        run_id: str | None = None,
    ) -> tuple[str, Future[PipelineRun]]:
        """Queue a run on the run-level pool; it is registered (and cancellable) at once."""
        run_id = run_id or uuid.uuid4().hex
        self.tracker.start(run_id, filename=filename, mime_type=mime_type)
        with self._pool_lock:
            if self._run_pool is None:
                self._run_pool = ThreadPoolExecutor(
                    max_workers=self.config.max_concurrent_runs,
                    thread_name_prefix="pipeline-run",
                )
            future = self._run_pool.submit(self._execute_registered, run_id, design_bytes, filename, mime_type)
        return run_id, future

    def cancel(self, run_id: str) -> bool:
        return self.tracker.cancel(run_id)

    def get(self, run_id: str) -> PipelineRun | None:
        return self.tracker.get(run_id)

    def shutdown(self, wait: bool = True) -> None:
        with self._pool_lock:
            if self._run_pool is not None:
                self._run_pool.shutdown(wait=wait)
                self._run_pool = None

    # ------------------------------------------------------------------
    # Run driver
    # ------------------------------------------------------------------

    def _execute_registered(self, run_id: str, design_bytes: bytes, filename: str, mime_type: str) -> PipelineRun:
        design = DesignInput(content=design_bytes, filename=filename, mime_type=mime_type)
        state = _RunState(design=design)

        try:
            validate_design(design, self.config)
        except InputInvalid as e:
            logger.warning("Rejected input %s: %s", filename, e)
            self.recovery.record_outcome(e, resolved=False)
            self.callbacks.on_error(str(e))
            self.tracker.skip_remaining(run_id, 0)
            return self._finish(run_id, RunStatus.FAILED, state, error=self._run_error(e, None))

        self.tracker.mark_running(run_id)
        logger.info("Run %s started for %s (%s, %d bytes)", run_id, filename, mime_type, len(design_bytes))

        for index, (name, handler) in enumerate(self._phases):
            if self.tracker.is_cancel_requested(run_id):
                logger.info("Run %s cancelled before %s", run_id, name.value)
                self.tracker.skip_remaining(run_id, index)
                return self._finish(
                    run_id, RunStatus.CANCELLED, state,
                    error=self._run_error(RunCancelled(f"Cancelled before {name.value}"), name),
                )

            self.tracker.update(run_id, index, PhaseStatus.RUNNING)
            self.callbacks.on_phase_start(name.value, PHASE_DESCRIPTIONS[name])
            started = time.perf_counter()
            try:
                handler(run_id, state)
            except RunCancelled as e:
                self.tracker.update(run_id, index, PhaseStatus.FAILED, error="cancelled")
                self.tracker.skip_remaining(run_id, index + 1)
                self.callbacks.on_phase_end(name.value, False)
                return self._finish(run_id, RunStatus.CANCELLED, state, error=self._run_error(e, name))
            except SchemaIncompatible as e:
                self.tracker.update(run_id, index, PhaseStatus.FAILED, error=str(e))
                self.callbacks.on_error(str(e))
                self.callbacks.on_phase_end(name.value, False)
                status = RunStatus.FAILED if self.config.fail_on_schema_incompatible else RunStatus.COMPLETED
                return self._finish(run_id, status, state, error=self._run_error(e, name))
            except Exception as e:
                logger.error("Run %s: %s failed: %s", run_id, name.value, e)
                self.recovery.record_outcome(e, resolved=False)
                self.tracker.update(run_id, index, PhaseStatus.FAILED, error=str(e))
                self.tracker.skip_remaining(run_id, index + 1)
                self.callbacks.on_error(f"{name.value}: {e}")
                self.callbacks.on_phase_end(name.value, False)
                return self._finish(run_id, RunStatus.FAILED, state, error=self._run_error(e, name))

            state.phase_times_ms[name.value] = round((time.perf_counter() - started) * 1000, 3)
            self.tracker.update(run_id, index, PhaseStatus.COMPLETED)
            self.callbacks.on_phase_end(name.value, True)

        return self._finish(run_id, RunStatus.COMPLETED, state)

    def _run_error(self, error: Exception, phase: PhaseName | None) -> RunError:
        classification = self.recovery.classify(error)
        if isinstance(error, PipelineError):
            suggestion = error.suggestion
        else:
            suggestion = self.recovery.suggestion_for(classification.kind)
        return RunError(
            phase=phase,
            kind=classification.kind,
            message=str(error),
            retryable=classification.retryable,
            suggestion=suggestion,
        )

    def _finish(
        self,
        run_id: str,
        status: RunStatus,
        state: _RunState,
        error: RunError | None = None,
    ) -> PipelineRun:
        confidences = [s.detection_confidence for s in state.sections]
        self.tracker.set_metadata(
            run_id,
            phase_times_ms=dict(state.phase_times_ms),
            total_sections=len(state.sections),
            average_confidence=round(sum(confidences) / len(confidences), 4) if confidences else 0.0,
            token_usage=state.token_usage,
            warnings=state.warnings,
            schema_version=self.config.schema_version,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        return self.tracker.finish(
            run_id,
            status,
            sections=[s.model_copy(deep=True) for s in state.sections],
            package=state.package,
            quality_score=state.quality_score,
            error=error,
        )

    # ------------------------------------------------------------------
    # Phase 1: Section Detection
    # ------------------------------------------------------------------

    def _detect_sections(self, run_id: str, state: _RunState) -> None:
        sections = self.splitter.split(state.design)
        if not sections:
            raise NoSectionsDetected(f"No sections detected in {state.design.filename or 'design'}")
        state.sections = sections
        self.tracker.record_sections(run_id, sections)

    # ------------------------------------------------------------------
    # Phase 2: AI Generation
    # ------------------------------------------------------------------

    def _generation_context(self, design: DesignInput) -> dict[str, Any]:
        context: dict[str, Any] = {
            "filename": design.filename,
            "mime_type": design.mime_type,
            "content_types": list(self.config.content_types),
        }
        if design.is_image:
            context["image_data_url"] = design.data_url
        return context

    def _refine_section(
        self,
        section: Section,
        context: dict[str, Any],
        should_cancel: Callable[[], bool],
    ) -> RefinementResult:
        if should_cancel():
            raise RunCancelled(f"Cancelled before generating {section.id}")
        self.callbacks.on_section_start(section.id)
        result = self.refinement.refine(
            section,
            self.config.max_iterations,
            self.config.quality_threshold,
            context=context,
            should_cancel=should_cancel,
        )
        self.callbacks.on_section_end(section.id, result.final_section.quality_score)
        return result

    def _generate_sections(self, run_id: str, state: _RunState) -> None:
        context = self._generation_context(state.design)
        detected = list(state.sections)

        def should_cancel() -> bool:
            return self.tracker.is_cancel_requested(run_id)

        with ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix=f"generate-{run_id[:8]}",
        ) as pool:
            futures = {pool.submit(self._refine_section, s, context, should_cancel): s for s in detected}
            try:
                for future in as_completed(futures):
                    section = futures[future]
                    result = future.result()
                    state.refinements[section.id] = result
                    state.token_usage += sum(a.token_usage for a in result.attempts)
                    # Completed sections replace their detected version as soon as they finish.
                    state.sections = [
                        state.refinements[s.id].final_section if s.id in state.refinements else s
                        for s in detected
                    ]
                    self.tracker.record_sections(run_id, state.sections)
            except BaseException:
                for pending in futures:
                    pending.cancel()
                raise

        state.sections = [state.refinements[s.id].final_section for s in detected]
        unmet = [s.id for s in detected if not state.refinements[s.id].threshold_met]
        if unmet:
            state.warnings += len(unmet)
            self.callbacks.on_warning(
                f"{len(unmet)} section(s) below quality threshold {self.config.quality_threshold}: {', '.join(unmet)}"
            )

    # ------------------------------------------------------------------
    # Phase 3: Quality Verification
    # ------------------------------------------------------------------

    def _verify_quality(self, run_id: str, state: _RunState) -> None:
        verified: list[Section] = []
        for section in state.sections:
            report = self.scorer.score(Candidate.from_section(section, self.config.content_types))
            compatibility = self.validator.check(section)
            passed = not report.errors and compatibility.compatible
            validation = SectionValidation(
                passed=passed,
                score=report.composite,
                errors=[i.message for i in report.errors],
                warnings=[i.message for i in report.warnings],
                schema_issues=list(compatibility.issues),
            )
            if not passed:
                state.warnings += 1
                self.callbacks.on_warning(
                    f"{section.id} failed verification "
                    f"({len(validation.errors)} error(s), {len(validation.schema_issues)} schema issue(s)); kept as degraded"
                )
            verified.append(section.model_copy(update={
                "quality_report": report,
                "quality_score": report.composite,
                "validation": validation,
                "degraded": not passed,
            }))
        state.sections = verified
        state.quality_score = aggregate_score(verified)
        self.tracker.record_sections(run_id, verified)

    # ------------------------------------------------------------------
    # Phase 4: Template Mapping
    # ------------------------------------------------------------------

    def _map_templates(self, run_id: str, state: _RunState) -> None:
        mapped = [self.field_mapper.map_section(s) for s in state.sections]
        issues = sum(len(s.mapping_issues) for s in mapped)
        if issues:
            state.warnings += issues
            self.callbacks.on_warning(f"{issues} field(s) could not be mapped to the schema vocabulary")
        state.sections = mapped
        self.tracker.record_sections(run_id, mapped)

    # ------------------------------------------------------------------
    # Phase 5: Final Assembly
    # ------------------------------------------------------------------

    def _assemble(self, run_id: str, state: _RunState) -> None:
        package = self.assembler.assemble(state.sections)
        state.package = package
        compatibility = package.schema_compatibility
        if compatibility is not None and not compatibility.compatible:
            raise SchemaIncompatible(
                f"Package is incompatible with schema {compatibility.schema_version}: "
                + "; ".join(compatibility.issues),
                issues=compatibility.issues,
            )

