"""Quality-gated generate, score and refine loop for a single section."""

from __future__ import annotations

import logging
from typing import Any, Callable

from .errors import GenerationFatal, RunCancelled
from .generator import ContentGenerator
from .logging_config import NullCallbacks, PipelineCallbacks
from .models import (
    Candidate,
    GenerationAttempt,
    QualityImprovement,
    RefinementResult,
    SchemaVocabulary,
    Section,
)
from .recovery import ErrorRecoverySystem
from .tools.quality_scorer import QualityScorer

logger = logging.getLogger(__name__)


class RefinementLoop:
    """Refine a section until it meets the quality threshold, plateaus or runs out of iterations.

    The best-scoring attempt is always retained; a worse refinement never
    replaces it, so the reported score is monotonic non-decreasing.
    """

    def __init__(
        self,
        generator: ContentGenerator,
        scorer: QualityScorer,
        *,
        recovery: ErrorRecoverySystem | None = None,
        plateau_epsilon: float = 1.0,
        content_types: list[str] | None = None,
        schema: SchemaVocabulary | None = None,
        callbacks: PipelineCallbacks | None = None,
    ) -> None:
        self.generator = generator
        self.scorer = scorer
        self.recovery = recovery
        self.plateau_epsilon = plateau_epsilon
        self.content_types = list(content_types or [])
        self.schema = schema
        self.callbacks = callbacks or NullCallbacks()

    def _call(self, operation: Callable[[], GenerationAttempt]) -> GenerationAttempt:
        if self.recovery is None:
            return operation()
        return self.recovery.with_retry(operation)

    def _evaluate(self, attempt: GenerationAttempt) -> GenerationAttempt:
        report = self.scorer.score(Candidate.from_attempt(attempt, self.content_types), schema=self.schema)
        return attempt.model_copy(update={"score": report.composite, "report": report})

    def refine(
        self,
        section: Section,
        max_iterations: int,
        quality_threshold: float,
        *,
        context: dict[str, Any] | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> RefinementResult:
        context = context or {}

        initial = self._evaluate(self._call(lambda: self.generator.generate(section, context)))
        attempts = [initial]
        best = initial
        best_history = [best.score]
        converged = best.score >= quality_threshold
        logger.debug("%s initial score %.2f", section.id, initial.score)

        iterations = 0
        while not converged and iterations < max_iterations:
            if should_cancel is not None and should_cancel():
                raise RunCancelled(f"Cancelled while refining {section.id}")

            prior = best
            try:
                attempt = self._call(lambda: self.generator.generate(section, context, prior_attempt=prior))
            except GenerationFatal as e:
                logger.warning("Refinement of %s stopped, keeping best attempt: %s", section.id, e)
                self.callbacks.on_warning(f"{section.id}: refinement stopped ({e})")
                break

            iterations += 1
            # Numbered by the loop; the prompt may build on an earlier best attempt
            attempt = self._evaluate(attempt.model_copy(update={"iteration": iterations}))
            attempts.append(attempt)
            self.callbacks.on_refinement_iteration(section.id, iterations, attempt.score)

            if attempt.score > best.score:
                best = attempt
            best_history.append(best.score)

            if best.score >= quality_threshold:
                converged = True
            elif len(best_history) >= 3 and best_history[-1] - best_history[-3] < self.plateau_epsilon:
                logger.info("%s plateaued at %.2f after %d iteration(s)", section.id, best.score, iterations)
                converged = True

        improvement = QualityImprovement(
            before=initial.score,
            after=best.score,
            improvement=round(best.score - initial.score, 2),
        )
        final_section = section.model_copy(update={
            "html": best.candidate_html,
            "css": best.candidate_css,
            "editable_fields": list(best.fields),
            "quality_score": best.score,
            "quality_report": best.report,
            "refinement": improvement,
        })
        return RefinementResult(
            final_section=final_section,
            attempts=attempts,
            converged=converged,
            threshold_met=best.score >= quality_threshold,
            quality_improvement=improvement,
        )
