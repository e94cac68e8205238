"""Error classification, retry with exponential backoff, and recovery stats."""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, Field
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import (
    BackendError,
    GenerationFatal,
    GenerationTransient,
    InputInvalid,
    NoSectionsDetected,
    PipelineError,
    RunCancelled,
    SchemaIncompatible,
)
from .models import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

VALIDATION_FAILURE = "ValidationFailure"
UNKNOWN = "unknown"

_SUGGESTIONS: dict[str, str] = {
    cls.kind: cls.suggestion
    for cls in (
        InputInvalid, NoSectionsDetected, GenerationTransient,
        GenerationFatal, SchemaIncompatible, RunCancelled,
    )
}
_SUGGESTIONS[VALIDATION_FAILURE] = "Review the section's quality errors; it was kept but flagged as degraded."
_SUGGESTIONS[UNKNOWN] = PipelineError.suggestion

# Message keywords for exceptions raised outside the pipeline's own taxonomy.
_TRANSIENT_WORDS = ("timeout", "timed out", "network", "connection", "fetch", "rate limit", "unavailable")
_VALIDATION_WORDS = ("validation", "invalid")


class ErrorClassification(BaseModel):
    kind: str = Field(...)
    retryable: bool = Field(default=False)


class ErrorRecoverySystem:
    """Classify errors, retry transient ones, and keep recovery statistics.

    Statistics are shared across runs and guarded by a lock.
    """

    def __init__(
        self,
        retry: RetryConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.retry = retry or RetryConfig()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._total = 0
        self._resolved = 0
        self._by_kind: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, error: BaseException) -> ErrorClassification:
        if isinstance(error, PipelineError):
            return ErrorClassification(kind=error.kind, retryable=error.retryable)
        if isinstance(error, BackendError):
            kind = GenerationTransient.kind if error.retryable else GenerationFatal.kind
            return ErrorClassification(kind=kind, retryable=error.retryable)
        if isinstance(error, (TimeoutError, ConnectionError)):
            return ErrorClassification(kind=GenerationTransient.kind, retryable=True)

        message = str(error).lower()
        if any(word in message for word in _TRANSIENT_WORDS):
            return ErrorClassification(kind=GenerationTransient.kind, retryable=True)
        if any(word in message for word in _VALIDATION_WORDS):
            return ErrorClassification(kind=VALIDATION_FAILURE, retryable=False)
        return ErrorClassification(kind=UNKNOWN, retryable=False)

    def suggestion_for(self, kind: str) -> str:
        return _SUGGESTIONS.get(kind, _SUGGESTIONS[UNKNOWN])

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def _log_retry(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        wait = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            "Attempt %d failed (%s); retrying in %.1fs", state.attempt_number, error, wait,
        )

    def with_retry(
        self,
        operation: Callable[[], T],
        max_attempts: int | None = None,
        base_delay: float | None = None,
        backoff_multiplier: float | None = None,
    ) -> T:
        """Run *operation*, retrying retryable failures with exponential backoff.

        Delay before retry *n* is ``base_delay * backoff_multiplier ** (n - 1)``,
        capped at ``retry.max_delay``. Non-retryable errors propagate at once;
        the last error propagates when attempts run out.
        """
        attempts = max_attempts if max_attempts is not None else self.retry.max_attempts
        delay = base_delay if base_delay is not None else self.retry.base_delay
        multiplier = backoff_multiplier if backoff_multiplier is not None else self.retry.backoff_multiplier
        failures: list[BaseException] = []

        def _retryable(error: BaseException) -> bool:
            retryable = self.classify(error).retryable
            if retryable:
                failures.append(error)
            return retryable

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=delay, exp_base=multiplier, max=self.retry.max_delay),
            retry=retry_if_exception(_retryable),
            reraise=True,
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        result = retrying(operation)
        if failures:
            self.record_outcome(failures[0], resolved=True)
        return result

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def record_outcome(self, error: BaseException, resolved: bool) -> None:
        kind = self.classify(error).kind
        with self._lock:
            self._total += 1
            self._by_kind[kind] += 1
            if resolved:
                self._resolved += 1

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total, resolved = self._total, self._resolved
            by_kind = dict(self._by_kind)
        return {
            "total": total,
            "resolved": resolved,
            "recovery_rate": round(resolved / total, 4) if total else 0.0,
            "by_kind": by_kind,
        }
