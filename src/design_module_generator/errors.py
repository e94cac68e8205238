"""Exception taxonomy for the pipeline.

Every pipeline failure carries a ``kind`` (stable string recorded on the run),
whether it is ``retryable`` and a human-readable ``suggestion``.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for classified pipeline errors."""

    kind = "unknown"
    retryable = False
    suggestion = "Check the logs for details and retry the run."

    def __init__(self, message: str = "", *, suggestion: str | None = None) -> None:
        super().__init__(message or self.kind)
        if suggestion is not None:
            self.suggestion = suggestion


class InputInvalid(PipelineError):
    kind = "InputInvalid"
    suggestion = "Upload a PNG, JPEG, GIF, WebP or HTML file within the size limit."


class NoSectionsDetected(PipelineError):
    kind = "NoSectionsDetected"
    suggestion = "Use a design with clearly separated regions (header, hero, content, footer)."


class GenerationTransient(PipelineError):
    kind = "GenerationTransient"
    retryable = True
    suggestion = "The generation backend was unavailable; retry in a few moments."


class GenerationFatal(PipelineError):
    kind = "GenerationFatal"
    suggestion = "Check the backend configuration and the section content sent to it."


class SchemaIncompatible(PipelineError):
    kind = "SchemaIncompatible"
    suggestion = "Replace unsupported field or content types, or target another schema version."

    def __init__(self, message: str = "", *, issues: list[str] | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.issues = list(issues or [])


class RunCancelled(PipelineError):
    kind = "RunCancelled"
    suggestion = "The run was cancelled on request."


class BackendError(Exception):
    """Raised by generative backends.

    ``kind`` is one of ``timeout``, ``rate_limit`` or ``invalid_request``.
    """

    KINDS = ("timeout", "rate_limit", "invalid_request")

    def __init__(self, kind: str, message: str = "") -> None:
        if kind not in self.KINDS:
            raise ValueError(f"Unknown backend error kind: {kind!r}")
        super().__init__(message or kind)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind in ("timeout", "rate_limit")
