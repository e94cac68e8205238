"""ContentGenerator: prompt construction and backend calls for one section."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Any

from .backend import GenerativeBackend, describe_context
from .errors import BackendError, GenerationFatal, GenerationTransient
from .models import EditableField, GenerationAttempt, Section
from .tools.section_splitter import dedupe_field_ids

logger = logging.getLogger(__name__)


def slugify_field_id(value: str) -> str:
    slug = re.sub(r"[^a-z0-9_]+", "_", value.strip().lower())
    slug = re.sub(r"_+", "_", slug).strip("_")
    if not slug or not slug[0].isalpha():
        slug = f"field_{slug}".rstrip("_")
    return slug


def _normalise_fields(fields: list[EditableField]) -> list[EditableField]:
    slugged = [f.model_copy(update={"id": slugify_field_id(f.id)}) for f in fields]
    return [f.model_copy(update={"name": f.name or f.id}) for f in dedupe_field_ids(slugged)]


def _format_issues(attempt: GenerationAttempt) -> list[str]:
    if attempt.report is None:
        return []
    lines = []
    for issue in attempt.report.errors + attempt.report.warnings:
        line = f"- [{issue.severity.value}] {issue.dimension.value}/{issue.code}: {issue.message}"
        if issue.fix:
            line += f" (fix: {issue.fix})"
        lines.append(line)
    return lines


def build_prompt(
    section: Section,
    context: dict[str, Any],
    prior_attempt: GenerationAttempt | None = None,
) -> str:
    """Build the generation prompt; refinement prompts add a delta block."""
    fields_json = json.dumps(
        [f.model_dump(include={"id", "type", "label", "default_value"}) for f in section.editable_fields],
        ensure_ascii=False,
        default=str,
    )
    parts = [
        f"Section: {section.name or section.id} (type: {section.type.value}, position {section.order + 1})",
        f"Design context: {describe_context(context)}",
        f"Detected editable fields: {fields_json}",
    ]
    if section.html:
        parts.append(f"Source markup:\n```html\n{section.html}\n```")

    if prior_attempt is not None:
        issues = _format_issues(prior_attempt)
        parts.append(
            f"Your previous version (iteration {prior_attempt.iteration}) scored "
            f"{prior_attempt.score:.1f}/100. Keep what works and fix these issues:"
        )
        parts.append("\n".join(issues) if issues else "- (no specific issues reported; polish accessibility and responsiveness)")
        parts.append(f"Previous markup:\n```html\n{prior_attempt.candidate_html}\n```")
        if prior_attempt.candidate_css:
            parts.append(f"Previous CSS:\n```css\n{prior_attempt.candidate_css}\n```")

    parts.append("Return ONLY the JSON object with html, css and fields.")
    return "\n\n".join(parts)


class ContentGenerator:
    """Produce candidate markup for a section through a generative backend."""

    def __init__(self, backend: GenerativeBackend) -> None:
        self.backend = backend

    def generate(
        self,
        section: Section,
        context: dict[str, Any],
        prior_attempt: GenerationAttempt | None = None,
    ) -> GenerationAttempt:
        prompt = build_prompt(section, context, prior_attempt)
        digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]
        iteration = prior_attempt.iteration + 1 if prior_attempt is not None else 0

        try:
            response = self.backend.generate(prompt, {**context, "role": "generator", "section_id": section.id})
        except BackendError as e:
            if e.retryable:
                raise GenerationTransient(f"{section.id}: backend {e.kind}: {e}") from e
            raise GenerationFatal(f"{section.id}: backend rejected request: {e}") from e

        if not response.html.strip():
            raise GenerationFatal(f"{section.id}: backend returned no markup")

        fields = _normalise_fields(response.fields) if response.fields else list(section.editable_fields)
        logger.debug(
            "Generated %s iteration %d (%d chars, %d fields, %d tokens)",
            section.id, iteration, len(response.html), len(fields), response.token_usage,
        )
        return GenerationAttempt(
            section_id=section.id,
            iteration=iteration,
            prompt_digest=digest,
            candidate_html=response.html,
            candidate_css=response.css,
            fields=fields,
            token_usage=response.token_usage,
            model=response.model,
        )
