"""Final Assembly: merge refined sections into one module package."""

from __future__ import annotations

import logging

from ..models import EditableField, ModulePackage, Section
from .schema_validator import SchemaValidator

logger = logging.getLogger(__name__)


def complexity_weight(section: Section) -> int:
    """Sections with more editable fields count more towards the aggregate."""
    return 1 + len(section.editable_fields)


def aggregate_score(sections: list[Section]) -> float:
    total_weight = sum(complexity_weight(s) for s in sections)
    if not total_weight:
        return 0.0
    weighted = sum(s.quality_score * complexity_weight(s) for s in sections)
    return round(weighted / total_weight, 2)


def dedupe_fields(sections: list[Section]) -> list[EditableField]:
    """Union of section fields by id; the first occurrence wins."""
    manifest: list[EditableField] = []
    seen: set[str] = set()
    for section in sections:
        for f in section.editable_fields:
            if f.id in seen:
                logger.debug("Dropping duplicate field %s from section %s", f.id, section.id)
                continue
            seen.add(f.id)
            manifest.append(f)
    return manifest


class Assembler:
    """Build a ``ModulePackage`` in memory; performs no file I/O."""

    def __init__(
        self,
        validator: SchemaValidator,
        *,
        label: str = "Generated Module",
        content_types: list[str] | None = None,
        schema_version: str | None = None,
    ) -> None:
        self.validator = validator
        self.label = label
        self.content_types = list(content_types or [])
        self.schema_version = schema_version

    def assemble(self, sections: list[Section]) -> ModulePackage:
        ordered = sorted(sections, key=lambda s: s.order)
        frozen = [s.model_copy(deep=True) for s in ordered]

        package = ModulePackage(
            label=self.label,
            html="\n".join(s.html for s in frozen if s.html),
            css="\n".join(s.css for s in frozen if s.css),
            sections=frozen,
            field_manifest=dedupe_fields(frozen),
            content_types=list(self.content_types),
            aggregate_quality_score=aggregate_score(frozen),
        )
        package.schema_compatibility = self.validator.check(package, self.schema_version)
        logger.info(
            "Assembled %d section(s), %d field(s), aggregate score %.2f",
            len(frozen), len(package.field_manifest), package.aggregate_quality_score,
        )
        return package
