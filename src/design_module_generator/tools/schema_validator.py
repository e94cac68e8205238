"""Schema compatibility checks for modules, packages and sections."""

from __future__ import annotations

import logging

from ..models import (
    EditableField,
    ModuleDefinition,
    ModulePackage,
    SchemaCompatibility,
    SchemaVocabulary,
    Section,
)
from ..schema import DEFAULT_SCHEMA_VERSION, SchemaProvider

logger = logging.getLogger(__name__)


def check_against(
    fields: list[EditableField],
    content_types: list[str],
    vocabulary: SchemaVocabulary,
) -> SchemaCompatibility:
    """Pure check of field and content types against one vocabulary."""
    issues: list[str] = []
    valid_fields = set(vocabulary.valid_field_types)
    valid_content = set(vocabulary.valid_content_types)

    for f in fields:
        if f.type not in valid_fields:
            issues.append(f"Field {f.id!r} uses unknown field type {f.type!r}")
    for ct in content_types:
        if ct not in valid_content:
            issues.append(f"Unknown content type {ct!r}")

    return SchemaCompatibility(
        compatible=not issues,
        schema_version=vocabulary.version,
        issues=issues,
    )


class SchemaValidator:
    """Check modules against versioned schema vocabularies."""

    def __init__(
        self,
        provider: SchemaProvider | None = None,
        *,
        default_version: str = DEFAULT_SCHEMA_VERSION,
        content_types: list[str] | None = None,
    ) -> None:
        self.provider = provider or SchemaProvider()
        self.default_version = default_version
        # Content types assumed for sections, which carry none of their own.
        self.content_types = list(content_types or [])

    def vocabulary(self, schema_version: str | None = None) -> SchemaVocabulary | None:
        return self.provider.get(schema_version or self.default_version)

    def check(
        self,
        module: ModuleDefinition | ModulePackage | Section,
        schema_version: str | None = None,
    ) -> SchemaCompatibility:
        version = schema_version or self.default_version
        vocabulary = self.provider.get(version)
        if vocabulary is None:
            logger.warning("Unknown schema version %s", version)
            return SchemaCompatibility(
                compatible=False,
                schema_version=version,
                issues=[f"Unknown schema version {version!r}"],
            )

        if isinstance(module, Section):
            fields, content_types = module.editable_fields, self.content_types
        elif isinstance(module, ModulePackage):
            fields, content_types = module.field_manifest, module.content_types
        else:
            fields, content_types = module.fields, module.meta.content_types
        return check_against(fields, content_types, vocabulary)
