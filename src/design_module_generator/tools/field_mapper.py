"""Template Mapping: reconcile section fields with the platform vocabulary."""

from __future__ import annotations

import logging

from ..models import EditableField, SchemaVocabulary, Section

logger = logging.getLogger(__name__)

FIELD_TYPE_ALIASES: dict[str, str] = {
    "rich_text": "richtext",
    "rich-text": "richtext",
    "html": "richtext",
    "paragraph": "richtext",
    "string": "text",
    "heading": "text",
    "textfield": "text",
    "multiline": "textarea",
    "img": "image",
    "picture": "image",
    "link": "url",
    "href": "url",
    "bool": "boolean",
    "checkbox": "boolean",
    "toggle": "boolean",
    "select": "choice",
    "dropdown": "choice",
    "radio": "choice",
    "colour": "color",
    "integer": "number",
    "float": "number",
    "datetime": "date",
}


def _label_for(field_id: str) -> str:
    return field_id.replace("_", " ").strip().capitalize()


class FieldMapper:
    """Normalise field types and fill editor metadata.

    Never raises: problems are recorded in ``section.mapping_issues``.
    """

    def __init__(self, vocabulary: SchemaVocabulary | None = None) -> None:
        self.vocabulary = vocabulary

    def map_field(self, field: EditableField) -> tuple[EditableField, str | None]:
        raw_type = field.type.strip().lower()
        mapped_type = FIELD_TYPE_ALIASES.get(raw_type, raw_type)
        updated = field.model_copy(update={
            "type": mapped_type,
            "name": field.name or field.id,
            "label": field.label or _label_for(field.id),
        })
        issue = None
        if self.vocabulary is not None and mapped_type not in self.vocabulary.valid_field_types:
            issue = f"Field {field.id!r}: type {field.type!r} has no mapping in schema {self.vocabulary.version}"
        return updated, issue

    def map_section(self, section: Section) -> Section:
        fields: list[EditableField] = []
        issues: list[str] = []
        for f in section.editable_fields:
            mapped, issue = self.map_field(f)
            if mapped.type != f.type:
                logger.debug("Mapped field %s type %s -> %s", f.id, f.type, mapped.type)
            if issue:
                issues.append(issue)
            fields.append(mapped)
        return section.model_copy(update={
            "editable_fields": fields,
            "mapping_issues": section.mapping_issues + issues,
        })
