"""Tests for tools/field_mapper.py."""

from __future__ import annotations

from design_module_generator.models import EditableField, Section
from design_module_generator.tools.field_mapper import FieldMapper


class TestMapField:
    def test_alias_is_normalised(self, vocabulary):
        mapped, issue = FieldMapper(vocabulary).map_field(EditableField(id="body_copy", type="rich_text"))
        assert mapped.type == "richtext"
        assert issue is None

    def test_fills_name_and_label(self):
        mapped, _ = FieldMapper().map_field(EditableField(id="cta_link", type="Link"))
        assert mapped.type == "url"
        assert mapped.name == "cta_link"
        assert mapped.label == "Cta link"

    def test_keeps_existing_label(self):
        mapped, _ = FieldMapper().map_field(EditableField(id="a", label="Headline"))
        assert mapped.label == "Headline"

    def test_unknown_type_reported(self, vocabulary):
        mapped, issue = FieldMapper(vocabulary).map_field(EditableField(id="x", type="hologram"))
        assert mapped.type == "hologram"
        assert "hologram" in issue

    def test_no_vocabulary_never_reports(self):
        _, issue = FieldMapper().map_field(EditableField(id="x", type="hologram"))
        assert issue is None


class TestMapSection:
    def test_issues_appended_not_raised(self, vocabulary):
        section = Section(
            id="s1",
            editable_fields=[
                EditableField(id="a", type="img"),
                EditableField(id="b", type="hologram"),
            ],
            mapping_issues=["earlier"],
        )
        mapped = FieldMapper(vocabulary).map_section(section)
        assert [f.type for f in mapped.editable_fields] == ["image", "hologram"]
        assert mapped.mapping_issues[0] == "earlier"
        assert len(mapped.mapping_issues) == 2
        # Input is left untouched
        assert section.editable_fields[0].type == "img"
