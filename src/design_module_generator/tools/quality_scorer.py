"""Deterministic multi-dimension quality scoring for generated markup.

Each dimension starts at 100 and loses 15 points per error and 5 per
warning, clamped to ``[0, 100]``. Suggestions are reported but never
deducted. The composite is a fixed weighted sum of the five dimensions.
The scorer reads no clock and has no randomness: identical candidates
always get identical reports.
"""

from __future__ import annotations

import re

from ..models import (
    Candidate,
    ModuleDefinition,
    QualityDimension,
    QualityIssue,
    QualityReport,
    SchemaVocabulary,
    Severity,
)
from .html_tree import Element, ParsedHtml, parse_html

WEIGHTS: dict[QualityDimension, float] = {
    QualityDimension.HTML_VALIDITY: 0.30,
    QualityDimension.ACCESSIBILITY: 0.25,
    QualityDimension.FRAMEWORK_OPTIMIZATION: 0.20,
    QualityDimension.EDITABILITY: 0.15,
    QualityDimension.PLATFORM_COMPLIANCE: 0.10,
}

ERROR_PENALTY = 15
WARNING_PENALTY = 5

FIELD_ID_RE = re.compile(r"^[a-z][a-z0-9_]*$")
_MODULE_REF_RE = re.compile(r"\bmodule\.([A-Za-z_]\w*)")
_PLACEHOLDER_RE = re.compile(r"\{\{-?\s*([A-Za-z_]\w*)")
_RESPONSIVE_RE = re.compile(r"(?:^|\s)(?:sm|md|lg|xl|2xl):")

# Names available in templates without a module field behind them.
TEMPLATE_GLOBALS = frozenset({
    "module", "content", "request", "site_settings", "loop", "widget",
    "page_meta", "standard_header_includes", "standard_footer_includes",
})

SEMANTIC_TAGS = ("header", "nav", "main", "section", "article", "aside", "footer")
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
BLOCK_TAGS = frozenset({
    "div", "section", "article", "header", "footer", "nav", "aside", "main",
    "ul", "ol", "table", "form", "p", "blockquote", "pre", "figure",
    *HEADING_TAGS,
})
DEPRECATED_TAGS = ("font", "center", "marquee", "blink")
WIDGET_KEYWORDS = ("dropdown", "modal", "tab", "tabs", "accordion", "carousel", "slider")
LONG_CLASS_THRESHOLD = 200


def _issue(
    dimension: QualityDimension, severity: Severity, code: str, message: str, fix: str = "",
) -> QualityIssue:
    return QualityIssue(dimension=dimension, severity=severity, code=code, message=message, fix=fix)


def referenced_field_names(markup: str) -> set[str]:
    """Field names referenced by ``{{ name }}`` or ``module.name`` placeholders."""
    names = set(_MODULE_REF_RE.findall(markup))
    names.update(n for n in _PLACEHOLDER_RE.findall(markup) if n not in TEMPLATE_GLOBALS)
    return names


# ---------------------------------------------------------------------------
# Dimension checks
# ---------------------------------------------------------------------------

def _check_html_validity(candidate: Candidate, parsed: ParsedHtml) -> list[QualityIssue]:
    dim = QualityDimension.HTML_VALIDITY
    if not candidate.html.strip():
        return [_issue(dim, Severity.ERROR, "empty_markup", "Candidate has no markup",
                       "Generate markup for the section")]

    issues = [
        _issue(dim, Severity.ERROR, "malformed_markup", problem, "Balance opening and closing tags")
        for problem in parsed.problems
    ]
    root = parsed.root

    for p in root.find_all("p"):
        nested = [el.tag for el in p.iter() if el is not p and el.tag in BLOCK_TAGS]
        if nested:
            issues.append(_issue(dim, Severity.ERROR, "block_in_paragraph",
                                 f"<p> contains block element <{nested[0]}>",
                                 "Move block elements out of the paragraph"))

    ids: dict[str, int] = {}
    for el in root.iter():
        if el.attrs.get("id"):
            ids[el.attrs["id"]] = ids.get(el.attrs["id"], 0) + 1
    for dup in sorted(k for k, v in ids.items() if v > 1):
        issues.append(_issue(dim, Severity.ERROR, "duplicate_id",
                             f"id {dup!r} is used more than once", "Make element ids unique"))

    headings = root.find_all(*HEADING_TAGS)
    if not headings:
        issues.append(_issue(dim, Severity.WARNING, "missing_heading",
                             "No heading element found", "Add a heading that names the section"))
    h1_count = sum(1 for h in headings if h.tag == "h1")
    if h1_count > 1:
        issues.append(_issue(dim, Severity.WARNING, "multiple_h1",
                             f"Found {h1_count} <h1> elements", "Keep a single <h1> per module"))

    for tag in DEPRECATED_TAGS:
        if root.find_all(tag):
            issues.append(_issue(dim, Severity.WARNING, "deprecated_element",
                                 f"Deprecated element <{tag}>", "Replace with CSS styling"))

    if not root.find_all(*SEMANTIC_TAGS):
        issues.append(_issue(dim, Severity.SUGGESTION, "no_semantic_elements",
                             "No semantic HTML5 elements used",
                             "Wrap regions in <section>, <header>, <nav> or <footer>"))
    return issues


def _has_accessible_label(el: Element, label_targets: set[str]) -> bool:
    if el.attrs.get("aria-label") or el.attrs.get("aria-labelledby") or el.attrs.get("title"):
        return True
    if el.attrs.get("id") and el.attrs["id"] in label_targets:
        return True
    return el.has_ancestor("label")


def _check_accessibility(parsed: ParsedHtml) -> list[QualityIssue]:
    dim = QualityDimension.ACCESSIBILITY
    root = parsed.root
    issues: list[QualityIssue] = []

    for img in root.find_all("img"):
        if "alt" not in img.attrs:
            issues.append(_issue(dim, Severity.ERROR, "img_missing_alt",
                                 f"<img src={img.attrs.get('src', '')!r}> has no alt attribute",
                                 "Add descriptive alt text"))
        elif not img.attrs["alt"].strip() and img.attrs.get("role") != "presentation":
            issues.append(_issue(dim, Severity.WARNING, "img_empty_alt",
                                 f"<img src={img.attrs.get('src', '')!r}> has empty alt text",
                                 "Describe the image or mark it role=\"presentation\""))

    label_targets = {el.attrs.get("for", "") for el in root.find_all("label")}
    for control in root.find_all("input", "select", "textarea"):
        if control.attrs.get("type") in ("hidden", "submit", "button", "reset", "image"):
            continue
        if not _has_accessible_label(control, label_targets):
            issues.append(_issue(dim, Severity.ERROR, "input_missing_label",
                                 f"<{control.tag}> has no associated label",
                                 "Add a <label for=...> or aria-label"))

    for button in root.find_all("button"):
        if not button.text_content() and not _has_accessible_label(button, label_targets):
            issues.append(_issue(dim, Severity.ERROR, "button_missing_name",
                                 "<button> has no accessible name",
                                 "Add button text or aria-label"))

    for link in root.find_all("a"):
        has_img_alt = any(img.attrs.get("alt") for img in link.find_all("img"))
        if not link.text_content() and not has_img_alt and not link.attrs.get("aria-label"):
            issues.append(_issue(dim, Severity.WARNING, "link_missing_text",
                                 f"Link to {link.attrs.get('href', '')!r} has no text",
                                 "Add link text or aria-label"))

    for el in root.iter():
        tokens = {t.lower() for c in el.classes for t in re.split(r"[-_]", c)}
        if tokens & set(WIDGET_KEYWORDS):
            has_aria = "role" in el.attrs or any(k.startswith("aria-") for k in el.attrs)
            if not has_aria:
                issues.append(_issue(dim, Severity.WARNING, "widget_missing_aria",
                                     f"Interactive <{el.tag} class={el.attrs.get('class')!r}> lacks ARIA attributes",
                                     "Add role and aria-* state attributes"))

    last_level = 0
    for heading in root.find_all(*HEADING_TAGS):
        level = int(heading.tag[1])
        if last_level and level > last_level + 1:
            issues.append(_issue(dim, Severity.WARNING, "heading_level_skipped",
                                 f"Heading jumps from h{last_level} to h{level}",
                                 "Use sequential heading levels"))
        last_level = level
    return issues


def _check_framework_optimization(candidate: Candidate, parsed: ParsedHtml) -> list[QualityIssue]:
    dim = QualityDimension.FRAMEWORK_OPTIMIZATION
    root = parsed.root
    issues: list[QualityIssue] = []
    class_attrs = [el.attrs["class"] for el in root.iter() if el.attrs.get("class")]

    if candidate.html.strip() and not any(_RESPONSIVE_RE.search(c) for c in class_attrs):
        issues.append(_issue(dim, Severity.WARNING, "no_responsive_classes",
                             "No responsive breakpoint classes (sm:, md:, lg:) found",
                             "Add breakpoint utilities for small and large screens"))

    for cls in class_attrs:
        tokens = cls.split()
        if "grid" in tokens and not any("grid-cols-" in t for t in tokens):
            issues.append(_issue(dim, Severity.WARNING, "grid_without_columns",
                                 "Grid container has no column definition",
                                 "Add grid-cols-* classes"))
        if len(cls) >= LONG_CLASS_THRESHOLD:
            issues.append(_issue(dim, Severity.WARNING, "long_class_list",
                                 f"Class attribute is {len(cls)} characters long",
                                 "Extract repeated utilities into a component class"))

    inline_styles = sum(1 for el in root.iter() if el.attrs.get("style"))
    if inline_styles:
        issues.append(_issue(dim, Severity.WARNING, "inline_style",
                             f"{inline_styles} element(s) use inline style attributes",
                             "Move styling into classes or the module stylesheet"))

    if "!important" in candidate.css:
        issues.append(_issue(dim, Severity.WARNING, "important_in_css",
                             "Stylesheet uses !important", "Raise selector specificity instead"))
    return issues


def _check_editability(candidate: Candidate) -> list[QualityIssue]:
    dim = QualityDimension.EDITABILITY
    issues: list[QualityIssue] = []
    if not candidate.fields:
        return [_issue(dim, Severity.ERROR, "no_editable_fields",
                       "Candidate exposes no editable fields",
                       "Declare fields for headings, copy, images and links")]

    seen: set[str] = set()
    for f in candidate.fields:
        if f.id in seen:
            issues.append(_issue(dim, Severity.ERROR, "duplicate_field_id",
                                 f"Field id {f.id!r} is declared more than once", "Rename one of the fields"))
        seen.add(f.id)

    referenced = referenced_field_names(candidate.html)
    for f in candidate.fields:
        if f.id not in referenced and not f.selector:
            issues.append(_issue(dim, Severity.WARNING, "unbound_field",
                                 f"Field {f.id!r} is not referenced in the markup",
                                 f"Insert {{{{ module.{f.id} }}}} where the content belongs"))
        if f.required and f.default_value in (None, ""):
            issues.append(_issue(dim, Severity.SUGGESTION, "required_without_default",
                                 f"Required field {f.id!r} has no default value",
                                 "Provide a default so the module renders before editing"))
        if not f.label:
            issues.append(_issue(dim, Severity.SUGGESTION, "missing_label",
                                 f"Field {f.id!r} has no label", "Add an editor-facing label"))
    return issues


def _check_platform_compliance(
    candidate: Candidate, vocabulary: SchemaVocabulary | None,
) -> list[QualityIssue]:
    dim = QualityDimension.PLATFORM_COMPLIANCE
    issues: list[QualityIssue] = []

    if vocabulary is not None:
        field_types = set(vocabulary.valid_field_types)
        for f in candidate.fields:
            if f.type not in field_types:
                issues.append(_issue(dim, Severity.ERROR, "unknown_field_type",
                                     f"Field {f.id!r} has unsupported type {f.type!r}",
                                     "Use a field type from the schema vocabulary"))
        content_types = set(vocabulary.valid_content_types)
        for ct in candidate.content_types:
            if ct not in content_types:
                issues.append(_issue(dim, Severity.ERROR, "unknown_content_type",
                                     f"Unsupported content type {ct!r}",
                                     "Use a content type from the schema vocabulary"))
        reserved = {name.lower() for name in vocabulary.reserved_field_names}
        for f in candidate.fields:
            if f.id.lower() in reserved:
                issues.append(_issue(dim, Severity.WARNING, "reserved_field_name",
                                     f"Field id {f.id!r} is a reserved name",
                                     f"Rename to e.g. {f.id}_text"))

    for f in candidate.fields:
        if not FIELD_ID_RE.match(f.id):
            issues.append(_issue(dim, Severity.ERROR, "invalid_field_id",
                                 f"Field id {f.id!r} is not snake_case",
                                 "Use lowercase letters, digits and underscores, starting with a letter"))

    declared = {f.id for f in candidate.fields}
    for name in sorted(referenced_field_names(candidate.html) - declared):
        issues.append(_issue(dim, Severity.ERROR, "undefined_field_reference",
                             f"Markup references undefined field {name!r}",
                             "Declare the field or remove the placeholder"))
    return issues


# ---------------------------------------------------------------------------
# Scorer
# ---------------------------------------------------------------------------

def _dimension_score(issues: list[QualityIssue]) -> float:
    errors = sum(1 for i in issues if i.severity == Severity.ERROR)
    warnings = sum(1 for i in issues if i.severity == Severity.WARNING)
    return float(max(0, min(100, 100 - ERROR_PENALTY * errors - WARNING_PENALTY * warnings)))


class QualityScorer:
    """Score candidates against five fixed-weight quality dimensions.

    *vocabulary* is the default schema for platform-compliance checks; a
    per-call ``schema`` overrides it. Without either, type checks are skipped.
    """

    def __init__(self, vocabulary: SchemaVocabulary | None = None) -> None:
        self.vocabulary = vocabulary

    def score(self, candidate: Candidate, schema: SchemaVocabulary | None = None) -> QualityReport:
        vocabulary = schema or self.vocabulary
        parsed = parse_html(candidate.html)

        by_dimension = {
            QualityDimension.HTML_VALIDITY: _check_html_validity(candidate, parsed),
            QualityDimension.ACCESSIBILITY: _check_accessibility(parsed),
            QualityDimension.FRAMEWORK_OPTIMIZATION: _check_framework_optimization(candidate, parsed),
            QualityDimension.EDITABILITY: _check_editability(candidate),
            QualityDimension.PLATFORM_COMPLIANCE: _check_platform_compliance(candidate, vocabulary),
        }
        scores = {dim: _dimension_score(issues) for dim, issues in by_dimension.items()}
        composite = round(sum(WEIGHTS[dim] * scores[dim] for dim in WEIGHTS), 2)

        all_issues = [i for issues in by_dimension.values() for i in issues]
        return QualityReport(
            **{dim.value: score for dim, score in scores.items()},
            composite=composite,
            errors=[i for i in all_issues if i.severity == Severity.ERROR],
            warnings=[i for i in all_issues if i.severity == Severity.WARNING],
            suggestions=[i for i in all_issues if i.severity == Severity.SUGGESTION],
        )

    def score_module(self, module: ModuleDefinition, schema: SchemaVocabulary | None = None) -> QualityReport:
        return self.score(Candidate.from_module(module), schema=schema)
