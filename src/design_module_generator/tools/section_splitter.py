"""Section Detection: split a design asset into typed, ordered sections.

HTML inputs are analysed deterministically: top-level regions become
sections, typed by tag, then class/id keywords, then position and content.
Image inputs are sent to the layout detector agent through the generative
backend.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from ..agents.layout_detector import DETECTION_PROMPT, parse_detected_layout
from ..backend import GenerativeBackend
from ..errors import GenerationFatal
from ..models import (
    BoundingBox,
    DesignInput,
    DetectedRegion,
    EditableField,
    Section,
    SectionType,
)
from .html_tree import Element, ParsedHtml, parse_html

logger = logging.getLogger(__name__)

# (x, y, width, height) used when a region has no detected geometry.
DEFAULT_BOUNDS: dict[SectionType, tuple[float, float, float, float]] = {
    SectionType.HEADER: (0, 0, 800, 80),
    SectionType.NAVIGATION: (0, 60, 800, 50),
    SectionType.HERO: (0, 120, 800, 300),
    SectionType.CONTENT: (50, 400, 500, 200),
    SectionType.SIDEBAR: (600, 400, 200, 300),
    SectionType.FOOTER: (0, 800, 800, 100),
}

TAG_TYPES: dict[str, SectionType] = {
    "header": SectionType.HEADER,
    "nav": SectionType.NAVIGATION,
    "footer": SectionType.FOOTER,
    "aside": SectionType.SIDEBAR,
    "main": SectionType.CONTENT,
    "article": SectionType.CONTENT,
}

KEYWORD_TYPES: list[tuple[frozenset[str], SectionType]] = [
    (frozenset({"hero", "banner", "jumbotron", "masthead", "splash"}), SectionType.HERO),
    (frozenset({"navbar", "nav", "navigation", "menu"}), SectionType.NAVIGATION),
    (frozenset({"header", "topbar", "top"}), SectionType.HEADER),
    (frozenset({"footer", "bottom", "colophon"}), SectionType.FOOTER),
    (frozenset({"sidebar", "aside", "rail"}), SectionType.SIDEBAR),
    (frozenset({"content", "features", "feature", "about", "main", "article", "body"}), SectionType.CONTENT),
]

TYPE_ALIASES: dict[str, SectionType] = {
    "nav": SectionType.NAVIGATION,
    "navbar": SectionType.NAVIGATION,
    "menu": SectionType.NAVIGATION,
    "banner": SectionType.HERO,
    "jumbotron": SectionType.HERO,
    "features": SectionType.CONTENT,
    "feature": SectionType.CONTENT,
    "main": SectionType.CONTENT,
    "body": SectionType.CONTENT,
    "aside": SectionType.SIDEBAR,
    "topbar": SectionType.HEADER,
}

NON_CONTENT_TAGS = frozenset({"script", "style", "link", "meta", "noscript", "template", "br", "hr", "head", "title"})
WRAPPER_TAGS = frozenset({"div", "body", "html"})
COPYRIGHT_RE = re.compile(r"©|\(c\)|copyright|all rights reserved", re.IGNORECASE)
MAX_FIELDS_PER_SECTION = 20


def normalize_section_type(value: str) -> SectionType:
    key = value.strip().lower()
    try:
        return SectionType(key)
    except ValueError:
        return TYPE_ALIASES.get(key, SectionType.UNKNOWN)


def default_bounds(section_type: SectionType, index: int) -> BoundingBox:
    if section_type in DEFAULT_BOUNDS:
        x, y, w, h = DEFAULT_BOUNDS[section_type]
    else:
        x, y, w, h = index * 50, index * 100, 400, 150
    return BoundingBox(x=x, y=y, width=w, height=h)


def detection_confidence(section_type: SectionType, fields: list[EditableField], html: str) -> float:
    """Heuristic confidence in ``[0.7, 0.95]`` for a detected section."""
    confidence = 0.7
    if fields:
        confidence += 0.1
    if section_type in (SectionType.HEADER, SectionType.HERO, SectionType.FOOTER):
        confidence += 0.1
    if len(html) > 100:
        confidence += 0.05
    return round(min(confidence, 0.95), 4)


def dedupe_field_ids(fields: list[EditableField]) -> list[EditableField]:
    """Suffix repeated ids (``x``, ``x_2``, ``x_3``) so ids are unique."""
    seen: dict[str, int] = {}
    result: list[EditableField] = []
    for f in fields:
        if f.id not in seen:
            seen[f.id] = 1
            result.append(f)
            continue
        n = seen[f.id] + 1
        while f"{f.id}_{n}" in seen:
            n += 1
        seen[f.id] = n
        new_id = f"{f.id}_{n}"
        seen[new_id] = 1
        result.append(f.model_copy(update={"id": new_id, "name": new_id}))
    return result


# ---------------------------------------------------------------------------
# HTML analysis
# ---------------------------------------------------------------------------

def _keyword_tokens(el: Element) -> set[str]:
    raw = f"{el.attrs.get('class', '')} {el.attrs.get('id', '')} {el.attrs.get('role', '')}"
    return {t for t in re.split(r"[\s_\-]+", raw.lower()) if t}


def _has_content(el: Element) -> bool:
    return bool(el.text_content()) or bool(el.find_all("img", "svg", "video", "picture"))


def _find_regions(parsed: ParsedHtml) -> list[Element]:
    """Top-level content regions, descending through single wrapper divs."""
    container = parsed.root
    while True:
        children = [c for c in container.children if c.tag not in NON_CONTENT_TAGS]
        if len(children) == 1 and children[0].tag in WRAPPER_TAGS:
            container = children[0]
            continue
        return [c for c in children if _has_content(c)]


def classify_region(el: Element, index: int, count: int) -> SectionType:
    if el.tag in TAG_TYPES:
        return TAG_TYPES[el.tag]

    tokens = _keyword_tokens(el)
    if el.attrs.get("role") == "banner":
        return SectionType.HEADER
    for keywords, section_type in KEYWORD_TYPES:
        if tokens & keywords:
            return section_type

    links = el.find_all("a")
    if index == 0 and len(links) >= 2 and not el.find_all("h1"):
        return SectionType.HEADER
    if index == count - 1 and count > 1 and COPYRIGHT_RE.search(el.text_content()):
        return SectionType.FOOTER
    if el.find_all("h1") and index <= 1:
        return SectionType.HERO
    if el.tag in ("section", "div"):
        return SectionType.CONTENT
    return SectionType.UNKNOWN


def _selector_for(el: Element, nth: int) -> str:
    if el.attrs.get("id"):
        return f"#{el.attrs['id']}"
    if el.classes:
        return f"{el.tag}.{el.classes[0]}"
    return f"{el.tag}:nth-of-type({nth})"


def extract_fields(region: Element, section_type: SectionType) -> list[EditableField]:
    """Editable fields from headings, paragraphs, images, links and checkboxes."""
    prefix = section_type.value if section_type != SectionType.UNKNOWN else "section"
    fields: list[EditableField] = []
    tag_counts: dict[str, int] = {}

    for el in region.iter():
        if el is region:
            continue
        tag_counts[el.tag] = tag_counts.get(el.tag, 0) + 1
        selector = _selector_for(el, tag_counts[el.tag])
        text = el.text_content()

        if el.tag in ("h1", "h2", "h3", "h4", "h5", "h6") and text:
            fields.append(EditableField(
                id=f"{prefix}_heading", label="Heading", type="text",
                selector=selector, default_value=text, required=el.tag == "h1",
            ))
        elif el.tag == "p" and text:
            fields.append(EditableField(
                id=f"{prefix}_text", label="Text", type="richtext",
                selector=selector, default_value=text,
            ))
        elif el.tag == "img":
            fields.append(EditableField(
                id=f"{prefix}_image", label="Image", type="image", selector=selector,
                default_value={"src": el.attrs.get("src", ""), "alt": el.attrs.get("alt", "")},
            ))
        elif el.tag == "a" and el.attrs.get("href"):
            fields.append(EditableField(
                id=f"{prefix}_link", label=text or "Link", type="url",
                selector=selector, default_value=el.attrs["href"],
            ))
        elif el.tag == "input" and el.attrs.get("type") == "checkbox":
            fields.append(EditableField(
                id=f"{prefix}_toggle", label="Toggle", type="boolean",
                selector=selector, default_value="checked" in el.attrs,
            ))
        if len(fields) >= MAX_FIELDS_PER_SECTION:
            break

    fields = dedupe_field_ids(fields)
    return [f.model_copy(update={"name": f.name or f.id}) for f in fields]


def _section_name(el: Element | None, section_type: SectionType, index: int) -> str:
    if el is not None:
        label = el.attrs.get("aria-label") or el.attrs.get("id")
        if label:
            return label
    return f"{section_type.value.capitalize()} {index + 1}"


# ---------------------------------------------------------------------------
# Splitter
# ---------------------------------------------------------------------------

class SectionSplitter:
    """Detect sections in HTML or image designs.

    *backend* is only needed for image inputs. *call_with_retry* wraps the
    detector call (normally ``ErrorRecoverySystem.with_retry``).
    """

    def __init__(
        self,
        backend: GenerativeBackend | None = None,
        *,
        call_with_retry: Callable | None = None,
    ) -> None:
        self.backend = backend
        self.call_with_retry = call_with_retry or (lambda op: op())

    def split(self, design: DesignInput) -> list[Section]:
        if design.is_image:
            sections = self._split_image(design)
        else:
            sections = self.split_markup(design.text)
        logger.info("Detected %d section(s) in %s", len(sections), design.filename or design.mime_type)
        return sections

    def split_markup(self, markup: str) -> list[Section]:
        parsed = parse_html(markup)
        regions = _find_regions(parsed)
        sections: list[Section] = []
        for index, el in enumerate(regions):
            section_type = classify_region(el, index, len(regions))
            html = parsed.slice(el)
            fields = extract_fields(el, section_type)
            sections.append(Section(
                id=f"section_{index + 1}_{section_type.value}",
                name=_section_name(el, section_type, index),
                order=index,
                type=section_type,
                bounding_box=default_bounds(section_type, index),
                html=html,
                editable_fields=fields,
                detection_confidence=detection_confidence(section_type, fields, html),
            ))
        return sections

    def _split_image(self, design: DesignInput) -> list[Section]:
        if self.backend is None:
            raise GenerationFatal("Image designs need a generative backend for layout detection")

        context = {"role": "detector", "image_data_url": design.data_url, "filename": design.filename}
        prompt = DETECTION_PROMPT.format(filename=design.filename or "design")
        response = self.call_with_retry(lambda: self.backend.generate(prompt, context))

        layout, err = parse_detected_layout(response.raw or response.html)
        if layout is None:
            raise GenerationFatal(f"Layout detector returned unparseable output: {err}")
        return [self._section_from_region(region, i) for i, region in enumerate(layout.regions)]

    def _section_from_region(self, region: DetectedRegion, index: int) -> Section:
        section_type = normalize_section_type(region.type)
        fields = dedupe_field_ids(region.editable_fields)
        if not fields and region.html:
            parsed = parse_html(region.html)
            fields = extract_fields(parsed.root, section_type)
        return Section(
            id=f"section_{index + 1}_{section_type.value}",
            name=region.name or _section_name(None, section_type, index),
            order=index,
            type=section_type,
            bounding_box=region.bounding_box or default_bounds(section_type, index),
            html=region.html,
            editable_fields=fields,
            detection_confidence=detection_confidence(section_type, fields, region.html),
        )
