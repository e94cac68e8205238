"""Lightweight element tree built on ``html.parser``.

Keeps source offsets for every element so callers can slice the original
markup of a region, and records structural problems (unclosed or stray
tags) met while parsing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Iterator

VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "source", "track", "wbr",
})

# End tags the HTML spec lets authors omit.
OPTIONAL_END_TAGS = frozenset({"li", "dt", "dd", "option", "tr", "td", "th", "thead", "tbody", "tfoot"})


@dataclass
class Element:
    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    children: list[Element] = field(default_factory=list)
    text_parts: list[str] = field(default_factory=list)
    start: int = 0
    end: int = 0
    parent: Element | None = field(default=None, repr=False)

    @property
    def classes(self) -> list[str]:
        return self.attrs.get("class", "").split()

    def iter(self) -> Iterator[Element]:
        """Yield this element and all descendants in document order."""
        yield self
        for child in self.children:
            yield from child.iter()

    def find_all(self, *tags: str) -> list[Element]:
        wanted = set(tags)
        return [el for el in self.iter() if el is not self and el.tag in wanted]

    def text_content(self) -> str:
        parts = list(self.text_parts)
        for child in self.children:
            parts.append(child.text_content())
        return " ".join(p.strip() for p in parts if p.strip())

    def has_ancestor(self, *tags: str) -> bool:
        node = self.parent
        while node is not None:
            if node.tag in tags:
                return True
            node = node.parent
        return False


class _TreeBuilder(HTMLParser):
    def __init__(self, source: str) -> None:
        super().__init__(convert_charrefs=True)
        self._source = source
        self._line_starts = [0]
        for i, ch in enumerate(source):
            if ch == "\n":
                self._line_starts.append(i + 1)
        self.root = Element(tag="#root", end=len(source))
        self._stack: list[Element] = [self.root]
        self.problems: list[str] = []

    def _offset(self) -> int:
        line, col = self.getpos()
        return self._line_starts[line - 1] + col

    def _tag_end(self, offset: int) -> int:
        close = self._source.find(">", offset)
        return len(self._source) if close == -1 else close + 1

    def handle_starttag(self, tag: str, attrs: list) -> None:
        offset = self._offset()
        parent = self._stack[-1]
        el = Element(
            tag=tag,
            attrs={k: (v or "") for k, v in attrs},
            start=offset,
            parent=parent,
        )
        parent.children.append(el)
        if tag in VOID_ELEMENTS:
            el.end = self._tag_end(offset)
        else:
            self._stack.append(el)

    def handle_startendtag(self, tag: str, attrs: list) -> None:
        offset = self._offset()
        parent = self._stack[-1]
        parent.children.append(Element(
            tag=tag,
            attrs={k: (v or "") for k, v in attrs},
            start=offset,
            end=self._tag_end(offset),
            parent=parent,
        ))

    def handle_endtag(self, tag: str) -> None:
        if tag in VOID_ELEMENTS:
            return
        offset = self._offset()
        open_tags = [el.tag for el in self._stack[1:]]
        if tag not in open_tags:
            self.problems.append(f"stray closing tag </{tag}>")
            return
        end = self._tag_end(offset)
        while len(self._stack) > 1:
            el = self._stack.pop()
            if el.tag == tag:
                el.end = end
                return
            el.end = offset
            if el.tag not in OPTIONAL_END_TAGS:
                self.problems.append(f"<{el.tag}> closed implicitly by </{tag}>")

    def handle_data(self, data: str) -> None:
        self._stack[-1].text_parts.append(data)

    def close(self) -> None:
        super().close()
        while len(self._stack) > 1:
            el = self._stack.pop()
            el.end = len(self._source)
            if el.tag not in OPTIONAL_END_TAGS and el.tag not in ("html", "body"):
                self.problems.append(f"unclosed <{el.tag}>")


@dataclass
class ParsedHtml:
    root: Element
    problems: list[str]
    source: str

    def slice(self, el: Element) -> str:
        return self.source[el.start:el.end]


def parse_html(markup: str) -> ParsedHtml:
    """Parse *markup* into an element tree; never raises on malformed input."""
    builder = _TreeBuilder(markup)
    builder.feed(markup)
    builder.close()
    return ParsedHtml(root=builder.root, problems=builder.problems, source=markup)
