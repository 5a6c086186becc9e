"""Markdown rendering for Folio.

The transform pipeline runs in one fixed order:

1. Parse Markdown to an AST (mistune).
2. Apply GFM extensions: tables, strikethrough, task lists, footnotes, URLs.
3. Mark ``$...$`` and ``$$...$$`` math as placeholders.
4. Replace diagram-language fences (``mermaid``) with placeholders.
5. Serialize to HTML, highlighting other fenced code with Pygments.

Math is never typeset here. Placeholders are swapped for widget markup by
:mod:`folio.rehydrate`.

Key classes:
- Heading: A heading collected for the table of contents.
- RenderedDocument: HTML plus the fragments awaiting substitution.
- MarkdownRenderer: Renders Markdown text to a RenderedDocument.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .placeholders import (
    MATH_ATTR,
    MATH_MARKER,
    Fragment,
    FragmentKind,
    decode_source,
    diagram_placeholder,
    math_placeholder,
)

MARKDOWN_PLUGINS = ["table", "strikethrough", "task_lists", "footnotes", "url", "math"]

# Inline math placeholders (group 1 holds the encoded source) or any other tag
_HEADING_MARKUP_RE = re.compile(
    rf'<span class="{MATH_MARKER}"[^>]*\b{MATH_ATTR}="([^"]*)"[^>]*></span>|<[^>]+>'
)


@dataclass
class Heading:
    """Represents a heading extracted from markdown content for TOC generation.

    Attributes:
        id: Anchor ID for the heading (URL-friendly slug).
        text: The text content of the heading.
        level: Heading level (1-6).
    """

    id: str
    text: str
    level: int


@dataclass
class RenderedDocument:
    """Result of rendering one Markdown body.

    Attributes:
        html: Serialized HTML, still holding placeholder elements.
        fragments: Diagram and math sources in document order; one per
            placeholder in ``html``.
        toc: Headings in document order.
    """

    html: str
    fragments: list[Fragment] = field(default_factory=list)
    toc: list[Heading] = field(default_factory=list)

    @property
    def has_math(self) -> bool:
        return any(f.kind is not FragmentKind.DIAGRAM for f in self.fragments)

    @property
    def has_diagrams(self) -> bool:
        return any(f.kind is FragmentKind.DIAGRAM for f in self.fragments)


def _heading_text(html: str) -> str:
    """Plain heading text; inline math keeps its TeX source."""
    return _HEADING_MARKUP_RE.sub(
        lambda m: decode_source(m.group(1)) if m.group(1) is not None else "", html
    )


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text.

    Args:
        text: The heading text, possibly containing inline HTML.

    Returns:
        URL-friendly slug suitable for anchor links.
    """
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-") or "section"


class _PostRenderer(mistune.HTMLRenderer):
    """HTML renderer that emits placeholders for math and diagram fragments.

    Attributes:
        headings: Heading objects collected during rendering.
        fragments: Fragment objects collected during rendering.
    """

    def __init__(
        self,
        heading_ids: bool = False,
        diagram_languages: Iterable[str] = ("mermaid",),
    ):
        super().__init__(escape=False)
        self.heading_ids = heading_ids
        self.diagram_languages = {lang.lower() for lang in diagram_languages}
        self.headings: list[Heading] = []
        self.fragments: list[Fragment] = []
        self._heading_id_counts: dict[str, int] = {}

    def _add_fragment(self, kind: FragmentKind, source: str) -> Fragment:
        fragment = Fragment(index=len(self.fragments), kind=kind, source=source)
        self.fragments.append(fragment)
        return fragment

    def heading(self, text: str, level: int, **attrs) -> str:
        plain = _heading_text(text)
        base_id = _generate_heading_id(plain)
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        self.headings.append(Heading(id=heading_id, text=plain, level=level))
        if self.heading_ids:
            return f'<h{level} id="{heading_id}">{text}</h{level}>\n'
        return f"<h{level}>{text}</h{level}>\n"

    def block_code(self, code: str, info: str | None = None) -> str:
        lang = info.strip().split(None, 1)[0].lower() if info and info.strip() else ""
        if lang in self.diagram_languages:
            source = code[:-1] if code.endswith("\n") else code
            return diagram_placeholder(self._add_fragment(FragmentKind.DIAGRAM, source))
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
                return highlight(code, lexer, formatter)
        return super().block_code(code, info)

    def block_math(self, text: str) -> str:
        return math_placeholder(self._add_fragment(FragmentKind.MATH_BLOCK, text))

    def inline_math(self, text: str) -> str:
        return math_placeholder(self._add_fragment(FragmentKind.MATH_INLINE, text))


class MarkdownRenderer:
    """Renders Markdown bodies to RenderedDocument objects.

    A fresh mistune instance is created per call, so one renderer can be
    shared across posts.
    """

    def __init__(
        self,
        heading_ids: bool = False,
        diagram_languages: Iterable[str] = ("mermaid",),
    ):
        self.heading_ids = heading_ids
        self.diagram_languages = tuple(diagram_languages)

    @classmethod
    def from_config(cls, config: dict) -> MarkdownRenderer:
        options = config.get("markdown") or {}
        return cls(
            heading_ids=bool(options.get("heading_ids", False)),
            diagram_languages=options.get("diagram_languages") or ("mermaid",),
        )

    def render(self, content: str) -> RenderedDocument:
        """Render Markdown content.

        Args:
            content: Markdown body without front matter.

        Returns:
            RenderedDocument with HTML, fragments and headings.
        """
        renderer = _PostRenderer(self.heading_ids, self.diagram_languages)
        markdown = mistune.create_markdown(renderer=renderer, plugins=MARKDOWN_PLUGINS)
        html = markdown(content)
        return RenderedDocument(
            html=html, fragments=renderer.fragments, toc=renderer.headings
        )
