"""Placeholder substitution for rendered posts.

The rehydrator runs rendered HTML through a bleach whitelist (elements,
attributes, URL schemes and inline CSS), then swaps every placeholder left
by :mod:`folio.renderers` for its widget markup:

- Diagrams become ``mermaid-container`` blocks, either holding the source for
  mermaid.js in the browser or an SVG rendered at build time by ``mmdc``.
- Math becomes KaTeX-ready ``math-inline``/``math-display`` containers that
  are typeset at view time.

Rendering is best effort. A diagram that fails to render or math that fails
validation turns into a visible inline error marker and the rest of the page
is unaffected.

Key classes:
- Rehydrator: Sanitizes, then substitutes placeholders.
- RehydrationResult: Final HTML plus bookkeeping on consumed placeholders.
- MermaidClientRenderer / MermaidCliRenderer: Diagram widget renderers.
- KatexClientRenderer: Math widget renderer.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import bleach
from bleach.css_sanitizer import CSSSanitizer
from bs4 import BeautifulSoup, Tag

from .html_utils import escape_html
from .placeholders import (
    DIAGRAM_ATTR,
    DIAGRAM_MARKER,
    DISPLAY_ATTR,
    FRAGMENT_ATTR,
    MATH_ATTR,
    MATH_MARKER,
    Fragment,
    decode_source,
)
from .protocols import DiagramRenderer, MathRenderer

logger = logging.getLogger(__name__)

GLOBAL_ATTRIBUTES = frozenset({"class", "id", "title"})

# Element name -> attributes allowed on top of GLOBAL_ATTRIBUTES
ALLOWED_ELEMENTS: Mapping[str, frozenset[str]] = {
    "a": frozenset({"href", "rel"}),
    "abbr": frozenset(),
    "b": frozenset(),
    "blockquote": frozenset({"cite"}),
    "br": frozenset(),
    "code": frozenset(),
    "dd": frozenset(),
    "del": frozenset(),
    "details": frozenset({"open"}),
    "div": frozenset(),
    "dl": frozenset(),
    "dt": frozenset(),
    "em": frozenset(),
    "figcaption": frozenset(),
    "figure": frozenset(),
    "h1": frozenset(),
    "h2": frozenset(),
    "h3": frozenset(),
    "h4": frozenset(),
    "h5": frozenset(),
    "h6": frozenset(),
    "hr": frozenset(),
    "i": frozenset(),
    "img": frozenset({"src", "alt", "width", "height", "loading"}),
    "input": frozenset({"type", "checked", "disabled"}),
    "kbd": frozenset(),
    "li": frozenset(),
    "mark": frozenset(),
    "ol": frozenset({"start"}),
    "p": frozenset(),
    "pre": frozenset(),
    "s": frozenset(),
    "section": frozenset(),
    "span": frozenset(),
    "strong": frozenset(),
    "sub": frozenset(),
    "summary": frozenset(),
    "sup": frozenset(),
    "table": frozenset(),
    "tbody": frozenset(),
    "td": frozenset({"style", "colspan", "rowspan"}),
    "tfoot": frozenset(),
    "th": frozenset({"style", "colspan", "rowspan", "scope"}),
    "thead": frozenset(),
    "tr": frozenset(),
    "u": frozenset(),
    "ul": frozenset(),
}

# Removed together with their content
REMOVED_ELEMENTS = frozenset(
    {"script", "style", "iframe", "object", "embed", "noscript", "template", "form"}
)

ALLOWED_SCHEMES = frozenset({"http", "https", "mailto", "tel"})
ALLOWED_CSS_PROPERTIES = frozenset({"text-align"})
PLACEHOLDER_ATTRIBUTES = frozenset({FRAGMENT_ATTR, DIAGRAM_ATTR, MATH_ATTR, DISPLAY_ATTR})

DIAGRAM_ERROR = (
    '<div class="mermaid-error">Error rendering diagram. Please check the syntax.</div>'
)


class WidgetError(Exception):
    """Raised by a widget renderer when a fragment cannot be rendered."""


def validate_tex(source: str) -> str | None:
    """Run cheap structural checks on a TeX expression.

    Args:
        source: TeX source without delimiters.

    Returns:
        An error message, or None if the expression looks well formed.
    """
    if not source.strip():
        return "empty expression"
    depth = 0
    i = 0
    while i < len(source):
        char = source[i]
        if char == "\\":
            i += 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth < 0:
                return "unexpected '}'"
        i += 1
    if depth:
        return "unbalanced braces"

    environments: list[str] = []
    for match in re.finditer(r"\\(begin|end)\{([^}]*)\}", source):
        kind, name = match.groups()
        if kind == "begin":
            environments.append(name)
        elif not environments or environments.pop() != name:
            return f"mismatched \\end{{{name}}}"
    if environments:
        return f"unclosed \\begin{{{environments[-1]}}}"
    return None


def find_mmdc(project_root: Path | None = None) -> str | None:
    """Locate the mermaid-cli binary.

    Checks $FOLIO_MMDC, then PATH, then the project's node_modules/.bin.
    """
    configured = os.environ.get("FOLIO_MMDC")
    if configured:
        return configured if Path(configured).exists() else None
    found = shutil.which("mmdc")
    if found:
        return found
    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / "mmdc"
        if local.exists():
            return str(local)
    return None


class MermaidClientRenderer:
    """Emits diagram source for mermaid.js to render in the browser."""

    def render(self, source: str) -> str:
        if not source.strip():
            raise WidgetError("empty diagram")
        return (
            '<div class="mermaid-container">'
            f'<pre class="mermaid">{escape_html(source, quote=False)}</pre>'
            "</div>"
        )


class MermaidCliRenderer:
    """Renders diagrams to inline SVG at build time with mermaid-cli (mmdc).

    Attributes:
        executable: Path to the mmdc binary, or None if it was not found.
        theme: Mermaid theme passed to mmdc.
        timeout: Seconds to wait for one diagram.
    """

    def __init__(
        self,
        project_root: Path | None = None,
        theme: str = "neutral",
        timeout: float = 60.0,
    ):
        self.executable = find_mmdc(project_root)
        self.theme = theme
        self.timeout = timeout

    def render(self, source: str) -> str:
        if not source.strip():
            raise WidgetError("empty diagram")
        if self.executable is None:
            raise WidgetError("mmdc executable not found")
        with tempfile.TemporaryDirectory() as tmp:
            input_path = Path(tmp) / "diagram.mmd"
            output_path = Path(tmp) / "diagram.svg"
            input_path.write_text(source, encoding="utf-8")
            try:
                subprocess.run(
                    [
                        self.executable,
                        "-i",
                        str(input_path),
                        "-o",
                        str(output_path),
                        "-t",
                        self.theme,
                        "-b",
                        "transparent",
                    ],
                    check=True,
                    capture_output=True,
                    timeout=self.timeout,
                )
            except (OSError, subprocess.SubprocessError) as exc:
                raise WidgetError(f"mmdc failed: {exc}") from exc
            try:
                svg = output_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise WidgetError(f"mmdc produced no usable output: {exc}") from exc
        return f'<div class="mermaid-container">{svg}</div>'


class KatexClientRenderer:
    """Emits math containers for KaTeX auto-render at view time."""

    def render(self, source: str, display: bool) -> str:
        problem = validate_tex(source)
        if problem:
            raise WidgetError(problem)
        escaped = escape_html(source, quote=False)
        if display:
            return f'<div class="math math-display">\\[{escaped}\\]</div>'
        return f'<span class="math math-inline">\\({escaped}\\)</span>'


def _math_error(source: str, display: bool) -> str:
    tag = "div" if display else "span"
    return f'<{tag} class="math-error">{escape_html(source, quote=False)}</{tag}>'


def _allow_attribute(tag: str, name: str, value: str) -> bool:
    if name in GLOBAL_ATTRIBUTES or name in ALLOWED_ELEMENTS.get(tag, ()):
        return True
    return tag in ("div", "span") and name in PLACEHOLDER_ATTRIBUTES


def build_cleaner() -> bleach.Cleaner:
    """Return a bleach Cleaner enforcing the post whitelist.

    Disallowed elements are stripped to their text, URLs must be relative or
    use an allowed scheme, and inline styles keep only ``text-align``.
    """
    return bleach.Cleaner(
        tags=frozenset(ALLOWED_ELEMENTS),
        attributes=_allow_attribute,
        protocols=ALLOWED_SCHEMES,
        strip=True,
        strip_comments=True,
        css_sanitizer=CSSSanitizer(allowed_css_properties=ALLOWED_CSS_PROPERTIES),
    )


@dataclass
class RehydrationResult:
    """Outcome of one rehydration walk.

    Attributes:
        html: Final HTML with widgets in place of placeholders.
        consumed: Fragment indices substituted, in document order.
        errors: Messages for fragments that degraded to error markers.
        unconsumed: Expected fragments with no placeholder in the HTML.
    """

    html: str
    consumed: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    unconsumed: list[Fragment] = field(default_factory=list)


class Rehydrator:
    """Swaps placeholders for widget markup and enforces the element whitelist.

    Attributes:
        diagram_renderer: Renders diagram sources to widget markup.
        math_renderer: Renders math sources to widget markup.
    """

    def __init__(
        self,
        diagram_renderer: DiagramRenderer | None = None,
        math_renderer: MathRenderer | None = None,
    ):
        self.diagram_renderer = diagram_renderer or MermaidClientRenderer()
        self.math_renderer = math_renderer or KatexClientRenderer()
        self._cleaner = build_cleaner()

    @classmethod
    def from_config(cls, config: dict, project_root: Path | None = None) -> Rehydrator:
        diagrams = config.get("diagrams") or {}
        if diagrams.get("renderer") == "mmdc":
            diagram_renderer = MermaidCliRenderer(
                project_root, theme=diagrams.get("theme", "neutral")
            )
        else:
            diagram_renderer = MermaidClientRenderer()
        return cls(diagram_renderer=diagram_renderer)

    def rehydrate(
        self, html: str, fragments: Iterable[Fragment] = ()
    ) -> RehydrationResult:
        """Walk the HTML once and substitute every placeholder.

        Args:
            html: Rendered HTML holding placeholder elements.
            fragments: Fragments the renderer produced, used to check that
                each placeholder is consumed exactly once.

        Returns:
            RehydrationResult with the final HTML.
        """
        soup = BeautifulSoup(self.sanitize(html), "html.parser")
        for tag in soup.find_all(style=""):
            del tag["style"]

        result = RehydrationResult(html="")
        for tag in soup.find_all(class_=[DIAGRAM_MARKER, MATH_MARKER]):
            markup = self._render_placeholder(tag, result)
            self._replace(tag, markup)

        expected = {f.index: f for f in fragments}
        seen: set[int] = set()
        for index in result.consumed:
            if index in seen:
                logger.warning("Placeholder %d consumed more than once", index)
            seen.add(index)
        result.unconsumed = [f for i, f in expected.items() if i not in seen]
        for fragment in result.unconsumed:
            logger.warning(
                "Placeholder %d (%s) was never consumed", fragment.index, fragment.kind.value
            )
        result.html = str(soup)
        return result

    def sanitize(self, html: str) -> str:
        """Apply the element, attribute, scheme and CSS whitelist.

        Elements in REMOVED_ELEMENTS go with their content; any other
        element off the whitelist is unwrapped, keeping its text.
        """
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup.find_all(sorted(REMOVED_ELEMENTS)):
            if not tag.decomposed:
                tag.decompose()
        return self._cleaner.clean(str(soup))

    def _render_placeholder(self, tag: Tag, result: RehydrationResult) -> str:
        index_attr = tag.get(FRAGMENT_ATTR)
        if index_attr is not None and str(index_attr).isdigit():
            result.consumed.append(int(index_attr))
        classes = tag.get("class") or []
        if DIAGRAM_MARKER in classes:
            source = decode_source(str(tag.get(DIAGRAM_ATTR, "")))
            try:
                return self.diagram_renderer.render(source)
            except Exception as exc:
                logger.warning("Diagram rendering failed: %s", exc)
                result.errors.append(f"diagram: {exc}")
                return DIAGRAM_ERROR
        source = decode_source(str(tag.get(MATH_ATTR, "")))
        display = tag.get(DISPLAY_ATTR) == "block"
        try:
            return self.math_renderer.render(source, display)
        except Exception as exc:
            logger.warning("Math rendering failed for %r: %s", source, exc)
            result.errors.append(f"math: {exc}")
            return _math_error(source, display)

    @staticmethod
    def _replace(tag: Tag, markup: str) -> None:
        fragment = BeautifulSoup(markup, "html.parser")
        for node in list(fragment.contents):
            tag.insert_before(node.extract())
        tag.decompose()
