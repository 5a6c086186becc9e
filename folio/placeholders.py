"""Placeholder elements shared by the renderer and the rehydrator.

During Markdown rendering every diagram and math expression is replaced with
an inert element carrying its source as a percent-encoded attribute. The
rehydrator later finds those elements by marker class and swaps each for its
widget markup.

Placeholder shapes::

    <div class="mermaid-placeholder" data-fragment="0" data-mermaid="graph%20TD"></div>
    <span class="math-placeholder" data-fragment="1" data-display="inline" data-math="x%5E2"></span>
    <div class="math-placeholder" data-fragment="2" data-display="block" data-math="..."></div>
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import quote, unquote

DIAGRAM_MARKER = "mermaid-placeholder"
MATH_MARKER = "math-placeholder"

DIAGRAM_ATTR = "data-mermaid"
MATH_ATTR = "data-math"
DISPLAY_ATTR = "data-display"
FRAGMENT_ATTR = "data-fragment"


class FragmentKind(str, Enum):
    """Kinds of deferred fragments a rendered document can carry."""

    DIAGRAM = "diagram"
    MATH_INLINE = "math-inline"
    MATH_BLOCK = "math-block"


@dataclass(frozen=True)
class Fragment:
    """A diagram or math source awaiting substitution.

    Attributes:
        index: Position of the fragment in document order; written to the
            placeholder's ``data-fragment`` attribute.
        kind: What the source describes.
        source: Original, undecorated source text.
    """

    index: int
    kind: FragmentKind
    source: str


def encode_source(source: str) -> str:
    """Percent-encode source text for an attribute value.

    Equivalent to JavaScript's encodeURIComponent for the characters that
    matter in HTML; decode_source restores the text exactly.
    """
    return quote(source, safe="-_.!~*'()")


def decode_source(value: str) -> str:
    """Reverse encode_source."""
    return unquote(value)


def diagram_placeholder(fragment: Fragment) -> str:
    """Return the placeholder markup for a diagram fragment."""
    return (
        f'<div class="{DIAGRAM_MARKER}" {FRAGMENT_ATTR}="{fragment.index}" '
        f'{DIAGRAM_ATTR}="{encode_source(fragment.source)}"></div>\n'
    )


def math_placeholder(fragment: Fragment) -> str:
    """Return the placeholder markup for an inline or block math fragment."""
    encoded = encode_source(fragment.source)
    if fragment.kind is FragmentKind.MATH_BLOCK:
        return (
            f'<div class="{MATH_MARKER}" {FRAGMENT_ATTR}="{fragment.index}" '
            f'{DISPLAY_ATTR}="block" {MATH_ATTR}="{encoded}"></div>\n'
        )
    return (
        f'<span class="{MATH_MARKER}" {FRAGMENT_ATTR}="{fragment.index}" '
        f'{DISPLAY_ATTR}="inline" {MATH_ATTR}="{encoded}"></span>'
    )
