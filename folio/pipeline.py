"""Post rendering pipeline for Folio.

ContentPipeline is the single canonical path from a Post to final HTML:
Markdown rendering (:mod:`folio.renderers`) followed by placeholder
substitution (:mod:`folio.rehydrate`). Both the build and the dev server go
through it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .content import Post
from .rehydrate import Rehydrator
from .renderers import Heading, MarkdownRenderer
from .utils import reading_time, reading_time_minutes


@dataclass
class RenderedPost:
    """A post together with its final HTML.

    Attributes:
        post: The source post.
        html: Final HTML with widgets substituted.
        toc: Headings in document order.
        has_math: Whether the page needs the math typesetter.
        has_diagrams: Whether the page holds diagrams.
        errors: Fragments that degraded to inline error markers.
    """

    post: Post
    html: str
    toc: list[Heading] = field(default_factory=list)
    has_math: bool = False
    has_diagrams: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def reading_time(self) -> str:
        return reading_time(self.html)

    def to_dict(self) -> dict[str, Any]:
        data = self.post.metadata()
        data["content"] = self.html
        data["reading_time"] = reading_time_minutes(self.html)
        return data


class ContentPipeline:
    """Renders posts through the Markdown renderer and the rehydrator."""

    def __init__(
        self,
        renderer: MarkdownRenderer | None = None,
        rehydrator: Rehydrator | None = None,
    ):
        self.renderer = renderer or MarkdownRenderer()
        self.rehydrator = rehydrator or Rehydrator()

    @classmethod
    def from_config(
        cls, config: dict, project_root: Path | None = None
    ) -> ContentPipeline:
        return cls(
            renderer=MarkdownRenderer.from_config(config),
            rehydrator=Rehydrator.from_config(config, project_root),
        )

    def render_markdown(self, text: str) -> str:
        """Render a bare Markdown string to final HTML."""
        document = self.renderer.render(text)
        return self.rehydrator.rehydrate(document.html, document.fragments).html

    def render(self, post: Post) -> RenderedPost:
        document = self.renderer.render(post.body)
        result = self.rehydrator.rehydrate(document.html, document.fragments)
        return RenderedPost(
            post=post,
            html=result.html,
            toc=document.toc,
            has_math=document.has_math,
            has_diagrams=document.has_diagrams,
            errors=result.errors,
        )
