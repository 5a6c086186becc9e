"""Protocol definitions for Folio.

The pieces of the pipeline that can be swapped out (front-matter field
extraction, post discovery, diagram and math widgets) are described here as
runtime-checkable protocols, so tests and projects can provide their own
implementations without subclassing.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class FieldExtractor(Protocol):
    """Protocol for resolving metadata fields of a post.

    Each extractor handles one concern (title, date, tags, ...) and returns
    only the keys it owns.
    """

    @abstractmethod
    def extract(
        self, frontmatter: dict[str, Any], body: str, path: Path
    ) -> dict[str, Any]:
        """Resolve fields from parsed front matter and the Markdown body.

        Args:
            frontmatter: Parsed YAML header, empty when absent or malformed.
            body: Markdown with the header stripped.
            path: Path to the source file.

        Returns:
            Dictionary of resolved fields.
        """
        ...


@runtime_checkable
class ContentLoader(Protocol):
    """Protocol for discovering post source files."""

    @abstractmethod
    def iter_files(self) -> list[Path]:
        """Return post files in a stable order."""
        ...


@runtime_checkable
class DiagramRenderer(Protocol):
    """Protocol for turning diagram source into display markup.

    Implementations raise WidgetError (or any exception) on bad input; the
    rehydrator turns that into an inline error marker.
    """

    @abstractmethod
    def render(self, source: str) -> str:
        ...


@runtime_checkable
class MathRenderer(Protocol):
    """Protocol for turning TeX source into display markup."""

    @abstractmethod
    def render(self, source: str, display: bool) -> str:
        ...
