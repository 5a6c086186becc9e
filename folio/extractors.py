"""Front-matter parsing and metadata extractors for Folio.

A post file starts with an optional YAML header delimited by ``---`` lines.
The header is a flat key/value record validated only by presence and type
checks: a field that is missing or malformed silently falls back to its
default, never failing the load.

Each extractor resolves one field from the parsed header, the Markdown body
and the source path:

- TitleExtractor: ``title``, else first ``# `` heading, else the filename.
- DescriptionExtractor: ``description``, else the first paragraph.
- DateExtractor: ``date``, else a YYYY-MM-DD filename prefix, else mtime.
- TagExtractor: ``tags`` as a list (or comma separated string), else ``[]``.
- PublishedExtractor: ``published`` as a boolean, else ``True``.
- SlugExtractor: ``slug``, else derived from the filename.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from .protocols import FieldExtractor
from .utils import (
    extract_date_from_name,
    first_heading,
    first_paragraph,
    slugify,
    titleize,
)

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(.*?)(?:\r?\n)?^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE
)

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split a YAML header from the document body.

    A header that is not valid YAML, or does not hold a mapping, yields an
    empty record; the header block is still removed from the body.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (frontmatter dict, remaining body).
    """
    text = text.lstrip("\ufeff")
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    body = text[match.end() :]
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        logger.warning("Malformed front matter, using defaults: %s", exc)
        return {}, body
    if not isinstance(data, dict):
        logger.warning("Front matter is not a mapping, using defaults")
        return {}, body
    return data, body


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def parse_date(value: Any) -> date | None:
    """Coerce a front-matter date value (YAML date or ISO string)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        candidate = value.strip()
        try:
            return datetime.fromisoformat(candidate.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(candidate[:10])
        except ValueError:
            return None
    return None


def parse_bool(value: Any, default: bool = True) -> bool:
    """Coerce a front-matter boolean, returning default when unrecognized."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return default


def parse_tags(value: Any) -> list[str]:
    """Coerce a front-matter tag list, dropping non-text entries and duplicates."""
    if isinstance(value, str):
        candidates: list[Any] = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        candidates = list(value)
    else:
        return []
    tags: list[str] = []
    for item in candidates:
        tag = _text(item)
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class TitleExtractor:
    """Resolves the post title."""

    def extract(
        self, frontmatter: Mapping[str, Any], body: str, path: Path
    ) -> dict[str, Any]:
        title = _text(frontmatter.get("title")) or first_heading(body)
        return {"title": title or titleize(path.name)}


class DescriptionExtractor:
    """Resolves the description, falling back to the first paragraph."""

    def extract(
        self, frontmatter: Mapping[str, Any], body: str, path: Path
    ) -> dict[str, Any]:
        description = _text(frontmatter.get("description"))
        return {"description": description or first_paragraph(body)}


class DateExtractor:
    """Resolves the publish date.

    Looks at the ``date`` field, then a YYYY-MM-DD prefix in the filename,
    then the file modification time.
    """

    def extract(
        self, frontmatter: Mapping[str, Any], body: str, path: Path
    ) -> dict[str, Any]:
        raw = frontmatter.get("date")
        resolved = parse_date(raw)
        if resolved is None and raw is not None:
            logger.warning("%s: unrecognized date %r, using fallback", path.name, raw)
        if resolved is None:
            resolved = extract_date_from_name(path.stem)
        if resolved is None:
            resolved = datetime.fromtimestamp(path.stat().st_mtime).date()
        return {"date": resolved}


class TagExtractor:
    """Resolves the tag list."""

    def extract(
        self, frontmatter: Mapping[str, Any], body: str, path: Path
    ) -> dict[str, Any]:
        return {"tags": parse_tags(frontmatter.get("tags"))}


class PublishedExtractor:
    """Resolves the published flag (default True)."""

    def extract(
        self, frontmatter: Mapping[str, Any], body: str, path: Path
    ) -> dict[str, Any]:
        return {"published": parse_bool(frontmatter.get("published"), default=True)}


class SlugExtractor:
    """Resolves the slug from the ``slug`` field or the filename."""

    def extract(
        self, frontmatter: Mapping[str, Any], body: str, path: Path
    ) -> dict[str, Any]:
        explicit = _text(frontmatter.get("slug"))
        if explicit:
            return {"slug": slugify(explicit, strip_date=False)}
        return {"slug": slugify(path.stem)}


class CompositeMetadataExtractor:
    """Splits the front matter and runs every field extractor.

    Later extractors can override keys produced by earlier ones.
    """

    def __init__(self, extractors: list[FieldExtractor] | None = None):
        """Initialize with a list of extractors.

        Args:
            extractors: MetadataExtractor implementations. If None, uses
                the default field extractors.
        """
        if extractors is None:
            self._extractors = [
                TitleExtractor(),
                DescriptionExtractor(),
                DateExtractor(),
                TagExtractor(),
                PublishedExtractor(),
                SlugExtractor(),
            ]
        else:
            self._extractors = list(extractors)

    def add_extractor(self, extractor: FieldExtractor) -> None:
        """Add an extractor to the composite."""
        self._extractors.append(extractor)

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        """Extract all metadata from raw file content.

        Args:
            content: Raw file content including any front matter.
            path: Path to the source file.

        Returns:
            Dictionary with 'frontmatter', 'body' and every resolved field.
        """
        frontmatter, body = extract_frontmatter(content)
        result: dict[str, Any] = {"frontmatter": frontmatter, "body": body}
        for extractor in self._extractors:
            result.update(extractor.extract(frontmatter, body, path))
        return result


default_metadata_extractor = CompositeMetadataExtractor()
