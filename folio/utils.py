"""Utility functions for Folio.

This module contains small helpers used throughout the Folio codebase:
string processing, path handling, date extraction and reading-time estimates.

Key functions:
    slugify: Convert filenames to URL slugs.
    titleize: Convert filenames to human-readable titles.
    extract_date_from_name: Extract date from filename prefix.
    first_heading: Find the first level-1 Markdown heading.
    first_paragraph: Extract a short description from Markdown text.
    build_tags_index: Build index of posts by tags.
    reading_time: Estimate reading time of rendered HTML.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import math
import re
import shutil
from collections.abc import Iterable
from datetime import date
from pathlib import Path

WORDS_PER_MINUTE = 200

_TAG_RE = re.compile(r"<[^>]*>")
_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")


def _strip_date_prefix(name: str) -> str:
    parts = name.split("-")
    if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
        return "-".join(parts[3:])
    return name


def slugify(name: str, strip_date: bool = True) -> str:
    """Convert a filename stem (or any text) to a slug, dropping a date prefix.

    Args:
        name: Filename stem or free text.
        strip_date: Whether a leading YYYY-MM-DD- is removed.

    Returns:
        URL-friendly slug.

    Examples:
        >>> slugify("2024-01-15-Hello World")
        'hello-world'
    """
    cleaned = name.strip()
    if strip_date:
        cleaned = _strip_date_prefix(cleaned)
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Removes date prefixes (YYYY-MM-DD), replaces hyphens and underscores
    with spaces, and capitalizes each word.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'
    """
    base = _strip_date_prefix(Path(filename).stem)
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(name: str) -> date | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        name: Filename stem (without extension).

    Returns:
        date if a valid date prefix is found, None otherwise.
    """
    parts = name.split("-")
    if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
        try:
            return date(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            return None
    return None


def first_heading(text: str) -> str | None:
    """Return the text of the first level-1 ATX heading, if any."""
    in_fence = False
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(("```", "~~~")):
            in_fence = not in_fence
            continue
        if not in_fence and stripped.startswith("# "):
            return stripped[2:].strip() or None
    return None


def first_paragraph(text: str, limit: int = 160) -> str:
    """Extract and clean the first prose paragraph from Markdown text.

    Headings, images, fenced code, math blocks and rules are skipped. HTML
    tags are stripped, links reduced to their text, whitespace collapsed and
    the result truncated.

    Args:
        text: Markdown text.
        limit: Maximum character length of result.

    Returns:
        Cleaned first paragraph, truncated to limit characters.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    for para in paragraphs:
        if para.startswith(("#", "![", "```", "~~~", "$$", "---", "|", ">")):
            continue
        para = _LINK_RE.sub(r"\1", _TAG_RE.sub("", para))
        collapsed = " ".join(para.split())
        if collapsed:
            return collapsed[:limit]
    return ""


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    If the directory exists, removes all contents. Creates the
    directory if it doesn't exist.
    """
    if path.exists():
        shutil.rmtree(str(path), ignore_errors=True)
        if path.exists():
            # Fallback for stubborn directories
            for item in path.rglob("*"):
                if item.is_file():
                    item.unlink()
            for item in sorted(
                [p for p in path.rglob("*") if p.is_dir()], reverse=True
            ):
                item.rmdir()
            path.rmdir()
    path.mkdir(parents=True, exist_ok=True)


def is_markdown(path: Path) -> bool:
    """Check if a path is a Markdown file (case-insensitive .md extension)."""
    return path.suffix.lower() == ".md"


def is_hidden(path: Path) -> bool:
    """Check if a file is ignored by the loader (name starts with _ or .)."""
    return path.name.startswith(("_", "."))


def build_tags_index(posts: Iterable) -> dict[str, list]:
    """Build an index mapping tags to lists of posts carrying that tag.

    Args:
        posts: Iterable of Post objects with a 'tags' attribute.

    Returns:
        Dictionary mapping tag names to lists of posts.
    """
    tags: dict[str, list] = {}
    for post in posts:
        for tag in post.tags:
            tags.setdefault(tag, []).append(post)
    return tags


def reading_time_minutes(html: str) -> int:
    """Estimate reading time in whole minutes at 200 words per minute."""
    text = _TAG_RE.sub("", html)
    words = len(text.split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def reading_time(html: str) -> str:
    """Return a "N min read" label for rendered HTML.

    Examples:
        >>> reading_time("<p>short</p>")
        '1 min read'
    """
    return f"{reading_time_minutes(html)} min read"
