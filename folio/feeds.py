"""Feed generation for Folio.

Produces the site's machine-readable endpoints from the published posts:
``feed.xml`` (RSS 2.0), ``sitemap.xml`` and ``robots.txt``.

Every generator receives the posts plus a site data dictionary with ``url``
(required; generators return None without it), ``title``, ``description``,
``language`` and ``author``. An optional ``now`` datetime pins the build date.

Classes:
    FeedGenerator: Base class for feed generators.
    RSSGenerator: Generates feed.xml.
    SitemapGenerator: Generates sitemap.xml.
    RobotsGenerator: Generates robots.txt.
    FeedRegistry: Registry for managing feed generators.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date, datetime, time, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .html_utils import cdata, escape_html

if TYPE_CHECKING:
    from .content import Post


def _base_url(data: dict[str, Any]) -> str:
    return str(data.get("url") or "").rstrip("/")


def _now(data: dict[str, Any]) -> datetime:
    now = data.get("now")
    return now if isinstance(now, datetime) else datetime.now(timezone.utc)


def _rfc822(value: date | datetime) -> str:
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value, usegmt=True)


class FeedGenerator(ABC):
    """Abstract base class for feed generators."""

    @property
    @abstractmethod
    def filename(self) -> str:
        """Return the output filename, e.g. 'sitemap.xml'."""
        ...

    @abstractmethod
    def generate(self, posts: Iterable[Post], data: dict[str, Any]) -> str | None:
        """Generate feed content, or None if it cannot be generated."""
        ...

    def write(
        self, output_dir: Path, posts: Iterable[Post], data: dict[str, Any]
    ) -> bool:
        """Generate and write the feed; return False if skipped."""
        content = self.generate(posts, data)
        if content is None:
            return False
        output_path = output_dir / self.filename
        output_path.write_text(content, encoding="utf-8")
        return True


class RSSGenerator(FeedGenerator):
    """Generates an RSS 2.0 feed of published posts, newest first."""

    @property
    def filename(self) -> str:
        return "feed.xml"

    def generate(self, posts: Iterable[Post], data: dict[str, Any]) -> str | None:
        base_url = _base_url(data)
        if not base_url:
            return None
        title = escape_html(str(data.get("title") or base_url))
        description = escape_html(str(data.get("description") or ""))
        language = escape_html(str(data.get("language") or "en-us"))
        author = data.get("author")

        lines = [
            '<?xml version="1.0" encoding="UTF-8" ?>',
            '<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom">',
            "  <channel>",
            f"    <title>{title}</title>",
            f"    <link>{base_url}</link>",
            f"    <description>{description}</description>",
            f"    <language>{language}</language>",
            f"    <lastBuildDate>{_rfc822(_now(data))}</lastBuildDate>",
            f'    <atom:link href="{base_url}/feed.xml" rel="self" type="application/rss+xml"/>',
        ]
        ordered = sorted(
            (p for p in posts if p.published), key=lambda p: p.date, reverse=True
        )
        for post in ordered:
            link = f"{base_url}/blog/{post.slug}"
            lines.append("    <item>")
            lines.append(f"      <title>{cdata(post.title)}</title>")
            lines.append(f"      <link>{link}</link>")
            lines.append(f'      <guid isPermaLink="true">{link}</guid>')
            lines.append(f"      <description>{cdata(post.description)}</description>")
            lines.append(f"      <pubDate>{_rfc822(post.date)}</pubDate>")
            if author:
                lines.append(f"      <author>{escape_html(str(author))}</author>")
            for tag in post.tags:
                lines.append(f"      <category>{escape_html(tag)}</category>")
            lines.append("    </item>")
        lines.append("  </channel>")
        lines.append("</rss>")
        return "\n".join(lines) + "\n"


class SitemapGenerator(FeedGenerator):
    """Generates sitemap.xml: the site root plus one entry per published post."""

    ROOT_PRIORITY = "1.0"
    POST_PRIORITY = "0.8"

    @property
    def filename(self) -> str:
        return "sitemap.xml"

    def generate(self, posts: Iterable[Post], data: dict[str, Any]) -> str | None:
        base_url = _base_url(data)
        if not base_url:
            return None
        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
            self._entry(
                f"{base_url}/", _now(data).date(), "daily", self.ROOT_PRIORITY
            ),
        ]
        for post in posts:
            if not post.published:
                continue
            lines.append(
                self._entry(
                    f"{base_url}/blog/{post.slug}", post.date, "weekly", self.POST_PRIORITY
                )
            )
        lines.append("</urlset>")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _entry(loc: str, lastmod: date, changefreq: str, priority: str) -> str:
        return (
            f"  <url><loc>{escape_html(loc)}</loc>"
            f"<lastmod>{lastmod.isoformat()}</lastmod>"
            f"<changefreq>{changefreq}</changefreq>"
            f"<priority>{priority}</priority></url>"
        )


class RobotsGenerator(FeedGenerator):
    """Generates robots.txt allowing all crawlers and pointing at the sitemap."""

    @property
    def filename(self) -> str:
        return "robots.txt"

    def generate(self, posts: Iterable[Post], data: dict[str, Any]) -> str | None:
        lines = ["User-agent: *", "Allow: /"]
        base_url = _base_url(data)
        if base_url:
            lines.append(f"Sitemap: {base_url}/sitemap.xml")
        return "\n".join(lines) + "\n"


class FeedRegistry:
    """Registry running every registered feed generator during a build."""

    def __init__(self) -> None:
        self._generators: list[FeedGenerator] = []

    def register(self, generator: FeedGenerator) -> None:
        self._generators.append(generator)

    def generate_all(
        self, output_dir: Path, posts: Iterable[Post], data: dict[str, Any]
    ) -> list[str]:
        """Generate all registered feeds and return the filenames written."""
        posts_list = list(posts)
        generated = []
        for generator in self._generators:
            if generator.write(output_dir, posts_list, data):
                generated.append(generator.filename)
        return generated


def create_default_feed_registry() -> FeedRegistry:
    """Create a registry with the RSS, sitemap and robots generators."""
    registry = FeedRegistry()
    registry.register(RSSGenerator())
    registry.register(SitemapGenerator())
    registry.register(RobotsGenerator())
    return registry
