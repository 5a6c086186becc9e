"""Site building for Folio.

This module builds the whole static site from a project directory:

- ``/`` home page, ``/blog/`` listing and ``/blog/<slug>/`` post pages
- ``/about/`` and ``/work/`` profile pages and ``/404.html``
- ``/api/blog.json`` and ``/api/blog/<slug>.json`` for client-side fetches
- ``feed.xml``, ``sitemap.xml`` and ``robots.txt``
- everything under ``static/`` copied verbatim

Key functions:
- build_site: Main function to build the entire site.
- site_data: Resolve the site section of the config against the profile.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jinja2 import TemplateError, TemplateSyntaxError

from .collections import PostCollection
from .config import load_config
from .content import ContentRepository, Post
from .feeds import create_default_feed_registry
from .html_utils import absolutize_html_urls
from .pipeline import ContentPipeline, RenderedPost
from .profile import Profile, load_profile
from .templates import TemplateEngine
from .utils import ensure_clean_dir

logger = logging.getLogger(__name__)

HOME_POST_COUNT = 5


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        posts: Posts that were rendered.
        output_dir: Directory where the site was built.
        data: Resolved site data.
        feeds: Feed filenames written.
        degraded: Slug -> fragments that rendered as inline error markers.
    """

    posts: PostCollection
    output_dir: Path
    data: dict[str, Any]
    feeds: list[str] = field(default_factory=list)
    degraded: dict[str, list[str]] = field(default_factory=dict)


def site_data(
    config: dict[str, Any], profile: Profile, root_url: str = ""
) -> dict[str, Any]:
    """Resolve the site section, filling gaps from the profile.

    The site URL falls back to ``root_url`` so feeds can still be built.
    """
    data = dict(config.get("site") or {})
    data["url"] = data.get("url") or root_url
    data["title"] = data.get("title") or profile.site_title
    data["description"] = data.get("description") or profile.site_description
    data.setdefault("author", profile.name)
    data.setdefault("language", "en-us")
    return data


def build_site(
    project_root: Path,
    include_unpublished: bool = False,
    root_url: str | None = None,
    clean_output: bool = True,
    output_dir_override: Path | None = None,
    now: datetime | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        include_unpublished: Whether posts with ``published: false`` get pages.
            Feeds and listings for crawlers never include them.
        root_url: Optional base URL to absolutize links with.
        clean_output: Whether to wipe the output directory before building.
        output_dir_override: Optional path to write the build output to
            instead of the configured output_dir.
        now: Build timestamp; defaults to the current UTC time.

    Returns:
        BuildResult describing what was written.
    """
    now = now or datetime.now(timezone.utc)
    config = load_config(project_root)
    if root_url is not None:
        config["root_url"] = root_url
    resolved_root = str(config.get("root_url") or "")
    output_dir = output_dir_override or (project_root / config["output_dir"])
    if clean_output:
        ensure_clean_dir(output_dir)
    else:
        output_dir.mkdir(parents=True, exist_ok=True)

    profile = load_profile(project_root / config["data_dir"])
    data = site_data(config, profile, resolved_root)
    repository = ContentRepository(project_root / config["content_dir"]).load()
    pipeline = ContentPipeline.from_config(config, project_root)
    engine = TemplateEngine(
        project_root / config["layouts_dir"],
        data,
        root_url=resolved_root,
        globals={
            "profile": profile,
            "year": now.year,
            "math_macros": (config.get("math") or {}).get("macros", {}),
            "diagram_renderer": (config.get("diagrams") or {}).get("renderer", "client"),
        },
    )

    def write(target: str, template: str, source: Path, **context: Any) -> None:
        try:
            html = engine.render(template, **context)
        except TemplateSyntaxError as exc:
            raise BuildError(
                Path(exc.filename or source),
                f"Template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc
        except (TemplateError, TypeError, AttributeError) as exc:
            raise BuildError(source, _format_error_message(exc), exc) from exc
        if resolved_root:
            html = absolutize_html_urls(html, resolved_root)
        _write_html(output_dir, target, html)

    posts = repository.posts(include_unpublished=include_unpublished)
    result = BuildResult(posts=posts, output_dir=output_dir, data=data)
    rendered_posts: list[RenderedPost] = []
    for post in posts:
        rendered = pipeline.render(post)
        if rendered.errors:
            result.degraded[post.slug] = rendered.errors
        rendered_posts.append(rendered)
        write(post.url, "post.html.jinja", post.path, post=post, rendered=rendered)

    content_dir = repository.content_dir
    listed = repository.posts()
    write("/", "home.html.jinja", content_dir, posts=listed.latest(HOME_POST_COUNT))
    write("/blog/", "blog.html.jinja", content_dir, posts=listed)
    write("/about/", "about.html.jinja", project_root)
    write("/work/", "work.html.jinja", project_root)
    write("/404.html", "404.html.jinja", project_root)

    _write_api(output_dir, listed, rendered_posts)
    result.feeds = create_default_feed_registry().generate_all(
        output_dir, listed, {**data, "now": now}
    )
    _copy_static(project_root / config["static_dir"], output_dir)
    logger.info("Built %d posts into %s", len(posts), output_dir)
    return result


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message."""
    error_type = type(exc).__name__
    if error_type == "UndefinedError":
        return f"Undefined variable: {exc}"
    if error_type == "TypeError":
        return f"Type error: {exc}"
    if error_type == "AttributeError":
        return f"Attribute error: {exc}"
    return f"{error_type}: {exc}"


def _write_html(output_dir: Path, target: str, html: str) -> None:
    """Write a page; targets ending in '/' become <target>/index.html."""
    relative = target.strip("/")
    if target.endswith("/"):
        path = output_dir / relative / "index.html"
    else:
        path = output_dir / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(html, encoding="utf-8")


def _write_api(
    output_dir: Path, listed: PostCollection, rendered_posts: list[RenderedPost]
) -> None:
    """Write the JSON listing and one JSON document per rendered post."""
    api_dir = output_dir / "api" / "blog"
    api_dir.mkdir(parents=True, exist_ok=True)
    listing = [_listing_entry(post) for post in listed]
    (output_dir / "api" / "blog.json").write_text(
        json.dumps(listing, indent=2) + "\n", encoding="utf-8"
    )
    for rendered in rendered_posts:
        (api_dir / f"{rendered.post.slug}.json").write_text(
            json.dumps(rendered.to_dict(), indent=2) + "\n", encoding="utf-8"
        )


def _listing_entry(post: Post) -> dict[str, Any]:
    entry = post.metadata()
    entry["excerpt"] = post.excerpt
    return entry


def _copy_static(static_dir: Path, output_dir: Path) -> None:
    if not static_dir.is_dir():
        return
    shutil.copytree(static_dir, output_dir, dirs_exist_ok=True)
