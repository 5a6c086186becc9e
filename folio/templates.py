"""Template rendering engine for Folio.

Pages are rendered with Jinja2. Layouts are looked up first in the project's
``layouts/`` directory and then in the bare layouts shipped with the package,
so a project overrides any page by dropping a file with the same name.

Key class:
- TemplateEngine: Handles template rendering and provides context to templates.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup
from pygments.formatters import HtmlFormatter

from .html_utils import escape_html, join_root_url
from .renderers import Heading
from .utils import reading_time

BUILTIN_LAYOUTS_DIR = Path(__file__).parent / "layouts"

__all__ = ["BUILTIN_LAYOUTS_DIR", "TemplateEngine", "render_toc"]


def render_toc(headings: Iterable[Heading]) -> Markup:
    """Render headings as a nested ``<ul>`` table of contents.

    Args:
        headings: Heading objects in document order.

    Returns:
        Markup-safe HTML string of the nested TOC, or empty Markup if no headings.
    """
    headings = list(headings or [])
    if not headings:
        return Markup("")

    html_parts: list[str] = []
    level_stack: list[int] = []

    for heading in headings:
        level = heading.level

        # Close nested lists if going to a shallower level
        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        elif not level_stack or level > level_stack[-1]:  # pragma: no branch
            html_parts.append("<ul>")
            level_stack.append(level)

        html_parts.append(
            f'<li><a href="#{escape_html(heading.id)}">{escape_html(heading.text)}</a>'
        )

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        layouts_dir: Project directory searched before the built-in layouts.
        site: Site data (title, description, url, ...).
        env: Jinja2 environment.
    """

    def __init__(
        self,
        layouts_dir: Path | None,
        site: dict[str, Any],
        root_url: str | None = None,
        globals: dict[str, Any] | None = None,
    ):
        """Initialize the template engine.

        Args:
            layouts_dir: Optional project layouts directory.
            site: Site data exposed to templates as ``site``.
            root_url: Optional base URL for generated links.
            globals: Extra template globals (profile, math macros, ...).
        """
        self.layouts_dir = layouts_dir
        self.site = site
        self.root_url = root_url or ""
        search_path = [str(BUILTIN_LAYOUTS_DIR)]
        if layouts_dir is not None and layouts_dir.is_dir():
            search_path.insert(0, str(layouts_dir))
        self.env = Environment(
            loader=FileSystemLoader(search_path),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
            enable_async=False,
        )
        self._install_globals(globals or {})

    def _install_globals(self, extra: dict[str, Any]) -> None:
        self.env.globals["site"] = self.site
        self.env.globals["url_for"] = self._url_for
        self.env.globals["render_toc"] = render_toc
        self.env.globals["pygments_css"] = self._pygments_css
        self.env.globals["reading_time"] = reading_time
        self.env.globals.update(extra)

    @staticmethod
    def _pygments_css() -> str:
        """Return Pygments CSS for the .highlight class."""
        return HtmlFormatter().get_style_defs(".highlight")

    def _url_for(self, path: str) -> str:
        """Generate a URL for a path, applying root_url if configured."""
        if path.startswith(("http://", "https://", "//")):
            return path
        path = path if path.startswith("/") else f"/{path}"
        if self.root_url:
            return join_root_url(self.root_url, path)
        return path

    def render(self, template_name: str, **context: Any) -> str:
        """Render a named layout.

        Args:
            template_name: Layout filename, e.g. 'post.html.jinja'.
            **context: Template variables.

        Returns:
            Rendered HTML string.
        """
        return self.env.get_template(template_name).render(**context)

    def render_string(self, template: str, context: dict[str, Any]) -> str:
        """Render a template string."""
        return self.env.from_string(template).render(**context)
