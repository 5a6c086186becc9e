"""Markup helpers shared by the feeds and the build.

escape_html and cdata produce text safe to embed in HTML and XML.
join_root_url and absolutize_html_urls turn site paths into full URLs when a
root URL is configured.
"""

from __future__ import annotations

import re

# Root-relative values (a single leading slash) of href, src and action.
_ROOT_RELATIVE_RE = re.compile(
    r"""\b(?P<attr>href|src|action)=(?P<quote>["'])(?P<path>/(?!/)[^"']*)(?P=quote)"""
)


def escape_html(text: str, quote: bool = True) -> str:
    """Escape ``&``, ``<`` and ``>``, plus ``"`` unless ``quote`` is false.

    >>> escape_html('Tom & "Jerry"')
    'Tom &amp; &quot;Jerry&quot;'
    """
    for raw, entity in (("&", "&amp;"), ("<", "&lt;"), (">", "&gt;")):
        text = text.replace(raw, entity)
    return text.replace('"', "&quot;") if quote else text


def cdata(text: str) -> str:
    """Wrap text in a CDATA section, splitting any embedded ``]]>``."""
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def join_root_url(root_url: str, path: str) -> str:
    """Join a root URL and a path with exactly one slash between them.

    >>> join_root_url("https://example.com/", "about")
    'https://example.com/about'
    """
    if not root_url:
        return path
    return root_url.rstrip("/") + "/" + path.lstrip("/")


def absolutize_html_urls(html: str, root_url: str) -> str:
    """Prefix root-relative href, src and action values with ``root_url``.

    Absolute, protocol-relative, fragment, mailto and relative links are
    left alone.
    """
    if not root_url:
        return html
    return _ROOT_RELATIVE_RE.sub(
        lambda m: f"{m['attr']}={m['quote']}{join_root_url(root_url, m['path'])}{m['quote']}",
        html,
    )
