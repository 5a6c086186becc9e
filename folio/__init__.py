"""Folio portfolio and blog generator.

This package builds a personal site (home, blog, about and work pages) from a
directory of Markdown posts with YAML front matter. Posts are rendered to HTML
with Markdown, math and diagram support, then written out together with JSON
endpoints and RSS, sitemap and robots feeds.

The main entry point is the CLI module, which provides commands for scaffolding new projects,
building sites, running the development server and managing posts.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
