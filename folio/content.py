"""Content loading for Folio.

This module turns a directory of Markdown files into Post objects and keeps
them in a ContentRepository, an explicit value handed to whatever needs posts
(the build, the dev server, the CLI). There is no module-level cache.

Key classes:
- Post: Dataclass representing one article.
- PostLoader: Discovers post files in the content directory.
- PostBuilder: Builds a Post from a single file.
- ContentRepository: Loaded posts with load/reload lifecycle and lookups.

Error policy:
- A missing content directory yields an empty repository.
- A malformed front-matter field falls back to its default.
- An unknown slug raises PostNotFoundError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

from .collections import PostCollection, TagCollection
from .extractors import CompositeMetadataExtractor, default_metadata_extractor
from .protocols import ContentLoader
from .renderers import Heading  # noqa: F401 - re-exported
from .utils import build_tags_index, is_hidden, is_markdown

logger = logging.getLogger(__name__)


class PostNotFoundError(LookupError):
    """Raised when a slug does not match any post.

    Attributes:
        slug: The slug that was requested.
    """

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"No post with slug '{slug}'")


@dataclass
class Post:
    """Represents one blog article.

    Attributes:
        slug: URL identifier, from front matter or the filename.
        title: Display title.
        description: Short summary used in listings and feeds.
        date: Publish date.
        tags: Tag names in declaration order.
        published: Whether the post appears in listings.
        body: Raw Markdown body without front matter.
        path: Source file.
        frontmatter: The parsed header as written.
    """

    slug: str
    title: str
    description: str
    date: date
    tags: list[str]
    published: bool
    body: str
    path: Path
    frontmatter: dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return f"/blog/{self.slug}/"

    @property
    def excerpt(self) -> str:
        return self.description

    def metadata(self) -> dict[str, Any]:
        """Return the flat metadata record with the date as an ISO string."""
        return {
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "date": self.date.isoformat(),
            "tags": list(self.tags),
            "published": self.published,
        }


class PostLoader:
    """Discovers post files directly inside the content directory.

    Files whose names start with ``_`` or ``.`` are ignored.

    Attributes:
        content_dir: Directory holding the Markdown posts.
    """

    def __init__(self, content_dir: Path):
        self.content_dir = content_dir

    def iter_files(self) -> list[Path]:
        """List post files sorted by filename; empty if the directory is missing."""
        if not self.content_dir.is_dir():
            return []
        return sorted(
            path
            for path in self.content_dir.iterdir()
            if path.is_file() and is_markdown(path) and not is_hidden(path)
        )


class PostBuilder:
    """Builds Post objects from source files.

    Attributes:
        metadata_extractor: Composite extractor resolving every field.
    """

    def __init__(self, metadata_extractor: CompositeMetadataExtractor | None = None):
        self.metadata_extractor = metadata_extractor or default_metadata_extractor

    def build(self, path: Path) -> Post:
        raw = path.read_text(encoding="utf-8")
        metadata = self.metadata_extractor.extract(raw, path)
        return Post(
            slug=metadata["slug"],
            title=metadata["title"],
            description=metadata["description"],
            date=metadata["date"],
            tags=metadata["tags"],
            published=metadata["published"],
            body=metadata["body"],
            path=path,
            frontmatter=metadata["frontmatter"],
        )


class ContentRepository:
    """All posts of one content directory.

    Posts are parsed on ``load()`` (or lazily on first access) and kept until
    ``reload()``. Listings are sorted newest first and exclude unpublished
    posts unless asked otherwise.

    Attributes:
        content_dir: Directory holding the Markdown posts.
    """

    def __init__(
        self,
        content_dir: Path,
        loader: ContentLoader | None = None,
        builder: PostBuilder | None = None,
    ):
        self.content_dir = content_dir
        self._loader = loader or PostLoader(content_dir)
        self._builder = builder or PostBuilder()
        self._posts: dict[str, Post] | None = None

    @property
    def loaded(self) -> bool:
        return self._posts is not None

    def load(self) -> ContentRepository:
        """Parse every post file once; a no-op if already loaded."""
        if self._posts is None:
            self._posts = self._read_all()
        return self

    def reload(self) -> ContentRepository:
        """Discard parsed posts and read the content directory again."""
        self._posts = self._read_all()
        return self

    def _read_all(self) -> dict[str, Post]:
        posts: dict[str, Post] = {}
        for path in self._loader.iter_files():
            try:
                post = self._builder.build(path)
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable post %s: %s", path.name, exc)
                continue
            if post.slug in posts:
                logger.warning(
                    "Duplicate slug '%s' in %s; keeping %s",
                    post.slug,
                    path.name,
                    posts[post.slug].path.name,
                )
                continue
            posts[post.slug] = post
        logger.debug("Loaded %d posts from %s", len(posts), self.content_dir)
        return posts

    def _all(self) -> dict[str, Post]:
        return self.load()._posts or {}

    def posts(self, include_unpublished: bool = False) -> PostCollection:
        """Return posts sorted by date, newest first.

        Args:
            include_unpublished: Whether posts with ``published: false``
                are included.
        """
        collection = PostCollection(self._all().values())
        if not include_unpublished:
            collection = collection.published()
        return collection.sorted()

    def get(self, slug: str) -> Post:
        """Return the post for a slug, published or not.

        Raises:
            PostNotFoundError: If no post has that slug.
        """
        try:
            return self._all()[slug]
        except KeyError:
            raise PostNotFoundError(slug) from None

    def slugs(self) -> list[str]:
        """Slugs of published posts, newest first."""
        return self.posts().slugs()

    def tags(self) -> TagCollection:
        """Index of published posts by tag."""
        return TagCollection(build_tags_index(self.posts()))

    def __len__(self) -> int:
        return len(self._all())

    def __contains__(self, slug: object) -> bool:
        return slug in self._all()
