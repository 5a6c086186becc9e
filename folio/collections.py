from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .content import Post


class PostCollection(Sequence["Post"]):
    """Lightweight helper for working with lists of Posts in templates and code."""

    def __init__(self, posts: Iterable[Post]):
        self._posts = list(posts)

    def __iter__(self) -> Iterator[Post]:
        return iter(self._posts)

    def __len__(self) -> int:
        return len(self._posts)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return PostCollection(self._posts[item])
        return self._posts[item]

    def with_tag(self, tag: str) -> PostCollection:
        return PostCollection(p for p in self._posts if tag in p.tags)

    def published(self) -> PostCollection:
        return PostCollection(p for p in self._posts if p.published)

    def unpublished(self) -> PostCollection:
        return PostCollection(p for p in self._posts if not p.published)

    def sorted(self, reverse: bool = True) -> PostCollection:
        """Sort posts by publish date.

        The sort is stable: posts sharing a date keep their current relative
        order in both directions.

        Args:
            reverse: If True (default), newest first.

        Returns:
            A new PostCollection with sorted posts.
        """
        return PostCollection(sorted(self._posts, key=lambda p: p.date, reverse=reverse))

    def latest(self, count: int = 5) -> PostCollection:
        return self.sorted()[:count]

    def slugs(self) -> list[str]:
        return [p.slug for p in self._posts]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"PostCollection({len(self._posts)} posts)"


class TagCollection(Mapping[str, PostCollection]):
    """Mapping of tag name to PostCollection with convenience helpers."""

    def __init__(self, mapping: dict[str, Iterable[Post]]):
        self._mapping = {k: PostCollection(v) for k, v in mapping.items()}

    def __getitem__(self, key: str) -> PostCollection:
        return self._mapping[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def counts(self) -> dict[str, int]:
        """Return tag -> number of posts, most used first."""
        ordered = sorted(self._mapping.items(), key=lambda kv: (-len(kv[1]), kv[0].lower()))
        return {tag: len(posts) for tag, posts in ordered}

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"TagCollection({len(self._mapping)} tags)"
