"""Template system base classes and protocols"""

from collections.abc import Callable
from typing import Any, Protocol

from content_publisher.publisher.models import Document

Transliterator = Callable[[str], str]
FrontmatterMutator = Callable[[dict[str, Any]], None]


class DocumentStore(Protocol):
    """Note storage interface for dependency inversion."""

    async def read(self, document: Document) -> str:
        """Return the full text of a note."""
        ...

    def get_frontmatter(self, document: Document) -> dict[str, Any] | None:
        """Return the cached frontmatter of a note, ``None`` if it has none."""
        ...

    async def update_header(
        self,
        document: Document,
        mutator: FrontmatterMutator,
        *,
        pin_mtime: bool = False,
    ) -> dict[str, Any]:
        """Apply ``mutator`` to the frontmatter, persist and return it."""
        ...


class ReferenceResolver(Protocol):
    """Resolves ``[[link text]]`` to a note, nearest to ``source`` first."""

    def resolve(self, link_text: str, source: Document) -> Document | None: ...


class Writer(Protocol):
    """Writes published content to its destination."""

    async def write(
        self, path: Any, content: str, callback: Callable[[], None] | None = None
    ) -> None: ...


def keep_text(text: str) -> str:
    """Default transliterator: leave text unchanged"""
    return text
