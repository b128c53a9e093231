"""Protocol definitions for Folio.

Content loading is assembled from small pluggable parts. These protocols
describe the parts so that alternative renderers and metadata extractors
can be registered, and so tests can substitute simple fakes.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ContentRenderer(Protocol):
    """Protocol for rendering a document body from its source file.

    Attributes:
        source_type: Identifier such as 'markdown', 'html' or 'jinja'.
        expands_templates: Whether the rendered body is later expanded as a
            Jinja template against the Site Context.
    """

    source_type: str
    expands_templates: bool

    @abstractmethod
    def can_render(self, path: Path) -> bool:
        """Check if this renderer can handle the given file."""
        ...

    @abstractmethod
    def render(self, content: str) -> str:
        """Render a body (front-matter removed) to HTML."""
        ...


@runtime_checkable
class MetadataExtractor(Protocol):
    """Protocol for deriving one kind of metadata from a document.

    Implementations extract specific types of metadata (title, tags, date).
    """

    @abstractmethod
    def extract(self, frontmatter: dict[str, Any], body: str, path: Path) -> dict[str, Any]:
        """Extract metadata.

        Args:
            frontmatter: Parsed front-matter mapping.
            body: Body text with front-matter removed.
            path: Path to the source file.

        Returns:
            Dictionary of extracted metadata.
        """
        ...
