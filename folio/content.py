"""Content loading for Folio.

This module discovers source files under the content root, splits their
front-matter, renders Markdown bodies and builds Document objects.

Key classes:
- Document: A source page (or a generated listing page) and its metadata.
- FileContentLoader: Discovers content and pass-through files.
- CollectionResolver: Assigns a document to its primary collection.
- LayoutResolver: Picks the layout a document renders with.
- PermalinkDeriver: Derives permalinks from patterns or folder structure.
- DocumentBuilder: Builds a Document from one source file.
- ContentProcessor: Facade that loads (or incrementally reloads) a site.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .extractors import CompositeMetadataExtractor, default_metadata_extractor
from .renderers import RendererRegistry, default_renderer_registry
from .tracking import content_input
from .utils import output_path_for, slugify

DEFAULT_COLLECTION = "pages"
LAYOUT_SUFFIXES = ("", ".html", ".html.jinja", ".jinja", ".xml")
_PLACEHOLDER_RE = re.compile(r":([a-z_]+)")


@dataclass
class Document:
    """A page of the site.

    Attributes:
        source_id: Source path relative to the content root (POSIX form), or
            a "generated:" identity for synthetic documents.
        title: Human-readable title.
        body: Raw body text (front-matter removed).
        content: Rendered body HTML, or template source for template bodies.
        permalink: URL path of the rendered page.
        slug: URL-friendly slug.
        date: Publication date.
        collection: Name of the primary collection.
        layout: Layout name, or None to render the body unwrapped.
        source: Path to the source file; None for synthetic documents.
        frontmatter: Parsed front-matter mapping.
        tags: Tag names.
        categories: Category names.
        excerpt: First paragraph as plain text.
        description: Short description.
        draft: Whether this is a draft.
        dated: Whether the date came from front-matter or the filename.
        source_type: "markdown", "html", "jinja" or "generated".
        folder: Folder relative to the content root.
        bindings: Extra page-local template bindings (synthetic documents).
        listing: Input identities a synthetic document summarizes.
    """

    source_id: str
    title: str
    body: str
    content: str
    permalink: str
    slug: str
    date: datetime
    collection: str
    layout: str | None
    source: Path | None = None
    frontmatter: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    excerpt: str = ""
    description: str = ""
    draft: bool = False
    dated: bool = False
    source_type: str = "markdown"
    folder: str = ""
    bindings: dict[str, Any] = field(default_factory=dict)
    listing: tuple[str, ...] = ()

    @property
    def url(self) -> str:
        return self.permalink

    @property
    def output_path(self) -> str:
        return output_path_for(self.permalink)

    @property
    def synthetic(self) -> bool:
        return self.source is None

    @property
    def input_id(self) -> str:
        return content_input(self.source_id)

    @property
    def expands_templates(self) -> bool:
        return self.source_type in ("html", "jinja")

    def __getattr__(self, name: str) -> Any:
        # Custom front-matter fields read as attributes in templates.
        if name.startswith("__"):
            raise AttributeError(name)
        frontmatter = self.__dict__.get("frontmatter") or {}
        if name in frontmatter:
            return frontmatter[name]
        raise AttributeError(name)


class FileContentLoader:
    """Discovers content files and pass-through files under a directory.

    Directories and files starting with "_" or "." are internal; files
    starting with "_" are drafts, included only on request.
    """

    def __init__(self, content_dir: Path, extensions: Iterable[str]):
        self.content_dir = content_dir
        self.extensions = tuple(ext.lower() for ext in extensions)

    def _walk(self, include_drafts: bool) -> list[Path]:
        files: list[Path] = []
        if not self.content_dir.exists():
            return files
        for path in sorted(self.content_dir.rglob("*")):
            if path.is_dir():
                continue
            rel = path.relative_to(self.content_dir)
            if any(part.startswith(("_", ".")) for part in rel.parts[:-1]):
                continue
            if rel.name.startswith("."):
                continue
            if rel.name.startswith("_") and not include_drafts:
                continue
            files.append(path)
        return files

    def is_content(self, path: Path) -> bool:
        return path.name.lower().endswith(self.extensions)

    def iter_files(self, include_drafts: bool = False) -> list[Path]:
        """Return the content files that become Documents."""
        return [p for p in self._walk(include_drafts) if self.is_content(p)]

    def iter_static_files(self) -> list[Path]:
        """Return non-content files copied through unchanged."""
        return [
            p
            for p in self._walk(include_drafts=False)
            if not self.is_content(p) and not p.name.startswith("_")
        ]


class CollectionResolver:
    """Assigns documents to their primary collection.

    Front-matter "collection" wins, then the first folder matching a
    configured collection's directory, then the default "pages" collection.
    """

    def __init__(self, collections: Mapping[str, Mapping[str, Any]]):
        self.collections = collections
        self._by_dir = {
            str(spec.get("dir", name)).strip("/"): name for name, spec in collections.items()
        }

    def from_location(self, rel: Path) -> str:
        folder = rel.parent.as_posix()
        if folder == ".":
            return DEFAULT_COLLECTION
        for directory, name in self._by_dir.items():
            if folder == directory or folder.startswith(directory + "/"):
                return name
        return DEFAULT_COLLECTION

    def resolve(self, rel: Path, frontmatter: Mapping[str, Any]) -> str:
        declared = frontmatter.get("collection")
        if declared:
            return str(declared)
        return self.from_location(rel)

    def spec(self, name: str) -> Mapping[str, Any]:
        return self.collections.get(name, {})


class LayoutResolver:
    """Resolves the layout for a document.

    An explicit front-matter layout is used as-is ("none" or null disables
    the layout). Otherwise the first existing layout among the collection's
    layout and the site default is used.
    """

    def __init__(self, layouts_dir: Path, default_layout: str):
        self.layouts_dir = layouts_dir
        self.default_layout = default_layout

    def exists(self, name: str) -> bool:
        return any((self.layouts_dir / f"{name}{suffix}").is_file() for suffix in LAYOUT_SUFFIXES)

    def resolve(self, frontmatter: Mapping[str, Any], collection_spec: Mapping[str, Any]) -> str | None:
        if "layout" in frontmatter:
            layout = frontmatter["layout"]
            if layout is None or str(layout).lower() in ("none", "false", ""):
                return None
            return str(layout)
        candidates = [collection_spec.get("layout"), self.default_layout]
        for candidate in candidates:
            if candidate and self.exists(str(candidate)):
                return str(candidate)
        return self.default_layout


class PermalinkDeriver:
    """Derives permalinks for documents.

    Patterns use placeholders such as :year, :month, :day, :slug, :title,
    :name, :categories, :collection and :path. Unknown placeholders are
    left untouched.
    """

    def expand(self, pattern: str, values: Mapping[str, str]) -> str:
        def repl(match: re.Match) -> str:
            key = match.group(1)
            return values.get(key, match.group(0))

        expanded = _PLACEHOLDER_RE.sub(repl, pattern)
        expanded = re.sub(r"/{2,}", "/", "/" + expanded.lstrip("/"))
        return expanded

    def placeholders(self, rel: Path, slug: str, date: datetime, collection: str, categories: list[str]) -> dict[str, str]:
        folder = "" if rel.parent == Path(".") else rel.parent.as_posix()
        return {
            "year": f"{date.year:04d}",
            "month": f"{date.month:02d}",
            "day": f"{date.day:02d}",
            "i_month": str(date.month),
            "i_day": str(date.day),
            "slug": slug,
            "title": slug,
            "name": rel.name.split(".")[0],
            "categories": "/".join(slugify(c) for c in categories),
            "collection": collection,
            "path": folder,
        }

    def folder_url(self, rel: Path, slug: str) -> str:
        """Pretty URL mirroring the folder structure (/about/, / for index)."""
        segments = [p for p in rel.parent.parts if p and p != "."]
        if slug != "index":
            segments.append(slug)
        path = "/".join(segments)
        return f"/{path}/" if path else "/"

    def derive(
        self,
        rel: Path,
        slug: str,
        date: datetime,
        collection: str,
        categories: list[str],
        frontmatter: Mapping[str, Any],
        pattern: str | None,
    ) -> str:
        values = self.placeholders(rel, slug, date, collection, categories)
        explicit = frontmatter.get("permalink")
        if explicit:
            return self.expand(str(explicit), values)
        if pattern:
            return self.expand(pattern, values)
        return self.folder_url(rel, slug)


class DocumentBuilder:
    """Builds Document objects from source files."""

    def __init__(
        self,
        content_dir: Path,
        config: Mapping[str, Any],
        layouts_dir: Path | None = None,
        renderer_registry: RendererRegistry | None = None,
        metadata_extractor: CompositeMetadataExtractor | None = None,
    ):
        self.content_dir = content_dir
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.metadata_extractor = metadata_extractor or default_metadata_extractor
        self.collection_resolver = CollectionResolver(config.get("collections", {}))
        self.layout_resolver = LayoutResolver(
            layouts_dir or content_dir / "_layouts",
            str(config.get("default_layout", "default")),
        )
        self.permalinks = PermalinkDeriver()

    def build(self, path: Path, draft: bool = False) -> Document:
        """Build a Document from a source file.

        Raises:
            MalformedFrontMatter: If front-matter is missing from a
                collection document or cannot be parsed.
            InvalidDateInFilename: If the filename date prefix is invalid.
        """
        rel = path.relative_to(self.content_dir)
        folder = "" if rel.parent == Path(".") else rel.parent.as_posix()
        raw = path.read_text(encoding="utf-8")

        located = self.collection_resolver.from_location(rel)
        metadata = self.metadata_extractor.extract(
            raw, path, require_frontmatter=located != DEFAULT_COLLECTION
        )
        frontmatter = metadata["frontmatter"]
        body = metadata["body"]
        collection = self.collection_resolver.resolve(rel, frontmatter)
        spec = self.collection_resolver.spec(collection)

        renderer = self.renderer_registry.get_renderer(path)
        if renderer is not None:
            source_type = renderer.source_type
            content = renderer.render(body)
        else:
            source_type = "html"
            content = body

        slug = slugify(str(frontmatter.get("slug") or path.name.split(".")[0]))
        date = metadata["date"]
        categories = metadata["categories"]
        permalink = self.permalinks.derive(
            rel, slug, date, collection, categories, frontmatter, spec.get("permalink")
        )
        is_draft = (
            draft or frontmatter.get("draft") is True or frontmatter.get("published") is False
        )

        return Document(
            source_id=rel.as_posix(),
            title=metadata["title"],
            body=body,
            content=content,
            permalink=permalink,
            slug=slug,
            date=date,
            collection=collection,
            layout=self.layout_resolver.resolve(frontmatter, spec),
            source=path,
            frontmatter=frontmatter,
            tags=metadata["tags"],
            categories=categories,
            excerpt=metadata["excerpt"],
            description=metadata["description"],
            draft=is_draft,
            dated=metadata["dated"],
            source_type=source_type,
            folder=folder,
        )


class ContentProcessor:
    """Facade for loading content files into Documents.

    Attributes:
        content_dir: Directory containing site content.
    """

    def __init__(
        self,
        content_dir: Path,
        config: Mapping[str, Any],
        layouts_dir: Path | None = None,
        content_loader: FileContentLoader | None = None,
        document_builder: DocumentBuilder | None = None,
    ):
        self.content_dir = content_dir
        self._content_loader = content_loader or FileContentLoader(
            content_dir, config.get("extensions", (".md", ".html"))
        )
        self._document_builder = document_builder or DocumentBuilder(
            content_dir, config, layouts_dir=layouts_dir
        )

    def load(self, include_drafts: bool = False) -> list[Document]:
        """Load all content files and create Document objects."""
        return self.reload({}, None, include_drafts)

    def reload(
        self,
        previous: Mapping[str, Document],
        changed: set[Path] | None,
        include_drafts: bool = False,
    ) -> list[Document]:
        """Load content, re-reading only changed files.

        Args:
            previous: Documents of the previous build keyed by source id.
            changed: Source paths known to have changed; None re-reads all.
            include_drafts: Whether to include draft documents.

        Returns:
            Documents for every current source file, in source order.
        """
        documents: list[Document] = []
        for path in self._content_loader.iter_files(include_drafts):
            source_id = path.relative_to(self.content_dir).as_posix()
            cached = previous.get(source_id)
            if cached is not None and changed is not None and path not in changed:
                document = cached
            else:
                document = self._document_builder.build(
                    path, draft=path.name.startswith("_")
                )
            if document.draft and not include_drafts:
                continue
            documents.append(document)
        return documents
