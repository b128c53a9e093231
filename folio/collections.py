"""Collections, taxonomies, pagination and the Site Context.

Documents are grouped into named collections, indexed by tag, category and
year, and paginated. Listing pages (pagination, taxonomy terms, yearly
archives) are generated as synthetic Documents. Everything is assembled
into a read-only SiteContext snapshot once per build.

Collections, terms and data lookups record the inputs they hand out to the
active render tracker, so an artifact only depends on what it actually read.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any

from .content import DEFAULT_COLLECTION, Document, PermalinkDeriver
from .errors import BuildError, DuplicatePermalink
from .tracking import (
    collection_input,
    data_input,
    record_input,
    taxonomy_input,
    term_input,
)
from .utils import slugify

ARCHIVE_KIND = "year"
ALL_DOCUMENTS = "*"


def _sort_value(value: Any) -> tuple[int, Any]:
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (0, value)
    if isinstance(value, datetime):
        return (1, value)
    if value is None:
        return (3, "")
    return (2, str(value).lower())


def sort_documents(
    documents: Iterable[Document], sort_by: str = "date", reverse: bool = True
) -> list[Document]:
    """Order documents by a key, ties broken by source id.

    The default orders by descending date, ties broken by descending source
    path, which is deterministic across runs.
    """
    return sorted(
        documents,
        key=lambda d: (_sort_value(getattr(d, sort_by, None)), d.source_id),
        reverse=reverse,
    )


class Collection(Sequence[Document]):
    """Named ordered sequence of Documents for use in code and templates."""

    def __init__(
        self,
        name: str,
        documents: Iterable[Document],
        input_id: str | None = None,
    ):
        self.name = name
        self._documents = list(documents)
        self.input_id = input_id or collection_input(name)

    @property
    def documents(self) -> list[Document]:
        """The members as a list, recorded like iteration."""
        return list(self)

    def ids(self) -> list[str]:
        return [d.source_id for d in self._documents]

    def __iter__(self) -> Iterator[Document]:
        record_input(self.input_id)
        for document in self._documents:
            record_input(document.input_id)
            yield document

    def __len__(self) -> int:
        record_input(self.input_id)
        return len(self._documents)

    def __getitem__(self, item):
        record_input(self.input_id)
        if isinstance(item, slice):
            return Collection(self.name, self._documents[item], self.input_id)
        document = self._documents[item]
        record_input(document.input_id)
        return document

    def __bool__(self) -> bool:
        record_input(self.input_id)
        return bool(self._documents)

    def with_tag(self, tag: str) -> Collection:
        return Collection(self.name, (d for d in self._documents if tag in d.tags), self.input_id)

    def in_category(self, category: str) -> Collection:
        return Collection(
            self.name, (d for d in self._documents if category in d.categories), self.input_id
        )

    def latest(self, count: int = 5) -> Collection:
        return self[:count]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"Collection({self.name!r}, {len(self._documents)} documents)"


@dataclass
class Term:
    """A taxonomy term (tag, category or archive year) and its documents."""

    kind: str
    name: str
    slug: str
    documents: Collection

    @property
    def input_id(self) -> str:
        return term_input(self.kind, self.slug)

    def __len__(self) -> int:
        return len(self.documents)


class Taxonomy(Mapping[str, Term]):
    """Mapping of term name to Term, ordered by name."""

    def __init__(self, kind: str, terms: Iterable[Term]):
        self.kind = kind
        self._terms = {t.name: t for t in sorted(terms, key=lambda t: t.name.lower())}

    @property
    def input_id(self) -> str:
        return taxonomy_input(self.kind)

    def __getitem__(self, key: str) -> Term:
        record_input(self.input_id)
        return self._terms[key]

    def __iter__(self) -> Iterator[str]:
        record_input(self.input_id)
        return iter(self._terms)

    def __len__(self) -> int:
        record_input(self.input_id)
        return len(self._terms)

    def terms(self) -> list[Term]:
        """Terms in name order, without recording a dependency."""
        return list(self._terms.values())

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"Taxonomy({self.kind!r}, {len(self._terms)} terms)"


def build_taxonomy(
    kind: str,
    documents: Iterable[Document],
    names_of: Callable[[Document], Iterable[str]],
) -> Taxonomy:
    """Index documents by the term names names_of returns for each."""
    index: dict[str, tuple[str, list[Document]]] = {}
    for document in documents:
        for name in names_of(document):
            # Names that slugify alike share one term, named as first seen.
            _, members = index.setdefault(slugify(name), (name, []))
            if not members or members[-1] is not document:
                members.append(document)
    terms = []
    for slug, (name, members) in index.items():
        terms.append(
            Term(kind, name, slug, Collection(name, sort_documents(members), term_input(kind, slug)))
        )
    return Taxonomy(kind, terms)


class TrackedData(Mapping[str, Any]):
    """Site data that records which data file a template read."""

    def __init__(self, data: Mapping[str, Any], file_keys: Iterable[str] = ()):
        self._data = dict(data)
        self._file_keys = set(file_keys)

    def _input_for(self, key: str) -> str:
        # Keys not present yet are attributed to the file that would define them.
        if key in self._file_keys or key not in self._data:
            return data_input(key)
        return data_input("site")

    def __getitem__(self, key: str) -> Any:
        record_input(self._input_for(key))
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        for key in self._data:
            record_input(self._input_for(key))
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)


def paginate(documents: Sequence[Document], per_page: int) -> list[list[Document]]:
    """Split an ordered sequence into pages of at most per_page documents.

    An empty sequence yields no pages.

    Raises:
        ValueError: If per_page is smaller than 1.
    """
    if per_page < 1:
        raise ValueError(f"Page size must be at least 1, got {per_page}")
    items = list(documents)
    count = math.ceil(len(items) / per_page)
    return [items[i * per_page : (i + 1) * per_page] for i in range(count)]


@dataclass
class Pager:
    """One page of a paginated collection, exposed as `paginator`."""

    number: int
    total_pages: int
    total_documents: int
    per_page: int
    documents: list[Document]
    url: str
    previous_url: str | None = None
    next_url: str | None = None

    @property
    def previous(self) -> int | None:
        return self.number - 1 if self.number > 1 else None

    @property
    def next(self) -> int | None:
        return self.number + 1 if self.number < self.total_pages else None


def page_url(first_url: str, path_pattern: str, number: int) -> str:
    """URL of page number (1-based); page 1 lives at first_url."""
    if number == 1:
        return first_url
    path = path_pattern.replace(":num", str(number))
    if not path.startswith("/"):
        path = first_url.rstrip("/") + "/" + path
    return path


def build_pagers(
    documents: Sequence[Document], per_page: int, first_url: str, path_pattern: str
) -> list[Pager]:
    pages = paginate(documents, per_page)
    total = len(pages)
    urls = [page_url(first_url, path_pattern, n) for n in range(1, total + 1)]
    pagers = []
    for index, members in enumerate(pages):
        pagers.append(
            Pager(
                number=index + 1,
                total_pages=total,
                total_documents=len(documents),
                per_page=per_page,
                documents=members,
                url=urls[index],
                previous_url=urls[index - 1] if index > 0 else None,
                next_url=urls[index + 1] if index + 1 < total else None,
            )
        )
    return pagers


@dataclass(frozen=True)
class SiteContext:
    """Read-only snapshot of the whole site for one build.

    Attribute access falls through to collection names and then to config
    keys, so templates can write site.posts or site.title.
    """

    config: Mapping[str, Any]
    data: TrackedData
    collections: Mapping[str, Collection]
    taxonomies: Mapping[str, Taxonomy]
    documents: Collection

    @property
    def tags(self) -> Taxonomy:
        return self.taxonomies["tags"]

    @property
    def categories(self) -> Taxonomy:
        return self.taxonomies["categories"]

    @property
    def archives(self) -> Taxonomy:
        return self.taxonomies[ARCHIVE_KIND]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        collections = self.__dict__.get("collections") or {}
        if name in collections:
            return collections[name]
        config = self.__dict__.get("config") or {}
        if name in config:
            return config[name]
        raise AttributeError(name)

    def memberships(self) -> dict[str, list[str]]:
        """Ordered membership of every collection, term and taxonomy."""
        result: dict[str, list[str]] = {}
        for collection in self.collections.values():
            result[collection.input_id] = collection.ids()
        result[self.documents.input_id] = self.documents.ids()
        for taxonomy in self.taxonomies.values():
            terms = taxonomy.terms()
            result[taxonomy.input_id] = [t.name for t in terms]
            for term in terms:
                result[term.input_id] = term.documents.ids()
        return result


def build_site_context(
    documents: Iterable[Document],
    config: Mapping[str, Any],
    data: Mapping[str, Any] | None = None,
    data_files: Iterable[str] = (),
) -> SiteContext:
    """Group documents into collections and taxonomies.

    Args:
        documents: Every loaded (non-draft) document.
        config: Site configuration.
        data: Site data loaded from the data directory.
        data_files: Keys of data that came from their own data file.

    Returns:
        The frozen SiteContext for this build.
    """
    docs = list(documents)
    specs: Mapping[str, Mapping[str, Any]] = config.get("collections", {})
    grouped: dict[str, list[Document]] = {name: [] for name in specs}
    grouped.setdefault(DEFAULT_COLLECTION, [])
    for document in docs:
        grouped.setdefault(document.collection, []).append(document)

    collections: dict[str, Collection] = {}
    for name, members in grouped.items():
        spec = specs.get(name, {})
        ordered = sort_documents(
            members, str(spec.get("sort_by", "date")), bool(spec.get("reverse", True))
        )
        collections[name] = Collection(name, ordered)

    dated = [
        d for d in docs if d.collection != DEFAULT_COLLECTION and d.dated
    ]
    taxonomies = {
        "tags": build_taxonomy("tags", docs, lambda d: d.tags),
        "categories": build_taxonomy("categories", docs, lambda d: d.categories),
        ARCHIVE_KIND: build_taxonomy(ARCHIVE_KIND, dated, lambda d: [f"{d.date.year:04d}"]),
    }
    return SiteContext(
        config=MappingProxyType(dict(config)),
        data=TrackedData(data or {}, data_files),
        collections=MappingProxyType(collections),
        taxonomies=MappingProxyType(taxonomies),
        documents=Collection(ALL_DOCUMENTS, docs),
    )


def _generated_document(
    source_id: str,
    title: str,
    permalink: str,
    layout: str | None,
    bindings: dict[str, Any],
    listing: Iterable[str],
    members: Sequence[Document],
    host: Document | None = None,
) -> Document:
    if host is not None:
        date = host.date
    elif members:
        date = max(d.date for d in members)
    else:
        date = datetime(1970, 1, 1)
    return Document(
        source_id=f"generated:{source_id}",
        title=title,
        body=host.body if host else "",
        content=host.content if host else "",
        permalink=permalink,
        slug=slugify(source_id.rsplit("/", 1)[-1]),
        date=date,
        collection="generated",
        layout=layout,
        frontmatter=dict(host.frontmatter) if host else {},
        source_type=host.source_type if host else "generated",
        bindings=bindings,
        listing=tuple(listing),
    )


def synthesize_documents(
    site: SiteContext, layout_exists: Callable[[str], bool]
) -> tuple[list[Document], set[str]]:
    """Generate listing pages for pagination, taxonomy terms and archives.

    A real document whose front-matter sets ``paginate: <collection>``
    hosts that collection's pagination: its body and layout render every
    page and it is not rendered on its own. Otherwise pagination uses the
    collection's ``index_layout``. Taxonomy and archive pages are generated
    only when their layout exists.

    Returns:
        Tuple of (synthetic documents, source ids of hosting documents).
    """
    config = site.config
    permalinks = PermalinkDeriver()
    generated: list[Document] = []
    hosts: set[str] = set()
    site_title = str(config.get("title", ""))

    for name, spec in config.get("collections", {}).items():
        per_page = int(spec.get("paginate") or 0)
        collection = site.collections.get(name)
        if per_page < 1 or collection is None:
            continue
        host = next(
            (d for d in site.documents if d.frontmatter.get("paginate") == name), None
        )
        if host is not None:
            hosts.add(host.source_id)
            first_url, layout = host.permalink, host.layout
        else:
            layout = spec.get("index_layout")
            if not layout or not layout_exists(str(layout)):
                continue
            first_url = str(spec.get("index_permalink", f"/{name}/"))
        members = collection.documents
        pagers = build_pagers(
            members, per_page, first_url, str(spec.get("paginate_path", "page/:num/"))
        )
        for pager in pagers:
            extra = [host.input_id] if host else []
            generated.append(
                _generated_document(
                    f"{name}/page/{pager.number}",
                    host.title if host else site_title,
                    pager.url,
                    layout,
                    {"paginator": pager, "collection": collection},
                    [collection.input_id, *extra, *(d.input_id for d in pager.documents)],
                    pager.documents,
                    host,
                )
            )

    page_specs: list[tuple[str, Mapping[str, Any]]] = list(
        config.get("taxonomies", {}).items()
    )
    if config.get("archives"):
        page_specs.append((ARCHIVE_KIND, config["archives"]))
    for kind, spec in page_specs:
        layout = spec.get("layout")
        taxonomy = site.taxonomies.get(kind)
        if taxonomy is None or not layout or not layout_exists(str(layout)):
            continue
        pattern = str(spec.get("permalink", f"/{kind}/:slug/"))
        for term in taxonomy.terms():
            permalink = permalinks.expand(pattern, {"slug": term.slug, "year": term.slug, "name": term.name})
            generated.append(
                _generated_document(
                    f"{kind}/{term.slug}",
                    term.name,
                    permalink,
                    str(layout),
                    {"term": term, "documents": term.documents, "taxonomy": kind},
                    [term.input_id, *(d.input_id for d in term.documents.documents)],
                    term.documents.documents,
                )
            )
    return generated, hosts


def check_permalinks(documents: Iterable[Document]) -> None:
    """Ensure no two documents render to the same output path.

    Raises:
        BuildError: If a permalink climbs out of the output directory.
        DuplicatePermalink: Naming the permalink and every colliding source.
    """
    claimed: dict[str, list[Document]] = {}
    for document in documents:
        if ".." in document.permalink.split("/"):
            raise BuildError(
                document.source,
                f"Permalink {document.permalink} points outside the output directory",
                artifact=document.output_path,
            )
        claimed.setdefault(document.output_path, []).append(document)
    for members in claimed.values():
        if len(members) > 1:
            sources = [str(d.source) if d.source else d.source_id for d in members]
            raise DuplicatePermalink(members[0].permalink, sources)
