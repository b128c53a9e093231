"""Template registry and rendering engine for Folio.

Layouts and partials are loaded into a TemplateRegistry. Before anything is
rendered, TemplateRegistry.check() verifies every referenced template exists,
that no template includes itself directly or transitively, and that no
layout chain loops. TemplateEngine then renders documents with Jinja2:
template bodies are expanded, and the result is wrapped by each layout of
the chain in turn.

Key classes:
- Template: A layout or partial with its parse tree and references.
- TemplateRegistry: Loads, resolves and checks templates.
- SoftUndefined: Renders missing variables as empty and records a warning.
- TemplateEngine: Renders templates and documents against the Site Context.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from jinja2 import (
    BaseLoader,
    ChainableUndefined,
    Environment,
    TemplateNotFound,
    TemplateSyntaxError,
    meta,
    nodes,
    select_autoescape,
)
from jinja2 import Template as JinjaTemplate
from markupsafe import Markup, escape

from .collections import SiteContext
from .content import LAYOUT_SUFFIXES, Document
from .depgraph import DependencyGraph
from .errors import BuildError, CyclicDependency, CyclicLayout, MissingPartial
from .extractors import extract_frontmatter
from .tracking import current_tracker, record_input, record_warning, template_input
from .utils import join_root_url, slugify

logger = logging.getLogger(__name__)

LAYOUTS = "layouts"
PARTIALS = "partials"


@dataclass
class Template:
    """A named layout or partial.

    Attributes:
        kind: "layouts" or "partials".
        name: Path relative to its root, without suffix.
        filename: Path relative to its root, with suffix.
        path: Source file.
        source: Template source with front-matter removed.
        ast: Jinja2 parse tree.
        references: Literal names of included, imported or extended templates.
        parent: Parent layout declared in front-matter.
        frontmatter: Front-matter of the template file.
    """

    kind: str
    name: str
    filename: str
    path: Path
    source: str
    ast: nodes.Template
    references: frozenset[str] = frozenset()
    parent: str | None = None
    frontmatter: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.filename}"

    @property
    def input_id(self) -> str:
        return template_input(self.key)


def _strip_suffix(filename: str) -> str:
    for suffix in sorted(LAYOUT_SUFFIXES, key=len, reverse=True):
        if suffix and filename.endswith(suffix):
            return filename[: -len(suffix)]
    return filename


class TemplateRegistry:
    """Loads layouts and partials and resolves template names.

    Names resolve by exact relative path, then by appending each suffix in
    LAYOUT_SUFFIXES. Partials are searched before layouts, and a name may be
    qualified as "partials/nav" or "layouts/default".
    """

    def __init__(self, layouts_dir: Path, partials_dir: Path):
        self.roots = {LAYOUTS: layouts_dir, PARTIALS: partials_dir}
        self._templates: dict[str, dict[str, Template]] = {LAYOUTS: {}, PARTIALS: {}}
        self._parser = Environment()

    def load(self) -> TemplateRegistry:
        """Read and parse every template file.

        Raises:
            MalformedFrontMatter: If a template's front-matter is invalid.
            BuildError: If a template has a syntax error.
        """
        for kind, root in self.roots.items():
            self._templates[kind] = {}
            if not root.exists():
                continue
            for path in sorted(root.rglob("*")):
                if path.is_dir() or path.name.startswith("."):
                    continue
                template = self._parse(kind, root, path)
                self._templates[kind][template.filename] = template
        return self

    def _parse(self, kind: str, root: Path, path: Path) -> Template:
        filename = path.relative_to(root).as_posix()
        frontmatter, source, _ = extract_frontmatter(path.read_text(encoding="utf-8"), path)
        try:
            ast = self._parser.parse(source, name=filename, filename=str(path))
        except TemplateSyntaxError as exc:
            raise BuildError(
                path, f"Template syntax error on line {exc.lineno}: {exc.message}", exc
            ) from exc
        references = frozenset(
            ref for ref in meta.find_referenced_templates(ast) if ref is not None
        )
        parent = frontmatter.get("layout") if kind == LAYOUTS else None
        return Template(
            kind=kind,
            name=_strip_suffix(filename),
            filename=filename,
            path=path,
            source=source,
            ast=ast,
            references=references,
            parent=str(parent) if parent else None,
            frontmatter=frontmatter,
        )

    def templates(self) -> list[Template]:
        return [t for kind in (LAYOUTS, PARTIALS) for t in self._templates[kind].values()]

    def paths(self) -> list[Path]:
        return [t.path for t in self.templates()]

    def resolve(self, name: str, kinds: Iterable[str] = (PARTIALS, LAYOUTS)) -> Template | None:
        """Return the template a name refers to, or None."""
        name = name.strip("/")
        head, _, rest = name.partition("/")
        if head in self._templates and rest:
            kinds, name = (head,), rest
        for kind in kinds:
            table = self._templates[kind]
            for suffix in LAYOUT_SUFFIXES:
                found = table.get(f"{name}{suffix}")
                if found is not None:
                    return found
        return None

    def layout(self, name: str) -> Template | None:
        return self.resolve(name, (LAYOUTS,))

    def layout_exists(self, name: str) -> bool:
        return self.layout(name) is not None

    def layout_chain(self, name: str) -> list[Template]:
        """Return the layouts wrapping a body, innermost first.

        The walk is iterative and ends at a layout without a parent. A
        missing parent ends the chain with a warning.

        Raises:
            CyclicLayout: If a layout ultimately wraps itself.
        """
        chain: list[Template] = []
        seen: dict[str, int] = {}
        current = self.layout(name)
        while current is not None:
            if current.key in seen:
                cycle = [t.key for t in chain[seen[current.key] :]] + [current.key]
                raise CyclicLayout(current.path, cycle)
            seen[current.key] = len(chain)
            chain.append(current)
            if current.parent is None:
                break
            parent = self.layout(current.parent)
            if parent is None:
                logger.warning(
                    "Layout %s declares missing parent layout '%s'", current.key, current.parent
                )
            current = parent
        return chain

    def check(self) -> DependencyGraph:
        """Validate references, inclusion cycles and layout chains.

        Returns:
            The template inclusion graph (edge: included -> including).

        Raises:
            MissingPartial: If a literal reference cannot be resolved.
            CyclicDependency: If a template includes itself transitively.
            CyclicLayout: If a layout chain loops.
        """
        graph = DependencyGraph()
        for template in self.templates():
            graph.add_artifact(template.input_id)
            for reference in sorted(template.references):
                target = self.resolve(reference)
                if target is None:
                    raise MissingPartial(template.path, reference)
                graph.record_dependency(template.input_id, target.input_id, template.path)
        for layout in self._templates[LAYOUTS].values():
            self.layout_chain(layout.name)
        return graph


class RegistryLoader(BaseLoader):
    """Jinja2 loader serving front-matter-stripped sources from a registry."""

    def __init__(self, registry: TemplateRegistry):
        self.registry = registry

    def get_source(self, environment: Environment, template: str):
        found = self.registry.resolve(template)
        if found is None:
            raise TemplateNotFound(template)
        return found.source, str(found.path), lambda: True


class SoftUndefined(ChainableUndefined):
    """Undefined that renders as empty and records a warning when used."""

    __slots__ = ()

    def _warn(self) -> None:
        record_warning(f"Undefined variable: {self._undefined_message}")

    def __str__(self) -> str:
        self._warn()
        return ""

    def __iter__(self):
        self._warn()
        return iter(())


class TrackingEnvironment(Environment):
    """Environment that records every template load as a render input.

    Unknown names raise MissingPartial instead of TemplateNotFound.
    """

    def __init__(self, registry: TemplateRegistry, **options: Any):
        super().__init__(loader=RegistryLoader(registry), **options)
        self.registry = registry

    def _missing(self, name: str, parent: str | None) -> MissingPartial:
        including = self.registry.resolve(parent) if parent else None
        tracker = current_tracker()
        return MissingPartial(
            including.path if including else None,
            name,
            artifact=tracker.artifact.removeprefix("artifact:") if tracker else None,
        )

    def get_template(self, name, parent=None, globals=None):
        if isinstance(name, JinjaTemplate):
            return name
        found = self.registry.resolve(name)
        if found is None:
            raise self._missing(name, parent)
        record_input(found.input_id)
        return super().get_template(found.key, parent, globals)

    def select_template(self, names, parent=None, globals=None):
        for name in names:
            if isinstance(name, JinjaTemplate) or self.registry.resolve(name) is not None:
                return self.get_template(name, parent, globals)
        raise self._missing(" | ".join(str(n) for n in names), parent)


def date_format(value: Any, fmt: str = "%b %d, %Y") -> str:
    """Format a datetime for display; other values pass through as text."""
    if isinstance(value, datetime):
        return value.strftime(fmt)
    return "" if value is None else str(value)


class TemplateEngine:
    """Renders templates and documents with Jinja2.

    Site-wide bindings (config keys, site, data, url helpers) are
    environment globals. Page-local bindings (front-matter keys, page,
    content, paginator, term) are render locals and shadow them.

    Attributes:
        registry: Loaded and checked templates.
        site: Site Context snapshot for this build.
        env: The Jinja2 environment.
    """

    def __init__(self, registry: TemplateRegistry, site: SiteContext):
        self.registry = registry
        self.site = site
        config = site.config
        self.base_url = str(config.get("url") or "").rstrip("/")
        self.baseurl = "/" + str(config.get("baseurl") or "").strip("/")
        self.env = TrackingEnvironment(
            registry,
            autoescape=select_autoescape(["html", "xml"]),
            undefined=SoftUndefined,
        )
        self._install_globals()

    def _install_globals(self) -> None:
        for key, value in self.site.config.items():
            if isinstance(key, str) and key.isidentifier():
                self.env.globals[key] = value
        self.env.globals["site"] = self.site
        self.env.globals["data"] = self.site.data
        self.env.globals["url_for"] = self.url_for
        self.env.globals["absolute_url"] = self.absolute_url
        self.env.filters["date_format"] = date_format
        self.env.filters["slugify"] = slugify
        self.env.filters["xml_escape"] = escape
        self.env.filters["absolute_url"] = self.absolute_url
        self.env.filters["relative_url"] = self.url_for

    def url_for(self, path: str) -> str:
        """Site-relative URL for path, honoring a configured baseurl."""
        if path.startswith(("http://", "https://", "//", "mailto:", "#")):
            return path
        if self.baseurl == "/":
            return path if path.startswith("/") else f"/{path}"
        return join_root_url(self.baseurl, path)

    def absolute_url(self, path: str) -> str:
        """Absolute URL for path using the configured site url."""
        relative = self.url_for(path)
        if relative.startswith(("http://", "https://", "//")) or not self.base_url:
            return relative
        return join_root_url(self.base_url, relative)

    def render(self, template: Template | str, context: Mapping[str, Any]) -> str:
        """Render a registered template with page-local bindings.

        Raises:
            MissingPartial: If the template or an include cannot be resolved.
        """
        name = template.key if isinstance(template, Template) else template
        return self.env.get_template(name).render(dict(context))

    def render_string(self, source: str, context: Mapping[str, Any]) -> str:
        return self.env.from_string(source).render(dict(context))

    def page_context(self, document: Document) -> dict[str, Any]:
        context: dict[str, Any] = {
            key: value
            for key, value in document.frontmatter.items()
            if key.isidentifier()
        }
        context["page"] = document
        context.update(document.bindings)
        return context

    def render_document(self, document: Document) -> str:
        """Render a document body and wrap it in its layout chain.

        Raises:
            CyclicLayout: If the layout chain loops.
            CyclicDependency: If templates recurse without bound at runtime.
            MissingPartial: If an include cannot be resolved.
        """
        context = self.page_context(document)
        try:
            html = document.content
            if document.expands_templates and html:
                html = self.render_string(html, context)
            if document.layout is None:
                return html
            chain = self.registry.layout_chain(document.layout)
            if not chain:
                record_warning(f"Layout '{document.layout}' not found; rendering body only")
                return html
            for layout in chain:
                wrapped = Markup(html)
                html = self.render(
                    layout,
                    {**context, "content": wrapped, "page_content": wrapped, "layout": layout.frontmatter},
                )
            return html
        except RecursionError as exc:
            raise CyclicDependency(
                document.source,
                [document.layout or document.source_id, "...", document.layout or document.source_id],
                artifact=document.output_path,
            ) from exc
