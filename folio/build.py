"""Site building functionality for Folio.

This module orchestrates a build: it loads content and data, builds the
Site Context, checks templates, renders artifacts in parallel and writes
the ones whose bytes changed. Incremental builds consult the persisted
dependency graph to re-render only the artifacts a change can affect.

Key classes:
- Builder: Build state machine (IDLE -> LOADING -> RENDERING -> WRITING).
- BuildResult: What a build rendered, wrote, skipped and deleted.

Key functions:
- build_site: Build a project in one call.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from jinja2 import TemplateSyntaxError

from .collections import SiteContext, build_site_context, check_permalinks, synthesize_documents
from .config import data_files, find_config_file, load_config, load_data
from .content import ContentProcessor, Document, FileContentLoader
from .depgraph import DependencyGraph
from .errors import BuildCancelled, BuildError, DuplicatePermalink
from .feeds import FeedGenerator, FeedRegistry, create_default_feed_registry
from .state import BuildState, fingerprint_inputs, load_state, membership_changes, save_state
from .templates import TemplateEngine, TemplateRegistry
from .tracking import (
    CONFIG_INPUT,
    artifact_id,
    asset_input,
    content_input,
    data_input,
    record_input,
    template_input,
    tracking,
)
from .utils import content_hash, ensure_clean_dir
from .writer import OutputWriter

logger = logging.getLogger(__name__)


class BuildPhase(Enum):
    IDLE = "idle"
    LOADING = "loading"
    RENDERING = "rendering"
    WRITING = "writing"
    FAILED = "failed"


@dataclass(frozen=True)
class SitePaths:
    """Resolved project directories."""

    root: Path
    content_dir: Path
    layouts_dir: Path
    partials_dir: Path
    data_dir: Path
    assets_dir: Path
    output_dir: Path
    state_file: Path

    @classmethod
    def from_config(cls, root: Path, config: dict[str, Any]) -> SitePaths:
        def resolve(key: str) -> Path:
            return root / str(config[key])

        return cls(
            root=root,
            content_dir=resolve("content_dir"),
            layouts_dir=resolve("layouts_dir"),
            partials_dir=resolve("partials_dir"),
            data_dir=resolve("data_dir"),
            assets_dir=resolve("assets_dir"),
            output_dir=resolve("output_dir"),
            state_file=resolve("state_file"),
        )


@dataclass
class Artifact:
    """One output file and how to produce it."""

    output_path: str
    source_path: Path | None = None
    document: Document | None = None
    feed: FeedGenerator | None = None
    asset: Path | None = None

    @property
    def id(self) -> str:
        return artifact_id(self.output_path)

    @property
    def label(self) -> str:
        return str(self.source_path) if self.source_path else self.output_path


@dataclass
class RenderedArtifact:
    artifact: Artifact
    payload: str | bytes
    inputs: set[str]
    warnings: list[str]


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        output_dir: Directory where the site was built.
        documents: Every loaded document (synthetic listing pages excluded).
        site: The Site Context the build rendered against.
        full: Whether every artifact was rendered.
        rendered: Output paths rendered in this build.
        written: Output paths whose bytes changed on disk.
        skipped: Rendered output paths whose bytes were already current.
        deleted: Output paths removed because their source vanished.
        warnings: Soft problems, prefixed with the artifact they concern.
    """

    output_dir: Path
    documents: list[Document]
    site: SiteContext
    full: bool
    rendered: list[str] = field(default_factory=list)
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"


def _config_hash(config: dict[str, Any]) -> str:
    return content_hash(json.dumps(config, sort_keys=True, default=str))


class Builder:
    """Builds a project, fully or incrementally.

    A Builder keeps the state of its last successful build in memory, so a
    watch loop can reuse one instance. Only the state file persists between
    processes.

    Attributes:
        project_root: Root directory of the project.
        phase: Current BuildPhase.
        state: BuildState of the last successful build, if any.
    """

    def __init__(
        self,
        project_root: Path,
        config: dict[str, Any] | None = None,
        workers: int | None = None,
        feed_registry: FeedRegistry | None = None,
    ):
        self.project_root = project_root
        self._config = config
        self.workers = workers
        self.feed_registry = feed_registry or create_default_feed_registry()
        self.phase = BuildPhase.IDLE
        self.state: BuildState | None = None
        self._cancelled = threading.Event()

    def load_config(self) -> dict[str, Any]:
        """Return the explicit config, or read the project's config file."""
        if self._config is not None:
            return self._config
        return load_config(self.project_root)

    def paths(self) -> SitePaths:
        return SitePaths.from_config(self.project_root, self.load_config())

    def _transition(self, phase: BuildPhase) -> None:
        logger.debug("Build phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def cancel(self) -> None:
        """Abort the running build before its Writing phase."""
        self._cancelled.set()

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise BuildCancelled()

    def build(
        self,
        full: bool = False,
        changed_paths: set[Path] | None = None,
        include_drafts: bool = False,
        clean: bool = False,
    ) -> BuildResult:
        """Run one build.

        Args:
            full: Render every artifact even when state allows incremental.
            changed_paths: Paths reported changed by a watcher; when None,
                changes are detected from the persisted fingerprints.
            include_drafts: Whether to include draft documents.
            clean: Empty the output directory first (implies full).

        Returns:
            BuildResult describing the build.

        Raises:
            BuildError: On any fatal error; nothing of the failing render
                pass is written and the previous state is kept.
        """
        self._cancelled.clear()
        try:
            return self._build(full, changed_paths, include_drafts, clean)
        except BaseException:
            self._transition(BuildPhase.FAILED)
            raise

    def _build(
        self,
        full: bool,
        changed_paths: set[Path] | None,
        include_drafts: bool,
        clean: bool,
    ) -> BuildResult:
        self._transition(BuildPhase.LOADING)
        config = self.load_config()
        paths = SitePaths.from_config(self.project_root, config)
        if not paths.content_dir.exists():
            raise BuildError(paths.content_dir, "Content directory not found")

        previous = self.state or load_state(paths.state_file)
        config_digest = _config_hash(config)
        loader = FileContentLoader(paths.content_dir, config.get("extensions", (".md", ".html")))
        inputs = self._collect_inputs(paths, loader, include_drafts)

        incremental = not (full or clean) and previous is not None
        if incremental and (
            previous.config_hash != config_digest or previous.include_drafts != include_drafts
        ):
            logger.info("Configuration changed; running a full build")
            incremental = False

        only = None
        if changed_paths is not None and previous is not None:
            resolved = {p.resolve() for p in changed_paths}
            only = {i for i, p in inputs.items() if p.resolve() in resolved}
        fingerprints, changed = fingerprint_inputs(
            inputs, previous.fingerprints if previous else {}, only
        )
        if incremental and any(
            i.startswith("template:") and (i not in inputs or i not in previous.fingerprints)
            for i in changed
        ):
            logger.info("Templates were added or removed; running a full build")
            incremental = False

        processor = ContentProcessor(
            paths.content_dir, config, layouts_dir=paths.layouts_dir, content_loader=loader
        )
        if incremental:
            changed_sources = {
                inputs[i] for i in changed if i.startswith("content:") and i in inputs
            }
            documents = processor.reload(previous.documents, changed_sources, include_drafts)
        else:
            documents = processor.load(include_drafts)

        data = load_data(paths.data_dir)
        data_keys = [p.stem for p in data_files(paths.data_dir) if p.stem != "site"]
        site = build_site_context(documents, config, data, data_keys)

        registry = TemplateRegistry(paths.layouts_dir, paths.partials_dir).load()
        registry.check()

        generated, hosts = synthesize_documents(site, registry.layout_exists)
        pages = [d for d in documents if d.source_id not in hosts] + generated
        check_permalinks(pages)
        artifacts = self._plan_artifacts(paths, config, loader, pages)

        memberships = site.memberships()
        graph = previous.graph.copy() if incremental else DependencyGraph()
        current = {a.id for a in artifacts.values()}
        previous_outputs = set(previous.hashes) if previous else set()
        stale = sorted(previous_outputs - set(artifacts))

        if incremental:
            changed |= membership_changes(previous.memberships, memberships)
            known = graph.artifacts()
            targets = graph.invalidate(changed) & current
            targets |= current - known
            targets |= {
                a.id
                for a in artifacts.values()
                if a.output_path not in previous.hashes
                or not (paths.output_dir / a.output_path).is_file()
            }
            for node in known - current:
                graph.remove_node(node)
        else:
            targets = current
        for target in targets:
            graph.clear_dependencies(target)
        logger.debug(
            "%d inputs changed, %d of %d artifacts to render",
            len(changed),
            len(targets),
            len(current),
        )

        self._check_cancelled()
        self._transition(BuildPhase.RENDERING)
        engine = TemplateEngine(registry, site)
        to_render = [a for a in artifacts.values() if a.id in targets]
        results = self._render_all(to_render, engine, site, pages, graph, config)
        self._check_cancelled()

        self._transition(BuildPhase.WRITING)
        if clean:
            ensure_clean_dir(paths.output_dir)
        hashes = {} if clean or previous is None else previous.hashes
        writer = OutputWriter(paths.output_dir, hashes)
        result = BuildResult(
            output_dir=paths.output_dir,
            documents=documents,
            site=site,
            full=not incremental,
        )
        for rendered in sorted(results, key=lambda r: r.artifact.output_path):
            artifact = rendered.artifact
            result.rendered.append(artifact.output_path)
            if writer.write(artifact.output_path, rendered.payload, artifact.source_path):
                result.written.append(artifact.output_path)
            else:
                result.skipped.append(artifact.output_path)
            for warning in rendered.warnings:
                message = f"{artifact.label}: {warning}"
                logger.warning(message)
                result.warnings.append(message)
        for output_path in stale:
            if writer.remove(output_path):
                result.deleted.append(output_path)

        graph.prune_inputs()
        self.state = BuildState(
            graph=graph,
            hashes=writer.hashes,
            fingerprints=fingerprints,
            memberships=memberships,
            config_hash=config_digest,
            include_drafts=include_drafts,
            documents={d.source_id: d for d in documents},
        )
        save_state(paths.state_file, self.state)
        self._transition(BuildPhase.IDLE)
        logger.info(
            "Built %s: %d rendered, %d written, %d unchanged, %d deleted",
            paths.output_dir,
            len(result.rendered),
            len(result.written),
            len(result.skipped),
            len(result.deleted),
        )
        return result

    def _collect_inputs(
        self, paths: SitePaths, loader: FileContentLoader, include_drafts: bool
    ) -> dict[str, Path]:
        """Map every input identity of the project to its file."""
        inputs: dict[str, Path] = {}
        config_file = find_config_file(paths.root)
        if config_file is not None:
            inputs[CONFIG_INPUT] = config_file
        for path in loader.iter_files(include_drafts):
            inputs[content_input(path.relative_to(paths.content_dir).as_posix())] = path
        for kind, root in (("layouts", paths.layouts_dir), ("partials", paths.partials_dir)):
            if not root.exists():
                continue
            for path in sorted(root.rglob("*")):
                if path.is_file() and not path.name.startswith("."):
                    inputs[template_input(f"{kind}/{path.relative_to(root).as_posix()}")] = path
        for path in data_files(paths.data_dir):
            inputs[data_input(path.stem)] = path
        for output_path, path in self._static_files(paths, loader).items():
            inputs[asset_input(output_path)] = path
        return inputs

    def _static_files(self, paths: SitePaths, loader: FileContentLoader) -> dict[str, Path]:
        files: dict[str, Path] = {}
        for path in loader.iter_static_files():
            files[path.relative_to(paths.content_dir).as_posix()] = path
        if paths.assets_dir.exists():
            for path in sorted(paths.assets_dir.rglob("*")):
                if path.is_file() and not path.name.startswith("."):
                    rel = path.relative_to(paths.assets_dir).as_posix()
                    files[f"assets/{rel}"] = path
        return files

    def _plan_artifacts(
        self,
        paths: SitePaths,
        config: dict[str, Any],
        loader: FileContentLoader,
        pages: list[Document],
    ) -> dict[str, Artifact]:
        """Decide every output file of the build, keyed by output path.

        Raises:
            DuplicatePermalink: If two producers claim the same output path.
        """
        artifacts: dict[str, Artifact] = {}

        def claim(artifact: Artifact) -> None:
            existing = artifacts.get(artifact.output_path)
            if existing is not None:
                raise DuplicatePermalink(
                    "/" + artifact.output_path, [existing.label, artifact.label]
                )
            artifacts[artifact.output_path] = artifact

        for page in pages:
            claim(Artifact(page.output_path, source_path=page.source, document=page))
        for generator in self.feed_registry.active(config):
            claim(Artifact(generator.filename, feed=generator))
        for output_path, path in self._static_files(paths, loader).items():
            claim(Artifact(output_path, source_path=path, asset=path))
        return artifacts

    def _render_all(
        self,
        artifacts: list[Artifact],
        engine: TemplateEngine,
        site: SiteContext,
        pages: list[Document],
        graph: DependencyGraph,
        config: dict[str, Any],
    ) -> list[RenderedArtifact]:
        """Render artifacts on a thread pool and record their dependencies.

        The first fatal error cancels every pending render and propagates;
        renders already in flight finish but their output is discarded.
        """
        if not artifacts:
            return []
        workers = max(1, int(self.workers or config.get("workers") or 1))
        results: list[RenderedArtifact] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="folio-render") as pool:
            futures = [
                pool.submit(self._render_one, artifact, engine, site, pages, graph)
                for artifact in artifacts
            ]
            try:
                for future in as_completed(futures):
                    results.append(future.result())
            except BaseException:
                self._cancelled.set()
                for future in futures:
                    future.cancel()
                raise
        return results

    def _render_one(
        self,
        artifact: Artifact,
        engine: TemplateEngine,
        site: SiteContext,
        pages: list[Document],
        graph: DependencyGraph,
    ) -> RenderedArtifact:
        self._check_cancelled()
        with tracking(artifact.id) as tracker:
            try:
                payload = self._produce(artifact, engine, site, pages)
            except BuildError as exc:
                if exc.artifact is None:
                    exc.artifact = artifact.output_path
                raise
            except TemplateSyntaxError as exc:
                raise BuildError(
                    artifact.source_path,
                    f"Template syntax error on line {exc.lineno}: {exc.message}",
                    exc,
                    artifact=artifact.output_path,
                ) from exc
            except Exception as exc:
                raise BuildError(
                    artifact.source_path,
                    _format_error_message(exc),
                    exc,
                    artifact=artifact.output_path,
                ) from exc
        graph.record_many(artifact.id, tracker.inputs, artifact.source_path)
        return RenderedArtifact(artifact, payload, tracker.inputs, tracker.warnings)

    def _produce(
        self,
        artifact: Artifact,
        engine: TemplateEngine,
        site: SiteContext,
        pages: list[Document],
    ) -> str | bytes:
        if artifact.asset is not None:
            record_input(asset_input(artifact.output_path))
            return artifact.asset.read_bytes()
        if artifact.feed is not None:
            return artifact.feed.generate(site, pages) or ""
        document = artifact.document
        if document.synthetic:
            for input_id in document.listing:
                record_input(input_id)
        else:
            record_input(document.input_id)
        return engine.render_document(document)


def build_site(
    project_root: Path,
    include_drafts: bool = False,
    full: bool = False,
    clean: bool = False,
    workers: int | None = None,
) -> BuildResult:
    """Build the site at project_root.

    Args:
        project_root: Root directory of the project.
        include_drafts: Whether to include draft pages.
        full: Render everything instead of only what changed.
        clean: Wipe the output directory before writing.
        workers: Render thread count; defaults to config "workers".

    Returns:
        BuildResult describing the build.
    """
    builder = Builder(project_root, workers=workers)
    return builder.build(full=full, include_drafts=include_drafts, clean=clean)
