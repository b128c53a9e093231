"""Render-time dependency discovery.

Each artifact renders inside its own RenderTracker, held in a context
variable so that concurrent renders on different worker threads never see
each other's discoveries. Template loads, data-file lookups and collection
iteration call record_input(); soft template problems call record_warning().
Outside of a render both functions are no-ops.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field

CONFIG_INPUT = "config"


def content_input(source_id: str) -> str:
    return f"content:{source_id}"


def template_input(key: str) -> str:
    return f"template:{key}"


def data_input(name: str) -> str:
    return f"data:{name}"


def asset_input(rel: str) -> str:
    return f"asset:{rel}"


def collection_input(name: str) -> str:
    return f"collection:{name}"


def term_input(kind: str, slug: str) -> str:
    return f"term:{kind}/{slug}"


def taxonomy_input(kind: str) -> str:
    return f"taxonomy:{kind}"


def artifact_id(output_path: str) -> str:
    return f"artifact:{output_path}"


@dataclass
class RenderTracker:
    """Inputs and warnings discovered while rendering one artifact."""

    artifact: str
    inputs: set[str] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)


_current: ContextVar[RenderTracker | None] = ContextVar("folio_render_tracker", default=None)


@contextmanager
def tracking(artifact: str) -> Iterator[RenderTracker]:
    """Collect inputs and warnings for the duration of one render."""
    tracker = RenderTracker(artifact)
    token = _current.set(tracker)
    try:
        yield tracker
    finally:
        _current.reset(token)


def current_tracker() -> RenderTracker | None:
    return _current.get()


def record_input(input_id: str) -> None:
    tracker = _current.get()
    if tracker is not None:
        tracker.inputs.add(input_id)


def record_warning(message: str) -> None:
    tracker = _current.get()
    if tracker is not None and message not in tracker.warnings:
        tracker.warnings.append(message)
