"""Filesystem watch loop for Folio.

A watchdog observer collects changed paths; once events have been quiet for
the debounce interval, the collected paths are handed to an incremental
build. Changes under the output directory and the state directory are
ignored, as are hidden files and editor swap files.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import Builder, BuildResult
from .errors import BuildError

logger = logging.getLogger(__name__)

_SWAP_SUFFIXES = ("~", ".swp", ".swx", ".tmp")


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: SiteWatcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event):
        if event.is_directory:
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if raw:
                self.watcher.record(Path(os.fsdecode(raw)))


class SiteWatcher:
    """Rebuilds a project incrementally whenever its inputs change.

    Attributes:
        builder: Builder reused for every rebuild.
        include_drafts: Whether rebuilds include drafts.
        debounce: Seconds of quiet required before rebuilding.
    """

    def __init__(
        self,
        builder: Builder,
        include_drafts: bool = False,
        debounce: float = 0.2,
        on_rebuild: Callable[[BuildResult], None] | None = None,
        on_error: Callable[[BuildError], None] | None = None,
    ):
        self.builder = builder
        self.include_drafts = include_drafts
        self.debounce = debounce
        self.on_rebuild = on_rebuild
        self.on_error = on_error
        self._pending: set[Path] = set()
        self._last_event = 0.0
        self._lock = threading.Lock()
        self._observer: Observer | None = None
        paths = builder.paths()
        self._ignored = [paths.output_dir.resolve(), paths.state_file.parent.resolve()]

    def is_ignored(self, path: Path) -> bool:
        if path.name.startswith(".") or path.name.endswith(_SWAP_SUFFIXES):
            return True
        resolved = path.resolve()
        for ignored in self._ignored:
            try:
                resolved.relative_to(ignored)
                return True
            except ValueError:
                pass
        return False

    def record(self, path: Path) -> None:
        if self.is_ignored(path):
            return
        with self._lock:
            self._pending.add(path)
            self._last_event = time.monotonic()

    def take_pending(self, now: float | None = None) -> set[Path] | None:
        """Return the collected paths once the debounce interval has passed."""
        now = time.monotonic() if now is None else now
        with self._lock:
            if not self._pending or now - self._last_event < self.debounce:
                return None
            pending, self._pending = self._pending, set()
            return pending

    def rebuild(self, changed: set[Path]) -> BuildResult | None:
        logger.info("Change detected in %d file(s); rebuilding", len(changed))
        try:
            result = self.builder.build(changed_paths=changed, include_drafts=self.include_drafts)
        except BuildError as exc:
            logger.error("Rebuild failed: %s", exc)
            if self.on_error is not None:
                self.on_error(exc)
            return None
        if self.on_rebuild is not None:
            self.on_rebuild(result)
        return result

    def start(self) -> None:
        paths = self.builder.paths()
        handler = _ChangeHandler(self)
        observer = Observer()
        scheduled: list[Path] = []
        for folder in (
            paths.content_dir,
            paths.layouts_dir,
            paths.partials_dir,
            paths.data_dir,
            paths.assets_dir,
        ):
            if not folder.exists() or any(folder.is_relative_to(s) for s in scheduled):
                continue
            observer.schedule(handler, str(folder), recursive=True)
            scheduled.append(folder)
        # Config files live in the project root.
        observer.schedule(handler, str(paths.root), recursive=False)
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def run(self, poll: float = 0.1) -> None:  # pragma: no cover - integration path
        self.start()
        try:
            while True:
                time.sleep(poll)
                changed = self.take_pending()
                if changed:
                    self.rebuild(changed)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()
