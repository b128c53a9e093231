"""Output writer for Folio.

Rendered artifacts and static files are written under the output directory
only when their SHA-256 differs from the hash recorded by the previous
build, or when the file is missing. An OSError stops the Writing phase with
WriteFailure; files written before it stay in place.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from .errors import BuildError, WriteFailure
from .utils import content_hash

logger = logging.getLogger(__name__)


class OutputWriter:
    """Writes artifacts under output_dir with hash-based skipping.

    Attributes:
        output_dir: Root of the output tree.
        hashes: Output path -> SHA-256 of the bytes currently on disk.
    """

    def __init__(self, output_dir: Path, hashes: Mapping[str, str] | None = None):
        self.output_dir = output_dir
        self.hashes: dict[str, str] = dict(hashes or {})

    def target(self, output_path: str) -> Path:
        """Resolve output_path under output_dir.

        Raises:
            BuildError: If the path resolves outside output_dir.
        """
        target = self.output_dir / output_path
        if not target.resolve().is_relative_to(self.output_dir.resolve()):
            raise BuildError(
                None, f"Refusing to touch a path outside {self.output_dir}", artifact=output_path
            )
        return target

    def is_current(self, output_path: str, digest: str) -> bool:
        return self.hashes.get(output_path) == digest and self.target(output_path).is_file()

    def write(
        self, output_path: str, payload: str | bytes, source_path: Path | None = None
    ) -> bool:
        """Write payload unless identical bytes are already in place.

        Returns:
            True if the file was written, False if it was skipped.

        Raises:
            WriteFailure: If the file cannot be written.
        """
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        digest = content_hash(data)
        if self.is_current(output_path, digest):
            return False
        target = self.target(output_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise WriteFailure(source_path, output_path, exc) from exc
        self.hashes[output_path] = digest
        logger.debug("Wrote %s", output_path)
        return True

    def remove(self, output_path: str) -> bool:
        """Delete a stale artifact and any directories it leaves empty.

        Raises:
            WriteFailure: If the file cannot be removed.
        """
        self.hashes.pop(output_path, None)
        target = self.target(output_path)
        if not target.exists():
            return False
        try:
            target.unlink()
            parent = target.parent
            while parent != self.output_dir and parent.is_dir() and not any(parent.iterdir()):
                parent.rmdir()
                parent = parent.parent
        except OSError as exc:
            raise WriteFailure(None, output_path, exc) from exc
        logger.debug("Removed %s", output_path)
        return True
