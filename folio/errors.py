"""Build error taxonomy for Folio.

Every fatal problem surfaces as a BuildError subclass carrying the offending
source path and a human-readable cause. Structural errors (front-matter,
cycles, permalink collisions) abort the whole build; WriteFailure stops the
Writing phase but leaves files that were already written in place.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error, or None
            for generated artifacts without a source.
        message: Human-readable error message.
        original_error: The original exception that was caught.
        artifact: Output path of the artifact being built, when known.
    """

    def __init__(
        self,
        source_path: Path | None,
        message: str,
        original_error: Exception | None = None,
        artifact: str | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        self.artifact = artifact
        location = str(source_path) if source_path is not None else artifact or "<site>"
        super().__init__(f"{location}: {message}")


class MalformedFrontMatter(BuildError):
    """Front-matter delimiters are unbalanced or the block is not a mapping."""


class InvalidDateInFilename(BuildError):
    """A YYYY-MM-DD filename prefix that does not name a real date."""


class MissingPartial(BuildError):
    """A template references a partial that cannot be resolved."""

    def __init__(self, source_path: Path | None, name: str, artifact: str | None = None):
        self.name = name
        super().__init__(source_path, f"Missing partial: '{name}'", artifact=artifact)


class CyclicLayout(BuildError):
    """A layout chain ultimately wraps itself."""

    def __init__(self, source_path: Path | None, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__(source_path, "Cyclic layout chain: " + " -> ".join(self.chain))


class CyclicDependency(BuildError):
    """Adding a dependency edge would create a cycle."""

    def __init__(
        self,
        source_path: Path | None,
        cycle: Sequence[str],
        artifact: str | None = None,
    ):
        self.cycle = list(cycle)
        super().__init__(
            source_path,
            "Cyclic dependency: " + " -> ".join(self.cycle),
            artifact=artifact,
        )


class DuplicatePermalink(BuildError):
    """Two or more documents resolve to the same permalink."""

    def __init__(self, permalink: str, sources: Sequence[str]):
        self.permalink = permalink
        self.sources = list(sources)
        super().__init__(
            None,
            f"Duplicate permalink {permalink} produced by: " + ", ".join(self.sources),
            artifact=permalink,
        )


class WriteFailure(BuildError):
    """The output writer could not materialize an artifact."""

    def __init__(self, source_path: Path | None, artifact: str, original_error: OSError):
        super().__init__(
            source_path,
            f"Could not write {artifact}: {original_error}",
            original_error,
            artifact=artifact,
        )


class BuildCancelled(BuildError):
    """The build was aborted before the Writing phase."""

    def __init__(self) -> None:
        super().__init__(None, "Build cancelled before writing")
