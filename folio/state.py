"""Build state persisted between runs.

The state file is a JSON document holding the output hashes, the input
fingerprints, the serialized dependency graph and the collection and term
memberships of the last successful build. It is read at build start and
written only after a successful Writing phase.

Key classes:
- Fingerprint: mtime, size and SHA-256 of one input file.
- BuildState: Everything an incremental build needs from the previous one.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .content import Document
from .depgraph import DependencyGraph
from .utils import file_hash

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass(frozen=True)
class Fingerprint:
    mtime_ns: int
    size: int
    sha256: str

    def to_list(self) -> list[Any]:
        return [self.mtime_ns, self.size, self.sha256]

    @classmethod
    def from_list(cls, payload: list[Any]) -> Fingerprint:
        mtime_ns, size, sha256 = payload
        return cls(int(mtime_ns), int(size), str(sha256))


def fingerprint(path: Path, previous: Fingerprint | None = None) -> Fingerprint:
    """Fingerprint a file, reusing the previous hash when mtime and size match."""
    stat = os.stat(path)
    if previous is not None and (previous.mtime_ns, previous.size) == (stat.st_mtime_ns, stat.st_size):
        return previous
    return Fingerprint(stat.st_mtime_ns, stat.st_size, file_hash(path))


def fingerprint_inputs(
    inputs: Mapping[str, Path],
    previous: Mapping[str, Fingerprint],
    only: Iterable[str] | None = None,
) -> tuple[dict[str, Fingerprint], set[str]]:
    """Fingerprint every input and report which ones changed.

    Args:
        inputs: Input identity -> file path for every current input.
        previous: Fingerprints recorded by the previous build.
        only: When given, only these identities are re-examined; every
            other known input keeps its previous fingerprint.

    Returns:
        Tuple of (new fingerprints, changed identities). Added and removed
        inputs count as changed.
    """
    candidates = set(only) if only is not None else None
    current: dict[str, Fingerprint] = {}
    changed: set[str] = set()
    for input_id, path in inputs.items():
        before = previous.get(input_id)
        if before is not None and candidates is not None and input_id not in candidates:
            current[input_id] = before
            continue
        after = fingerprint(path, before)
        current[input_id] = after
        if before is None or before.sha256 != after.sha256:
            changed.add(input_id)
    changed.update(set(previous) - set(inputs))
    return current, changed


def membership_changes(
    previous: Mapping[str, list[str]], current: Mapping[str, list[str]]
) -> set[str]:
    """Return collection, term and taxonomy ids whose ordered members differ."""
    return {
        node
        for node in set(previous) | set(current)
        if list(previous.get(node, [])) != list(current.get(node, []))
    }


@dataclass
class BuildState:
    """State carried from one successful build to the next.

    Attributes:
        graph: Dependency graph of the last build.
        hashes: Output path -> SHA-256 of the bytes written there.
        fingerprints: Input identity -> Fingerprint.
        memberships: Collection/term/taxonomy identity -> ordered members.
        config_hash: Hash of the effective configuration.
        include_drafts: Whether drafts were part of the build.
        documents: Documents of the last build keyed by source id. Kept in
            memory only, so a watch loop can skip re-reading unchanged files.
    """

    graph: DependencyGraph = field(default_factory=DependencyGraph)
    hashes: dict[str, str] = field(default_factory=dict)
    fingerprints: dict[str, Fingerprint] = field(default_factory=dict)
    memberships: dict[str, list[str]] = field(default_factory=dict)
    config_hash: str = ""
    include_drafts: bool = False
    documents: dict[str, Document] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "config_hash": self.config_hash,
            "include_drafts": self.include_drafts,
            "hashes": dict(sorted(self.hashes.items())),
            "fingerprints": {k: v.to_list() for k, v in sorted(self.fingerprints.items())},
            "memberships": dict(sorted(self.memberships.items())),
            "graph": self.graph.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> BuildState:
        return cls(
            graph=DependencyGraph.from_dict(payload.get("graph", {})),
            hashes=dict(payload.get("hashes", {})),
            fingerprints={
                k: Fingerprint.from_list(v) for k, v in payload.get("fingerprints", {}).items()
            },
            memberships={k: list(v) for k, v in payload.get("memberships", {}).items()},
            config_hash=str(payload.get("config_hash", "")),
            include_drafts=bool(payload.get("include_drafts", False)),
        )


def load_state(path: Path) -> BuildState | None:
    """Read the state file, or return None when it is absent or unusable."""
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
        if payload.get("version") != STATE_VERSION:
            logger.info("Ignoring build state with unsupported version in %s", path)
            return None
        return BuildState.from_dict(payload)
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        logger.warning("Ignoring unreadable build state %s: %s", path, exc)
        return None


def save_state(path: Path, state: BuildState) -> None:
    """Write the state file atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(state.to_dict(), f, indent=1)
    os.replace(tmp, path)
