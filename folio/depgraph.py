"""Dependency graph between build inputs and output artifacts.

Nodes are string identities (see folio.tracking for the naming scheme) held
in a NetworkX DiGraph. An edge input -> artifact means a change to the input
invalidates the artifact. The graph is kept acyclic: an insertion that would
close a cycle raises CyclicDependency instead.

The same structure backs the template inclusion graph, where an edge
partial -> template means the template includes the partial.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import networkx as nx

from .errors import CyclicDependency


class DependencyGraph:
    """Thread-safe directed acyclic graph of input -> artifact edges.

    Attributes:
        graph: Underlying NetworkX DiGraph. Nodes that appeared as the
            artifact side of an edge carry ``artifact=True``.
    """

    def __init__(self, graph: nx.DiGraph | None = None):
        self.graph: nx.DiGraph = graph if graph is not None else nx.DiGraph()
        self._lock = threading.Lock()

    def __contains__(self, node: str) -> bool:
        return node in self.graph

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    def add_artifact(self, artifact: str) -> None:
        """Register an artifact node that may not have inputs yet."""
        with self._lock:
            self.graph.add_node(artifact, artifact=True)

    def record_dependency(
        self,
        artifact: str,
        input_id: str,
        source_path: Path | None = None,
    ) -> None:
        """Record that artifact must be rebuilt when input_id changes.

        Args:
            artifact: Identity of the dependent node.
            input_id: Identity of the node it depends on.
            source_path: Source file reported if the edge closes a cycle.

        Raises:
            CyclicDependency: If the edge would make the graph cyclic.
        """
        with self._lock:
            g = self.graph
            if artifact == input_id:
                raise CyclicDependency(source_path, [input_id, artifact], artifact=artifact)
            if artifact in g and input_id in g and nx.has_path(g, artifact, input_id):
                path = nx.shortest_path(g, artifact, input_id)
                raise CyclicDependency(source_path, [input_id, *path], artifact=artifact)
            g.add_node(artifact, artifact=True)
            g.add_edge(input_id, artifact)

    def record_many(
        self, artifact: str, inputs: Iterable[str], source_path: Path | None = None
    ) -> None:
        for input_id in sorted(inputs):
            self.record_dependency(artifact, input_id, source_path)

    def invalidate(self, changed_inputs: Iterable[str]) -> set[str]:
        """Return every artifact transitively reachable from a changed input.

        Args:
            changed_inputs: Identities of inputs that changed or vanished.

        Returns:
            The minimal set of artifacts requiring re-render.
        """
        affected: set[str] = set()
        with self._lock:
            g = self.graph
            for node in changed_inputs:
                if node not in g:
                    continue
                if g.nodes[node].get("artifact"):
                    affected.add(node)
                for descendant in nx.descendants(g, node):
                    if g.nodes[descendant].get("artifact"):
                        affected.add(descendant)
        return affected

    def clear_dependencies(self, artifact: str) -> None:
        """Drop every incoming edge of artifact so it can be recomputed."""
        with self._lock:
            if artifact in self.graph:
                self.graph.remove_edges_from(list(self.graph.in_edges(artifact)))

    def remove_node(self, node: str) -> None:
        with self._lock:
            if node in self.graph:
                self.graph.remove_node(node)

    def prune_inputs(self) -> None:
        """Remove input nodes that no artifact depends on anymore."""
        with self._lock:
            orphans = [
                node
                for node, attrs in self.graph.nodes(data=True)
                if not attrs.get("artifact") and self.graph.out_degree(node) == 0
            ]
            self.graph.remove_nodes_from(orphans)

    def dependencies_of(self, artifact: str) -> set[str]:
        with self._lock:
            if artifact not in self.graph:
                return set()
            return set(self.graph.predecessors(artifact))

    def dependents_of(self, input_id: str) -> set[str]:
        with self._lock:
            if input_id not in self.graph:
                return set()
            return set(self.graph.successors(input_id))

    def artifacts(self) -> set[str]:
        with self._lock:
            return {n for n, attrs in self.graph.nodes(data=True) if attrs.get("artifact")}

    def copy(self) -> DependencyGraph:
        with self._lock:
            return DependencyGraph(self.graph.copy())

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible mapping."""
        with self._lock:
            return {
                "artifacts": sorted(
                    n for n, attrs in self.graph.nodes(data=True) if attrs.get("artifact")
                ),
                "edges": sorted([u, v] for u, v in self.graph.edges()),
            }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> DependencyGraph:
        graph = nx.DiGraph()
        for node in payload.get("artifacts", []):
            graph.add_node(node, artifact=True)
        for source, target in payload.get("edges", []):
            graph.add_edge(source, target)
        if not nx.is_directed_acyclic_graph(graph):
            # A corrupt state file cannot be trusted; start over.
            return cls()
        return cls(graph)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return (
            f"DependencyGraph({self.graph.number_of_nodes()} nodes, "
            f"{self.graph.number_of_edges()} edges)"
        )
