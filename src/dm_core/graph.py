"""Key/relationship graph of a data model.

Nodes are tables, edges are foreign keys (child -> parent).  For filter
propagation the edges are navigable in both directions: a filter on a
parent restricts its children and vice versa, so distances and shortest
paths are computed on the undirected view.

The graph library is an injected capability: ``build_graph`` accepts any
factory that returns an object satisfying the ``KeyGraph`` Protocol.  The
default is ``NetworkXKeyGraph``.

Usage:
    from dm_core.graph import build_graph

    graph = build_graph(model)
    graph.distances("airports")
    # {'airports': 0, 'flights': 1, 'airlines': 2, 'planes': 2, 'weather': inf}
    graph.predecessors("airports", ["planes"])
    # {'planes': 'flights'}
"""

import math
from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

import networkx as nx

from dm_core.model import BaseDataModel


class KeyGraph(Protocol):
    """Graph capability needed by the filter engine."""

    def distances(self, source: str) -> dict[str, float]:
        """Hop count from *source* to every table; ``math.inf`` if unreachable."""
        ...

    def predecessors(self, source: str, targets: Iterable[str]) -> dict[str, str]:
        """Predecessor of each target on a shortest path from *source*.

        *source* itself maps to *source*.
        """
        ...

    def edges(self) -> list[tuple[str, str]]:
        """Directed (child, parent) pairs, one per related table pair."""
        ...

    def neighbours(self, table: str) -> list[str]:
        ...


GraphFactory = Callable[[Sequence[str], Sequence[tuple[str, str]]], KeyGraph]


class NetworkXKeyGraph:
    """``KeyGraph`` implementation backed by networkx.

    Args:
        nodes: Table names, in model order.
        edges: (child, parent) pairs.  Parallel edges collapse into one.
    """

    def __init__(self, nodes: Sequence[str], edges: Sequence[tuple[str, str]]) -> None:
        self._directed: nx.DiGraph = nx.DiGraph()
        self._directed.add_nodes_from(nodes)
        self._directed.add_edges_from(edges)
        self._undirected: nx.Graph = self._directed.to_undirected(as_view=True)

    def distances(self, source: str) -> dict[str, float]:
        reachable = nx.single_source_shortest_path_length(self._undirected, source)
        return {
            node: reachable[node] if node in reachable else math.inf
            for node in self._directed.nodes
        }

    def predecessors(self, source: str, targets: Iterable[str]) -> dict[str, str]:
        paths = nx.single_source_shortest_path(self._undirected, source)
        result: dict[str, str] = {}
        for target in targets:
            path = paths[target]
            result[target] = path[-2] if len(path) > 1 else source
        return result

    def edges(self) -> list[tuple[str, str]]:
        return list(self._directed.edges)

    def neighbours(self, table: str) -> list[str]:
        return list(self._undirected.neighbors(table))


def relationship_edges(model: BaseDataModel) -> list[tuple[str, str]]:
    """(child, parent) pair for every foreign key of the model."""
    return [
        (name, fk.parent)
        for name, definition in model.tables.items()
        for fk in definition.foreign_keys
    ]


def build_graph(
    model: BaseDataModel,
    graph_factory: GraphFactory = NetworkXKeyGraph,
) -> KeyGraph:
    """Build the relationship graph of *model* with the given graph library."""
    return graph_factory(model.list_tables(), relationship_edges(model))
