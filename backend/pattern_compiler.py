"""
Compile a designer graph into the declarative pattern list.

The compiler is all-or-nothing: the graph is validated as a rooted tree
before any hop is produced. Hops come out in canonical order (breadth-first
from the root, siblings by target schema id), so isomorphic graphs always
compile to identical pattern lists.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Iterable

import networkx as nx

from config import DEFAULT_EDGE_OPTIONAL, MAX_GRAPH_NODES
from query_models import GraphEdge, GraphNode, PatternHop, QueryGraph, SchemaRef

logger = logging.getLogger(__name__)

ALIAS_SEPARATOR = "#"


class GraphValidationError(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class CompiledPatterns:
    patterns: list[PatternHop]
    # Total mapping from session-local node id to the persisted schema reference.
    node_refs: dict[str, SchemaRef] = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {
            "patterns": [hop.to_payload() for hop in self.patterns],
            "nodeRefs": {node_id: ref.to_payload() for node_id, ref in self.node_refs.items()},
        }


def _build_graph(nodes: list[GraphNode], edges: list[GraphEdge]) -> nx.MultiDiGraph:
    graph = nx.MultiDiGraph()
    for node in nodes:
        if node.id in graph:
            raise GraphValidationError("duplicate_node", f"Node id '{node.id}' appears more than once.")
        graph.add_node(node.id, schema_id=node.schema_id)

    for edge in edges:
        missing = [endpoint for endpoint in (edge.source, edge.target) if endpoint not in graph]
        if missing:
            raise GraphValidationError(
                "dangling_edge",
                f"Edge '{edge.relation}' references unknown node(s): {', '.join(missing)}.",
            )
        graph.add_edge(edge.source, edge.target, relation=edge.relation, optional=edge.optional)
    return graph


def _validate_tree(graph: nx.MultiDiGraph) -> str:
    """
    Check the graph is a rooted tree and return the root node id.
    """
    if not nx.is_weakly_connected(graph):
        parts = nx.number_weakly_connected_components(graph)
        raise GraphValidationError(
            "disconnected",
            f"Graph has {parts} disconnected parts; every node must be reachable from the root.",
        )

    if graph.number_of_edges() >= graph.number_of_nodes():
        try:
            cycle = nx.find_cycle(graph, orientation="ignore")
            described = " -> ".join(str(step[0]) for step in cycle)
        except nx.NetworkXNoCycle:
            described = "parallel relations"
        raise GraphValidationError("cycle", f"Graph contains a cycle ({described}).")

    for node_id, degree in graph.in_degree():
        if degree > 1:
            raise GraphValidationError(
                "multiple_parents",
                f"Node '{node_id}' has {degree} incoming relations; each node may have one parent.",
            )

    roots = [node_id for node_id, degree in graph.in_degree() if degree == 0]
    # A weakly connected graph with n-1 edges and in-degree <= 1 has exactly one root.
    return roots[0]


def _child_edges(graph: nx.MultiDiGraph, node_id: str) -> list[tuple[str, str, bool | None]]:
    return [
        (target, attrs["relation"], attrs["optional"])
        for _source, target, attrs in graph.out_edges(node_id, data=True)
    ]


def _subtree_signatures(graph: nx.MultiDiGraph, root: str, default_optional: bool) -> dict[str, tuple]:
    signatures: dict[str, tuple] = {}
    # Post-order over a tree: reversed BFS order sees every child before its parent.
    order = [root] + [target for _source, target in nx.bfs_edges(graph, root)]
    for node_id in reversed(order):
        children = sorted(
            (
                graph.nodes[target]["schema_id"],
                relation,
                default_optional if optional is None else optional,
                signatures[target],
            )
            for target, relation, optional in _child_edges(graph, node_id)
        )
        signatures[node_id] = (graph.nodes[node_id]["schema_id"], tuple(children))
    return signatures


def _canonical_order(
    graph: nx.MultiDiGraph,
    root: str,
    default_optional: bool,
) -> tuple[list[str], list[tuple[str, str, str, bool]]]:
    signatures = _subtree_signatures(graph, root, default_optional)

    visited: list[str] = []
    hops: list[tuple[str, str, str, bool]] = []
    queue = deque([root])
    while queue:
        node_id = queue.popleft()
        visited.append(node_id)

        children = []
        for target, relation, optional in _child_edges(graph, node_id):
            resolved_optional = default_optional if optional is None else bool(optional)
            sort_key = (graph.nodes[target]["schema_id"], relation, resolved_optional, signatures[target])
            children.append((sort_key, target, relation, resolved_optional))
        children.sort(key=lambda item: item[0])

        for _key, target, relation, resolved_optional in children:
            hops.append((node_id, target, relation, resolved_optional))
            queue.append(target)
    return visited, hops


def _assign_refs(graph: nx.MultiDiGraph, ordered_nodes: Iterable[str]) -> dict[str, SchemaRef]:
    ordered_nodes = list(ordered_nodes)
    totals = Counter(graph.nodes[node_id]["schema_id"] for node_id in ordered_nodes)
    seen: Counter[str] = Counter()

    refs: dict[str, SchemaRef] = {}
    for node_id in ordered_nodes:
        schema_id = graph.nodes[node_id]["schema_id"]
        seen[schema_id] += 1
        if totals[schema_id] == 1:
            refs[node_id] = SchemaRef(schema_id=schema_id)
        elif seen[schema_id] == 1:
            refs[node_id] = SchemaRef(schema_id=schema_id, alias=schema_id)
        else:
            refs[node_id] = SchemaRef(schema_id=schema_id, alias=f"{schema_id}{ALIAS_SEPARATOR}{seen[schema_id]}")
    return refs


def compile_graph(
    nodes: list[GraphNode],
    edges: list[GraphEdge],
    default_optional: bool | None = None,
) -> CompiledPatterns:
    if default_optional is None:
        default_optional = DEFAULT_EDGE_OPTIONAL
    if not nodes:
        if edges:
            raise GraphValidationError("dangling_edge", "Edges were given without any nodes.")
        return CompiledPatterns(patterns=[])
    if len(nodes) > MAX_GRAPH_NODES:
        raise GraphValidationError(
            "too_large",
            f"Graph has {len(nodes)} nodes; the limit is {MAX_GRAPH_NODES}.",
        )

    graph = _build_graph(nodes, edges)
    root = _validate_tree(graph)
    ordered_nodes, ordered_hops = _canonical_order(graph, root, default_optional)
    refs = _assign_refs(graph, ordered_nodes)

    patterns = [PatternHop(from_=refs[root])]
    for source, target, relation, optional in ordered_hops:
        patterns.append(
            PatternHop(
                from_=refs[source],
                to=refs[target],
                edge=relation,
                optional=optional,
            )
        )

    logger.debug("Compiled %d node(s) into %d pattern hop(s)", len(nodes), len(patterns))
    return CompiledPatterns(patterns=patterns, node_refs=refs)


def graph_to_patterns(
    graph: QueryGraph,
    default_optional: bool | None = None,
) -> list[PatternHop]:
    return compile_graph(graph.nodes, graph.edges, default_optional=default_optional).patterns
