"""
Expand a saved pattern list back into a designer graph.

Schema labels come from the catalog when it is available. A schema the
catalog does not know (yet) becomes a placeholder node instead of an error,
since the catalog loads independently of the saved query.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from typing import Any, Iterable

from config import NODE_X_SPACING, NODE_Y_SPACING
from query_models import (
    GraphEdge,
    GraphNode,
    NodePosition,
    PatternHop,
    QueryConfig,
    QueryGraph,
    ResultSchema,
    SchemaRef,
    load_schemas,
    parse_query_metadata,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _catalog_index(schemas: Iterable[ResultSchema | dict[str, Any]] | None) -> dict[str, ResultSchema]:
    return {schema.id: schema for schema in load_schemas(list(schemas or []))}


def patterns_to_graph(
    patterns: Iterable[PatternHop],
    schemas: Iterable[ResultSchema | dict[str, Any]] | None = None,
) -> QueryGraph:
    catalog = _catalog_index(schemas)
    nodes: dict[str, GraphNode] = {}
    depths: dict[str, int] = {}
    edges: list[GraphEdge] = []

    def ensure_node(ref: SchemaRef, depth: int) -> GraphNode:
        existing = nodes.get(ref.key)
        if existing is not None:
            return existing
        schema = catalog.get(ref.schema_id)
        if schema is None:
            logger.debug("Schema '%s' not in catalog; adding placeholder node", ref.schema_id)
        node = GraphNode(
            id=_new_id(),
            schema_id=ref.schema_id,
            alias=ref.alias,
            label=schema.display_label if schema is not None else ref.schema_id,
            placeholder=schema is None,
        )
        nodes[ref.key] = node
        depths[ref.key] = depth
        return node

    for hop in patterns:
        source = ensure_node(hop.from_, 0)
        if hop.is_root:
            continue
        target = ensure_node(hop.to, depths[hop.from_.key] + 1)
        edges.append(
            GraphEdge(
                id=_new_id(),
                source=source.id,
                target=target.id,
                relation=hop.edge,
                optional=hop.optional,
            )
        )

    rows_per_depth: dict[int, int] = defaultdict(int)
    positioned: list[GraphNode] = []
    for key, node in nodes.items():
        depth = depths[key]
        row = rows_per_depth[depth]
        rows_per_depth[depth] += 1
        positioned.append(
            node.model_copy(
                update={"position": NodePosition(x=depth * NODE_X_SPACING, y=row * NODE_Y_SPACING)}
            )
        )

    return QueryGraph(nodes=positioned, edges=edges)


def load_for_editing(
    metadata: Any,
    schemas: Iterable[ResultSchema | dict[str, Any]] | None = None,
) -> tuple[QueryConfig, QueryGraph]:
    """
    Parse persisted metadata and rebuild the designer graph for it.
    """
    config = parse_query_metadata(metadata)
    return config, patterns_to_graph(config.patterns, schemas)
