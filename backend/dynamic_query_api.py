"""
FastAPI router for the dynamic query designer and result shaping.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from column_order import ColumnOrderEngine, ColumnOrderError
from flat_result_parser import build_flat_table
from nested_result import assemble_nested
from pattern_compiler import GraphValidationError, compile_graph
from pattern_expander import load_for_editing, patterns_to_graph
from query_client import DynamicQueryClient, QueryBackendNotConfigured, QueryExecutionError
from query_models import ColumnDef, GraphEdge, GraphNode, PatternHop, check_pattern_structure

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dynamic-query", tags=["dynamic-query"])


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CompileRequest(_Request):
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    edge_optional: bool | None = Field(default=None, alias="edgeOptional")


class ExpandRequest(_Request):
    patterns: list[PatternHop] = Field(default_factory=list)
    schemas: list[dict[str, Any]] | None = None


class LoadRequest(_Request):
    metadata: Any = None
    schemas: list[dict[str, Any]] | None = None


class ColumnsRequest(_Request):
    columns: list[ColumnDef] = Field(default_factory=list)
    operations: list[dict[str, Any]] = Field(default_factory=list)


class FlatResultRequest(_Request):
    payload: Any = None
    schemas: list[dict[str, Any]] | None = None
    show_ids: bool = Field(default=False, alias="showIds")


class NestedResultRequest(_Request):
    payload: Any = None
    schemas: list[dict[str, Any]] | None = None
    show_ids: bool = Field(default=False, alias="showIds")
    expand_depth: int = Field(default=1, ge=0, alias="expandDepth")


def get_query_client() -> DynamicQueryClient:
    return DynamicQueryClient()


def _unprocessable(exc: ValueError) -> HTTPException:
    if isinstance(exc, GraphValidationError):
        return HTTPException(status_code=422, detail={"code": exc.code, "message": exc.message})
    return HTTPException(status_code=422, detail=str(exc))


@router.post("/compile")
async def compile_query_graph(request: CompileRequest):
    try:
        compiled = compile_graph(request.nodes, request.edges, default_optional=request.edge_optional)
    except ValueError as exc:
        raise _unprocessable(exc) from exc
    return compiled.to_payload()


@router.post("/expand")
async def expand_patterns(request: ExpandRequest):
    try:
        check_pattern_structure(request.patterns)
    except ValueError as exc:
        raise _unprocessable(exc) from exc
    return patterns_to_graph(request.patterns, request.schemas).to_payload()


@router.post("/load")
async def load_query(request: LoadRequest):
    try:
        config, graph = load_for_editing(request.metadata, request.schemas)
    except ValueError as exc:
        raise _unprocessable(exc) from exc
    return {"config": config.to_payload(), "graph": graph.to_payload()}


@router.post("/columns")
async def apply_column_operations(request: ColumnsRequest):
    try:
        engine = ColumnOrderEngine(request.columns)
        columns = engine.apply(request.operations)
    except ColumnOrderError as exc:
        raise _unprocessable(exc) from exc
    return {"columns": [column.to_payload() for column in columns]}


@router.post("/results/flat")
async def shape_flat_result(request: FlatResultRequest):
    return build_flat_table(request.payload, request.schemas, show_ids=request.show_ids).to_payload()


@router.post("/results/nested")
async def shape_nested_result(request: NestedResultRequest):
    table = assemble_nested(request.payload, request.schemas, show_ids=request.show_ids)
    return table.to_payload(request.expand_depth)


@router.post("/{query_id}/run")
async def run_query(
    query_id: str,
    request: Request,
    flatten: bool = Query(default=False),
    company_ids: str | None = Query(default=None, alias="companyIds"),
    show_ids: bool = Query(default=False, alias="showIds"),
    expand_depth: int = Query(default=1, ge=0, alias="expandDepth"),
    body: dict[str, Any] | None = Body(default=None),
    client: DynamicQueryClient = Depends(get_query_client),
):
    try:
        payload = await client.run(
            query_id,
            flatten=flatten,
            company_ids=company_ids,
            body=body,
            headers=dict(request.headers),
        )
    except QueryBackendNotConfigured as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except QueryExecutionError as exc:
        detail: dict[str, Any] = {"message": str(exc), "upstreamStatus": exc.status_code}
        if exc.body is not None:
            detail["upstream"] = exc.body
        raise HTTPException(status_code=502, detail=detail) from exc

    # The backend wraps results as {success, data}; unwrap when present.
    result = payload.get("data", payload) if isinstance(payload, dict) and "success" in payload else payload
    if flatten:
        return build_flat_table(result, show_ids=show_ids).to_payload()
    return assemble_nested(result, show_ids=show_ids).to_payload(expand_depth)
