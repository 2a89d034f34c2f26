"""
Assemble a nested (unflattened) query result into typed tables.

Child blocks are resolved against the catalog when they are first read and
are assembled only on demand, so callers can leave deep branches collapsed.
A child block whose schema cannot be resolved becomes a placeholder table.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Sequence

from query_models import FieldDef, ResultSchema, load_schemas
from schema_resolver import placeholder_schema, resolve_schema, synthetic_field

logger = logging.getLogger(__name__)

CHILDREN_KEY = "children"
ID_FIELD = "id"
NO_DATA_LABEL = "No data"


@dataclass
class NestedColumn:
    key: str
    label: str
    field_order: float = math.inf
    component: str | None = None
    resolved: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "fieldOrder": None if math.isinf(self.field_order) else int(self.field_order),
            "component": self.component,
            "resolved": self.resolved,
        }


class ChildBlock:
    """One `children` entry of a row: a schema reference plus its rows."""

    def __init__(
        self,
        schema_id: str | None,
        data: list[Any],
        catalog: Sequence[ResultSchema],
        depth: int,
        show_ids: bool = False,
    ) -> None:
        self.schema_id = schema_id
        self.depth = depth
        self._data = data
        self._catalog = catalog
        self._show_ids = show_ids
        match = resolve_schema(schema_id, catalog)
        self.schema = match.schema if match is not None else placeholder_schema(schema_id)
        self.match_strategy = match.strategy if match is not None else None

    @property
    def found(self) -> bool:
        return self.match_strategy is not None

    @property
    def row_count(self) -> int:
        return len(self._data)

    @cached_property
    def table(self) -> "NestedTable":
        return _assemble_table(
            self.schema,
            self.match_strategy,
            self._data,
            self._catalog,
            depth=self.depth,
            show_ids=self._show_ids,
        )

    def to_payload(self, expand_depth: int) -> dict[str, Any]:
        collapsed = expand_depth <= 0
        return {
            "schemaId": self.schema_id,
            "label": self.schema.display_label,
            "found": self.found,
            "matchStrategy": self.match_strategy,
            "rowCount": self.row_count,
            "collapsed": collapsed,
            "table": None if collapsed else self.table.to_payload(expand_depth - 1),
        }


@dataclass
class NestedRow:
    values: dict[str, Any]
    children: list[ChildBlock] = field(default_factory=list)

    def to_payload(self, expand_depth: int) -> dict[str, Any]:
        return {
            "values": dict(self.values),
            "children": [child.to_payload(expand_depth) for child in self.children],
        }


@dataclass
class NestedTable:
    schema: ResultSchema | None
    columns: list[NestedColumn] = field(default_factory=list)
    rows: list[NestedRow] = field(default_factory=list)
    match_strategy: str | None = None
    depth: int = 0

    @property
    def has_data(self) -> bool:
        return self.schema is not None and bool(self.rows)

    @classmethod
    def empty(cls) -> "NestedTable":
        return cls(schema=None)

    def to_payload(self, expand_depth: int = 1) -> dict[str, Any]:
        if self.schema is None:
            return {"hasData": False, "message": NO_DATA_LABEL, "schema": None, "columns": [], "rows": []}
        return {
            "hasData": self.has_data,
            "schema": self.schema.to_payload(),
            "matchStrategy": self.match_strategy,
            "depth": self.depth,
            "columns": [column.to_payload() for column in self.columns],
            "rows": [row.to_payload(expand_depth) for row in self.rows],
        }


def _build_columns(schema: ResultSchema, rows: list[dict[str, Any]], show_ids: bool) -> list[NestedColumn]:
    columns: list[NestedColumn] = []
    covered: set[str] = set()
    for order, field_def in enumerate(schema.fields):
        covered.update((field_def.id, field_def.name))
        if field_def.hidden:
            continue
        if field_def.name == ID_FIELD or field_def.id == ID_FIELD:
            continue
        columns.append(_column(field_def, order, resolved=True))

    extra: dict[str, Any] = {}
    for row in rows:
        for key, value in row.items():
            if key == CHILDREN_KEY or key in covered:
                continue
            if key not in extra or extra[key] is None:
                extra[key] = value
    for key in sorted(extra):
        if key == ID_FIELD:
            continue
        columns.append(_column(synthetic_field(key, extra[key]), math.inf, resolved=False))

    if show_ids:
        id_field = next((item for item in schema.fields if item.matches(ID_FIELD)), None)
        if (id_field is not None and not id_field.hidden) or (id_field is None and ID_FIELD in extra):
            columns.insert(0, _column(id_field or synthetic_field(ID_FIELD), 0, resolved=id_field is not None))
    return columns


def _column(field_def: FieldDef, order: float, resolved: bool) -> NestedColumn:
    return NestedColumn(
        key=field_def.name or field_def.id,
        label=field_def.display_label,
        field_order=order,
        component=field_def.component,
        resolved=resolved,
    )


def _child_blocks(
    raw_children: Any,
    catalog: Sequence[ResultSchema],
    depth: int,
    show_ids: bool,
) -> list[ChildBlock]:
    if not isinstance(raw_children, list):
        return []
    blocks: list[ChildBlock] = []
    for child in raw_children:
        if not isinstance(child, dict):
            logger.debug("Skipping malformed child block at depth %d: %r", depth, child)
            continue
        data = child.get("data")
        blocks.append(
            ChildBlock(
                schema_id=child.get("schema"),
                data=data if isinstance(data, list) else [],
                catalog=catalog,
                depth=depth,
                show_ids=show_ids,
            )
        )
    return blocks


def _assemble_table(
    schema: ResultSchema,
    match_strategy: str | None,
    data: list[Any],
    catalog: Sequence[ResultSchema],
    depth: int,
    show_ids: bool,
) -> NestedTable:
    raw_rows = [row for row in data if isinstance(row, dict)]
    rows = [
        NestedRow(
            values={key: value for key, value in row.items() if key != CHILDREN_KEY},
            children=_child_blocks(row.get(CHILDREN_KEY), catalog, depth + 1, show_ids),
        )
        for row in raw_rows
    ]
    return NestedTable(
        schema=schema,
        columns=_build_columns(schema, raw_rows, show_ids),
        rows=rows,
        match_strategy=match_strategy,
        depth=depth,
    )


def assemble_nested(
    payload: Any,
    catalog: Sequence[ResultSchema | dict[str, Any]] | None = None,
    show_ids: bool = False,
) -> NestedTable:
    """
    Build the root table of a nested result `{schema, data, schemas}`.

    A payload without `schema` or `data` yields `NestedTable.empty()`. The
    payload's own `schemas` list is searched before `catalog`.
    """
    if not isinstance(payload, dict) or not payload.get("schema") or not isinstance(payload.get("data"), list):
        logger.debug("Nested result has no schema or data; returning an empty table")
        return NestedTable.empty()

    schemas = load_schemas(payload.get("schemas")) + load_schemas(list(catalog or []))
    match = resolve_schema(payload["schema"], schemas)
    schema = match.schema if match is not None else placeholder_schema(payload["schema"])
    return _assemble_table(
        schema,
        match.strategy if match is not None else None,
        payload["data"],
        schemas,
        depth=0,
        show_ids=show_ids,
    )
