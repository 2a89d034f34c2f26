"""
Turn a flattened query result into rows and schema-grouped columns.

The execution backend returns one flat object per page with keys like
`data.data.3.children.0.data.1.total`. Rows are keyed by root index and
columns by the path relative to the root row. Keys that do not follow the
path grammar are skipped and reported, never fatal.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from query_models import ResultSchema, load_schemas
from result_paths import ResultPath, parse_result_key
from schema_resolver import resolve_field, schema_index_for_depth, synthetic_field

logger = logging.getLogger(__name__)

ID_FIELD = "id"


@dataclass
class FlatRow:
    root_index: int
    values: dict[str, Any] = field(default_factory=dict)

    def get(self, path: str) -> Any:
        """Cell value, or None when this row has no such path."""
        return self.values.get(path)

    def to_payload(self) -> dict[str, Any]:
        return {"rootIndex": self.root_index, "values": dict(self.values)}


@dataclass
class ResultColumn:
    path: str
    field_name: str
    depth: int
    label: str
    schema_id: str | None = None
    field_order: float = math.inf
    component: str | None = None
    resolved: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "fieldName": self.field_name,
            "depth": self.depth,
            "label": self.label,
            "schemaId": self.schema_id,
            # JSON has no infinity; unresolved fields report no order.
            "fieldOrder": None if math.isinf(self.field_order) else int(self.field_order),
            "component": self.component,
            "resolved": self.resolved,
        }


@dataclass
class ColumnGroup:
    schema: ResultSchema
    columns: list[ResultColumn]
    start_index: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "schema": self.schema.to_payload(),
            "columns": [column.path for column in self.columns],
            "startIndex": self.start_index,
        }


@dataclass
class FlatTable:
    rows: list[FlatRow] = field(default_factory=list)
    columns: list[ResultColumn] = field(default_factory=list)
    column_groups: list[ColumnGroup] = field(default_factory=list)
    skipped_keys: list[str] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.rows)

    def cells(self, row: FlatRow) -> list[Any]:
        return [row.get(column.path) for column in self.columns]

    def to_payload(self) -> dict[str, Any]:
        return {
            "hasData": self.has_data,
            "rows": [row.to_payload() for row in self.rows],
            "columns": [column.to_payload() for column in self.columns],
            "columnGroups": [group.to_payload() for group in self.column_groups],
            "skippedKeys": list(self.skipped_keys),
        }


@dataclass
class ParsedRecord:
    rows: list[FlatRow]
    paths: dict[str, ResultPath]
    skipped_keys: list[str]


def parse_flattened_record(record: Any) -> ParsedRecord:
    """
    Group a flat record's keys into rows ordered by numeric root index.
    """
    if not isinstance(record, dict):
        return ParsedRecord(rows=[], paths={}, skipped_keys=[])

    rows: dict[int, FlatRow] = {}
    paths: dict[str, ResultPath] = {}
    skipped: list[str] = []
    for key, value in record.items():
        parsed = parse_result_key(key)
        if parsed is None:
            skipped.append(str(key))
            continue
        relative = parsed.field_path
        paths.setdefault(relative, parsed)
        row = rows.setdefault(parsed.root_index, FlatRow(root_index=parsed.root_index))
        row.values[relative] = value

    if skipped:
        logger.debug("Skipped %d flattened key(s) outside the path grammar", len(skipped))
    ordered = [rows[index] for index in sorted(rows)]
    return ParsedRecord(rows=ordered, paths=paths, skipped_keys=skipped)


def _first_value(rows: list[FlatRow], path: str) -> Any:
    for row in rows:
        value = row.get(path)
        if value is not None:
            return value
    return None


def _result_schemas(record: Any, catalog: Sequence[ResultSchema | dict[str, Any]] | None) -> list[ResultSchema]:
    embedded = load_schemas(record.get("schemas")) if isinstance(record, dict) else []
    if embedded:
        return embedded
    return load_schemas(list(catalog or []))


def build_flat_table(
    record: Any,
    schemas: Sequence[ResultSchema | dict[str, Any]] | None = None,
    show_ids: bool = False,
) -> FlatTable:
    """
    Parse a flattened result and lay its columns out in schema groups.

    Schemas come from the record's own `schemas` key when present, otherwise
    from `schemas`. Each column belongs to the schema at its nesting depth
    (clamped to the last schema) and is ordered by that schema's field order,
    then by name.
    """
    parsed = parse_flattened_record(record)
    result_schemas = _result_schemas(record, schemas)
    group_schemas = result_schemas or [ResultSchema(id="result", label="Result", placeholder=True)]

    buckets: dict[int, list[tuple[tuple, ResultColumn]]] = {index: [] for index in range(len(group_schemas))}
    for relative, path in parsed.paths.items():
        is_id = path.field_name == ID_FIELD
        if is_id and not show_ids:
            continue

        schema_index = schema_index_for_depth(result_schemas, path.depth)
        schema = result_schemas[schema_index] if schema_index is not None else None
        resolved = resolve_field(schema, path.field_name)
        if resolved is not None and resolved[1].hidden:
            continue

        if resolved is not None:
            order, field_def = resolved
        else:
            order, field_def = math.inf, synthetic_field(path.field_name, _first_value(parsed.rows, relative))

        column = ResultColumn(
            path=relative,
            field_name=path.field_name,
            depth=path.depth,
            label=field_def.display_label,
            schema_id=schema.id if schema is not None else None,
            field_order=order,
            component=field_def.component,
            resolved=resolved is not None,
        )
        sort_key = (0 if is_id else 1, order, path.field_name, path.hop_indices)
        buckets[schema_index or 0].append((sort_key, column))

    table = FlatTable(rows=parsed.rows, skipped_keys=parsed.skipped_keys)
    for index, schema in enumerate(group_schemas):
        entries = sorted(buckets[index], key=lambda entry: entry[0])
        if not entries:
            continue
        group_columns = [column for _key, column in entries]
        table.column_groups.append(
            ColumnGroup(schema=schema, columns=group_columns, start_index=len(table.columns))
        )
        table.columns.extend(group_columns)
    return table
