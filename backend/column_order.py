"""
Column selection and grouping order for a dynamic query.

The engine owns one ordered column list. Every operation builds the next
list, checks the density invariants and only then swaps it in, so a
rejected operation leaves the current columns untouched.

Columns are referenced as "schemaId:fieldId" or by a bare fieldId when that
field is selected from exactly one schema.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from query_models import ColumnDef, QueryConfig, check_column_orders, column_key

logger = logging.getLogger(__name__)

ColumnRef = str | tuple[str, str]


class ColumnOrderError(ValueError):
    pass


def _renumber(columns: list[ColumnDef]) -> list[ColumnDef]:
    by_select = sorted(columns, key=lambda column: column.select_order)
    grouped = sorted(
        (column for column in by_select if column.group_order is not None),
        key=lambda column: column.group_order,
    )
    group_rank = {column.key: rank for rank, column in enumerate(grouped)}
    return [
        column.model_copy(update={"select_order": position, "group_order": group_rank.get(column.key)})
        for position, column in enumerate(by_select, start=1)
    ]


def _order_of(operation: dict[str, Any]) -> list[ColumnRef]:
    order = operation.get("order")
    if order is None:
        return []
    if not isinstance(order, (list, tuple)):
        raise ColumnOrderError("'order' must be a list of column references.")
    return list(order)


class ColumnOrderEngine:
    def __init__(self, columns: Iterable[ColumnDef] = ()) -> None:
        initial = list(columns)
        try:
            check_column_orders(initial)
        except ValueError as exc:
            raise ColumnOrderError(str(exc)) from exc
        self._columns = sorted(initial, key=lambda column: column.select_order)

    @classmethod
    def from_config(cls, config: QueryConfig) -> "ColumnOrderEngine":
        return cls(config.columns)

    @property
    def columns(self) -> list[ColumnDef]:
        return list(self._columns)

    @property
    def grouped_columns(self) -> list[ColumnDef]:
        grouped = [column for column in self._columns if column.group_order is not None]
        return sorted(grouped, key=lambda column: column.group_order)

    def _commit(self, columns: list[ColumnDef]) -> None:
        ordered = sorted(columns, key=lambda column: column.select_order)
        try:
            check_column_orders(ordered)
        except ValueError as exc:
            raise ColumnOrderError(str(exc)) from exc
        self._columns = ordered

    def _index_of(self, ref: ColumnRef) -> int:
        if isinstance(ref, (tuple, list)):
            if len(ref) != 2 or not all(isinstance(part, str) and part for part in ref):
                raise ColumnOrderError(f"Column reference {ref!r} must be a (schemaId, fieldId) pair.")
            schema_id, field_id = ref
            ref = column_key(schema_id, field_id)
        elif not isinstance(ref, str):
            raise ColumnOrderError(f"Column reference {ref!r} must be a string or a (schemaId, fieldId) pair.")

        for index, column in enumerate(self._columns):
            if column.key == ref:
                return index

        matches = [index for index, column in enumerate(self._columns) if column.field_id == ref]
        if len(matches) == 1:
            return matches[0]
        if matches:
            raise ColumnOrderError(f"Column '{ref}' is ambiguous; qualify it as 'schemaId:fieldId'.")
        raise ColumnOrderError(f"Column '{ref}' is not selected.")

    def _indices_of(self, refs: Sequence[ColumnRef]) -> list[int]:
        indices = [self._index_of(ref) for ref in refs]
        if len(set(indices)) != len(indices):
            raise ColumnOrderError("The same column is listed more than once.")
        return indices

    def add(self, field_id: str, schema_id: str) -> ColumnDef:
        if not field_id or not schema_id:
            raise ColumnOrderError("A column needs both a fieldId and a schemaId.")
        key = column_key(schema_id, field_id)
        if any(column.key == key for column in self._columns):
            raise ColumnOrderError(f"Column '{key}' is already selected.")
        next_order = max((column.select_order for column in self._columns), default=0) + 1
        column = ColumnDef(field_id=field_id, schema_id=schema_id, select_order=next_order)
        self._commit([*self._columns, column])
        return column

    def remove(self, field_id: ColumnRef, schema_id: str | None = None) -> ColumnDef:
        ref = (schema_id, field_id) if schema_id is not None and isinstance(field_id, str) else field_id
        removed = self._columns[self._index_of(ref)]
        remaining = [column for column in self._columns if column.key != removed.key]
        self._commit(_renumber(remaining))
        return removed

    def reorder_select(self, ordered: Sequence[ColumnRef]) -> None:
        indices = self._indices_of(ordered)
        if len(indices) != len(self._columns):
            raise ColumnOrderError(
                f"Reorder must list all {len(self._columns)} selected columns, got {len(indices)}."
            )
        self._commit(
            [
                self._columns[index].model_copy(update={"select_order": position})
                for position, index in enumerate(indices, start=1)
            ]
        )

    def set_group(self, ordered: Sequence[ColumnRef]) -> None:
        indices = self._indices_of(ordered)
        rank = {index: position for position, index in enumerate(indices)}
        self._commit(
            [
                column.model_copy(update={"group_order": rank.get(index)})
                for index, column in enumerate(self._columns)
            ]
        )

    def clear_group(self) -> None:
        self._commit([column.model_copy(update={"group_order": None}) for column in self._columns])

    def _dispatch(self, operation: dict[str, Any]) -> None:
        name = str(operation.get("op") or "").strip()
        if name == "add":
            self.add(str(operation.get("fieldId") or ""), str(operation.get("schemaId") or ""))
        elif name == "remove":
            self.remove(str(operation.get("fieldId") or ""), operation.get("schemaId"))
        elif name in ("reorderSelect", "reorder_select"):
            self.reorder_select(_order_of(operation))
        elif name in ("setGroup", "set_group"):
            self.set_group(_order_of(operation))
        elif name in ("clearGroup", "clear_group"):
            self.clear_group()
        else:
            raise ColumnOrderError(f"Unknown column operation: {name or '(missing)'}")

    def apply(self, operations: Iterable[dict[str, Any]]) -> list[ColumnDef]:
        """
        Apply a batch of operations; either all of them take effect or none do.
        """
        draft = ColumnOrderEngine(self._columns)
        for operation in operations:
            draft._dispatch(operation)
        self._columns = draft._columns
        logger.debug("Applied column operations; %d column(s) selected", len(self._columns))
        return self.columns

    def to_config(self, base: QueryConfig | None = None) -> QueryConfig:
        base = base or QueryConfig()
        return base.model_copy(update={"columns": tuple(self._columns)})
