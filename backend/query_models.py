"""
Pydantic models for dynamic query definitions.

`QueryConfig` is the executor-facing value persisted as the query entity's
metadata. It is frozen: edits build a new config instead of patching one.
Persisted JSON uses camelCase keys; Python attributes are snake_case.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from config import DEFAULT_PAGE_LIMIT
from utils import clean_text as _clean_text
from utils import humanize_field_name

logger = logging.getLogger(__name__)

PaginationStrategy = Literal["offset", "cursor"]

SYSTEM_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "ID"),
    ("status", "Status"),
    ("entityType", "Type"),
    ("updatedBy", "Updated By"),
    ("updatedAt", "Updated At"),
    ("createdBy", "Created By"),
    ("createdAt", "Created At"),
    ("companyId", "Company"),
)


def column_key(schema_id: str, field_id: str) -> str:
    return f"{schema_id}:{field_id}"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SchemaRef(_FrozenModel):
    schema_id: str = Field(alias="schemaId", min_length=1)
    alias: str | None = None

    @field_validator("alias", mode="before")
    @classmethod
    def _blank_alias_is_none(cls, value: Any) -> Any:
        if value is None:
            return None
        return _clean_text(value) or None

    @property
    def key(self) -> str:
        return self.alias or self.schema_id


class PatternHop(_FrozenModel):
    from_: SchemaRef = Field(alias="from")
    to: SchemaRef | None = None
    edge: str | None = None
    optional: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_optional(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("to") is not None and data.get("optional") is None:
            return {**data, "optional": False}
        return data

    @model_validator(mode="after")
    def _check_shape(self) -> "PatternHop":
        if self.to is None:
            if self.edge is not None or self.optional is not None:
                raise ValueError("Root hop must not carry 'edge' or 'optional'.")
        elif not _clean_text(self.edge):
            raise ValueError("Edge hop requires a relation name in 'edge'.")
        return self

    @property
    def is_root(self) -> bool:
        return self.to is None


class ColumnDef(_FrozenModel):
    field_id: str = Field(alias="fieldId", min_length=1)
    schema_id: str = Field(alias="schemaId", min_length=1)
    select_order: int = Field(alias="selectOrder", ge=1)
    group_order: int | None = Field(default=None, alias="groupOrder", ge=0)

    @property
    def key(self) -> str:
        return column_key(self.schema_id, self.field_id)


class PaginationSpec(_FrozenModel):
    limit: int = Field(default=DEFAULT_PAGE_LIMIT, gt=0)
    offset: int = Field(default=0, ge=0)
    strategy: PaginationStrategy = "offset"


def check_column_orders(columns: tuple[ColumnDef, ...] | list[ColumnDef]) -> None:
    """
    Raise ValueError unless select orders are 1..N and group orders 0..M-1.
    """
    keys = [column.key for column in columns]
    if len(set(keys)) != len(keys):
        raise ValueError("Duplicate column (schemaId, fieldId) pair.")

    select_orders = sorted(column.select_order for column in columns)
    if select_orders != list(range(1, len(columns) + 1)):
        raise ValueError("selectOrder values must be a dense permutation of 1..N.")

    group_orders = sorted(column.group_order for column in columns if column.group_order is not None)
    if group_orders != list(range(len(group_orders))):
        raise ValueError("groupOrder values must be a dense permutation of 0..M-1.")


def check_pattern_structure(patterns: tuple[PatternHop, ...] | list[PatternHop]) -> None:
    """
    Raise ValueError unless the hops form a tree introduced root-first.
    """
    if not patterns:
        return
    if not patterns[0].is_root:
        raise ValueError("The first pattern must be the root hop.")
    if sum(1 for hop in patterns if hop.is_root) != 1:
        raise ValueError("Patterns must contain exactly one root hop.")

    introduced = {patterns[0].from_.key}
    for position, hop in enumerate(patterns[1:], start=1):
        if hop.from_.key not in introduced:
            raise ValueError(f"Pattern {position} starts from '{hop.from_.key}' before it is introduced.")
        if hop.to.key in introduced:
            raise ValueError(f"Pattern {position} reaches '{hop.to.key}' twice; patterns must form a tree.")
        introduced.add(hop.to.key)


class QueryConfig(_FrozenModel):
    columns: tuple[ColumnDef, ...] = ()
    patterns: tuple[PatternHop, ...] = ()
    apply_rbac: bool = Field(default=False, alias="applyRBAC")
    pagination: PaginationSpec = Field(default_factory=PaginationSpec)

    @model_validator(mode="after")
    def _check_invariants(self) -> "QueryConfig":
        check_column_orders(self.columns)
        check_pattern_structure(self.patterns)
        return self

    def sorted_columns(self) -> list[ColumnDef]:
        return sorted(self.columns, key=lambda column: column.select_order)

    def grouped_columns(self) -> list[ColumnDef]:
        grouped = [column for column in self.columns if column.group_order is not None]
        return sorted(grouped, key=lambda column: column.group_order)


# ---------------------------------------------------------------------------
# Designer graph (UI-owned; node ids are session-local and never persisted)
# ---------------------------------------------------------------------------


class NodePosition(BaseModel):
    x: float = 0.0
    y: float = 0.0


class GraphNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    schema_id: str = Field(alias="schemaId", min_length=1)
    alias: str | None = None
    label: str | None = None
    position: NodePosition = Field(default_factory=NodePosition)
    placeholder: bool = False


class GraphEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    relation: str = Field(min_length=1, validation_alias=AliasChoices("relation", "relationTypeId"))
    optional: bool | None = None


class QueryGraph(BaseModel):
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Schema catalog
# ---------------------------------------------------------------------------


class FieldDef(BaseModel):
    id: str = Field(min_length=1)
    name: str = ""
    label: str | None = None
    hidden: bool = False
    component: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_identity(cls, data: Any) -> Any:
        if isinstance(data, dict):
            field_id = data.get("id") or data.get("name")
            return {
                **data,
                "id": field_id,
                "name": data.get("name") or field_id,
                "hidden": bool(data.get("hidden")),
            }
        return data

    @property
    def display_label(self) -> str:
        return _clean_text(self.label) or humanize_field_name(self.name or self.id)

    def matches(self, field_name: str) -> bool:
        return field_name == self.id or field_name == self.name


class ResultSchema(BaseModel):
    id: str = Field(min_length=1)
    label: str | None = None
    fields: list[FieldDef] = Field(default_factory=list)
    placeholder: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize_entry(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw_fields = data.get("fields")
        fields = [
            item for item in (raw_fields if isinstance(raw_fields, list) else [])
            if isinstance(item, FieldDef) or (isinstance(item, dict) and (item.get("id") or item.get("name")))
        ]
        label = data.get("label") or data.get("singular_name") or data.get("plural_name")
        return {**data, "label": label, "fields": fields}

    @property
    def display_label(self) -> str:
        return _clean_text(self.label) or self.id

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.display_label,
            "placeholder": self.placeholder,
        }


def load_schemas(raw: Any) -> list[ResultSchema]:
    """Validate a catalog list, skipping entries that are not schema objects."""
    if not isinstance(raw, list):
        return []
    schemas: list[ResultSchema] = []
    for item in raw:
        if isinstance(item, ResultSchema):
            schemas.append(item)
            continue
        if not isinstance(item, dict) or not item.get("id"):
            logger.debug("Skipping catalog entry without an id: %r", item)
            continue
        try:
            schemas.append(ResultSchema.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping malformed catalog entry '%s': %s", item.get("id"), exc)
    return schemas


def available_fields(schema: ResultSchema | None) -> list[dict[str, str]]:
    """
    Fields offered for column selection: visible schema fields, then system fields.
    """
    fields: list[dict[str, str]] = []
    if schema is not None:
        for field in schema.fields:
            if field.hidden:
                continue
            fields.append({"id": field.id, "label": field.display_label})
    seen = {item["id"] for item in fields}
    for field_id, label in SYSTEM_FIELDS:
        if field_id not in seen:
            fields.append({"id": field_id, "label": label})
    return fields


# ---------------------------------------------------------------------------
# Persisted metadata loading
# ---------------------------------------------------------------------------


def _coerce_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number


def _parse_pagination(raw: Any) -> PaginationSpec:
    if not isinstance(raw, dict):
        return PaginationSpec()
    limit = _coerce_int(raw.get("limit"), DEFAULT_PAGE_LIMIT)
    offset = _coerce_int(raw.get("offset"), 0)
    return PaginationSpec(
        limit=limit if limit > 0 else DEFAULT_PAGE_LIMIT,
        offset=max(offset, 0),
        strategy="cursor" if raw.get("strategy") == "cursor" else "offset",
    )


def _redensify_columns(raw: Any) -> list[ColumnDef]:
    if not isinstance(raw, list):
        return []

    entries: list[tuple[int, dict[str, Any]]] = []
    seen: set[str] = set()
    for position, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        field_id = _clean_text(item.get("fieldId") or item.get("field_id"))
        schema_id = _clean_text(item.get("schemaId") or item.get("schema_id"))
        if not field_id or not schema_id:
            logger.warning("Dropping column without fieldId/schemaId: %r", item)
            continue
        key = column_key(schema_id, field_id)
        if key in seen:
            logger.warning("Dropping duplicate column %s", key)
            continue
        seen.add(key)
        entries.append((position, item))

    by_select = sorted(
        entries,
        key=lambda entry: (_coerce_int(entry[1].get("selectOrder"), entry[0] + 1), entry[0]),
    )
    grouped = [
        entry for entry in entries
        if entry[1].get("groupOrder") is not None and _coerce_int(entry[1].get("groupOrder"), -1) >= 0
    ]
    grouped.sort(key=lambda entry: (_coerce_int(entry[1].get("groupOrder"), 0), entry[0]))
    group_rank = {entry[0]: rank for rank, entry in enumerate(grouped)}

    columns: list[ColumnDef] = []
    for select_order, (position, item) in enumerate(by_select, start=1):
        columns.append(
            ColumnDef(
                field_id=_clean_text(item.get("fieldId") or item.get("field_id")),
                schema_id=_clean_text(item.get("schemaId") or item.get("schema_id")),
                select_order=select_order,
                group_order=group_rank.get(position),
            )
        )
    return columns


def parse_query_metadata(metadata: Any) -> QueryConfig:
    """
    Load a persisted query config leniently.

    Accepts a JSON string, a dict or None. Missing or malformed parts fall back
    to defaults and column orders are re-densified. Pattern structure is still
    validated, so a corrupt traversal raises pydantic's ValidationError.
    """
    if metadata is None:
        return QueryConfig()
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except json.JSONDecodeError:
            logger.warning("Query metadata is not valid JSON; using defaults.")
            return QueryConfig()
    if not isinstance(metadata, dict):
        return QueryConfig()

    raw_patterns = metadata.get("patterns")
    return QueryConfig(
        columns=_redensify_columns(metadata.get("columns")),
        patterns=raw_patterns if isinstance(raw_patterns, list) else [],
        apply_rbac=bool(metadata.get("applyRBAC")),
        pagination=_parse_pagination(metadata.get("pagination")),
    )
