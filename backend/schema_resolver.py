"""
Resolve result columns against the schema catalog.

Two lookups live here: which schema a flattened column belongs to (by its
nesting depth) and which catalog schema a nested child block refers to (by
an ordered list of matching strategies).
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from query_models import FieldDef, ResultSchema
from result_paths import ResultPath, parse_field_path
from utils import clean_text

logger = logging.getLogger(__name__)

PLACEHOLDER_LABEL = "schema not found"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_TEL_RE = re.compile(r"^\+?[\d\s().-]{7,}$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?)?$")


@dataclass(frozen=True)
class MatchStrategy:
    name: str
    matches: Callable[[str, str], bool]


def _exact(wanted: str, candidate: str) -> bool:
    return wanted == candidate


def _without_hyphens(wanted: str, candidate: str) -> bool:
    return wanted.replace("-", "") == candidate.replace("-", "")


def _substring(wanted: str, candidate: str) -> bool:
    return wanted in candidate or candidate in wanted


# First match wins; a later strategy is only consulted when every earlier one
# found nothing anywhere in the catalog.
SCHEMA_MATCH_STRATEGIES: tuple[MatchStrategy, ...] = (
    MatchStrategy("exact", _exact),
    MatchStrategy("normalized", _without_hyphens),
    MatchStrategy("substring", _substring),
)


@dataclass(frozen=True)
class SchemaMatch:
    schema: ResultSchema
    strategy: str


def resolve_schema(
    schema_id: str | None,
    schemas: Sequence[ResultSchema],
    strategies: Sequence[MatchStrategy] = SCHEMA_MATCH_STRATEGIES,
) -> SchemaMatch | None:
    if not isinstance(schema_id, str) or not schema_id:
        return None
    for strategy in strategies:
        for schema in schemas:
            if strategy.matches(schema_id, schema.id):
                if strategy.name != "exact":
                    logger.debug("Schema '%s' resolved to '%s' by %s match", schema_id, schema.id, strategy.name)
                return SchemaMatch(schema=schema, strategy=strategy.name)
    logger.warning("Schema '%s' not found in a catalog of %d schema(s)", schema_id, len(schemas))
    return None


def placeholder_schema(schema_id: str | None) -> ResultSchema:
    return ResultSchema(id=clean_text(schema_id) or "unknown", label=PLACEHOLDER_LABEL, placeholder=True)


def depth_of(field_path: str | ResultPath) -> int:
    """Number of nesting hops in a field path; an unparseable path counts as depth 0."""
    if isinstance(field_path, ResultPath):
        return field_path.depth
    parsed = parse_field_path(field_path)
    return parsed.depth if parsed is not None else 0


def schema_index_for_depth(schemas: Sequence[ResultSchema], depth: int) -> int | None:
    if not schemas:
        return None
    return min(max(depth, 0), len(schemas) - 1)


def schema_for_depth(schemas: Sequence[ResultSchema], depth: int) -> ResultSchema | None:
    """Deeper paths than the schema list covers clamp to the last schema."""
    index = schema_index_for_depth(schemas, depth)
    return schemas[index] if index is not None else None


def resolve_field(schema: ResultSchema | None, field_name: str) -> tuple[int, FieldDef] | None:
    if schema is None:
        return None
    for index, field in enumerate(schema.fields):
        if field.matches(field_name):
            return index, field
    return None


def field_order_of(schema: ResultSchema | None, field_name: str) -> float:
    resolved = resolve_field(schema, field_name)
    return resolved[0] if resolved is not None else math.inf


def field_sort_key(schema: ResultSchema | None, field_name: str) -> tuple[float, str]:
    return field_order_of(schema, field_name), field_name


def infer_component(value: Any) -> str:
    """Pick an input component for a field the catalog does not describe."""
    if isinstance(value, bool):
        return "checkbox"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        if value and all(isinstance(item, bool) for item in value):
            return "checkbox-list"
        return "list-input"
    if isinstance(value, dict):
        return "picker" if "id" in value else "select"
    if isinstance(value, str):
        text = value.strip()
        if _DATE_RE.match(text):
            return "date"
        if _EMAIL_RE.match(text):
            return "email"
        if _URL_RE.match(text):
            return "url"
        if _TEL_RE.match(text) and sum(char.isdigit() for char in text) >= 7:
            return "tel"
    return "text"


def synthetic_field(field_name: str, sample: Any = None) -> FieldDef:
    return FieldDef(id=field_name, name=field_name, label=field_name, component=infer_component(sample))
