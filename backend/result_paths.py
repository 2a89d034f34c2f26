"""
Typed paths for flattened query results.

A flattened key looks like

    data.data.<rootIndex>(.children.<n>.data.<n>)*.<fieldName>

Every depth and ordering computation works on `ResultPath` rather than on
raw strings; this module is the only place that knows the key format.
"""

from __future__ import annotations

from dataclasses import dataclass

ROOT_PREFIX = ("data", "data")
CHILDREN_TOKEN = "children"
DATA_TOKEN = "data"
PATH_SEPARATOR = "."
RESERVED_KEYS = frozenset({"schemas", "data.schema"})


@dataclass(frozen=True)
class NestingHop:
    child_index: int
    data_index: int

    def tokens(self) -> tuple[str, ...]:
        return (CHILDREN_TOKEN, str(self.child_index), DATA_TOKEN, str(self.data_index))


@dataclass(frozen=True)
class ResultPath:
    hops: tuple[NestingHop, ...]
    field_name: str
    root_index: int | None = None

    @property
    def depth(self) -> int:
        return len(self.hops)

    @property
    def field_path(self) -> str:
        """The key with the `data.data.<rootIndex>.` prefix removed."""
        tokens: list[str] = []
        for hop in self.hops:
            tokens.extend(hop.tokens())
        tokens.append(self.field_name)
        return PATH_SEPARATOR.join(tokens)

    @property
    def hop_indices(self) -> tuple[int, ...]:
        indices: list[int] = []
        for hop in self.hops:
            indices.extend((hop.child_index, hop.data_index))
        return tuple(indices)


def _is_index(token: str) -> bool:
    return token.isascii() and token.isdigit()


def _split_hops(tokens: list[str]) -> tuple[tuple[NestingHop, ...], list[str]] | None:
    hops: list[NestingHop] = []
    position = 0
    while (
        len(tokens) - position >= 4
        and tokens[position] == CHILDREN_TOKEN
        and _is_index(tokens[position + 1])
        and tokens[position + 2] == DATA_TOKEN
        and _is_index(tokens[position + 3])
    ):
        hops.append(NestingHop(int(tokens[position + 1]), int(tokens[position + 3])))
        position += 4

    rest = tokens[position:]
    if not rest or any(token == "" for token in rest):
        return None
    return tuple(hops), rest


def parse_field_path(field_path: str) -> ResultPath | None:
    """Parse a path relative to a root row, e.g. `children.0.data.1.total`."""
    if not isinstance(field_path, str) or not field_path:
        return None
    split = _split_hops(field_path.split(PATH_SEPARATOR))
    if split is None:
        return None
    hops, rest = split
    return ResultPath(hops=hops, field_name=PATH_SEPARATOR.join(rest))


def parse_result_key(key: str) -> ResultPath | None:
    """Parse a full flattened key; returns None for reserved or malformed keys."""
    if not isinstance(key, str) or key in RESERVED_KEYS:
        return None
    tokens = key.split(PATH_SEPARATOR)
    if len(tokens) < 4 or tuple(tokens[:2]) != ROOT_PREFIX or not _is_index(tokens[2]):
        return None
    split = _split_hops(tokens[3:])
    if split is None:
        return None
    hops, rest = split
    return ResultPath(hops=hops, field_name=PATH_SEPARATOR.join(rest), root_index=int(tokens[2]))
