"""Spatial engine command building.

A SpatialCommand accumulates the pieces of one line command while the
compiler walks a statement's conditions and is rendered once at the end:

    VERB [target] [WHERE/WHEREIN clauses...] LIMIT n [LOCATION args...]
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Sequence

from kql.parsing.ast_nodes import NamedConstant, value_to_python

SPATIAL_FUNCTIONS = frozenset({"within", "nearby", "scan", "intersects", "search"})
STATUS_FIELDS = frozenset({"status", "order_status"})

DEFAULT_VERB = "scan"

NEG_INF = -math.inf
POS_INF = math.inf


class OrderStatus(IntEnum):
    """Order lifecycle states as stored in spatial object fields."""

    NEW = 1
    CONFIRMED = 2
    ASSIGNED = 3
    PICKING_UP = 4
    DELIVERING = 5
    DELIVERED = 6
    CANCELLED = 7
    FAILED = 8

    @classmethod
    def lookup(cls, value: Any) -> int | None:
        """Map a status name (or an already numeric status) to its code."""
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            member = cls.__members__.get(value.strip().upper().replace(" ", "_"))
            if member is not None:
                return int(member)
        return None


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def format_argument(value: Any) -> str:
    """Render one value as a command-line argument."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, NamedConstant):
        return value.value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value == POS_INF:
            return "+inf"
        if value == NEG_INF:
            return "-inf"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, str):
        if value == "" or any(ch.isspace() for ch in value) or '"' in value:
            return json.dumps(value)
        return value
    if value is None:
        return "null"
    return json.dumps(value_to_python(value), separators=(",", ":"))


@dataclass(frozen=True)
class WhereRange:
    """WHERE field min max"""

    field: str
    low: float
    high: float

    def render(self) -> str:
        return f"WHERE {self.field} {format_argument(self.low)} {format_argument(self.high)}"


@dataclass(frozen=True)
class WhereIn:
    """WHEREIN field count v1 v2 ..."""

    field: str
    values: tuple[Any, ...]

    def render(self) -> str:
        parts = ["WHEREIN", self.field, str(len(self.values))]
        parts.extend(format_argument(v) for v in self.values)
        return " ".join(parts)


Clause = WhereRange | WhereIn


def range_clause(field_name: str, operator: str, value: float) -> WhereRange | None:
    """Translate a numeric comparison into a WHERE range.

    Inclusive comparisons shift the bound by one: the field domain is
    integral and the engine treats the given bound as exclusive.
    """
    if operator == "=":
        return WhereRange(field_name, value, value)
    if operator == ">":
        return WhereRange(field_name, value, POS_INF)
    if operator == ">=":
        return WhereRange(field_name, value - 1, POS_INF)
    if operator == "<":
        return WhereRange(field_name, NEG_INF, value)
    if operator == "<=":
        return WhereRange(field_name, NEG_INF, value - 1)
    return None


@dataclass
class SpatialCommand:
    """Mutable accumulator for one spatial engine command."""

    verb: str = DEFAULT_VERB
    target_id: Any = None
    clauses: list[Clause] = field(default_factory=list)
    limit: int | float | None = None
    location_verb: str | None = None
    location_args: list[Any] = field(default_factory=list)
    filter: dict[str, Any] | None = None

    def set_location(self, verb: str, args: Sequence[Any]) -> None:
        self.location_verb = verb
        self.location_args = list(args)

    def render(self, default_limit: int) -> str:
        parts = [self.verb.upper()]
        if self.target_id is not None:
            parts.append(format_argument(self.target_id))
        parts.extend(clause.render() for clause in self.clauses)
        limit = self.limit if self.limit is not None else default_limit
        parts.append(f"LIMIT {format_argument(limit)}")
        if self.location_verb is not None:
            parts.append(self.location_verb.upper())
            parts.extend(format_argument(arg) for arg in self.location_args)
        return " ".join(parts)
