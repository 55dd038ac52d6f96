"""AST nodes for KQL statements and literal values.

Nodes are frozen dataclasses. Sequences are tuples so that a parsed
statement cannot change after the parser hands it over; object literals are
plain dicts that the parser builds once and never touches again.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class NamedConstant(Enum):
    """Atomic literal tokens standing for client-side state."""

    CURRENT_BOUNDS = "current_bounds"
    CURRENT_POINTS = "current_points"
    CURRENT_FEATURES = "current_features"


@dataclass(frozen=True)
class FunctionCall:
    """A function-call literal like point(1, 2) or get('a', 'b')."""

    name: str
    arguments: tuple[Any, ...] = ()


# None | bool | int | float | str | dict | tuple | FunctionCall | NamedConstant
Value = Any

# Known database identifiers, grouped by backend
DATABASE_NAMES = ("tile38", "t", "metabase", "m", "url", "u")


@dataclass(frozen=True)
class DatabaseRef:
    """A database reference with an optional alias."""

    name: str
    alias: str | None = None

    @property
    def lookup_name(self) -> str:
        """The name conditions use to refer to this database."""
        return self.alias if self.alias is not None else self.name

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "alias": self.alias}


@dataclass(frozen=True)
class Key:
    """A possibly qualified field reference: t.id or id."""

    key: str
    alias: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"alias": self.alias, "key": self.key}


@dataclass(frozen=True)
class Condition:
    """A single key/operator/value comparison."""

    left: Key
    operator: str
    right: Value

    def to_dict(self) -> dict[str, Any]:
        return {
            "left": self.left.to_dict(),
            "operator": self.operator,
            "right": value_to_python(self.right),
        }


@dataclass(frozen=True)
class JoinCondition:
    """Equality between two keys of a join: join m on t.id = m.id."""

    left: Key
    right: Key
    database: DatabaseRef | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "database": self.database.to_dict() if self.database else None,
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
        }


@dataclass(frozen=True)
class SelectStatement:
    """select * from db [join ...] [where ...] [limit n]."""

    database: DatabaseRef
    join: JoinCondition | None = None
    where: tuple[Condition, ...] | None = None
    limit: int | float | None = None

    command = "select"

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "database": self.database.to_dict(),
            "join": self.join.to_dict() if self.join else None,
            "where": _conditions_to_list(self.where),
            "limit": self.limit,
        }


@dataclass(frozen=True)
class FetchStatement:
    """fetch db (k = v, ...)."""

    database: DatabaseRef
    parameters: tuple[Condition, ...] = ()

    command = "fetch"

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "database": self.database.to_dict(),
            "parameters": _conditions_to_list(self.parameters),
        }


@dataclass(frozen=True)
class CreateStatement:
    """create <type> <name> [(k = v, ...)]."""

    type: str
    name: str
    parameters: tuple[Condition, ...] | None = None

    command = "create"

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "type": self.type,
            "name": self.name,
            "parameters": _conditions_to_list(self.parameters),
        }


@dataclass(frozen=True)
class GetConfigStatement:
    """get config (k = v, ...)."""

    parameters: tuple[Condition, ...] = ()

    command = "get"

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "type": "config",
            "parameters": _conditions_to_list(self.parameters),
        }


@dataclass(frozen=True)
class UpdateConfigStatement:
    """update config."""

    command = "update"

    def to_dict(self) -> dict[str, Any]:
        return {"command": self.command, "type": "config"}


Statement = Union[
    FetchStatement,
    SelectStatement,
    CreateStatement,
    GetConfigStatement,
    UpdateConfigStatement,
]


def _conditions_to_list(conditions: tuple[Condition, ...] | None) -> list[dict[str, Any]] | None:
    if conditions is None:
        return None
    return [c.to_dict() for c in conditions]


def value_to_python(value: Value) -> Any:
    """Convert a parsed value into plain JSON-compatible Python data."""
    if isinstance(value, NamedConstant):
        return value.value
    if isinstance(value, FunctionCall):
        return {
            "fnName": value.name,
            "arguments": [value_to_python(a) for a in value.arguments],
        }
    if isinstance(value, tuple):
        return [value_to_python(v) for v in value]
    if isinstance(value, dict):
        return {k: value_to_python(v) for k, v in value.items()}
    return value
