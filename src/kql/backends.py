"""Backend identities and the collaborator interfaces the compiler calls.

The transports behind these protocols live outside this package; anything
with matching methods can be handed to QueryCompiler.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence

from kql.parsing.ast_nodes import DatabaseRef


class TargetBackend(Enum):
    """Which backend a condition or statement is addressed to."""

    SPATIAL = "spatial"
    RECORD = "record"


DATABASE_BACKENDS: dict[str, TargetBackend] = {
    "tile38": TargetBackend.SPATIAL,
    "t": TargetBackend.SPATIAL,
    "metabase": TargetBackend.RECORD,
    "m": TargetBackend.RECORD,
    "url": TargetBackend.RECORD,
    "u": TargetBackend.RECORD,
}


def backend_for(name: str) -> TargetBackend | None:
    """Backend addressed by a database name, or None for unknown names."""
    return DATABASE_BACKENDS.get(name.lower())


def alias_table(*refs: DatabaseRef | None) -> dict[str, TargetBackend]:
    """Map every name a statement may use as a key alias to its backend.

    Bare database names always resolve; declared aliases resolve to the
    backend of the database they were declared on.
    """
    table = dict(DATABASE_BACKENDS)
    for ref in refs:
        if ref is None:
            continue
        backend = DATABASE_BACKENDS[ref.name]
        table[ref.lookup_name] = backend
    return table


Row = Mapping[str, Any]


@dataclass(frozen=True)
class Area:
    """An administrative area returned by an area lookup."""

    id: int
    geometry: str


class ServiceRegistry(Protocol):
    def fetch_all(self) -> Mapping[str, int]:
        """Return every service name with its numeric id."""
        ...


class AreaResolver(Protocol):
    def lookup(self, level: int, name: str, parent_id: int | None) -> Area | None:
        """Find the area called `name` at `level` below `parent_id`."""
        ...


class SpatialEngine(Protocol):
    def query(self, command: str, filter: Mapping[str, Any] | None) -> Sequence[Row]:
        ...

    def register(self, url: str, id_field: str, geometry: str) -> str:
        """Register an external source and return its new resource key."""
        ...


class RecordService(Protocol):
    def query(self, params: Mapping[str, Any]) -> Sequence[Row]:
        ...
