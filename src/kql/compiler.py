"""Compiles select statements into spatial engine and record service queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Sequence
from urllib.parse import urlencode

from kql.backends import (
    DATABASE_BACKENDS,
    AreaResolver,
    RecordService,
    Row,
    ServiceRegistry,
    SpatialEngine,
    TargetBackend,
    alias_table,
    backend_for,
)
from kql.config import CompilerConfig
from kql.errors import ResolutionGap, SemanticError
from kql.parsing.ast_nodes import (
    Condition,
    FunctionCall,
    Key,
    SelectStatement,
    Statement,
    value_to_python,
)
from kql.parsing.query_parser import QueryParser
from kql.resolver import AreaCache, HierarchicalResolver
from kql.spatial import (
    SPATIAL_FUNCTIONS,
    STATUS_FIELDS,
    OrderStatus,
    SpatialCommand,
    WhereIn,
    format_argument,
    is_number,
    range_clause,
)

logger = logging.getLogger(__name__)

CAST_TO = "cast_to"
ID_FIELD = "id_field"
GEOMETRY = "geometry"


class SpatialField(Enum):
    """How a spatial condition is rendered, decided by its key."""

    FUNCTION = "function"
    ID = "id"
    STATUS = "status"
    SERVICE = "service"
    FILTER = "filter"
    OTHER = "other"


def classify_field(key: str) -> SpatialField:
    if key in SPATIAL_FUNCTIONS:
        return SpatialField.FUNCTION
    if key == "id":
        return SpatialField.ID
    if key in STATUS_FIELDS:
        return SpatialField.STATUS
    if key == "service":
        return SpatialField.SERVICE
    if key == "filter":
        return SpatialField.FILTER
    return SpatialField.OTHER


def surrogate_id(value: Any) -> int | None:
    """Numeric stand-in for a join key: the concatenated character codes of its text."""
    if value is None:
        return None
    text = format_argument(value) if is_number(value) else str(value)
    digits = "".join(str(ord(ch)) for ch in text)
    return int(digits) if digits else None


def _as_sequence(value: Any) -> tuple[Any, ...]:
    return value if isinstance(value, tuple) else (value,)


def _query_value(value: Any) -> Any:
    """Prepare a parameter value for URL encoding."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, list):
        return [_query_value(v) for v in value]
    if isinstance(value, dict):
        return format_argument(value)
    return value


@dataclass(frozen=True)
class Registration:
    """A cast_to request pulled out of the record parameters."""

    cast_to: Any
    id_field: str
    geometry: str


@dataclass(frozen=True)
class JoinPlan:
    """Which side of a join condition belongs to which backend."""

    spatial_key: Key
    record_key: Key


@dataclass
class CompilationPlan:
    """Result of the first, purely local stage of compilation."""

    statement: SelectStatement
    backend: TargetBackend
    spatial_conditions: list[Condition] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    join: JoinPlan | None = None
    registration: Registration | None = None

    @property
    def needs_services(self) -> bool:
        return any(classify_field(c.left.key) is SpatialField.SERVICE
                   for c in self.spatial_conditions)


@dataclass
class CompiledQuery:
    """Both backend renditions of a select statement."""

    backend: TargetBackend
    command: str
    filter: dict[str, Any] | None
    params: dict[str, Any]
    spatial: SpatialCommand
    registered_key: str | None = None
    gaps: list[ResolutionGap] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend": self.backend.value,
            "command": self.command,
            "filter": self.filter,
            "params": self.params,
            "registered_key": self.registered_key,
            "gaps": [
                {"kind": g.kind, "name": g.name, "level": g.level} for g in self.gaps
            ],
        }


@dataclass
class _RenderState:
    command: SpatialCommand
    services: Mapping[str, int] | None
    gaps: list[ResolutionGap]


class QueryCompiler:
    """Turns a select statement into backend queries and runs the right one.

    Compilation is a fixed sequence of stages, each fed the previous stage's
    output: plan (local), service registry fetch, spatial rendering (with
    area resolution), join resolution, cast_to registration. execute()
    adds the single final backend call.
    """

    def __init__(
        self,
        spatial_engine: SpatialEngine,
        record_service: RecordService,
        service_registry: ServiceRegistry,
        areas: AreaResolver,
        config: CompilerConfig | None = None,
        cache: AreaCache | None = None,
    ) -> None:
        self.spatial_engine = spatial_engine
        self.record_service = record_service
        self.service_registry = service_registry
        self.resolver = HierarchicalResolver(areas, cache)
        self.config = config if config is not None else CompilerConfig()
        self._parser: QueryParser | None = None
        self._renderers: dict[SpatialField, Callable[[Condition, _RenderState], None]] = {
            SpatialField.FUNCTION: self._render_function,
            SpatialField.ID: self._render_id,
            SpatialField.STATUS: self._render_status,
            SpatialField.SERVICE: self._render_service,
            SpatialField.FILTER: self._render_filter,
            SpatialField.OTHER: self._render_other,
        }

    # --- Entry points ---

    def run(self, text: str) -> Sequence[Row]:
        """Parse, compile and execute a select statement."""
        if self._parser is None:
            self._parser = QueryParser()
        return self.execute(self._parser.parse(text))

    def execute(self, statement: Statement) -> Sequence[Row]:
        """Compile a statement and issue exactly one backend query."""
        compiled = self.compile(statement)
        if compiled.backend is TargetBackend.SPATIAL:
            logger.debug("Querying spatial engine: %s", compiled.command)
            return self.spatial_engine.query(compiled.command, compiled.filter)
        logger.debug("Querying record service with %s", compiled.params)
        return self.record_service.query(compiled.params)

    def compile(self, statement: Statement) -> CompiledQuery:
        """Build the spatial command and record parameters for a select."""
        if not isinstance(statement, SelectStatement):
            raise SemanticError(
                f"Only select statements can be compiled, got '{statement.command}'"
            )

        plan = self.plan(statement)
        services = self._fetch_services(plan)
        state = self._render_spatial(plan, services)
        if plan.join is not None:
            self._resolve_join(plan, state.command)
        registered_key = None
        if plan.registration is not None:
            registered_key = self._register(plan.params, plan.registration)
            state.command.target_id = registered_key

        command = state.command.render(self.config.default_limit)
        logger.debug("Compiled %s statement to %r", plan.backend.value, command)
        return CompiledQuery(
            backend=plan.backend,
            command=command,
            filter=state.command.filter,
            params=plan.params,
            spatial=state.command,
            registered_key=registered_key,
            gaps=state.gaps,
        )

    # --- Stage 1: local planning ---

    def plan(self, statement: SelectStatement) -> CompilationPlan:
        """Route every condition to a backend and collect record parameters.

        Makes no remote calls, so semantic errors surface before any
        backend sees the statement.
        """
        join_ref = statement.join.database if statement.join is not None else None
        aliases = alias_table(statement.database, join_ref)
        plan = CompilationPlan(
            statement=statement,
            backend=backend_for(statement.database.name) or TargetBackend.RECORD,
        )

        for condition in statement.where or ():
            if self._target(condition.left, statement, aliases) is TargetBackend.SPATIAL:
                plan.spatial_conditions.append(condition)
            else:
                name = condition.left.key
                if name == "id":
                    name = self.config.record_id_parameter
                plan.params[name] = value_to_python(condition.right)

        if statement.join is not None:
            plan.join = self._plan_join(statement, aliases)
        if CAST_TO in plan.params:
            plan.registration = self._take_registration(plan.params)
        return plan

    @staticmethod
    def _target(key: Key, statement: SelectStatement,
                aliases: Mapping[str, TargetBackend]) -> TargetBackend:
        if key.key in SPATIAL_FUNCTIONS:
            return TargetBackend.SPATIAL
        return _backend_of_alias(key, statement, aliases)

    @staticmethod
    def _plan_join(statement: SelectStatement,
                   aliases: Mapping[str, TargetBackend]) -> JoinPlan:
        join = statement.join
        left = _backend_of_alias(join.left, statement, aliases)
        right = _backend_of_alias(join.right, statement, aliases)
        if right is TargetBackend.SPATIAL and left is not TargetBackend.SPATIAL:
            return JoinPlan(spatial_key=join.right, record_key=join.left)
        if left is not TargetBackend.SPATIAL or right is TargetBackend.SPATIAL:
            logger.debug("Join keys do not span both backends, using left as spatial side")
        return JoinPlan(spatial_key=join.left, record_key=join.right)

    @staticmethod
    def _take_registration(params: dict[str, Any]) -> Registration:
        missing = [name for name in (ID_FIELD, GEOMETRY) if name not in params]
        if missing:
            raise SemanticError(
                f"'{CAST_TO}' requires {' and '.join(repr(m) for m in missing)}"
            )
        return Registration(
            cast_to=params.pop(CAST_TO),
            id_field=str(params.pop(ID_FIELD)),
            geometry=str(params.pop(GEOMETRY)),
        )

    # --- Stage 2: service registry ---

    def _fetch_services(self, plan: CompilationPlan) -> Mapping[str, int] | None:
        if not plan.needs_services:
            return None
        services = dict(self.service_registry.fetch_all())
        logger.debug("Fetched %d services", len(services))
        return services

    # --- Stage 3: spatial rendering ---

    def _render_spatial(self, plan: CompilationPlan,
                        services: Mapping[str, int] | None) -> _RenderState:
        state = _RenderState(
            command=SpatialCommand(limit=plan.statement.limit),
            services=services,
            gaps=[],
        )
        for condition in plan.spatial_conditions:
            renderer = self._renderers[classify_field(condition.left.key)]
            renderer(condition, state)
        return state

    def _render_function(self, condition: Condition, state: _RenderState) -> None:
        command = state.command
        command.verb = condition.left.key
        value = condition.right
        if not isinstance(value, FunctionCall):
            return
        name = value.name.lower()
        if name == "get":
            resolution = self.resolver.resolve(value.arguments)
            state.gaps.extend(resolution.gaps)
            if resolution.area_id is None:
                logger.warning("No area resolved for %s(%s)", name,
                               ", ".join(map(repr, value.arguments)))
                return
            command.set_location(name, [resolution.area_id])
        else:
            command.set_location(name, value.arguments)

    def _render_id(self, condition: Condition, state: _RenderState) -> None:
        state.command.target_id = condition.right

    def _render_status(self, condition: Condition, state: _RenderState) -> None:
        codes = []
        for status in _as_sequence(condition.right):
            code = OrderStatus.lookup(status)
            if code is None:
                logger.warning("Unknown %s %r", condition.left.key, status)
                state.gaps.append(ResolutionGap(kind="status", name=str(status)))
                continue
            codes.append(code)
        state.command.clauses.append(WhereIn(condition.left.key, tuple(codes)))

    def _render_service(self, condition: Condition, state: _RenderState) -> None:
        services = state.services or {}
        ids = []
        for name in _as_sequence(condition.right):
            service_id = services.get(name)
            if service_id is None:
                logger.warning("Unknown service %r", name)
                state.gaps.append(ResolutionGap(kind="service", name=str(name)))
                continue
            ids.append(service_id)
        state.command.clauses.append(WhereIn("service", tuple(ids)))

    def _render_filter(self, condition: Condition, state: _RenderState) -> None:
        state.command.filter = value_to_python(condition.right)

    def _render_other(self, condition: Condition, state: _RenderState) -> None:
        key = condition.left.key
        value = condition.right
        if isinstance(value, tuple):
            state.command.clauses.append(WhereIn(key, value))
            return
        if is_number(value):
            clause = range_clause(key, condition.operator, value)
            if clause is not None:
                state.command.clauses.append(clause)
                return
        logger.warning("Ignoring spatial condition %s %s %r", key, condition.operator, value)

    # --- Stage 4: join ---

    def _resolve_join(self, plan: CompilationPlan, command: SpatialCommand) -> None:
        join = plan.join
        rows = self.record_service.query(dict(plan.params))
        ids = []
        for row in rows:
            surrogate = surrogate_id(row.get(join.record_key.key))
            if surrogate is not None:
                ids.append(surrogate)
        logger.debug("Join on %s matched %d records", join.record_key.key, len(ids))
        command.clauses.append(WhereIn(join.spatial_key.key, tuple(ids)))

    # --- Stage 5: registration ---

    def _register(self, params: Mapping[str, Any], registration: Registration) -> str:
        url = self.config.record_service_url
        if params:
            query = {name: _query_value(value) for name, value in params.items()}
            url = f"{url}?{urlencode(query, doseq=True)}"
        logger.info("Registering %s as %r", url, registration.cast_to)
        return self.spatial_engine.register(url, registration.id_field, registration.geometry)


def _backend_of_alias(key: Key, statement: SelectStatement,
                      aliases: Mapping[str, TargetBackend]) -> TargetBackend:
    alias = key.alias if key.alias is not None else statement.database.name
    if alias in aliases:
        return aliases[alias]
    return DATABASE_BACKENDS.get(alias.lower(), TargetBackend.RECORD)
