"""Tests for compiling select statements into backend queries."""

from __future__ import annotations

import pytest

from kql.backends import TargetBackend
from kql.compiler import QueryCompiler, classify_field, SpatialField, surrogate_id
from kql.config import CompilerConfig
from kql.errors import BackendError, ResolutionGap, SemanticError
from kql.resolver import AreaCache

from conftest import FakeAreaResolver, FakeRecordService, FakeServiceRegistry, FakeSpatialEngine


class TestRouting:
    """Which backend each condition is sent to."""

    def test_primary_spatial_database(self, compiler, parser):
        plan = compiler.plan(parser.parse("select * from t where age = 3"))
        assert [c.left.key for c in plan.spatial_conditions] == ["age"]
        assert plan.params == {}
        assert plan.backend is TargetBackend.SPATIAL

    def test_primary_record_database(self, compiler, parser):
        plan = compiler.plan(parser.parse("select * from m where age = 3"))
        assert plan.spatial_conditions == []
        assert plan.params == {"age": 3}
        assert plan.backend is TargetBackend.RECORD

    def test_explicit_alias_wins(self, compiler, parser):
        plan = compiler.plan(parser.parse("select * from m where t.speed > 10 and email = 'a'"))
        assert [c.left.key for c in plan.spatial_conditions] == ["speed"]
        assert plan.params == {"email": "a"}

    def test_declared_alias(self, compiler, parser):
        plan = compiler.plan(parser.parse(
            "select * from tile38 as d where d.age = 3 and x.name = 'a'"
        ))
        assert [c.left.key for c in plan.spatial_conditions] == ["age"]
        assert plan.params == {"name": "a"}

    def test_spatial_function_keys_ignore_alias(self, compiler, parser):
        plan = compiler.plan(parser.parse(
            "select * from m where within = bounds(1, 2, 3, 4) and m.nearby = point(1, 2)"
        ))
        assert [c.left.key for c in plan.spatial_conditions] == ["within", "nearby"]

    def test_url_database_is_record_service(self, compiler, parser):
        plan = compiler.plan(parser.parse("select * from u where a = 1"))
        assert plan.backend is TargetBackend.RECORD
        assert plan.params == {"a": 1}

    def test_classify_field(self):
        assert classify_field("within") is SpatialField.FUNCTION
        assert classify_field("id") is SpatialField.ID
        assert classify_field("order_status") is SpatialField.STATUS
        assert classify_field("service") is SpatialField.SERVICE
        assert classify_field("filter") is SpatialField.FILTER
        assert classify_field("speed") is SpatialField.OTHER


class TestRecordParameters:
    def test_parameters_keep_last_value(self, compile_text):
        compiled = compile_text(
            "select * from m where email = 'x@y.com' and age = 18 and email = 'z@y.com'"
        )
        assert compiled.params == {"email": "z@y.com", "age": 18}

    def test_id_renamed(self, compile_text):
        compiled = compile_text("select * from m where id = 42")
        assert compiled.params == {"card_id": 42}

    def test_id_parameter_configurable(self, spatial_engine, record_service,
                                       service_registry, area_resolver, parser):
        compiler = QueryCompiler(
            spatial_engine, record_service, service_registry, area_resolver,
            config=CompilerConfig(record_id_parameter="question"),
        )
        compiled = compiler.compile(parser.parse("select * from m where id = 42"))
        assert compiled.params == {"question": 42}

    def test_values_become_plain_data(self, compile_text):
        compiled = compile_text("select * from m where tags in ('a', 'b') and at = current_bounds")
        assert compiled.params == {"tags": ["a", "b"], "at": "current_bounds"}


class TestSpatialRendering:
    def test_inclusive_lower_bound(self, compile_text):
        compiled = compile_text("select * from t where age >= 18")
        assert compiled.command == "SCAN WHERE age 17 +inf LIMIT 100"

    @pytest.mark.parametrize("operator, expected", [
        ("=", "WHERE speed 5 5"),
        (">", "WHERE speed 5 +inf"),
        (">=", "WHERE speed 4 +inf"),
        ("<", "WHERE speed -inf 5"),
        ("<=", "WHERE speed -inf 4"),
    ])
    def test_range_operators(self, compile_text, operator, expected):
        compiled = compile_text(f"select * from t where speed {operator} 5")
        assert compiled.command == f"SCAN {expected} LIMIT 100"

    def test_float_range(self, compile_text):
        compiled = compile_text("select * from t where rating > 4.5")
        assert compiled.command == "SCAN WHERE rating 4.5 +inf LIMIT 100"

    def test_target_id_and_point(self, compile_text):
        compiled = compile_text(
            "select * from t where id = 'fleet' and nearby = point(33.5, -115.2, 1000) limit 5"
        )
        assert compiled.command == "NEARBY fleet LIMIT 5 POINT 33.5 -115.2 1000"

    def test_bounds(self, compile_text):
        compiled = compile_text("select * from t where within = bounds(1, 2, 3, 4)")
        assert compiled.command == "WITHIN LIMIT 100 BOUNDS 1 2 3 4"

    def test_function_key_without_call_only_sets_verb(self, compile_text):
        compiled = compile_text("select * from t where intersects = current_bounds")
        assert compiled.command == "INTERSECTS LIMIT 100"

    def test_status_names(self, compile_text):
        compiled = compile_text("select * from t where status in ('new', 'delivered')")
        assert compiled.command == "SCAN WHEREIN status 2 1 6 LIMIT 100"

    def test_unknown_status_skipped(self, compile_text):
        compiled = compile_text("select * from t where order_status in ('assigned', 'lost')")
        assert compiled.command == "SCAN WHEREIN order_status 1 3 LIMIT 100"
        assert compiled.gaps == [ResolutionGap(kind="status", name="lost")]

    def test_single_status(self, compile_text):
        compiled = compile_text("select * from t where status = 'cancelled'")
        assert compiled.command == "SCAN WHEREIN status 1 7 LIMIT 100"

    def test_services(self, compile_text, service_registry):
        compiled = compile_text("select * from t where service in ['ride', 'food', 'boat']")
        assert compiled.command == "SCAN WHEREIN service 2 7 3 LIMIT 100"
        assert compiled.gaps == [ResolutionGap(kind="service", name="boat")]
        assert service_registry.calls == 1

    def test_registry_fetched_once(self, compile_text, service_registry):
        compile_text("select * from t where service in ['ride'] and t.service = 'food'")
        assert service_registry.calls == 1

    def test_registry_not_fetched_without_service(self, compile_text, service_registry):
        compile_text("select * from t where age = 1")
        assert service_registry.calls == 0

    def test_filter_not_rendered(self, compile_text):
        compiled = compile_text('select * from t where filter = {"type": "car", "seats": [4]}')
        assert compiled.filter == {"type": "car", "seats": [4]}
        assert compiled.command == "SCAN LIMIT 100"

    def test_generic_array(self, compile_text):
        compiled = compile_text("select * from t where tags in (1, 2)")
        assert compiled.command == "SCAN WHEREIN tags 2 1 2 LIMIT 100"

    def test_unsupported_condition_ignored(self, compile_text):
        compiled = compile_text("select * from t where name = 'bob' and age in 3")
        assert compiled.command == "SCAN LIMIT 100"

    def test_clause_order_follows_source(self, compile_text):
        compiled = compile_text(
            "select * from t where id = 'fleet' and speed > 1 and tags in ('a') and age < 9"
        )
        assert compiled.command == (
            "SCAN fleet WHERE speed 1 +inf WHEREIN tags 1 a WHERE age -inf 9 LIMIT 100"
        )

    def test_default_limit_configurable(self, spatial_engine, record_service,
                                        service_registry, area_resolver, parser):
        compiler = QueryCompiler(
            spatial_engine, record_service, service_registry, area_resolver,
            config=CompilerConfig(default_limit=25),
        )
        compiled = compiler.compile(parser.parse("select * from t"))
        assert compiled.command == "SCAN LIMIT 25"


class TestAreaResolution:
    def test_get_resolves_deepest_level(self, compile_text, area_resolver):
        compiled = compile_text(
            "select * from t where id = 'orders' and within = get('Vietnam', 'Hanoi', 'Ba Dinh')"
        )
        assert compiled.command == "WITHIN orders LIMIT 100 GET 30"
        assert area_resolver.calls == [
            (2, "Vietnam", None),
            (3, "Hanoi", 10),
            (4, "Ba Dinh", 20),
        ]

    def test_cache_skips_remote_lookups(self, compile_text, area_resolver):
        text = "select * from t where within = get('Vietnam', 'Hanoi')"
        first = compile_text(text)
        second = compile_text(text)
        assert first.command == second.command == "WITHIN LIMIT 100 GET 20"
        assert len(area_resolver.calls) == 2

    def test_injected_cache_shared_between_compilers(self, area_resolver, parser):
        cache = AreaCache()
        statement = parser.parse("select * from t where within = get('Vietnam')")
        for _ in range(2):
            compiler = QueryCompiler(
                FakeSpatialEngine(), FakeRecordService(), FakeServiceRegistry(),
                area_resolver, cache=cache,
            )
            compiler.compile(statement)
        assert area_resolver.calls == [(2, "Vietnam", None)]
        assert (2, "Vietnam") in cache

    def test_unresolved_level_skipped(self, compile_text):
        compiled = compile_text("select * from t where within = get('Vietnam', 'Atlantis')")
        assert compiled.command == "WITHIN LIMIT 100 GET 10"
        assert compiled.gaps == [ResolutionGap(kind="area", name="Atlantis", level=3)]

    def test_nothing_resolved_leaves_no_location(self, compile_text):
        compiled = compile_text("select * from t where within = get('Atlantis')")
        assert compiled.command == "WITHIN LIMIT 100"

    def test_independent_get_expressions(self, compile_text, area_resolver):
        compiled = compile_text(
            "select * from t where within = get('Vietnam') and intersects = get('Vietnam', 'Hanoi')"
        )
        # The last function key sets the verb and location
        assert compiled.command == "INTERSECTS LIMIT 100 GET 20"
        assert area_resolver.calls == [(2, "Vietnam", None), (3, "Hanoi", 10)]


class TestJoin:
    @pytest.fixture
    def record_service(self):
        return FakeRecordService(rows=[
            {"driver_id": "ab"},
            {"driver_id": 12},
            {"other": 1},
        ])

    def test_join_injects_surrogate_ids(self, compile_text, record_service):
        compiled = compile_text(
            "select * from t join m on t.driver = m.driver_id where m.city = 'HN'"
        )
        assert record_service.queries == [{"city": "HN"}]
        assert compiled.command == "SCAN WHEREIN driver 2 9798 4950 LIMIT 100"

    def test_join_sides_swapped(self, compile_text):
        compiled = compile_text("select * from t join m on m.driver_id = t.driver")
        assert compiled.command == "SCAN WHEREIN driver 2 9798 4950 LIMIT 100"

    def test_join_with_aliases(self, compile_text, record_service):
        compiled = compile_text(
            "select * from tile38 as a join metabase as b on b.driver_id = a.driver "
            "where b.city = 'HN' and a.speed > 3"
        )
        assert record_service.queries == [{"city": "HN"}]
        assert compiled.command == "SCAN WHERE speed 3 +inf WHEREIN driver 2 9798 4950 LIMIT 100"

    def test_execute_with_join_queries_each_backend_once(self, compiler, parser,
                                                          spatial_engine, record_service):
        compiler.execute(parser.parse("select * from t join m on t.driver = m.driver_id"))
        assert len(record_service.queries) == 1
        assert spatial_engine.queries == [("SCAN WHEREIN driver 2 9798 4950 LIMIT 100", None)]

    def test_surrogate_id(self):
        assert surrogate_id("ab") == 9798
        assert surrogate_id(12) == 4950
        assert surrogate_id(12.0) == 4950
        assert surrogate_id("") is None
        assert surrogate_id(None) is None


class TestRegistration:
    def test_cast_to_registers_and_overrides_target(self, compile_text, spatial_engine):
        compiled = compile_text(
            "select * from m where cast_to = 'tile38' and id_field = 'id' "
            "and geometry = 'location' and city = 'HN' and t.id = 'fleet' and t.status = 'new'"
        )
        assert spatial_engine.registrations == [
            ("http://localhost:3000/api/card?city=HN", "id", "location"),
        ]
        assert compiled.registered_key == "src-1"
        assert compiled.command == "SCAN src-1 WHEREIN status 1 1 LIMIT 100"
        assert compiled.params == {"city": "HN"}

    def test_registration_url_encodes_parameters(self, compile_text, spatial_engine):
        compile_text(
            "select * from m where cast_to = 't' and id_field = 'uid' and geometry = 'geo' "
            "and name = 'a b' and ids in (1, 2) and active = true"
        )
        url = spatial_engine.registrations[0][0]
        assert url == "http://localhost:3000/api/card?name=a+b&ids=1&ids=2&active=true"

    @pytest.mark.parametrize("missing", ["id_field", "geometry"])
    def test_missing_companion_fails_before_any_call(
        self, compiler, parser, missing, spatial_engine, record_service,
        service_registry, area_resolver,
    ):
        companions = {"id_field": "id_field = 'id'", "geometry": "geometry = 'loc'"}
        present = [text for name, text in companions.items() if name != missing]
        statement = parser.parse(
            "select * from t join m on t.driver = m.driver_id where m.cast_to = 'tile38' and "
            + " and ".join(f"m.{text}" for text in present)
            + " and service in ('ride') and within = get('Vietnam')"
        )
        with pytest.raises(SemanticError, match=missing):
            compiler.execute(statement)
        assert service_registry.calls == 0
        assert area_resolver.calls == []
        assert record_service.queries == []
        assert spatial_engine.queries == []
        assert spatial_engine.registrations == []


class TestExecute:
    def test_spatial_dispatch(self, compiler, parser, spatial_engine, record_service):
        spatial_engine.rows = [{"id": "truck1"}]
        rows = compiler.execute(parser.parse(
            'select * from tile38 where id = "fleet" and filter = {"a": 1}'
        ))
        assert rows == [{"id": "truck1"}]
        assert spatial_engine.queries == [("SCAN fleet LIMIT 100", {"a": 1})]
        assert record_service.queries == []

    def test_record_dispatch(self, compiler, parser, spatial_engine, record_service):
        record_service.rows = [{"card_id": 42}]
        rows = compiler.execute(parser.parse("select * from metabase where id = 42 and t.age > 1"))
        assert rows == [{"card_id": 42}]
        assert record_service.queries == [{"card_id": 42}]
        assert spatial_engine.queries == []

    def test_dispatch_ignores_alias(self, compiler, parser, spatial_engine, record_service):
        compiler.execute(parser.parse("select * from m as t where x = 1"))
        assert record_service.queries == [{"x": 1}]
        assert spatial_engine.queries == []

    def test_run_parses_text(self, compiler, spatial_engine):
        compiler.run("SELECT * FROM t WHERE age >= 18")
        assert spatial_engine.queries == [("SCAN WHERE age 17 +inf LIMIT 100", None)]

    def test_backend_errors_propagate(self, record_service, service_registry,
                                      area_resolver, parser):
        class FailingEngine(FakeSpatialEngine):
            def query(self, command, filter):
                raise BackendError("503 from spatial engine")

        compiler = QueryCompiler(FailingEngine(), record_service, service_registry, area_resolver)
        with pytest.raises(BackendError, match="503"):
            compiler.execute(parser.parse("select * from t"))

    def test_only_select_compiles(self, compiler, parser):
        with pytest.raises(SemanticError, match="fetch"):
            compiler.compile(parser.parse("fetch m (id = 1)"))

    def test_compiled_to_dict(self, compile_text):
        compiled = compile_text("select * from t where within = get('Atlantis')")
        assert compiled.to_dict() == {
            "backend": "spatial",
            "command": "WITHIN LIMIT 100",
            "filter": None,
            "params": {},
            "registered_key": None,
            "gaps": [{"kind": "area", "name": "Atlantis", "level": 2}],
        }
