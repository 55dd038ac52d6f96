"""Shared fixtures: in-memory stand-ins for the backends the compiler calls."""

from __future__ import annotations

from typing import Any

import pytest

from kql.backends import Area
from kql.compiler import QueryCompiler
from kql.parsing.query_parser import QueryParser
from kql.resolver import AreaCache


class FakeSpatialEngine:
    def __init__(self, rows: list[dict[str, Any]] | None = None, key: str = "src-1") -> None:
        self.rows = rows or []
        self.key = key
        self.queries: list[tuple[str, Any]] = []
        self.registrations: list[tuple[str, str, str]] = []

    def query(self, command, filter):
        self.queries.append((command, filter))
        return self.rows

    def register(self, url, id_field, geometry):
        self.registrations.append((url, id_field, geometry))
        return self.key


class FakeRecordService:
    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.rows = rows or []
        self.queries: list[dict[str, Any]] = []

    def query(self, params):
        self.queries.append(dict(params))
        return self.rows


class FakeServiceRegistry:
    def __init__(self, services: dict[str, int] | None = None) -> None:
        self.services = services or {}
        self.calls = 0

    def fetch_all(self):
        self.calls += 1
        return self.services


class FakeAreaResolver:
    def __init__(self, areas: dict[tuple[int, str], Area] | None = None) -> None:
        self.areas = areas or {}
        self.calls: list[tuple[int, str, int | None]] = []

    def lookup(self, level, name, parent_id):
        self.calls.append((level, name, parent_id))
        return self.areas.get((level, name))


@pytest.fixture
def parser():
    return QueryParser()


@pytest.fixture
def spatial_engine():
    return FakeSpatialEngine()


@pytest.fixture
def record_service():
    return FakeRecordService()


@pytest.fixture
def service_registry():
    return FakeServiceRegistry({"ride": 7, "food": 3})


@pytest.fixture
def area_resolver():
    return FakeAreaResolver({
        (2, "Vietnam"): Area(10, "POLYGON((2))"),
        (3, "Hanoi"): Area(20, "POLYGON((3))"),
        (4, "Ba Dinh"): Area(30, "POLYGON((4))"),
    })


@pytest.fixture
def area_cache():
    return AreaCache()


@pytest.fixture
def compiler(spatial_engine, record_service, service_registry, area_resolver, area_cache):
    return QueryCompiler(
        spatial_engine=spatial_engine,
        record_service=record_service,
        service_registry=service_registry,
        areas=area_resolver,
        cache=area_cache,
    )


@pytest.fixture
def compile_text(compiler, parser):
    """Parse and compile a select statement."""

    def _compile(text):
        return compiler.compile(parser.parse(text))

    return _compile
