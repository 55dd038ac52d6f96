"""KQL - a small select/fetch/create query language for spatial and record backends."""

from kql.backends import Area, TargetBackend
from kql.compiler import CompiledQuery, QueryCompiler
from kql.config import CompilerConfig
from kql.errors import BackendError, KQLError, ParseError, ResolutionGap, SemanticError
from kql.parsing import QueryParser
from kql.resolver import AreaCache, HierarchicalResolver

__all__ = [
    # Main API
    "QueryParser",
    "QueryCompiler",
    "CompiledQuery",
    "CompilerConfig",
    # Resolution
    "Area",
    "AreaCache",
    "HierarchicalResolver",
    "TargetBackend",
    # Errors
    "KQLError",
    "ParseError",
    "SemanticError",
    "BackendError",
    "ResolutionGap",
]

__version__ = "0.1.0"
