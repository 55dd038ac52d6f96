"""Parsing module for the KQL language."""

from kql.parsing.ast_nodes import (
    Condition,
    CreateStatement,
    DatabaseRef,
    FetchStatement,
    FunctionCall,
    GetConfigStatement,
    JoinCondition,
    Key,
    NamedConstant,
    SelectStatement,
    Statement,
    UpdateConfigStatement,
)
from kql.parsing.query_lexer import QueryLexer
from kql.parsing.query_parser import QueryParser

__all__ = [
    "Condition",
    "CreateStatement",
    "DatabaseRef",
    "FetchStatement",
    "FunctionCall",
    "GetConfigStatement",
    "JoinCondition",
    "Key",
    "NamedConstant",
    "QueryLexer",
    "QueryParser",
    "SelectStatement",
    "Statement",
    "UpdateConfigStatement",
]
