"""Parser for the KQL query language.

Grammar (keywords are case-insensitive, see QueryLexer)::

    statement        : query | query ';'
    query            : fetch | select | create | get_config | update_config
    select           : SELECT '*' FROM database_ref join? where? limit?
    database_ref     : database_name (AS name)?
    join             : JOIN database_ref ON key '=' key
    where            : WHERE condition (AND condition)*
    limit            : LIMIT number
    fetch            : FETCH database_ref parameters
    create           : CREATE name name parameters?
    get_config       : GET CONFIG parameters
    update_config    : UPDATE CONFIG
    parameters       : '(' (condition (',' condition)*)? ')'
    condition        : key operator value
    key              : field_name | name '.' field_name
    operator         : '=' | '>' | '>=' | '<' | '<=' | IN | IS
    value            : object | array | string | number | NULL | TRUE | FALSE
                     | function_call | constant
    function_call    : name '(' (value (',' value)*)? ')'
    array            : '[' (value (',' value)*)? ']'
                     | '(' (value (',' value)*)? ')'
    object           : '{' (string ':' value (',' string ':' value)*)? '}'
    name             : identifier | GET | CONFIG
    field_name       : name | any keyword

Every statement form starts with its own keyword, so the alternatives of
``query`` never compete for the same input.
"""

from __future__ import annotations

from typing import Any

import ply.yacc as yacc

from kql.errors import ParseError
from kql.parsing.ast_nodes import (
    DATABASE_NAMES,
    Condition,
    CreateStatement,
    DatabaseRef,
    FetchStatement,
    FunctionCall,
    GetConfigStatement,
    JoinCondition,
    Key,
    SelectStatement,
    Statement,
    UpdateConfigStatement,
)
from kql.parsing.query_lexer import QueryLexer

# Display text for punctuation tokens in error messages
_TOKEN_TEXT = {
    "STAR": "*",
    "COMMA": ",",
    "COLON": ":",
    "DOT": ".",
    "LPAREN": "(",
    "RPAREN": ")",
    "LBRACKET": "[",
    "RBRACKET": "]",
    "LBRACE": "{",
    "RBRACE": "}",
    "EQ": "=",
    "LT": "<",
    "LTE": "<=",
    "GT": ">",
    "GTE": ">=",
    "SEMICOLON": ";",
    "$end": "end of input",
}


def _describe_token(name: str) -> str:
    return _TOKEN_TEXT.get(name, name.lower())


class QueryParser:
    """Parser for KQL statements."""

    tokens = QueryLexer.tokens

    def __init__(self) -> None:
        self.lexer = QueryLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore
        self._length = 0

    def p_statement(self, p: yacc.YaccProduction) -> None:
        """statement : query SEMICOLON
                     | query"""
        p[0] = p[1]

    def p_query(self, p: yacc.YaccProduction) -> None:
        """query : fetch_statement
                 | select_statement
                 | create_statement
                 | get_config_statement
                 | update_config_statement"""
        p[0] = p[1]

    # --- select ---

    def p_select_statement(self, p: yacc.YaccProduction) -> None:
        """select_statement : SELECT STAR FROM database_ref join_clause where_clause limit_clause"""
        p[0] = SelectStatement(database=p[4], join=p[5], where=p[6], limit=p[7])

    def p_join_clause_empty(self, p: yacc.YaccProduction) -> None:
        """join_clause : """
        p[0] = None

    def p_join_clause(self, p: yacc.YaccProduction) -> None:
        """join_clause : JOIN database_ref ON key EQ key"""
        p[0] = JoinCondition(left=p[4], right=p[6], database=p[2])

    def p_where_clause_empty(self, p: yacc.YaccProduction) -> None:
        """where_clause : """
        p[0] = None

    def p_where_clause(self, p: yacc.YaccProduction) -> None:
        """where_clause : WHERE condition_list"""
        p[0] = tuple(p[2])

    def p_condition_list_single(self, p: yacc.YaccProduction) -> None:
        """condition_list : condition"""
        p[0] = [p[1]]

    def p_condition_list_multiple(self, p: yacc.YaccProduction) -> None:
        """condition_list : condition_list AND condition"""
        p[0] = p[1] + [p[3]]

    def p_limit_clause_empty(self, p: yacc.YaccProduction) -> None:
        """limit_clause : """
        p[0] = None

    def p_limit_clause(self, p: yacc.YaccProduction) -> None:
        """limit_clause : LIMIT NUMBER"""
        p[0] = p[2]

    # --- database references ---

    def p_database_ref(self, p: yacc.YaccProduction) -> None:
        """database_ref : database_name"""
        p[0] = DatabaseRef(name=p[1])

    def p_database_ref_alias(self, p: yacc.YaccProduction) -> None:
        """database_ref : database_name AS name"""
        p[0] = DatabaseRef(name=p[1], alias=p[3])

    def p_database_name(self, p: yacc.YaccProduction) -> None:
        """database_name : IDENTIFIER"""
        name = p[1].lower()
        if name not in DATABASE_NAMES:
            position = p.lexpos(1)
            raise ParseError(
                f"Unknown database '{p[1]}' at position {position}",
                position=position,
                expected=DATABASE_NAMES,
                token=p[1],
            )
        p[0] = name

    # --- fetch / create / config ---

    def p_fetch_statement(self, p: yacc.YaccProduction) -> None:
        """fetch_statement : FETCH database_ref parameters"""
        p[0] = FetchStatement(database=p[2], parameters=p[3])

    def p_create_statement(self, p: yacc.YaccProduction) -> None:
        """create_statement : CREATE name name"""
        p[0] = CreateStatement(type=p[2], name=p[3])

    def p_create_statement_parameters(self, p: yacc.YaccProduction) -> None:
        """create_statement : CREATE name name parameters"""
        p[0] = CreateStatement(type=p[2], name=p[3], parameters=p[4])

    def p_get_config_statement(self, p: yacc.YaccProduction) -> None:
        """get_config_statement : GET CONFIG parameters"""
        p[0] = GetConfigStatement(parameters=p[3])

    def p_update_config_statement(self, p: yacc.YaccProduction) -> None:
        """update_config_statement : UPDATE CONFIG"""
        p[0] = UpdateConfigStatement()

    def p_parameters_empty(self, p: yacc.YaccProduction) -> None:
        """parameters : LPAREN RPAREN"""
        p[0] = ()

    def p_parameters(self, p: yacc.YaccProduction) -> None:
        """parameters : LPAREN parameter_list RPAREN"""
        p[0] = tuple(p[2])

    def p_parameter_list_single(self, p: yacc.YaccProduction) -> None:
        """parameter_list : condition"""
        p[0] = [p[1]]

    def p_parameter_list_multiple(self, p: yacc.YaccProduction) -> None:
        """parameter_list : parameter_list COMMA condition"""
        p[0] = p[1] + [p[3]]

    # --- conditions ---

    def p_condition(self, p: yacc.YaccProduction) -> None:
        """condition : key operator value"""
        p[0] = Condition(left=p[1], operator=p[2], right=p[3])

    def p_key(self, p: yacc.YaccProduction) -> None:
        """key : field_name"""
        p[0] = Key(key=p[1])

    def p_key_qualified(self, p: yacc.YaccProduction) -> None:
        """key : name DOT field_name"""
        p[0] = Key(key=p[3], alias=p[1])

    def p_field_name(self, p: yacc.YaccProduction) -> None:
        """field_name : name
                      | SELECT
                      | FROM
                      | AS
                      | JOIN
                      | ON
                      | WHERE
                      | AND
                      | LIMIT
                      | FETCH
                      | CREATE
                      | UPDATE
                      | NULL
                      | TRUE
                      | FALSE
                      | IN
                      | IS"""
        # Keywords are plain field names in key position
        p[0] = p[1]

    def p_operator(self, p: yacc.YaccProduction) -> None:
        """operator : EQ
                    | GT
                    | GTE
                    | LT
                    | LTE
                    | IN
                    | IS"""
        p[0] = p[1].lower()

    def p_name(self, p: yacc.YaccProduction) -> None:
        """name : IDENTIFIER
                | GET
                | CONFIG"""
        p[0] = p[1]

    # --- values ---

    def p_value_literal(self, p: yacc.YaccProduction) -> None:
        """value : STRING
                 | NUMBER
                 | CONSTANT
                 | array
                 | object
                 | function_call"""
        p[0] = p[1]

    def p_value_null(self, p: yacc.YaccProduction) -> None:
        """value : NULL"""
        p[0] = None

    def p_value_true(self, p: yacc.YaccProduction) -> None:
        """value : TRUE"""
        p[0] = True

    def p_value_false(self, p: yacc.YaccProduction) -> None:
        """value : FALSE"""
        p[0] = False

    def p_array_empty(self, p: yacc.YaccProduction) -> None:
        """array : LBRACKET RBRACKET
                 | LPAREN RPAREN"""
        p[0] = ()

    def p_array(self, p: yacc.YaccProduction) -> None:
        """array : LBRACKET value_list RBRACKET
                 | LPAREN value_list RPAREN"""
        p[0] = tuple(p[2])

    def p_value_list_single(self, p: yacc.YaccProduction) -> None:
        """value_list : value"""
        p[0] = [p[1]]

    def p_value_list_multiple(self, p: yacc.YaccProduction) -> None:
        """value_list : value_list COMMA value"""
        p[0] = p[1] + [p[3]]

    def p_object_empty(self, p: yacc.YaccProduction) -> None:
        """object : LBRACE RBRACE"""
        p[0] = {}

    def p_object(self, p: yacc.YaccProduction) -> None:
        """object : LBRACE pair_list RBRACE"""
        # Later duplicates overwrite earlier ones
        p[0] = dict(p[2])

    def p_pair_list_single(self, p: yacc.YaccProduction) -> None:
        """pair_list : pair"""
        p[0] = [p[1]]

    def p_pair_list_multiple(self, p: yacc.YaccProduction) -> None:
        """pair_list : pair_list COMMA pair"""
        p[0] = p[1] + [p[3]]

    def p_pair(self, p: yacc.YaccProduction) -> None:
        """pair : STRING COLON value"""
        p[0] = (p[1], p[3])

    def p_function_call_empty(self, p: yacc.YaccProduction) -> None:
        """function_call : name LPAREN RPAREN"""
        p[0] = FunctionCall(name=p[1])

    def p_function_call(self, p: yacc.YaccProduction) -> None:
        """function_call : name LPAREN value_list RPAREN"""
        p[0] = FunctionCall(name=p[1], arguments=tuple(p[3]))

    def p_error(self, p: yacc.YaccProduction) -> None:
        expected = self._expected_tokens()
        if p:
            raise ParseError(
                f"Syntax error at '{p.value}' (position {p.lexpos}), "
                f"expected one of: {', '.join(expected)}",
                position=p.lexpos,
                expected=expected,
                token=str(p.value),
            )
        raise ParseError(
            f"Unexpected end of input, expected one of: {', '.join(expected)}",
            position=self._length,
            expected=expected,
        )

    def _expected_tokens(self) -> tuple[str, ...]:
        """Tokens that could legally come next where the parser stopped.

        A state's action table also lists lookaheads merged in from other
        contexts, so each candidate is run through the pending reductions
        on a copy of the stack and kept only if it is eventually shifted.
        """
        stack = list(self.parser.statestack)
        candidates = list(self.tokens) + ["$end"]
        return tuple(sorted({
            _describe_token(name) for name in candidates if self._shifts(stack, name)
        }))

    def _shifts(self, statestack: list[int], token: str) -> bool:
        stack = list(statestack)
        while True:
            action = self.parser.action[stack[-1]].get(token)
            if action is None:
                return False
            if action >= 0:
                # Shift, or accept on end of input
                return True
            production = self.parser.productions[-action]
            if production.len:
                del stack[-production.len:]
            state = self.parser.goto[stack[-1]].get(production.name)
            if state is None:
                return False
            stack.append(state)

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        kwargs.setdefault("debug", False)
        kwargs.setdefault("write_tables", False)
        kwargs.setdefault("errorlog", yacc.NullLogger())
        self.parser = yacc.yacc(module=self, start="statement", **kwargs)

    def parse(self, data: str) -> Statement:
        """Parse a single statement."""
        if self.parser is None:
            self.build()

        self._length = len(data)
        self.lexer.input(data)
        return self.parser.parse(data, lexer=self.lexer.lexer)
