"""Lexer for the KQL query language."""

import re

import ply.lex as lex

from kql.errors import ParseError
from kql.parsing.ast_nodes import NamedConstant

_CONTROL_ESCAPES = {
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

_ESCAPE_RE = re.compile(r"\\(u[0-9a-fA-F]{4}|.)", re.DOTALL)


def interpret_escapes(text: str) -> str:
    """Turn escape sequences into the characters they stand for.

    \\b \\f \\n \\r \\t become control characters, \\uXXXX becomes that code
    point and any other escaped character is kept as-is.
    """

    def replace(match: re.Match) -> str:
        escape = match.group(1)
        if escape[0] == "u" and len(escape) == 5:
            return chr(int(escape[1:], 16))
        return _CONTROL_ESCAPES.get(escape, escape)

    return _ESCAPE_RE.sub(replace, text)


class QueryLexer:
    """Lexer for tokenizing KQL statements."""

    # Reserved keywords, matched case-insensitively
    reserved = {
        "select": "SELECT",
        "from": "FROM",
        "as": "AS",
        "join": "JOIN",
        "on": "ON",
        "where": "WHERE",
        "and": "AND",
        "limit": "LIMIT",
        "fetch": "FETCH",
        "create": "CREATE",
        "get": "GET",
        "config": "CONFIG",
        "update": "UPDATE",
        "null": "NULL",
        "true": "TRUE",
        "false": "FALSE",
        "in": "IN",
        "is": "IS",
    }

    constants = {c.value: c for c in NamedConstant}

    tokens = [
        "IDENTIFIER",
        "NUMBER",
        "STRING",
        "CONSTANT",
        "STAR",
        "COMMA",
        "COLON",
        "DOT",
        "LPAREN",
        "RPAREN",
        "LBRACKET",
        "RBRACKET",
        "LBRACE",
        "RBRACE",
        "EQ",
        "LT",
        "LTE",
        "GT",
        "GTE",
        "SEMICOLON",
    ] + list(reserved.values())

    t_STAR = r"\*"
    t_COMMA = r","
    t_COLON = r":"
    t_DOT = r"\."
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_LBRACKET = r"\["
    t_RBRACKET = r"\]"
    t_LBRACE = r"\{"
    t_RBRACE = r"\}"
    t_EQ = r"="
    t_LTE = r"<="
    t_LT = r"<"
    t_GTE = r">="
    t_GT = r">"
    t_SEMICOLON = r";"

    t_ignore = " \t\r"

    def __init__(self) -> None:
        self.lexer: lex.Lexer = None  # type: ignore

    def t_COMMENT(self, t: lex.LexToken) -> None:
        r"--[^\n]*"
        pass  # Ignore comments

    def t_NEWLINE(self, t: lex.LexToken) -> None:
        r"\n+"
        t.lexer.lineno += len(t.value)

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r""""(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*'"""
        t.value = interpret_escapes(t.value[1:-1])
        return t

    def t_NUMBER(self, t: lex.LexToken) -> lex.LexToken:
        r"-?(?:0|[1-9][0-9]*)(?:\.[0-9]+)?(?:[eE][+-]?[0-9]+)?"
        text = t.value
        if "." in text or "e" in text or "E" in text:
            t.value = float(text)
        else:
            t.value = int(text)
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_](?:[a-zA-Z0-9_]|-(?!-))*"
        lowered = t.value.lower()
        if lowered in self.reserved:
            t.type = self.reserved[lowered]
        elif lowered in self.constants:
            t.type = "CONSTANT"
            t.value = self.constants[lowered]
        return t

    def t_error(self, t: lex.LexToken) -> None:
        char = t.value[0]
        if char in "\"'":
            raise ParseError(
                f"Unterminated string at position {t.lexpos}",
                position=t.lexpos,
                token=char,
            )
        raise ParseError(
            f"Illegal character '{char}' at position {t.lexpos}",
            position=t.lexpos,
            token=char,
        )

    # --- Lexer methods ---

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        """Set the input string to tokenize."""
        self.lexer.lineno = 1
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        """Return the next token."""
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens
