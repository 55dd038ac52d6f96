"""Error types raised by the KQL parser and compiler."""

from __future__ import annotations

from dataclasses import dataclass


class KQLError(Exception):
    """Base class for all KQL errors."""


class ParseError(KQLError, SyntaxError):
    """The input could not be matched by the grammar.

    Carries the offset where matching failed and the tokens that would have
    been accepted there. No partial AST is ever returned.
    """

    def __init__(self, message: str, position: int | None = None,
                 expected: tuple[str, ...] = (), token: str | None = None) -> None:
        super().__init__(message)
        self.msg = message
        self.position = position
        self.expected = expected
        self.token = token

    def __str__(self) -> str:
        return self.msg


class SemanticError(KQLError, ValueError):
    """A statement parsed but cannot be compiled."""


class BackendError(KQLError):
    """A remote backend call failed or returned an error status."""


@dataclass(frozen=True)
class ResolutionGap:
    """A lookup that found nothing and was skipped.

    Not raised: collected on the compiled query and logged.
    """

    kind: str  # "area", "service", "status"
    name: str
    level: int | None = None
