"""Exception types raised by structscope."""

from __future__ import annotations


class StructscopeError(Exception):
    """Base class for errors surfaced to callers of the analysis API."""


class SourceSyntaxError(StructscopeError):
    """Source text could not be parsed outside of its type declarations.

    Positions are 0-based; the rendered message uses 1-based line/column the
    way compilers and editors print them.
    """

    def __init__(self, message: str, *, offset: int, line: int, column: int) -> None:
        super().__init__(f"{message} (line {line + 1}, column {column + 1})")
        self.reason = message
        self.offset = offset
        self.line = line
        self.column = column


class NeverRaise(RuntimeError):
    """Sentinel exception that should be statically unreachable.

    Raising this exception signals that an internal invariant of the engine was
    broken (for example an unresolved verdict leaking out of the resolver).
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.env = dict(env or {})


class NeverThrown(NeverRaise):
    """Alias for NeverRaise used by the explicit never() marker."""
