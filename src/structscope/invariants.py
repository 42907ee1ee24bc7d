"""Invariant markers for structscope."""

from __future__ import annotations

from typing import NoReturn

from structscope.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The optional env payload is carried on the exception for diagnostics; it is
    not evaluated.
    """
    raise NeverThrown(reason or "never() marker reached", env=env)


def require(condition: bool, reason: str, **env: object) -> None:
    if not condition:
        never(reason, **env)
