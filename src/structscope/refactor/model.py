from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

# 0-based (line, column).
Position = Tuple[int, int]


@dataclass(frozen=True)
class TextEdit:
    path: str
    start: Position
    end: Position
    replacement: str


@dataclass(frozen=True)
class FixEntry:
    """One suggestion a plan acts on."""

    kind: str
    target: str
    anchor: Position
    summary: str


@dataclass
class FixPlan:
    edits: List[TextEdit] = field(default_factory=list)
    entries: List[FixEntry] = field(default_factory=list)
    # Suggestions that were skipped, with the reason.
    warnings: List[str] = field(default_factory=list)
