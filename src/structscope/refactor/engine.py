from __future__ import annotations

from collections.abc import Iterable, Sequence

from structscope.analysis.eligibility import Suggestion
from structscope.analysis.timeout_context import deadline_loop_iter
from structscope.refactor.model import FixEntry, FixPlan, Position, TextEdit

READONLY_TEXT = "readonly "


class ReadonlyFixer:
    def plan(self, source: str, suggestions: Iterable[Suggestion], *, path: str = "") -> FixPlan:
        """Insert ``readonly`` in front of each suggestion's fix anchor."""
        plan = FixPlan()
        seen: set[Position] = set()
        for suggestion in deadline_loop_iter(suggestions):
            anchor = suggestion.fix_anchor
            position = (anchor.line, anchor.column)
            if position in seen:
                continue
            seen.add(position)
            if _preceded_by_readonly(source, anchor.start):
                plan.warnings.append(
                    f"{suggestion.target}: already preceded by readonly; skipped"
                )
                continue
            plan.edits.append(
                TextEdit(path=path, start=position, end=position, replacement=READONLY_TEXT)
            )
            plan.entries.append(
                FixEntry(
                    kind=str(suggestion.kind),
                    target=suggestion.display_name,
                    anchor=position,
                    summary=suggestion.message,
                )
            )
        return plan

    def fix(
        self, source: str, suggestions: Iterable[Suggestion], *, path: str = ""
    ) -> tuple[str, FixPlan]:
        plan = self.plan(source, suggestions, path=path)
        if not plan.edits:
            return source, plan
        return apply_edits(source, plan.edits), plan


def _preceded_by_readonly(source: str, offset: int) -> bool:
    prefix = source[:offset].rstrip()
    if not prefix.endswith("readonly"):
        return False
    before = prefix[: -len("readonly")]
    return not before or not (before[-1].isalnum() or before[-1] in "_@")


def _line_starts(source: str) -> list[int]:
    starts = [0]
    for index, char in enumerate(source):
        if char == "\n":
            starts.append(index + 1)
    return starts


def _offset(starts: Sequence[int], position: Position, length: int) -> int:
    line, column = position
    if line < 0 or line >= len(starts):
        raise ValueError(f"edit position {position} outside the source")
    offset = starts[line] + column
    if offset > length:
        raise ValueError(f"edit position {position} outside the source")
    return offset


def apply_edits(source: str, edits: Iterable[TextEdit]) -> str:
    """Apply edits back to front so earlier positions stay valid."""
    starts = _line_starts(source)
    spans = sorted(
        (
            (_offset(starts, edit.start, len(source)), _offset(starts, edit.end, len(source)), edit)
            for edit in edits
        ),
        key=lambda item: (item[0], item[1]),
        reverse=True,
    )
    result = source
    previous_start: int | None = None
    for start, end, edit in spans:
        if end < start:
            raise ValueError(f"edit ends before it starts: {edit}")
        if previous_start is not None and end > previous_start:
            raise ValueError(f"overlapping edits at {edit.start}")
        result = result[:start] + edit.replacement + result[end:]
        previous_start = start
    return result
