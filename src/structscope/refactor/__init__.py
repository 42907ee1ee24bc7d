from structscope.refactor.engine import ReadonlyFixer, apply_edits
from structscope.refactor.model import FixEntry, FixPlan, TextEdit

__all__ = [
    "FixEntry",
    "FixPlan",
    "ReadonlyFixer",
    "TextEdit",
    "apply_edits",
]
