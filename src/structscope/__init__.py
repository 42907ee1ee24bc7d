"""structscope package root."""

from structscope.exceptions import NeverRaise, NeverThrown, SourceSyntaxError, StructscopeError
from structscope.invariants import never

__all__ = [
    "__version__",
    "NeverRaise",
    "NeverThrown",
    "SourceSyntaxError",
    "StructscopeError",
    "never",
]

__version__ = "0.1.0"
