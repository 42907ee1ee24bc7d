"""C# front end on top of tree-sitter."""

from structscope.syntax.declarations import TypeDeclaration, iter_type_declarations
from structscope.syntax.source import LineIndex, SourceTree, Token, parse_source

__all__ = [
    "LineIndex",
    "SourceTree",
    "Token",
    "TypeDeclaration",
    "iter_type_declarations",
    "parse_source",
]
