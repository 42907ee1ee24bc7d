"""C# sources parsed with tree-sitter.

Tree-sitter works on UTF-8 bytes and never fails: what it cannot make sense
of ends up in ERROR nodes or as zero-width MISSING tokens. Everything past
this module speaks in code point offsets of the decoded text, so
:class:`SourceTree` owns the mapping between the two.
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from collections.abc import Iterator
from dataclasses import dataclass
import logging

import tree_sitter_c_sharp
from tree_sitter import Language, Node, Parser, Tree

logger = logging.getLogger(__name__)

CSHARP_LANGUAGE = Language(tree_sitter_c_sharp.language())

_BOM = "\ufeff"


@dataclass(frozen=True)
class Span:
    start: int
    end: int

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.end


@dataclass(frozen=True, slots=True)
class Token:
    """Text of one node with its code point offsets and 0-based position."""

    text: str
    start: int
    end: int
    line: int
    column: int


class LineIndex:
    """Maps absolute offsets to 0-based (line, column)."""

    def __init__(self, text: str) -> None:
        starts = [0]
        for index, char in enumerate(text):
            if char == "\n":
                starts.append(index + 1)
        self._starts = starts

    def position(self, offset: int) -> tuple[int, int]:
        line = bisect_right(self._starts, offset) - 1
        return line, offset - self._starts[line]


def _encode(text: str) -> bytes:
    data = text.encode("utf-8", errors="surrogatepass")
    if text.startswith(_BOM):
        # Same width, so byte offsets past the mark stay aligned.
        data = b"   " + data[3:]
    return data


def _char_starts(text: str, data: bytes) -> list[int] | None:
    """Byte offset of every code point, or None when the two coincide."""
    if len(data) == len(text):
        return None
    starts: list[int] = []
    position = 0
    for char in text:
        starts.append(position)
        position += len(char.encode("utf-8", errors="surrogatepass"))
    return starts


class SourceTree:
    def __init__(self, text: str, data: bytes, tree: Tree) -> None:
        self.text = text
        self.data = data
        self.tree = tree
        self.lines = LineIndex(text)
        self._starts = _char_starts(text, data)

    @property
    def root(self) -> Node:
        return self.tree.root_node

    @property
    def has_error(self) -> bool:
        return self.root.has_error

    def offset(self, byte_offset: int) -> int:
        if self._starts is None:
            return byte_offset
        return bisect_left(self._starts, byte_offset)

    def span(self, node: Node) -> Span:
        return Span(self.offset(node.start_byte), self.offset(node.end_byte))

    def text_of(self, node: Node) -> str:
        return self.data[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    def token(self, node: Node) -> Token:
        start = self.offset(node.start_byte)
        line, column = self.lines.position(start)
        return Token(
            text=self.text_of(node),
            start=start,
            end=self.offset(node.end_byte),
            line=line,
            column=column,
        )

    def iter_errors(self) -> Iterator[Node]:
        """ERROR and MISSING nodes in source order; ERROR nodes are not entered."""
        if not self.root.has_error:
            return
        stack = [self.root]
        while stack:
            node = stack.pop()
            if node.is_error or node.is_missing:
                yield node
                continue
            stack.extend(reversed([child for child in node.children if child.has_error]))


def parse_source(text: str) -> SourceTree:
    """Parse one C# compilation unit."""
    data = _encode(text)
    tree = Parser(CSHARP_LANGUAGE).parse(data)
    source = SourceTree(text, data, tree)
    if source.has_error:
        logger.debug("syntax errors in %d-byte source", len(data))
    return source
