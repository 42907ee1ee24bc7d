"""Declarations read off a tree-sitter C# syntax tree.

Type declarations are found wherever tree-sitter put them. When a file is
incomplete the parser may give up on the enclosing declaration and leave its
pieces in an ERROR node; a ``struct`` (or ``class``, ``record``,
``interface``) keyword followed by a name and ``{`` inside such a node still
opens a declaration, which runs to the matching ``}`` or, when there is none,
to the end of the error region. Completed members inside it keep their
syntax; leftover text between them becomes a :class:`Fragment`.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import StrEnum

from tree_sitter import Node

from structscope.exceptions import SourceSyntaxError
from structscope.syntax.source import SourceTree, Token

TYPE_DECLARATIONS = frozenset(
    {
        "class_declaration",
        "struct_declaration",
        "interface_declaration",
        "enum_declaration",
        "record_declaration",
        "record_struct_declaration",
        "delegate_declaration",
    }
)
MEMBER_DECLARATIONS = TYPE_DECLARATIONS | frozenset(
    {
        "field_declaration",
        "event_field_declaration",
        "method_declaration",
        "property_declaration",
        "indexer_declaration",
        "operator_declaration",
        "conversion_operator_declaration",
        "event_declaration",
        "constructor_declaration",
        "destructor_declaration",
    }
)
# Nodes that can hold type declarations.
_CONTAINERS = TYPE_DECLARATIONS | frozenset(
    {
        "compilation_unit",
        "namespace_declaration",
        "file_scoped_namespace_declaration",
        "declaration_list",
        "ERROR",
    }
)
_TYPE_KEYWORDS = frozenset({"class", "struct", "interface", "enum", "record", "delegate"})
_OPENERS = frozenset({"class", "struct", "interface", "record"})
_HEADER_PARTS = frozenset(
    {
        "type_parameter_list",
        "parameter_list",
        "base_list",
        "record_base",
        "type_parameter_constraints_clause",
        "comment",
    }
)
_DECLARATION_PREFIX = frozenset({"modifier", "ref", "partial", "attribute_list", "comment"})
_DEFAULT_MARKERS = frozenset({"=", "equals_value_clause"})
_COMPOSITE_TYPES = frozenset(
    {"pointer_type", "function_pointer_type", "array_type", "tuple_type"}
)


class RefKind(StrEnum):
    VALUE = "value"
    REF = "ref"
    OUT = "out"
    IN = "in"
    REF_READONLY = "ref readonly"

    @property
    def is_writable(self) -> bool:
        return self in (RefKind.REF, RefKind.OUT)


@dataclass(frozen=True)
class TypeRef:
    text: str
    # Rightmost simple name with generic arguments stripped ("List" for
    # System.Collections.Generic.List<int>).
    name: str
    first_token: Token
    is_pointer: bool = False
    is_array: bool = False
    is_tuple: bool = False
    is_nullable: bool = False
    ref_kind: RefKind = RefKind.VALUE


@dataclass(frozen=True)
class Parameter:
    name: str
    name_token: Token | None = None
    type: TypeRef | None = None
    ref_kind: RefKind = RefKind.VALUE
    is_params: bool = False
    has_default: bool = False
    syntax: Node | None = None


@dataclass(frozen=True)
class Fragment:
    """Member text that did not parse as any declaration."""

    nodes: tuple[Node, ...]


@dataclass(frozen=True)
class TypeDeclaration:
    source: SourceTree
    # The declaration node, or the ERROR node a recovered declaration sits in.
    node: Node
    keyword: str
    name: str
    name_token: Token
    keyword_token: Token
    modifiers: tuple[Token, ...]
    members: tuple[Node | Fragment, ...]
    start_byte: int
    end_byte: int
    primary_parameters: tuple[Parameter, ...] | None = None
    record_token: Token | None = None
    recovered: bool = False

    @property
    def is_struct(self) -> bool:
        return self.keyword == "struct"

    @property
    def is_record(self) -> bool:
        return self.record_token is not None

    def has_modifier(self, text: str) -> bool:
        return any(token.text == text for token in self.modifiers)

    def covers(self, node: Node) -> bool:
        if self.recovered and (node.start_byte, node.end_byte) == (
            self.node.start_byte,
            self.node.end_byte,
        ):
            return True
        return self.start_byte <= node.start_byte and node.end_byte <= self.end_byte


# -- node helpers ---------------------------------------------------------


def named_children(node: Node) -> list[Node]:
    return [child for child in node.named_children if child.type != "comment"]


def first_named(node: Node) -> Node | None:
    for child in node.named_children:
        if child.type != "comment":
            return child
    return None


def last_named(node: Node) -> Node | None:
    for child in reversed(node.named_children):
        if child.type != "comment":
            return child
    return None


def field_node(node: Node, *names: str) -> Node | None:
    for name in names:
        child = node.child_by_field_name(name)
        if child is not None:
            return child
    return None


def child_of_type(node: Node, *types: str) -> Node | None:
    for child in node.children:
        if child.type in types:
            return child
    return None


def identifier_text(source: SourceTree, node: Node) -> str:
    return source.text_of(node).removeprefix("@")


def modifier_tokens(source: SourceTree, node: Node) -> tuple[Token, ...]:
    tokens = [
        source.token(child)
        for child in node.children
        if child.type == "modifier" or (not child.is_named and child.type in ("ref", "partial"))
    ]
    return tuple(tokens)


def has_modifier(source: SourceTree, node: Node, text: str) -> bool:
    return any(token.text == text for token in modifier_tokens(source, node))


def explicit_interface(source: SourceTree, node: Node) -> str | None:
    specifier = child_of_type(node, "explicit_interface_specifier")
    if specifier is None:
        return None
    return "".join(source.text_of(specifier).split()).rstrip(".")


def body_of(node: Node) -> Node | None:
    """Block or expression a function-like node runs; None when it has neither."""
    body = node.child_by_field_name("body")
    if body is None:
        body = child_of_type(node, "block", "arrow_expression_clause")
    if body is None:
        return None
    if body.type == "arrow_expression_clause":
        return first_named(body)
    return body


def simple_name(source: SourceTree, node: Node) -> str:
    match node.type:
        case "generic_name":
            inner = child_of_type(node, "identifier")
            return identifier_text(source, inner) if inner is not None else source.text_of(node)
        case "qualified_name" | "alias_qualified_name":
            inner = field_node(node, "name") or last_named(node)
            return simple_name(source, inner) if inner is not None else source.text_of(node)
    return identifier_text(source, node)


def type_ref(source: SourceTree, node: Node) -> TypeRef:
    text = source.text_of(node)
    first = source.token(node)
    ref_kind = RefKind.VALUE
    current = node
    while current.type in ("ref_type", "scoped_type"):
        if current.type == "ref_type":
            readonly = any(child.type == "readonly" for child in current.children)
            ref_kind = RefKind.REF_READONLY if readonly else RefKind.REF
        inner = field_node(current, "type") or last_named(current)
        if inner is None:
            break
        current = inner
    nullable = current.type == "nullable_type"
    if nullable:
        current = field_node(current, "type") or first_named(current) or current
    composite = current.type in _COMPOSITE_TYPES
    return TypeRef(
        text=text,
        name=source.text_of(current) if composite else simple_name(source, current),
        first_token=first,
        is_pointer=current.type in ("pointer_type", "function_pointer_type"),
        is_array=current.type == "array_type",
        is_tuple=current.type == "tuple_type",
        is_nullable=nullable,
        ref_kind=ref_kind,
    )


def _parameter(source: SourceTree, parts: Sequence[Node], holder: Node | None) -> Parameter | None:
    name_node = holder.child_by_field_name("name") if holder is not None else None
    if name_node is None:
        for part in parts:
            if part.type in _DEFAULT_MARKERS:
                break
            if part.type == "identifier":
                name_node = part
    if name_node is None:
        return None
    type_node = holder.child_by_field_name("type") if holder is not None else None
    if type_node is None:
        before = [
            part
            for part in parts
            if part.is_named
            and part.end_byte <= name_node.start_byte
            and part.type not in ("modifier", "attribute_list", "comment")
        ]
        type_node = before[-1] if before else None
    boundary = (type_node or name_node).start_byte
    words: set[str] = set()
    for part in parts:
        if part.end_byte <= boundary and part.type != "attribute_list":
            words.update(source.text_of(part).split())
    parameter_type = type_ref(source, type_node) if type_node is not None else None
    if parameter_type is not None and parameter_type.ref_kind is not RefKind.VALUE:
        ref_kind = parameter_type.ref_kind
    elif "out" in words:
        ref_kind = RefKind.OUT
    elif "ref" in words:
        ref_kind = RefKind.REF_READONLY if "readonly" in words else RefKind.REF
    elif "in" in words:
        ref_kind = RefKind.IN
    else:
        ref_kind = RefKind.VALUE
    return Parameter(
        name=identifier_text(source, name_node),
        name_token=source.token(name_node),
        type=parameter_type,
        ref_kind=ref_kind,
        is_params="params" in words or (holder is not None and holder.type == "parameter_array"),
        has_default=any(part.type in _DEFAULT_MARKERS for part in parts),
        syntax=holder if holder is not None else name_node,
    )


def parameters(source: SourceTree, node: Node | None) -> tuple[Parameter, ...]:
    """Parameters of a (bracketed) parameter list or a lone lambda parameter."""
    if node is None:
        return ()
    if node.type == "identifier":
        return (
            Parameter(
                name=identifier_text(source, node), name_token=source.token(node), syntax=node
            ),
        )
    groups: list[list[Node]] = [[]]
    for child in node.children:
        if child.type in ("(", ")", "[", "]", "comment"):
            continue
        if child.type == ",":
            groups.append([])
            continue
        groups[-1].append(child)
    found: list[Parameter] = []
    for group in groups:
        if len(group) == 1 and group[0].type in ("parameter", "parameter_array"):
            parameter = _parameter(source, group[0].children, group[0])
        elif group:
            parameter = _parameter(source, group, None)
        else:
            continue
        if parameter is not None:
            found.append(parameter)
    return tuple(found)


# -- type declarations ----------------------------------------------------


def _members(node: Node, *, strays: bool = True) -> list[Node | Fragment]:
    members: list[Node | Fragment] = []
    for child in node.children:
        if not child.is_named or child.type == "comment":
            continue
        if child.type in MEMBER_DECLARATIONS:
            members.append(child)
        elif child.type.startswith("preproc_"):
            members.extend(_members(child, strays=False))
        elif child.type == "ERROR" or strays:
            members.append(Fragment((child,)))
    return members


def _loose_members(children: Sequence[Node]) -> list[Node | Fragment]:
    members: list[Node | Fragment] = []
    stray: list[Node] = []
    for child in children:
        if child.type == "comment":
            continue
        if child.is_named and child.type in MEMBER_DECLARATIONS:
            if stray:
                members.append(Fragment(tuple(stray)))
                stray = []
            members.append(child)
        elif stray or child.type != ";":
            stray.append(child)
    if stray:
        members.append(Fragment(tuple(stray)))
    return members


def _keyword(node: Node) -> tuple[Node | None, Node | None]:
    """The ``struct``/``class``/... keyword and the ``record`` keyword of a declaration."""
    keyword: Node | None = None
    record: Node | None = None
    for child in node.children:
        if child.is_named:
            continue
        if child.type == "record":
            record = child
        elif child.type in _TYPE_KEYWORDS and keyword is None:
            keyword = child
    return keyword, record


def _declaration(source: SourceTree, node: Node) -> TypeDeclaration | None:
    name_node = node.child_by_field_name("name")
    keyword, record = _keyword(node)
    if name_node is None or (keyword is None and record is None):
        return None
    if keyword is not None:
        keyword_text = keyword.type
    elif node.type == "record_struct_declaration":
        keyword_text = "struct"
    else:
        keyword_text = "class"
    body = field_node(node, "body") or child_of_type(node, "declaration_list")
    members = _members(body) if body is not None and body.type == "declaration_list" else []
    primary = None
    if keyword_text in ("class", "struct"):
        parameter_list = child_of_type(node, "parameter_list")
        if parameter_list is not None:
            primary = parameters(source, parameter_list)
    return TypeDeclaration(
        source=source,
        node=node,
        keyword=keyword_text,
        name=identifier_text(source, name_node),
        name_token=source.token(name_node),
        keyword_token=source.token(keyword if keyword is not None else record),
        modifiers=modifier_tokens(source, node),
        members=tuple(members),
        start_byte=node.start_byte,
        end_byte=node.end_byte,
        primary_parameters=primary,
        record_token=source.token(record) if record is not None else None,
    )


def _recover_one(
    source: SourceTree, host: Node, children: Sequence[Node], index: int
) -> tuple[TypeDeclaration | None, int]:
    keyword = children[index]
    record: Node | None = None
    cursor = index + 1
    if keyword.type == "record":
        record = keyword
        if cursor < len(children) and children[cursor].type in ("struct", "class"):
            keyword = children[cursor]
            cursor += 1
    if cursor >= len(children) or children[cursor].type != "identifier":
        return None, index + 1
    name_node = children[cursor]
    cursor += 1
    primary = None
    while cursor < len(children) and children[cursor].type != "{":
        part = children[cursor]
        if part.type not in _HEADER_PARTS:
            return None, index + 1
        if part.type == "parameter_list":
            primary = parameters(source, part)
        cursor += 1
    if cursor >= len(children):
        return None, index + 1
    depth = 1
    close = len(children)
    for position in range(cursor + 1, len(children)):
        match children[position].type:
            case "{":
                depth += 1
            case "}":
                depth -= 1
                if depth == 0:
                    close = position
                    break
    start = index
    while start > 0 and children[start - 1].type in _DECLARATION_PREFIX:
        start -= 1
    prefix = children[start:index]
    modifiers = tuple(
        source.token(child)
        for child in prefix
        if child.type == "modifier" or child.type in ("ref", "partial")
    )
    keyword_text = keyword.type if keyword.type != "record" else "class"
    end_byte = children[close].end_byte if close < len(children) else host.end_byte
    declaration = TypeDeclaration(
        source=source,
        node=host,
        keyword=keyword_text,
        name=identifier_text(source, name_node),
        name_token=source.token(name_node),
        keyword_token=source.token(keyword),
        modifiers=modifiers,
        members=tuple(_loose_members(children[cursor + 1:close])),
        start_byte=children[start].start_byte,
        end_byte=end_byte,
        primary_parameters=primary if keyword_text in ("class", "struct") else None,
        record_token=source.token(record) if record is not None else None,
        recovered=True,
    )
    return declaration, close + 1


def _recover(source: SourceTree, host: Node) -> Iterator[TypeDeclaration]:
    children = host.children
    index = 0
    while index < len(children):
        child = children[index]
        if child.is_named or child.type not in _OPENERS:
            index += 1
            continue
        declaration, index = _recover_one(source, host, children, index)
        if declaration is not None:
            yield declaration


def iter_type_declarations(source: SourceTree) -> Iterator[TypeDeclaration]:
    """Yield every type declaration, nested and recovered ones included."""
    stack: list[Node] = [source.root]
    while stack:
        node = stack.pop()
        if node.type in TYPE_DECLARATIONS:
            declaration = _declaration(source, node)
            if declaration is not None:
                yield declaration
        elif node.is_error:
            yield from _recover(source, node)
        stack.extend(
            reversed(
                [
                    child
                    for child in node.named_children
                    if child.type in _CONTAINERS or child.type.startswith("preproc_")
                ]
            )
        )


def stray_syntax_error(
    source: SourceTree, declarations: Iterable[TypeDeclaration]
) -> SourceSyntaxError | None:
    """First syntax error outside every type declaration, if any."""
    covering = list(declarations)
    for error in source.iter_errors():
        if any(declaration.covers(error) for declaration in covering):
            continue
        token = source.token(error)
        if error.is_missing:
            message = f"missing {error.type!r}"
        else:
            snippet = token.text.strip().splitlines()[0][:40] if token.text.strip() else ""
            message = f"unexpected {snippet!r}" if snippet else "unexpected input"
        return SourceSyntaxError(
            message, offset=token.start, line=token.line, column=token.column
        )
    return None
