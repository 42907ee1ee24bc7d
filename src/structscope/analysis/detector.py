"""Per-member mutation detection.

Each member body is walked once. The walk either finds a direct mutation of
the instance (and stops caring about anything else) or collects references
to sibling members whose verdicts the member depends on. Nothing here looks
at other members' bodies; cross-member propagation is the resolver's job.

Name resolution is purely syntactic: a simple name denotes a local when a
declaration in an enclosing scope introduces it, otherwise an instance field
or member of the analyzed struct when one is declared with that name.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
import logging

from tree_sitter import Node

from structscope.analysis.members import DeclarationModel, Member, MemberKind, StorageSlot
from structscope.analysis.type_categories import TypeCatalog, TypeCategory
from structscope.invariants import never
from structscope.syntax.declarations import (
    Fragment,
    Parameter,
    RefKind,
    body_of,
    child_of_type,
    field_node,
    first_named,
    identifier_text,
    last_named,
    named_children,
    parameters,
    simple_name,
    type_ref,
)
from structscope.syntax.source import SourceTree, Span

logger = logging.getLogger(__name__)

_THIS = frozenset({"this", "this_expression"})
# Constructs whose names are scoped to themselves.
_NESTED_SCOPES = frozenset(
    {
        "block",
        "lambda_expression",
        "anonymous_method_expression",
        "switch_expression",
        "local_function_statement",
    }
)
_OPAQUE = frozenset(
    {
        "this",
        "this_expression",
        "base",
        "base_expression",
        "discard",
        "predefined_type",
        "typeof_expression",
        "sizeof_expression",
        "default_expression",
        "qualified_name",
        "alias_qualified_name",
        "array_type",
        "nullable_type",
        "pointer_type",
        "function_pointer_type",
        "tuple_type",
        "implicit_type",
        "ref_type",
        "comment",
    }
)
_DESIGNATIONS = frozenset(
    {"identifier", "single_variable_designation", "parenthesized_variable_designation"}
)
_SWITCH_LABELS = frozenset(
    {"case_switch_label", "case_pattern_switch_label", "default_switch_label"}
)
_WITH_ASSIGNMENTS = frozenset(
    {"with_initializer", "simple_assignment_expression", "assignment_expression"}
)


class LocalStatus(StrEnum):
    DIRECTLY_MUTATING = "directly-mutating"
    NOT_MUTATING = "not-mutating"


class MutationRule(StrEnum):
    FIELD_WRITE = "field-write"
    INSTANCE_REASSIGNMENT = "instance-reassignment"
    REFERENCE_ESCAPE = "reference-escape"
    MUTABLE_REF_ALIAS = "mutable-ref-alias"
    POINTER_WRITE = "pointer-write"
    UNSUPPORTED = "unsupported"
    SYNTHESIZED_SETTER = "synthesized-setter"
    NO_BODY = "no-body"
    MALFORMED = "malformed"


class DependencyKind(StrEnum):
    METHOD = "method"
    GETTER = "getter"
    SETTER = "setter"
    INDEXER_GETTER = "indexer-getter"
    INDEXER_SETTER = "indexer-setter"


@dataclass(frozen=True)
class DependencyRef:
    kind: DependencyKind
    name: str
    span: Span
    # Argument count of a call; None for a method group.
    arity: int | None = None


@dataclass(frozen=True)
class MutationReason:
    rule: MutationRule
    span: Span | None
    detail: str = ""


@dataclass(frozen=True)
class LocalVerdict:
    status: LocalStatus
    reasons: tuple[MutationReason, ...] = ()
    dependencies: tuple[DependencyRef, ...] = ()

    @property
    def is_mutating(self) -> bool:
        return self.status is LocalStatus.DIRECTLY_MUTATING


NOT_MUTATING = LocalVerdict(status=LocalStatus.NOT_MUTATING)


@dataclass(frozen=True)
class InstanceScope:
    """What the names inside one struct's member bodies can refer to."""

    fields: dict[str, StorageSlot]
    backing_fields: dict[str, StorageSlot]
    methods: frozenset[str]
    properties: frozenset[str]
    custom_events: frozenset[str]
    catalog: TypeCatalog = field(default_factory=TypeCatalog)
    source: SourceTree | None = None

    @classmethod
    def from_model(
        cls, model: DeclarationModel, catalog: TypeCatalog | None = None
    ) -> "InstanceScope":
        methods: set[str] = set()
        properties: set[str] = set()
        for member in model.members:
            if member.is_static or member.explicit_interface is not None:
                continue
            if member.is_malformed:
                methods.add(member.name)
                properties.add(member.name)
            elif member.kind is MemberKind.METHOD:
                methods.add(member.name)
            elif member.kind is MemberKind.PROPERTY:
                properties.add(member.name)
        for owner in model.owners:
            if owner.kind is MemberKind.PROPERTY and not owner.is_static:
                if owner.explicit_interface is None:
                    properties.add(owner.name)
        return cls(
            fields={slot.name: slot for slot in model.storage if slot.addressable},
            backing_fields={
                slot.name: slot for slot in model.storage if slot.is_backing_field
            },
            methods=frozenset(methods),
            properties=frozenset(properties),
            custom_events=frozenset(model.custom_events),
            catalog=catalog if catalog is not None else TypeCatalog(),
            source=model.source,
        )


@dataclass(frozen=True)
class _Location:
    """Storage inside the current instance. ``slot`` is None for ``this`` itself."""

    slot: StorageSlot | None
    category: TypeCategory
    nested: bool = False

    @property
    def is_whole_instance(self) -> bool:
        return self.slot is None and not self.nested


@dataclass
class _Frame:
    names: set[str] = field(default_factory=set)
    pointers: set[str] = field(default_factory=set)
    # Pointer locals that point into instance storage.
    pinned: set[str] = field(default_factory=set)
    readonly_refs: set[str] = field(default_factory=set)


def _unwrap(node: Node) -> Node:
    while node.type == "parenthesized_expression":
        inner = first_named(node)
        if inner is None:
            break
        node = inner
    return node


def _is_this(node: Node | None) -> bool:
    return node is not None and _unwrap(node).type in _THIS


def _is_arrow(node: Node) -> bool:
    return any(child.type == "->" for child in node.children)


def _is_statement(node: Node) -> bool:
    return node.type == "block" or node.type.endswith("_statement")


def _after(node: Node, token: str) -> Node | None:
    """First named child following an anonymous ``token`` child."""
    seen = False
    for child in node.children:
        if child.type == token and not child.is_named:
            seen = True
        elif seen and child.is_named and child.type != "comment":
            return child
    return None


def _target(node: Node) -> Node | None:
    return field_node(node, "expression") or first_named(node)


def _statements(node: Node) -> list[Node]:
    """Statements of a block or section, with preprocessor branches flattened."""
    statements: list[Node] = []
    for child in node.named_children:
        if child.type == "comment":
            continue
        if child.type.startswith("preproc_"):
            statements.extend(
                inner
                for inner in _statements(child)
                if _is_statement(inner) or inner.type.startswith("preproc_")
            )
            continue
        if node.type.startswith("preproc_") and not _is_statement(child):
            continue
        statements.append(child)
    return statements


def _designated(source: SourceTree, node: Node | None) -> Iterator[str]:
    """Names a variable designation introduces."""
    if node is None:
        return
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "identifier":
            name = identifier_text(source, current)
            if name != "_":
                yield name
        elif current.type != "discard":
            stack.extend(reversed(current.named_children))


def _declaration_name(node: Node) -> Node | None:
    return field_node(node, "name") or last_named(node)


def _subpattern_member(source: SourceTree, node: Node) -> str | None:
    first = first_named(node)
    if first is None:
        return None
    if first.type in ("name_colon", "expression_colon"):
        first = first_named(first)
    elif not any(child.type == ":" for child in node.children):
        return None
    while first is not None and first.type == "member_access_expression":
        first = _target(first)
    if first is None or first.type != "identifier":
        return None
    return identifier_text(source, first)


def _pattern_names(source: SourceTree, pattern: Node) -> tuple[list[str], list[str]]:
    """Variables a pattern declares and member names its property subpatterns read."""
    designations: list[str] = []
    members: list[str] = []
    stack = [pattern]
    while stack:
        node = stack.pop()
        match node.type:
            case "declaration_pattern" | "var_pattern":
                designations.extend(_designated(source, _declaration_name(node)))
                continue
            case "single_variable_designation" | "parenthesized_variable_designation":
                designations.extend(_designated(source, node))
                continue
            case "recursive_pattern":
                parts = named_children(node)
                if len(parts) > 1 and parts[-1].type in _DESIGNATIONS:
                    designations.extend(_designated(source, parts[-1]))
                    parts = parts[:-1]
                stack.extend(reversed(parts))
                continue
            case "subpattern":
                name = _subpattern_member(source, node)
                if name is not None:
                    members.append(name)
                inner = last_named(node)
                if inner is not None and name is not None:
                    stack.append(inner)
                    continue
            case "when_clause" | "lambda_expression" | "anonymous_method_expression":
                continue
        stack.extend(reversed(named_children(node)))
    return designations, members


def _expression_variables(source: SourceTree, node: Node | None) -> Iterator[str]:
    """Variables an expression declares into its enclosing statement list."""
    if node is None:
        return
    stack = [node]
    while stack:
        current = stack.pop()
        match current.type:
            case kind if kind in _NESTED_SCOPES:
                continue
            case "declaration_expression":
                yield from _designated(source, _declaration_name(current))
                continue
            case "is_pattern_expression":
                pattern = field_node(current, "pattern") or last_named(current)
                if pattern is not None:
                    yield from _pattern_names(source, pattern)[0]
                operand = field_node(current, "expression") or first_named(current)
                if operand is not None:
                    stack.append(operand)
                continue
        stack.extend(named_children(current))


def _initializer(declarator: Node) -> Node | None:
    seen_equals = False
    for child in declarator.children:
        if child.type == "equals_value_clause":
            return first_named(child)
        if child.type == "=":
            seen_equals = True
        elif seen_equals and child.is_named and child.type != "comment":
            return child
    return None


def _declarator_names(source: SourceTree, declarator: Node) -> list[str]:
    name = field_node(declarator, "name")
    if name is not None:
        return list(_designated(source, name))
    pattern = child_of_type(declarator, "tuple_pattern", "identifier")
    return list(_designated(source, pattern))


def _declarators(declaration: Node) -> list[Node]:
    return [child for child in declaration.named_children if child.type == "variable_declarator"]


def _statement_names(source: SourceTree, statements: Iterable[Node]) -> set[str]:
    names: set[str] = set()
    for statement in statements:
        while statement.type == "labeled_statement":
            inner = last_named(statement)
            if inner is None or inner.type == "identifier":
                break
            statement = inner
        match statement.type:
            case "local_declaration_statement":
                declaration = child_of_type(statement, "variable_declaration")
                if declaration is None:
                    continue
                for declarator in _declarators(declaration):
                    names.update(_declarator_names(source, declarator))
                    names.update(_expression_variables(source, _initializer(declarator)))
            case "local_function_statement":
                name = statement.child_by_field_name("name")
                if name is not None:
                    names.add(identifier_text(source, name))
            case "expression_statement":
                names.update(_expression_variables(source, first_named(statement)))
            case "if_statement":
                names.update(
                    _expression_variables(source, statement.child_by_field_name("condition"))
                )
            case "return_statement" | "throw_statement" | "yield_statement":
                names.update(_expression_variables(source, first_named(statement)))
    return names


def _arguments(node: Node | None) -> list[Node]:
    if node is None:
        return []
    if node.type != "argument_list" and node.type != "bracketed_argument_list":
        node = child_of_type(node, "argument_list", "bracketed_argument_list")
        if node is None:
            return []
    return [child for child in node.named_children if child.type == "argument"]


def _argument_value(argument: Node) -> Node | None:
    value = last_named(argument)
    if value is None or value.type in ("name_colon", "expression_colon"):
        return None
    return value


def _argument_ref_kind(argument: Node) -> RefKind:
    for child in argument.children:
        if not child.is_named and child.type in ("ref", "out", "in"):
            return RefKind(child.type)
    return RefKind.VALUE


class _Walker:
    def __init__(self, member: Member, scope: InstanceScope) -> None:
        if scope.source is None:
            never("instance scope without source", member=member.name)
        self.member = member
        self.scope = scope
        self.source: SourceTree = scope.source
        self.reasons: list[MutationReason] = []
        self.dependencies: list[DependencyRef] = []
        self.frames: list[_Frame] = []
        self.returns: list[RefKind] = [member.returns]

    # -- bookkeeping ------------------------------------------------------

    def mutation(self, rule: MutationRule, node: Node | None, detail: str = "") -> None:
        span = self.source.span(node) if node is not None else None
        self.reasons.append(MutationReason(rule=rule, span=span, detail=detail))

    def depend(
        self, kind: DependencyKind, name: str, node: Node, arity: int | None = None
    ) -> None:
        self.dependencies.append(
            DependencyRef(kind=kind, name=name, span=self.source.span(node), arity=arity)
        )

    def push(self, names: Iterable[str] = (), parameters: Iterable[Parameter] = ()) -> _Frame:
        frame = _Frame(names=set(names))
        for parameter in parameters:
            frame.names.add(parameter.name)
            if parameter.type is not None and parameter.type.is_pointer:
                frame.pointers.add(parameter.name)
        self.frames.append(frame)
        return frame

    def pop(self) -> None:
        self.frames.pop()

    def declare(self, names: Iterable[str]) -> None:
        self.frames[-1].names.update(names)

    def is_local(self, name: str) -> bool:
        return any(name in frame.names for frame in self.frames)

    def _innermost(self, name: str) -> _Frame | None:
        for frame in reversed(self.frames):
            if name in frame.names:
                return frame
        return None

    def is_pointer_local(self, name: str) -> bool:
        frame = self._innermost(name)
        return frame is not None and name in frame.pointers

    def is_pinned_local(self, name: str) -> bool:
        frame = self._innermost(name)
        return frame is not None and name in frame.pinned

    def is_readonly_ref(self, name: str) -> bool:
        frame = self._innermost(name)
        return frame is not None and name in frame.readonly_refs

    # -- syntax -----------------------------------------------------------

    def name(self, node: Node) -> str:
        return simple_name(self.source, node)

    def operator(self, node: Node) -> str:
        operator = node.child_by_field_name("operator")
        if operator is not None:
            return self.source.text_of(operator).strip()
        for child in node.children:
            if child.type == "assignment_operator":
                return self.source.text_of(child).strip()
            if not child.is_named and child.type not in ("(", ")"):
                return child.type
        return ""

    def unary(self, node: Node) -> tuple[str, Node | None]:
        if node.type == "pointer_indirection_expression":
            return "*", first_named(node)
        return self.operator(node), first_named(node)

    def prefix(self, node: Node) -> str | None:
        if node.type in ("prefix_unary_expression", "pointer_indirection_expression"):
            return self.unary(node)[0]
        return None

    def access_parts(self, node: Node) -> tuple[Node | None, str]:
        """Receiver and member name of a member access."""
        name_node = field_node(node, "name") or last_named(node)
        return _target(node), self.name(name_node) if name_node is not None else ""

    # -- name resolution --------------------------------------------------

    def storage_for(self, name: str) -> StorageSlot | None:
        if self.is_local(name):
            return None
        if name == "field" and self.member.backing_field is not None:
            return self.scope.backing_fields.get(self.member.backing_field)
        return self.scope.fields.get(name)

    def location(self, node: Node | None) -> _Location | None:
        if node is None:
            return None
        catalog = self.scope.catalog
        match node.type:
            case "parenthesized_expression":
                return self.location(first_named(node))
            case "postfix_unary_expression" if self.operator(node) == "!":
                return self.location(first_named(node))
            case "this" | "this_expression":
                return _Location(slot=None, category=TypeCategory.VALUE)
            case "identifier":
                slot = self.storage_for(self.name(node))
                if slot is None:
                    return None
                return _Location(slot=slot, category=catalog.categorize(slot.type))
            case "member_access_expression" if not _is_arrow(node):
                target, name = self.access_parts(node)
                outer = self.location(target)
                if outer is None:
                    return None
                if outer.is_whole_instance:
                    slot = self.scope.fields.get(name)
                    if slot is None:
                        return None
                    return _Location(slot=slot, category=catalog.categorize(slot.type))
                if not outer.category.writes_stay_inside:
                    return None
                return _Location(slot=outer.slot, category=TypeCategory.UNKNOWN, nested=True)
            case "element_access_expression":
                outer = self.location(_target(node))
                if outer is None or outer.is_whole_instance:
                    return None
                if outer.slot is not None and outer.slot.is_fixed_buffer and not outer.nested:
                    return _Location(
                        slot=outer.slot, category=TypeCategory.READONLY_VALUE, nested=True
                    )
                if not outer.category.writes_stay_inside:
                    return None
                return _Location(slot=outer.slot, category=TypeCategory.UNKNOWN, nested=True)
        return None

    def is_pointer(self, node: Node | None) -> bool:
        if node is None:
            return False
        match node.type:
            case "parenthesized_expression":
                return self.is_pointer(first_named(node))
            case "identifier":
                name = self.name(node)
                if self.is_local(name):
                    return self.is_pointer_local(name)
                slot = self.scope.fields.get(name)
                return slot is not None and slot.type is not None and slot.type.is_pointer
            case "member_access_expression" if not _is_arrow(node) and _is_this(_target(node)):
                slot = self.scope.fields.get(self.access_parts(node)[1])
                return slot is not None and slot.type is not None and slot.type.is_pointer
            case "cast_expression":
                type_node = node.child_by_field_name("type")
                return type_node is not None and type_ref(self.source, type_node).is_pointer
            case "binary_expression" if self.operator(node) in ("+", "-"):
                return self.is_pointer(node.child_by_field_name("left")) or self.is_pointer(
                    node.child_by_field_name("right")
                )
        return False

    def pointer_into_instance(self, node: Node | None) -> bool:
        if node is None:
            return False
        match node.type:
            case "parenthesized_expression":
                return self.pointer_into_instance(first_named(node))
            case "cast_expression":
                return self.pointer_into_instance(field_node(node, "value") or last_named(node))
            case "prefix_unary_expression" if self.operator(node) == "&":
                return self.location(first_named(node)) is not None
            case "identifier" if self.is_local(self.name(node)):
                return self.is_pinned_local(self.name(node))
            case "binary_expression" if self.operator(node) in ("+", "-"):
                return self.pointer_into_instance(
                    node.child_by_field_name("left")
                ) or self.pointer_into_instance(node.child_by_field_name("right"))
        # A fixed-size buffer used as a value decays to a pointer to its first element.
        location = self.location(node)
        return (
            location is not None
            and location.slot is not None
            and location.slot.is_fixed_buffer
            and not location.nested
        )

    def pins_instance(self, node: Node) -> bool:
        if self.pointer_into_instance(node):
            return True
        location = self.location(node)
        return (
            location is not None
            and location.slot is not None
            and location.category.writes_stay_inside
        )

    # -- members of this --------------------------------------------------

    def member_read(self, name: str, node: Node) -> None:
        if name in self.scope.methods:
            self.depend(DependencyKind.METHOD, name, node)
        if name in self.scope.properties:
            self.depend(DependencyKind.GETTER, name, node)

    def member_write(self, name: str, node: Node, *, compound: bool) -> None:
        if name in self.scope.custom_events:
            self.mutation(MutationRule.UNSUPPORTED, node, f"custom event accessor '{name}'")
            return
        if name in self.scope.properties:
            if compound:
                self.depend(DependencyKind.GETTER, name, node)
            self.depend(DependencyKind.SETTER, name, node)

    def receiver_call(self, receiver: Node | None, node: Node) -> None:
        """A call on a mutable value-typed field passes that field by reference."""
        location = self.location(receiver)
        if location is None or location.slot is None or location.slot.is_readonly:
            return
        category = TypeCategory.UNKNOWN if location.nested else location.category
        if category.calls_may_mutate:
            self.mutation(
                MutationRule.REFERENCE_ESCAPE,
                node,
                f"call on value-typed field '{location.slot.name}'",
            )

    # -- statements -------------------------------------------------------

    def run(self) -> None:
        member = self.member
        names: set[str] = set()
        if member.kind.is_setter:
            names.add("value")
        self.push(names, member.parameters)
        body = member.body
        if body is None:
            never("walker started on a member without a body", member=member.name)
        if body.type == "block":
            self.visit_block(body)
        else:
            self.visit_returned(body)
        self.pop()

    def visit_block(self, block: Node) -> None:
        statements = _statements(block)
        self.push(_statement_names(self.source, statements))
        for statement in statements:
            self.visit_statement(statement)
        self.pop()

    def visit_embedded(self, statement: Node | None) -> None:
        if statement is None:
            return
        if statement.type == "block":
            self.visit_block(statement)
            return
        self.push(_statement_names(self.source, (statement,)))
        self.visit_statement(statement)
        self.pop()

    def visit_function(self, node: Node, returns: RefKind = RefKind.VALUE) -> None:
        """Local function, lambda or anonymous method: own parameters, own returns."""
        parameter_node = field_node(node, "parameters") or child_of_type(node, "parameter_list")
        self.push(parameters=parameters(self.source, parameter_node))
        self.returns.append(returns)
        body = body_of(node) if node.type == "local_function_statement" else (
            field_node(node, "body") or child_of_type(node, "block") or last_named(node)
        )
        if body is not None:
            if body.type == "block":
                self.visit_block(body)
            else:
                self.visit_returned(body)
        self.returns.pop()
        self.pop()

    def visit_statement(self, node: Node) -> None:
        match node.type:
            case "block":
                self.visit_block(node)
            case "local_declaration_statement":
                declaration = child_of_type(node, "variable_declaration")
                if declaration is not None:
                    self.local_declaration(declaration)
            case "local_function_statement":
                returns_node = field_node(node, "type", "returns")
                returns = (
                    type_ref(self.source, returns_node).ref_kind
                    if returns_node is not None
                    else RefKind.VALUE
                )
                self.visit_function(node, returns)
            case "expression_statement":
                expression = first_named(node)
                if expression is not None:
                    self.visit(expression)
            case "return_statement":
                value = first_named(node)
                if value is not None:
                    self.visit_returned(value)
            case "if_statement":
                self.visit(node.child_by_field_name("condition"))
                self.visit_embedded(node.child_by_field_name("consequence"))
                alternative = node.child_by_field_name("alternative")
                if alternative is not None and alternative.type == "else_clause":
                    alternative = last_named(alternative)
                self.visit_embedded(alternative)
            case "while_statement":
                self.visit(node.child_by_field_name("condition"))
                self.visit_embedded(node.child_by_field_name("body") or last_named(node))
            case "do_statement":
                self.visit_embedded(node.child_by_field_name("body") or first_named(node))
                self.visit(node.child_by_field_name("condition"))
            case "for_statement":
                self.for_statement(node)
            case "foreach_statement":
                self.foreach(node)
            case "fixed_statement":
                self.push()
                declaration = child_of_type(node, "variable_declaration")
                if declaration is not None:
                    self.local_declaration(declaration, pinning=True)
                body = last_named(node)
                if body is not None and body.type != "variable_declaration":
                    self.visit_embedded(body)
                self.pop()
            case "unsafe_statement" | "checked_statement":
                block = child_of_type(node, "block")
                if block is not None:
                    self.visit_block(block)
            case "lock_statement":
                self.visit(first_named(node))
                self.visit_embedded(node.child_by_field_name("body") or last_named(node))
            case "using_statement":
                self.using_statement(node)
            case "try_statement":
                self.try_statement(node)
            case "switch_statement":
                self.switch(node)
            case "throw_statement" | "yield_statement":
                value = first_named(node)
                if value is not None:
                    self.visit(value)
            case "goto_statement" | "break_statement" | "continue_statement" | "empty_statement":
                pass
            case "labeled_statement":
                inner = last_named(node)
                if inner is not None and inner.type != "identifier":
                    self.visit_statement(inner)
            case _:
                self.mutation(MutationRule.UNSUPPORTED, node, f"statement {node.type}")

    def for_statement(self, node: Node) -> None:
        sections: list[list[Node]] = [[], [], []]
        index = 0
        opened = False
        for child in node.children:
            if not opened:
                opened = child.type == "("
                continue
            if child.type == ";" and not child.is_named:
                index = min(index + 1, 2)
                continue
            if child.type == ")" and index == 2:
                break
            if child.is_named and child.type != "comment":
                sections[index].append(child)
        initializers, conditions, iterators = sections
        self.push()
        for initializer in initializers:
            if initializer.type == "variable_declaration":
                self.local_declaration(initializer)
            else:
                self.visit(initializer)
        for condition in conditions:
            self.visit(condition)
        for iterator in iterators:
            self.visit(iterator)
        self.visit_embedded(node.child_by_field_name("body") or last_named(node))
        self.pop()

    def using_statement(self, node: Node) -> None:
        body = node.child_by_field_name("body") or last_named(node)
        self.push()
        for child in named_children(node):
            if body is not None and child == body:
                continue
            if child.type == "variable_declaration":
                self.local_declaration(child)
            else:
                self.visit(child)
        self.visit_embedded(body)
        self.pop()

    def try_statement(self, node: Node) -> None:
        for child in named_children(node):
            match child.type:
                case "block":
                    self.visit_block(child)
                case "catch_clause":
                    declaration = child_of_type(child, "catch_declaration")
                    name = None
                    if declaration is not None:
                        name = declaration.child_by_field_name("name")
                        parts = named_children(declaration)
                        if name is None and len(parts) > 1 and parts[-1].type == "identifier":
                            name = parts[-1]
                    self.push([identifier_text(self.source, name)] if name is not None else [])
                    condition = child_of_type(child, "catch_filter_clause")
                    if condition is not None:
                        self.visit(first_named(condition))
                    block = child.child_by_field_name("body") or child_of_type(child, "block")
                    if block is not None:
                        self.visit_block(block)
                    self.pop()
                case "finally_clause":
                    block = child_of_type(child, "block")
                    if block is not None:
                        self.visit_block(block)

    def local_declaration(self, declaration: Node, *, pinning: bool = False) -> None:
        frame = self.frames[-1]
        type_node = declaration.child_by_field_name("type")
        declared = type_ref(self.source, type_node) if type_node is not None else None
        ref_kind = declared.ref_kind if declared is not None else RefKind.VALUE
        is_pointer = (declared is not None and declared.is_pointer) or pinning
        for declarator in _declarators(declaration):
            names = _declarator_names(self.source, declarator)
            frame.names.update(names)
            if is_pointer:
                frame.pointers.update(names)
            if ref_kind is RefKind.REF_READONLY:
                frame.readonly_refs.update(names)
            initializer = _initializer(declarator)
            if initializer is None:
                continue
            if ref_kind is not RefKind.VALUE or initializer.type == "ref_expression":
                self.ref_value(
                    initializer,
                    MutationRule.MUTABLE_REF_ALIAS,
                    writable=ref_kind is not RefKind.REF_READONLY,
                )
            elif is_pointer and self.pins_instance(initializer):
                frame.pinned.update(names)
                if self.prefix(initializer) == "&" and not pinning:
                    self.mutation(
                        MutationRule.REFERENCE_ESCAPE,
                        initializer,
                        "address of instance storage taken outside a fixed statement",
                    )
                self.visit_operands(initializer)
            else:
                self.visit(initializer)

    def foreach(self, node: Node) -> None:
        collection = node.child_by_field_name("right") or _after(node, "in")
        left = node.child_by_field_name("left")
        type_node = node.child_by_field_name("type")
        declared = type_ref(self.source, type_node) if type_node is not None else None
        if collection is not None:
            self.visit(collection)
            if _is_this(collection):
                self.depend(DependencyKind.METHOD, "GetEnumerator", collection, arity=0)
            else:
                self.receiver_call(collection, collection)
                if (
                    declared is not None
                    and declared.ref_kind is RefKind.REF
                    and self.location(collection) is not None
                ):
                    self.mutation(
                        MutationRule.MUTABLE_REF_ALIAS, collection, "ref iteration variable"
                    )
        names = list(_designated(self.source, left))
        frame = self.push(names)
        if declared is not None and declared.is_pointer:
            frame.pointers.update(names)
        self.visit_embedded(node.child_by_field_name("body") or last_named(node))
        self.pop()

    def switch_labels(self, section: Node) -> Iterator[tuple[Node | None, Node | None]]:
        """(pattern or constant, guard) pairs of one switch section."""
        pending: list[Node] = [
            child for child in named_children(section) if not _is_statement(child)
        ]
        while pending:
            label = pending.pop(0)
            if label.type in _SWITCH_LABELS:
                pending[0:0] = named_children(label)
                continue
            if label.type == "when_clause":
                yield None, first_named(label)
                continue
            yield label, None

    def switch(self, node: Node) -> None:
        governing = node.child_by_field_name("value") or first_named(node)
        body = node.child_by_field_name("body") or child_of_type(node, "switch_body")
        self.visit(governing)
        sections = (
            [child for child in body.named_children if child.type == "switch_section"]
            if body is not None
            else []
        )
        names: set[str] = set()
        for section in sections:
            names.update(
                _statement_names(
                    self.source, [child for child in _statements(section) if _is_statement(child)]
                )
            )
            for pattern, _ in self.switch_labels(section):
                if pattern is not None:
                    names.update(_pattern_names(self.source, pattern)[0])
        on_this = _is_this(governing)
        self.push(names)
        for section in sections:
            for pattern, guard in self.switch_labels(section):
                if pattern is not None and on_this:
                    for name in _pattern_names(self.source, pattern)[1]:
                        self.member_read(name, pattern)
                if guard is not None:
                    self.visit(guard)
            for inner in _statements(section):
                if _is_statement(inner):
                    self.visit_statement(inner)
        self.pop()

    # -- expressions ------------------------------------------------------

    def visit_returned(self, node: Node) -> None:
        self.ref_value(
            node,
            MutationRule.REFERENCE_ESCAPE,
            writable=self.returns[-1] is RefKind.REF,
        )

    def ref_value(self, node: Node, rule: MutationRule, *, writable: bool) -> None:
        match node.type:
            case "ref_expression":
                operand = first_named(node)
                if operand is not None:
                    self.ref_taken(operand, rule, writable=writable)
            case "conditional_expression":
                self.visit(node.child_by_field_name("condition"))
                for branch in ("consequence", "alternative"):
                    value = node.child_by_field_name(branch)
                    if value is not None:
                        self.ref_value(value, rule, writable=writable)
            case "parenthesized_expression":
                inner = first_named(node)
                if inner is not None:
                    self.ref_value(inner, rule, writable=writable)
            case _:
                self.visit(node)

    def ref_taken(self, operand: Node, rule: MutationRule, *, writable: bool) -> None:
        if operand.type == "conditional_expression":
            self.ref_value(operand, rule, writable=writable)
            return
        if writable and self.location(operand) is not None:
            self.mutation(rule, operand, "writable reference to instance storage")
            self.visit_operands(operand)
            return
        self.visit(operand)

    def visit_operands(self, node: Node | None) -> None:
        """Visit what a storage path reads without treating the path itself as a read."""
        while node is not None:
            match node.type:
                case "parenthesized_expression" | "postfix_unary_expression":
                    node = first_named(node)
                case "cast_expression":
                    node = field_node(node, "value") or last_named(node)
                case "prefix_unary_expression" if self.operator(node) == "&":
                    node = first_named(node)
                case "member_access_expression":
                    node = _target(node)
                case "element_access_expression":
                    self.visit_arguments(_arguments(node.child_by_field_name("subscript") or node))
                    node = _target(node)
                case "binary_expression":
                    self.visit(node.child_by_field_name("left"))
                    self.visit(node.child_by_field_name("right"))
                    return
                case _:
                    return

    def write(self, target: Node | None, node: Node, *, compound: bool) -> None:
        if target is None:
            return
        match target.type:
            case "parenthesized_expression":
                self.write(first_named(target), node, compound=compound)
                return
            case "tuple_expression":
                for element in _arguments_of_tuple(target):
                    self.write(_argument_value(element), element, compound=False)
                return
            case "declaration_expression":
                self.declare(_designated(self.source, _declaration_name(target)))
                return
            case "ref_expression":
                self.write(first_named(target), node, compound=compound)
                return
            case "conditional_expression":
                self.visit(target.child_by_field_name("condition"))
                self.write(target.child_by_field_name("consequence"), node, compound=compound)
                self.write(target.child_by_field_name("alternative"), node, compound=compound)
                return
            case "this" | "this_expression":
                self.mutation(MutationRule.INSTANCE_REASSIGNMENT, node)
                return
            case "discard":
                return
            case "member_access_expression" if _is_arrow(target):
                self.mutation(MutationRule.POINTER_WRITE, node)
                self.visit(_target(target))
                return
            case "element_access_expression" if self.is_pointer(_target(target)):
                self.mutation(MutationRule.POINTER_WRITE, node)
                self.visit(_target(target))
                self.visit_arguments(_arguments(target.child_by_field_name("subscript") or target))
                return
            case "invocation_expression":
                self.mutation(MutationRule.UNSUPPORTED, node, "assignment through a call result")
                self.visit(target)
                return
            case "identifier" if (
                self.name(target) == "_"
                and not self.is_local("_")
                and self.storage_for("_") is None
            ):
                return
        if self.prefix(target) == "*":
            self.mutation(MutationRule.POINTER_WRITE, node)
            self.visit(self.unary(target)[1])
            return
        location = self.location(target)
        if location is not None:
            if location.is_whole_instance:
                self.mutation(MutationRule.INSTANCE_REASSIGNMENT, node)
            else:
                detail = location.slot.name if location.slot is not None else ""
                self.mutation(MutationRule.FIELD_WRITE, node, detail)
            self.visit_operands(target)
            return
        match target.type:
            case "identifier" if not self.is_local(self.name(target)):
                self.member_write(self.name(target), target, compound=compound)
            case "member_access_expression" if _is_this(_target(target)):
                self.member_write(self.access_parts(target)[1], target, compound=compound)
            case "element_access_expression" if _is_this(_target(target)):
                if compound:
                    self.depend(DependencyKind.INDEXER_GETTER, "this", target)
                self.depend(DependencyKind.INDEXER_SETTER, "this", target)
                self.visit_arguments(_arguments(target.child_by_field_name("subscript") or target))
            case "member_access_expression":
                self.visit(_target(target))
            case "element_access_expression":
                self.visit(_target(target))
                self.visit_arguments(_arguments(target.child_by_field_name("subscript") or target))
            case _:
                self.visit(target)

    def visit_arguments(self, arguments: Iterable[Node]) -> None:
        for argument in arguments:
            value = _argument_value(argument)
            if value is None:
                continue
            ref_kind = _argument_ref_kind(argument)
            if ref_kind is RefKind.VALUE and value.type == "ref_expression":
                inner = first_named(value)
                if inner is not None:
                    ref_kind, value = RefKind.REF, inner
            if value.type == "declaration_expression":
                self.declare(_designated(self.source, _declaration_name(value)))
                continue
            if ref_kind.is_writable:
                if self.location(value) is not None:
                    self.mutation(
                        MutationRule.REFERENCE_ESCAPE,
                        argument,
                        f"instance storage passed by {ref_kind}",
                    )
                    self.visit_operands(value)
                    continue
                if self.prefix(value) == "*":
                    self.mutation(MutationRule.POINTER_WRITE, argument)
            elif self.pointer_into_instance(value):
                self.mutation(
                    MutationRule.REFERENCE_ESCAPE,
                    argument,
                    "pointer into instance storage passed to a call",
                )
                self.visit_operands(value)
                continue
            self.visit(value)

    def initializer(self, node: Node | None) -> None:
        if node is None:
            return
        for element in named_children(node):
            value: Node | None = element
            if element.type == "assignment_expression":
                # Targets name members of the object being created.
                self.visit_arguments(_arguments(element.child_by_field_name("left")))
                value = element.child_by_field_name("right") or last_named(element)
            if value is None:
                continue
            if value.type == "initializer_expression":
                self.initializer(value)
            else:
                self.visit(value)

    def with_initializers(self, parts: list[Node]) -> None:
        pending = list(parts)
        while pending:
            part = pending.pop(0)
            if part.type in _WITH_ASSIGNMENTS:
                self.visit(part.child_by_field_name("right") or last_named(part))
            elif part.type == "initializer_expression":
                self.initializer(part)
            else:
                pending[0:0] = named_children(part)

    def array_sizes(self, node: Node) -> None:
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type == "array_rank_specifier":
                for size in named_children(current):
                    self.visit(size)
                continue
            stack.extend(current.named_children)

    def invocation(self, node: Node) -> None:
        function = node.child_by_field_name("function") or first_named(node)
        arguments = _arguments(node.child_by_field_name("arguments") or node)
        arity = len(arguments)
        if function is None:
            never("invocation without a target", start=node.start_byte)
        match function.type:
            case "identifier" | "generic_name":
                name = self.name(function)
                if name == "nameof" and not self.is_local(name) and name not in self.scope.methods:
                    return
                if not self.is_local(name):
                    if name in self.scope.methods:
                        self.depend(DependencyKind.METHOD, name, function, arity=arity)
                    elif name in self.scope.properties:
                        self.depend(DependencyKind.GETTER, name, function)
            case "member_access_expression" if not _is_arrow(function):
                receiver, name = self.access_parts(function)
                if _is_this(receiver):
                    if name in self.scope.methods:
                        self.depend(DependencyKind.METHOD, name, function, arity=arity)
                    elif name in self.scope.properties:
                        self.depend(DependencyKind.GETTER, name, function)
                else:
                    self.receiver_call(receiver, function)
                    self.visit(receiver)
            case "conditional_access_expression":
                condition = function.child_by_field_name("condition") or first_named(function)
                self.receiver_call(condition, function)
                self.visit(function)
            case _:
                self.visit(function)
        self.visit_arguments(arguments)

    def assignment(self, node: Node) -> None:
        left = node.child_by_field_name("left") or first_named(node)
        right = node.child_by_field_name("right") or last_named(node)
        operator = self.operator(node)
        if operator == "=" and right is not None and right.type == "ref_expression":
            # Ref reassignment rebinds a ref local; a ref field is storage.
            if self.location(left) is not None:
                self.write(left, node, compound=False)
            writable = not (
                left is not None
                and left.type == "identifier"
                and self.is_readonly_ref(self.name(left))
            )
            self.ref_value(right, MutationRule.MUTABLE_REF_ALIAS, writable=writable)
            return
        self.write(left, node, compound=operator != "=")
        self.visit(right)

    def visit_children(self, node: Node) -> None:
        for index, child in enumerate(node.children):
            if not child.is_named or child.type == "comment":
                continue
            if node.field_name_for_child(index) == "type":
                continue
            self.visit(child)

    def visit(self, node: Node | None) -> None:
        if node is None:
            return
        match node.type:
            case "identifier":
                name = self.name(node)
                if not self.is_local(name) and self.storage_for(name) is None:
                    self.member_read(name, node)
            case "generic_name":
                name = self.name(node)
                if not self.is_local(name):
                    self.member_read(name, node)
            case "member_access_expression":
                target, name = self.access_parts(node)
                if _is_this(target) and not _is_arrow(node):
                    if name not in self.scope.fields:
                        self.member_read(name, node)
                else:
                    self.visit(target)
            case "conditional_access_expression":
                condition = node.child_by_field_name("condition") or first_named(node)
                if any(child.type == "invocation_expression" for child in node.named_children):
                    self.receiver_call(condition, node)
                self.visit(condition)
                for child in named_children(node)[1:]:
                    self.visit(child)
            case "member_binding_expression":
                pass
            case "element_binding_expression":
                self.visit_arguments(_arguments(node))
            case "element_access_expression":
                target = _target(node)
                if _is_this(target):
                    self.depend(DependencyKind.INDEXER_GETTER, "this", node)
                else:
                    self.visit(target)
                self.visit_arguments(_arguments(node.child_by_field_name("subscript") or node))
            case "invocation_expression":
                self.invocation(node)
            case "assignment_expression":
                self.assignment(node)
            case "prefix_unary_expression" | "postfix_unary_expression" | (
                "pointer_indirection_expression"
            ):
                operator, operand = self.unary(node)
                if operator in ("++", "--"):
                    self.write(operand, node, compound=True)
                elif operator == "&" and node.type == "prefix_unary_expression":
                    if self.location(operand) is not None:
                        self.mutation(
                            MutationRule.REFERENCE_ESCAPE,
                            node,
                            "address of instance storage taken outside a fixed statement",
                        )
                        self.visit_operands(operand)
                    else:
                        self.visit(operand)
                else:
                    self.visit(operand)
            case "binary_expression":
                self.visit(node.child_by_field_name("left"))
                self.visit(node.child_by_field_name("right"))
            case "as_expression" | "is_expression":
                self.visit(node.child_by_field_name("left") or first_named(node))
            case "conditional_expression":
                self.visit(node.child_by_field_name("condition"))
                self.visit(node.child_by_field_name("consequence"))
                self.visit(node.child_by_field_name("alternative"))
            case "tuple_expression":
                self.visit_arguments(_arguments_of_tuple(node))
            case "parenthesized_expression":
                self.visit(first_named(node))
            case "declaration_expression":
                self.declare(_designated(self.source, _declaration_name(node)))
            case "cast_expression":
                self.visit(field_node(node, "value") or last_named(node))
            case "is_pattern_expression":
                operand = node.child_by_field_name("expression") or first_named(node)
                pattern = node.child_by_field_name("pattern") or last_named(node)
                self.visit(operand)
                if pattern is not None:
                    designations, members = _pattern_names(self.source, pattern)
                    self.declare(designations)
                    if _is_this(operand):
                        for name in members:
                            self.member_read(name, pattern)
            case "switch_expression":
                self.switch_expression(node)
            case "object_creation_expression" | "implicit_object_creation_expression":
                self.visit_arguments(_arguments(node))
                self.initializer(child_of_type(node, "initializer_expression"))
            case "with_expression":
                parts = named_children(node)
                if parts:
                    self.visit(parts[0])
                    self.with_initializers(parts[1:])
            case "array_creation_expression" | "stackalloc_expression":
                for child in named_children(node):
                    if child.type == "initializer_expression":
                        self.initializer(child)
                    else:
                        self.array_sizes(child)
            case "implicit_array_creation_expression" | "implicit_stackalloc_expression":
                self.initializer(child_of_type(node, "initializer_expression"))
            case "initializer_expression":
                self.initializer(node)
            case "lambda_expression" | "anonymous_method_expression":
                self.visit_function(node)
            case "ref_expression":
                operand = first_named(node)
                if operand is not None:
                    self.ref_taken(operand, MutationRule.MUTABLE_REF_ALIAS, writable=True)
            case "makeref_expression":
                self.mutation(MutationRule.UNSUPPORTED, node, "__makeref")
                self.visit_children(node)
            case kind if kind in _OPAQUE or kind.endswith("_literal"):
                pass
            case _:
                self.visit_children(node)

    def switch_expression(self, node: Node) -> None:
        parts = named_children(node)
        if not parts:
            return
        governing = node.child_by_field_name("value") or parts[0]
        self.visit(governing)
        on_this = _is_this(governing)
        for arm in parts:
            if arm.type != "switch_expression_arm":
                continue
            arm_parts = named_children(arm)
            if not arm_parts:
                continue
            pattern = arm.child_by_field_name("pattern") or arm_parts[0]
            value = arm.child_by_field_name("value") or arm_parts[-1]
            guard = child_of_type(arm, "when_clause")
            designations, members = _pattern_names(self.source, pattern)
            self.push(designations)
            if on_this:
                for name in members:
                    self.member_read(name, pattern)
            if guard is not None:
                self.visit(first_named(guard))
            self.visit(value)
            self.pop()


def _arguments_of_tuple(node: Node) -> list[Node]:
    return [child for child in node.named_children if child.type == "argument"]


def _member_span(source: SourceTree, member: Member) -> Span | None:
    syntax = member.syntax
    if syntax is None:
        return None
    if isinstance(syntax, Fragment):
        first, last = syntax.nodes[0], syntax.nodes[-1]
        return Span(source.offset(first.start_byte), source.offset(last.end_byte))
    return source.span(syntax)


def _mutating(
    rule: MutationRule, member: Member, scope: InstanceScope, detail: str = ""
) -> LocalVerdict:
    span = _member_span(scope.source, member) if scope.source is not None else None
    return LocalVerdict(
        status=LocalStatus.DIRECTLY_MUTATING,
        reasons=(MutationReason(rule=rule, span=span, detail=detail),),
    )


def detect(member: Member, scope: InstanceScope) -> LocalVerdict:
    """Classify one member from its own body alone."""
    if member.is_malformed:
        return _mutating(MutationRule.MALFORMED, member, scope)
    if member.is_static:
        return NOT_MUTATING
    match member.kind:
        case MemberKind.FIELD | MemberKind.OPERATOR:
            return NOT_MUTATING
        case MemberKind.PROPERTY_SETTER | MemberKind.INDEXER_SETTER if member.body is None:
            return _mutating(
                MutationRule.SYNTHESIZED_SETTER, member, scope, "writes the backing field"
            )
        case MemberKind.PROPERTY_GETTER | MemberKind.INDEXER_GETTER if member.body is None:
            if member.already_immutable:
                return NOT_MUTATING
            return _mutating(MutationRule.NO_BODY, member, scope)
        case (
            MemberKind.METHOD
            | MemberKind.PROPERTY
            | MemberKind.INDEXER
            | MemberKind.PROPERTY_GETTER
            | MemberKind.PROPERTY_SETTER
            | MemberKind.INDEXER_GETTER
            | MemberKind.INDEXER_SETTER
        ):
            if member.body is None:
                return _mutating(MutationRule.NO_BODY, member, scope)
        case _:
            never("unhandled member kind", kind=member.kind)
    walker = _Walker(member, scope)
    try:
        walker.run()
    except RecursionError:
        logger.debug("member %s nests too deeply to classify", member.name)
        return _mutating(MutationRule.UNSUPPORTED, member, scope, "nesting too deep")
    if walker.reasons:
        return LocalVerdict(status=LocalStatus.DIRECTLY_MUTATING, reasons=tuple(walker.reasons))
    return LocalVerdict(
        status=LocalStatus.NOT_MUTATING, dependencies=tuple(walker.dependencies)
    )
