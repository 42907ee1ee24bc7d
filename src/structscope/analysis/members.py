"""Member model for one struct declaration.

Every instance-member candidate of a struct becomes a :class:`Member` with a
dense integer id. Property and indexer accessors are separate members that
share an :class:`OwnerInfo`; expression-bodied properties and indexers are a
single member. The storage a declaration carries is recorded separately as
:class:`StorageSlot` entries so later stages can tell which names denote
instance state and whether any of it is ordinarily mutable.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
import logging

from tree_sitter import Node

from structscope.invariants import never, require
from structscope.syntax.declarations import (
    MEMBER_DECLARATIONS,
    TYPE_DECLARATIONS,
    Fragment,
    Parameter,
    RefKind,
    TypeDeclaration,
    TypeRef,
    body_of,
    child_of_type,
    explicit_interface,
    field_node,
    identifier_text,
    modifier_tokens,
    parameters,
    type_ref,
)
from structscope.syntax.source import SourceTree, Token

logger = logging.getLogger(__name__)


class MemberKind(StrEnum):
    FIELD = "field"
    METHOD = "method"
    PROPERTY = "property"
    PROPERTY_GETTER = "property-getter"
    PROPERTY_SETTER = "property-setter"
    INDEXER = "indexer"
    INDEXER_GETTER = "indexer-getter"
    INDEXER_SETTER = "indexer-setter"
    OPERATOR = "operator"

    @property
    def is_accessor(self) -> bool:
        return self in _ACCESSOR_KINDS

    @property
    def is_getter(self) -> bool:
        return self in (MemberKind.PROPERTY_GETTER, MemberKind.INDEXER_GETTER)

    @property
    def is_setter(self) -> bool:
        return self in (MemberKind.PROPERTY_SETTER, MemberKind.INDEXER_SETTER)


_ACCESSOR_KINDS = frozenset(
    {
        MemberKind.PROPERTY_GETTER,
        MemberKind.PROPERTY_SETTER,
        MemberKind.INDEXER_GETTER,
        MemberKind.INDEXER_SETTER,
    }
)
_ACCESSOR_KEYWORDS = frozenset({"get", "set", "init", "add", "remove"})
_SKIPPED = TYPE_DECLARATIONS | frozenset({"constructor_declaration", "destructor_declaration"})


@dataclass(frozen=True)
class StorageSlot:
    """One piece of storage a struct instance (or the type) carries."""

    name: str
    type: TypeRef | None
    is_static: bool = False
    is_readonly: bool = False
    is_const: bool = False
    is_fixed_buffer: bool = False
    is_event: bool = False
    # Hidden field behind an auto-property; never reachable by name.
    is_backing_field: bool = False
    is_primary_parameter: bool = False

    @property
    def is_instance(self) -> bool:
        return not (self.is_static or self.is_const)

    @property
    def ordinarily_mutable(self) -> bool:
        return self.is_instance and not self.is_readonly

    @property
    def addressable(self) -> bool:
        """Whether member bodies can name this slot directly."""
        return self.is_instance and not self.is_backing_field


@dataclass(frozen=True)
class OwnerInfo:
    """The property or indexer a group of accessors belongs to."""

    name: str
    kind: MemberKind
    accessor_ids: tuple[int, ...]
    report_token: Token
    fix_anchor: Token
    already_immutable: bool
    explicit_interface: str | None = None
    is_static: bool = False


@dataclass(frozen=True)
class Member:
    member_id: int
    name: str
    kind: MemberKind
    already_immutable: bool
    has_inspectable_body: bool
    # A block, or the expression of an expression body.
    body: Node | None = None
    parameters: tuple[Parameter, ...] = ()
    returns: RefKind = RefKind.VALUE
    owner: int | None = None
    explicit_interface: str | None = None
    is_static: bool = False
    is_init_accessor: bool = False
    is_malformed: bool = False
    # The backing storage an accessor body reaches through ``field``.
    backing_field: str | None = None
    report_token: Token | None = None
    fix_anchor: Token | None = None
    syntax: Node | Fragment | None = None

    @property
    def is_synthesized(self) -> bool:
        return self.kind.is_accessor and self.body is None and not self.is_malformed

    @property
    def arity(self) -> int:
        return len(self.parameters)

    def accepts_arity(self, count: int) -> bool:
        if any(parameter.is_params for parameter in self.parameters):
            return count >= self.required_arity
        return self.required_arity <= count <= len(self.parameters)

    @property
    def required_arity(self) -> int:
        return sum(
            1
            for parameter in self.parameters
            if not parameter.has_default and not parameter.is_params
        )


@dataclass(frozen=True)
class DeclarationModel:
    name: str
    name_token: Token
    syntax: TypeDeclaration
    is_immutable_declaration: bool
    fix_anchor: Token
    members: tuple[Member, ...] = ()
    owners: tuple[OwnerInfo, ...] = ()
    storage: tuple[StorageSlot, ...] = ()
    custom_events: tuple[str, ...] = field(default=())

    @property
    def source(self) -> SourceTree:
        return self.syntax.source

    def member(self, member_id: int) -> Member:
        require(
            0 <= member_id < len(self.members),
            "member id out of range",
            member_id=member_id,
            declaration=self.name,
        )
        return self.members[member_id]

    def owner_of(self, member: Member) -> OwnerInfo | None:
        if member.owner is None:
            return None
        return self.owners[member.owner]

    @property
    def mutable_storage(self) -> tuple[StorageSlot, ...]:
        return tuple(slot for slot in self.storage if slot.ordinarily_mutable)

    @property
    def malformed_ids(self) -> tuple[int, ...]:
        return tuple(member.member_id for member in self.members if member.is_malformed)

    @property
    def has_malformed_members(self) -> bool:
        return any(member.is_malformed for member in self.members)

    def iter_candidates(self) -> Iterator[Member]:
        """Members whose verdict decides whether the whole declaration can be readonly."""
        for member in self.members:
            if member.kind is MemberKind.FIELD or member.is_static or member.is_init_accessor:
                continue
            yield member


def _has(modifiers: tuple[Token, ...], text: str) -> bool:
    return any(token.text == text for token in modifiers)


def declaration_fix_anchor(declaration: TypeDeclaration) -> Token:
    """Token ``readonly`` goes in front of to make the whole declaration readonly."""
    for token in declaration.modifiers:
        if token.text in ("ref", "partial"):
            return token
    if declaration.record_token is not None:
        return declaration.record_token
    return declaration.keyword_token


def _fragment_parts(fragment: Fragment) -> list[Node]:
    parts: list[Node] = []
    for node in fragment.nodes:
        parts.extend(node.children if node.is_error else (node,))
    return parts


def _malformed_name(parts: list[Node]) -> Node | None:
    for previous, current in zip(parts, parts[1:]):
        if previous.type == "identifier" and current.type in (
            "parameter_list",
            "(",
            "{",
            "=>",
            "accessor_list",
        ):
            return previous
    for part in parts:
        if part.type in MEMBER_DECLARATIONS:
            name = part.child_by_field_name("name")
            if name is not None and not name.is_missing:
                return name
    return None


class _Builder:
    def __init__(self, declaration: TypeDeclaration) -> None:
        self.declaration = declaration
        self.source = declaration.source
        self.members: list[Member] = []
        self.owners: list[OwnerInfo] = []
        self.storage: list[StorageSlot] = []
        self.custom_events: list[str] = []
        self.immutable = declaration.has_modifier("readonly")

    def next_id(self) -> int:
        return len(self.members)

    def add(self, **values) -> Member:
        member = Member(member_id=self.next_id(), **values)
        self.members.append(member)
        return member

    def token(self, node: Node) -> Token:
        return self.source.token(node)

    def build(self) -> DeclarationModel:
        declaration = self.declaration
        if declaration.primary_parameters is not None:
            self._primary_parameters(declaration.primary_parameters)
        for syntax in declaration.members:
            if isinstance(syntax, Fragment):
                self._malformed(syntax, _fragment_parts(syntax))
                continue
            if syntax.type in _SKIPPED:
                continue
            if syntax.has_error:
                self._malformed(syntax, [syntax])
                continue
            match syntax.type:
                case "field_declaration" | "event_field_declaration":
                    self._field(syntax)
                case "method_declaration":
                    self._method(syntax)
                case "property_declaration":
                    self._property(syntax)
                case "indexer_declaration":
                    self._indexer(syntax)
                case "operator_declaration" | "conversion_operator_declaration":
                    self._operator(syntax)
                case "event_declaration":
                    self._event(syntax)
                case _:
                    never("unhandled member syntax", kind=syntax.type)
        return DeclarationModel(
            name=declaration.name,
            name_token=declaration.name_token,
            syntax=declaration,
            is_immutable_declaration=self.immutable,
            fix_anchor=declaration_fix_anchor(declaration),
            members=tuple(self.members),
            owners=tuple(self.owners),
            storage=tuple(self.storage),
            custom_events=tuple(self.custom_events),
        )

    def _primary_parameters(self, primary: tuple[Parameter, ...]) -> None:
        declaration = self.declaration
        if not declaration.is_record:
            # Captured primary-constructor parameters are plain mutable storage.
            for parameter in primary:
                self.storage.append(
                    StorageSlot(
                        name=parameter.name,
                        type=parameter.type,
                        is_primary_parameter=True,
                    )
                )
            return
        # Positional record parameters become auto-properties: get/set for a
        # plain record struct, get/init for a readonly one.
        for parameter in primary:
            token = parameter.name_token
            if token is None:
                never("positional parameter without name token", name=parameter.name)
            owner_index = len(self.owners)
            getter = self.add(
                name=parameter.name,
                kind=MemberKind.PROPERTY_GETTER,
                already_immutable=True,
                has_inspectable_body=False,
                owner=owner_index,
                report_token=token,
                syntax=parameter.syntax,
            )
            setter = self.add(
                name=parameter.name,
                kind=MemberKind.PROPERTY_SETTER,
                already_immutable=self.immutable,
                has_inspectable_body=False,
                owner=owner_index,
                is_init_accessor=self.immutable,
                report_token=token,
                syntax=parameter.syntax,
            )
            self.owners.append(
                OwnerInfo(
                    name=parameter.name,
                    kind=MemberKind.PROPERTY,
                    accessor_ids=(getter.member_id, setter.member_id),
                    report_token=token,
                    fix_anchor=token,
                    already_immutable=self.immutable,
                )
            )
            self.storage.append(
                StorageSlot(
                    name=parameter.name,
                    type=parameter.type,
                    is_readonly=self.immutable,
                    is_backing_field=True,
                )
            )

    def _field(self, syntax: Node) -> None:
        modifiers = modifier_tokens(self.source, syntax)
        is_const = _has(modifiers, "const")
        is_static = _has(modifiers, "static") or is_const
        is_readonly = _has(modifiers, "readonly")
        declaration = child_of_type(syntax, "variable_declaration")
        if declaration is None:
            never("field without variable declaration", text=self.source.text_of(syntax))
        type_node = declaration.child_by_field_name("type")
        slot_type = type_ref(self.source, type_node) if type_node is not None else None
        for declarator in declaration.named_children:
            if declarator.type != "variable_declarator":
                continue
            name_node = field_node(declarator, "name") or child_of_type(declarator, "identifier")
            if name_node is None:
                continue
            name = identifier_text(self.source, name_node)
            self.storage.append(
                StorageSlot(
                    name=name,
                    type=slot_type,
                    is_static=is_static,
                    is_readonly=is_readonly,
                    is_const=is_const,
                    is_fixed_buffer=_has(modifiers, "fixed"),
                    is_event=syntax.type == "event_field_declaration",
                )
            )
            self.add(
                name=name,
                kind=MemberKind.FIELD,
                already_immutable=is_readonly or is_const,
                has_inspectable_body=False,
                is_static=is_static,
                report_token=self.token(name_node),
                syntax=syntax,
            )

    def _method(self, syntax: Node) -> None:
        modifiers = modifier_tokens(self.source, syntax)
        name_node = syntax.child_by_field_name("name")
        returns_node = field_node(syntax, "returns", "type")
        if name_node is None or returns_node is None:
            never("method without name or return type", text=self.source.text_of(syntax))
        returns = type_ref(self.source, returns_node)
        body = body_of(syntax)
        self.add(
            name=identifier_text(self.source, name_node),
            kind=MemberKind.METHOD,
            already_immutable=self.immutable or _has(modifiers, "readonly"),
            has_inspectable_body=body is not None,
            body=body,
            parameters=parameters(self.source, syntax.child_by_field_name("parameters")),
            returns=returns.ref_kind,
            explicit_interface=explicit_interface(self.source, syntax),
            is_static=_has(modifiers, "static"),
            report_token=self.token(name_node),
            fix_anchor=returns.first_token,
            syntax=syntax,
        )

    def _operator(self, syntax: Node) -> None:
        operator = syntax.child_by_field_name("operator") or child_of_type(
            syntax, "implicit", "explicit", "operator"
        )
        if operator is None:
            never("operator without operator token", text=self.source.text_of(syntax))
        body = body_of(syntax)
        self.add(
            name=self.source.text_of(operator),
            kind=MemberKind.OPERATOR,
            already_immutable=self.immutable,
            has_inspectable_body=body is not None,
            body=body,
            parameters=parameters(self.source, syntax.child_by_field_name("parameters")),
            is_static=True,
            report_token=self.token(operator),
            syntax=syntax,
        )

    def _event(self, syntax: Node) -> None:
        # Events with explicit add/remove have no storage of their own.
        name_node = syntax.child_by_field_name("name")
        if name_node is None:
            return
        if not _has(modifier_tokens(self.source, syntax), "static"):
            self.custom_events.append(identifier_text(self.source, name_node))

    def _malformed(self, syntax: Node | Fragment, parts: list[Node]) -> None:
        name_node = _malformed_name(parts)
        name = identifier_text(self.source, name_node) if name_node is not None else None
        is_static = any(
            part.type == "modifier" and self.source.text_of(part) == "static" for part in parts
        ) or any(
            _has(modifier_tokens(self.source, part), "static")
            for part in parts
            if part.type in MEMBER_DECLARATIONS
        )
        logger.debug(
            "malformed member %s in %s at %d:%d",
            name or "<unnamed>",
            self.declaration.name,
            parts[0].start_point[0] + 1 if parts else 0,
            parts[0].start_point[1] + 1 if parts else 0,
        )
        self.add(
            name=name or "<malformed>",
            kind=MemberKind.METHOD,
            already_immutable=False,
            has_inspectable_body=False,
            is_static=is_static,
            is_malformed=True,
            report_token=self.token(name_node) if name_node is not None else None,
            syntax=syntax,
        )

    def _uses_field_keyword(self, node: Node | None) -> bool:
        if node is None:
            return False
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type == "identifier" and self.source.text_of(current) == "field":
                return True
            stack.extend(current.named_children)
        return False

    def _property(self, syntax: Node) -> None:
        source = self.source
        modifiers = modifier_tokens(source, syntax)
        is_static = _has(modifiers, "static")
        readonly = self.immutable or _has(modifiers, "readonly")
        name_node = syntax.child_by_field_name("name")
        type_node = syntax.child_by_field_name("type")
        if name_node is None or type_node is None:
            never("property without name or type", text=source.text_of(syntax))
        name = identifier_text(source, name_node)
        property_type = type_ref(source, type_node)
        interface = explicit_interface(source, syntax)
        arrow = child_of_type(syntax, "arrow_expression_clause")
        if arrow is not None:
            self.add(
                name=name,
                kind=MemberKind.PROPERTY,
                already_immutable=readonly,
                has_inspectable_body=True,
                body=body_of(syntax),
                returns=property_type.ref_kind,
                explicit_interface=interface,
                is_static=is_static,
                report_token=self.token(name_node),
                fix_anchor=property_type.first_token,
                syntax=syntax,
            )
            return
        accessors = _accessor_nodes(syntax)
        bodies = [body_of(accessor) for accessor in accessors]
        auto = bool(accessors) and all(body is None for body in bodies)
        uses_field = any(self._uses_field_keyword(body) for body in bodies)
        backing = name if (auto or uses_field) and not _has(modifiers, "abstract") else None
        if backing is not None:
            writable = any(_accessor_keyword(accessor) == "set" for accessor in accessors)
            self.storage.append(
                StorageSlot(
                    name=name,
                    type=property_type,
                    is_static=is_static,
                    is_readonly=readonly or not writable,
                    is_backing_field=True,
                )
            )
        self._accessors(
            name=name,
            kind=MemberKind.PROPERTY,
            accessors=accessors,
            parameters=(),
            is_static=is_static,
            readonly=readonly,
            returns=property_type.ref_kind,
            report_token=self.token(name_node),
            fix_anchor=property_type.first_token,
            explicit_interface=interface,
            backing=backing,
        )

    def _indexer(self, syntax: Node) -> None:
        source = self.source
        readonly = self.immutable or _has(modifier_tokens(source, syntax), "readonly")
        type_node = syntax.child_by_field_name("type")
        this_node = child_of_type(syntax, "this")
        if type_node is None or this_node is None:
            never("indexer without type or this", text=source.text_of(syntax))
        indexer_type = type_ref(source, type_node)
        indexer_parameters = parameters(
            source,
            field_node(syntax, "parameters") or child_of_type(syntax, "bracketed_parameter_list"),
        )
        interface = explicit_interface(source, syntax)
        if child_of_type(syntax, "arrow_expression_clause") is not None:
            self.add(
                name="this",
                kind=MemberKind.INDEXER,
                already_immutable=readonly,
                has_inspectable_body=True,
                body=body_of(syntax),
                parameters=indexer_parameters,
                returns=indexer_type.ref_kind,
                explicit_interface=interface,
                report_token=self.token(this_node),
                fix_anchor=indexer_type.first_token,
                syntax=syntax,
            )
            return
        self._accessors(
            name="this",
            kind=MemberKind.INDEXER,
            accessors=_accessor_nodes(syntax),
            parameters=indexer_parameters,
            is_static=False,
            readonly=readonly,
            returns=indexer_type.ref_kind,
            report_token=self.token(this_node),
            fix_anchor=indexer_type.first_token,
            explicit_interface=interface,
            backing=None,
        )

    def _accessors(
        self,
        *,
        name: str,
        kind: MemberKind,
        accessors: list[Node],
        parameters: tuple[Parameter, ...],
        is_static: bool,
        readonly: bool,
        returns: RefKind,
        report_token: Token,
        fix_anchor: Token,
        explicit_interface: str | None,
        backing: str | None,
    ) -> None:
        owner_index = len(self.owners)
        ids: list[int] = []
        for accessor in accessors:
            keyword = _accessor_keyword(accessor)
            match keyword:
                case "get":
                    accessor_kind = (
                        MemberKind.PROPERTY_GETTER
                        if kind is MemberKind.PROPERTY
                        else MemberKind.INDEXER_GETTER
                    )
                case "set" | "init":
                    accessor_kind = (
                        MemberKind.PROPERTY_SETTER
                        if kind is MemberKind.PROPERTY
                        else MemberKind.INDEXER_SETTER
                    )
                case _:
                    never("unexpected accessor", keyword=keyword, member=name)
            keyword_node = _accessor_keyword_node(accessor)
            body = body_of(accessor)
            synthesized = body is None
            # A synthesized getter only reads its backing field.
            immutable = (
                readonly
                or _has(modifier_tokens(self.source, accessor), "readonly")
                or (synthesized and keyword == "get" and backing is not None)
            )
            member = self.add(
                name=name,
                kind=accessor_kind,
                already_immutable=immutable,
                has_inspectable_body=not synthesized,
                body=body,
                parameters=parameters,
                returns=returns if keyword == "get" else RefKind.VALUE,
                owner=owner_index,
                explicit_interface=explicit_interface,
                is_static=is_static,
                is_init_accessor=keyword == "init",
                backing_field=backing,
                report_token=self.token(keyword_node),
                fix_anchor=self.token(keyword_node),
                syntax=accessor,
            )
            ids.append(member.member_id)
        self.owners.append(
            OwnerInfo(
                name=name,
                kind=kind,
                accessor_ids=tuple(ids),
                report_token=report_token,
                fix_anchor=fix_anchor,
                already_immutable=readonly,
                explicit_interface=explicit_interface,
                is_static=is_static,
            )
        )


def _accessor_nodes(syntax: Node) -> list[Node]:
    accessor_list = field_node(syntax, "accessors") or child_of_type(syntax, "accessor_list")
    if accessor_list is None:
        return []
    return [child for child in accessor_list.children if child.type == "accessor_declaration"]


def _accessor_keyword_node(accessor: Node) -> Node:
    keyword = accessor.child_by_field_name("name")
    if keyword is None or keyword.type not in _ACCESSOR_KEYWORDS:
        keyword = child_of_type(accessor, *_ACCESSOR_KEYWORDS)
    if keyword is None:
        never("accessor without keyword", start=accessor.start_byte)
    return keyword


def _accessor_keyword(accessor: Node) -> str:
    return _accessor_keyword_node(accessor).type


def build_declaration_model(declaration: TypeDeclaration) -> DeclarationModel:
    """Enumerate the members and storage of a struct declaration."""
    require(
        declaration.is_struct,
        "member models are built for struct declarations only",
        keyword=declaration.keyword,
        name=declaration.name,
    )
    return _Builder(declaration).build()
