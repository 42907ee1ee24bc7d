from __future__ import annotations

import textwrap

import pytest

from structscope.analysis.members import MemberKind, build_declaration_model, declaration_fix_anchor
from structscope.exceptions import NeverThrown
from structscope.syntax.declarations import iter_type_declarations
from structscope.syntax.source import parse_source


def _model(source: str, name: str | None = None):
    source_tree = parse_source(textwrap.dedent(source).lstrip())
    for declaration in iter_type_declarations(source_tree):
        if name is None or declaration.name == name:
            return build_declaration_model(declaration)
    raise AssertionError(f"no declaration {name}")


def _summary(model) -> list[tuple[str, MemberKind, bool, bool]]:
    return [
        (member.name, member.kind, member.already_immutable, member.has_inspectable_body)
        for member in model.members
    ]


def test_accessors_with_bodies_become_separate_members() -> None:
    model = _model(
        """
        struct S
        {
            int _x;
            public int X { get { return _x; } set { _x = value; } }
            public int Twice => _x * 2;
        }
        """
    )
    assert _summary(model) == [
        ("_x", MemberKind.FIELD, False, False),
        ("X", MemberKind.PROPERTY_GETTER, False, True),
        ("X", MemberKind.PROPERTY_SETTER, False, True),
        ("Twice", MemberKind.PROPERTY, False, True),
    ]
    (owner,) = model.owners
    assert owner.name == "X"
    assert owner.accessor_ids == (1, 2)
    assert model.owner_of(model.member(2)) is owner
    assert model.owner_of(model.member(3)) is None


def test_auto_property_synthesizes_accessors_and_backing_storage() -> None:
    model = _model(
        """
        struct S
        {
            public int Value { get; set; }
            public int Fixed { get; }
            public int Once { get; init; }
        }
        """
    )
    getter, setter = model.members[0], model.members[1]
    assert getter.is_synthesized and setter.is_synthesized
    assert getter.already_immutable
    assert not setter.already_immutable
    assert not setter.has_inspectable_body
    assert model.members[4].is_init_accessor
    storage = {slot.name: slot for slot in model.storage}
    assert storage["Value"].is_backing_field
    assert storage["Value"].ordinarily_mutable
    assert not storage["Fixed"].ordinarily_mutable
    assert [slot.name for slot in model.mutable_storage] == ["Value"]


def test_indexers_operators_and_statics() -> None:
    model = _model(
        """
        struct S
        {
            static int s_count;
            int[] _items;
            public int this[int i] { get => _items[i]; set => _items[i] = value; }
            public static S operator -(S value) => value;
            public static void Reset() { s_count = 0; }
        }
        """
    )
    by_kind = {member.kind: member for member in model.members}
    assert by_kind[MemberKind.INDEXER_GETTER].name == "this"
    assert by_kind[MemberKind.INDEXER_GETTER].arity == 1
    assert by_kind[MemberKind.OPERATOR].is_static
    reset = next(member for member in model.members if member.name == "Reset")
    assert reset.is_static
    candidates = [member.name for member in model.iter_candidates()]
    assert candidates == ["this", "this"]
    assert [slot.name for slot in model.mutable_storage] == ["_items"]


def test_readonly_modifiers_mark_members_already_immutable() -> None:
    model = _model(
        """
        struct S
        {
            int _x;
            public readonly int Get() => _x;
            public int Other() => _x;
            public int P { readonly get => _x; set => _x = value; }
        }
        """
    )
    flags = {(member.name, member.kind): member.already_immutable for member in model.members}
    assert flags[("Get", MemberKind.METHOD)]
    assert not flags[("Other", MemberKind.METHOD)]
    assert flags[("P", MemberKind.PROPERTY_GETTER)]
    assert not flags[("P", MemberKind.PROPERTY_SETTER)]


def test_readonly_declaration_marks_everything_immutable() -> None:
    model = _model(
        """
        readonly struct S
        {
            readonly int _x;
            public int Get() => _x;
        }
        """
    )
    assert model.is_immutable_declaration
    assert all(member.already_immutable for member in model.members)


def test_record_struct_positional_parameters() -> None:
    mutable = _model("record struct P(int X, int Y);")
    assert [(m.name, m.kind) for m in mutable.members] == [
        ("X", MemberKind.PROPERTY_GETTER),
        ("X", MemberKind.PROPERTY_SETTER),
        ("Y", MemberKind.PROPERTY_GETTER),
        ("Y", MemberKind.PROPERTY_SETTER),
    ]
    assert [slot.name for slot in mutable.mutable_storage] == ["X", "Y"]

    frozen = _model("readonly record struct P(int X);")
    assert frozen.members[1].is_init_accessor
    assert frozen.mutable_storage == ()


def test_primary_constructor_parameters_are_mutable_storage() -> None:
    model = _model(
        """
        struct Counter(int start)
        {
            public int Next() => start++;
        }
        """
    )
    (slot,) = model.storage
    assert slot.is_primary_parameter
    assert slot.ordinarily_mutable


def test_malformed_member_is_modeled_conservatively() -> None:
    model = _model(
        """
        struct S
        {
            int _x;
            public int Broken() { return _x +; }
        }
        """
    )
    broken = model.members[1]
    assert broken.is_malformed
    assert broken.name == "Broken"
    assert broken.kind is MemberKind.METHOD
    assert not broken.has_inspectable_body
    assert model.has_malformed_members
    assert model.malformed_ids == (1,)


def test_declaration_fix_anchor_prefers_ref_partial_then_record() -> None:
    source_tree = parse_source(
        "public ref struct A { } partial struct B { } record struct C(int X); struct D { }"
    )
    anchors = {
        declaration.name: declaration_fix_anchor(declaration).text
        for declaration in iter_type_declarations(source_tree)
    }
    assert anchors == {"A": "ref", "B": "partial", "C": "record", "D": "struct"}


def test_builder_rejects_classes() -> None:
    source_tree = parse_source("class C { }")
    (declaration,) = iter_type_declarations(source_tree)
    with pytest.raises(NeverThrown):
        build_declaration_model(declaration)


def test_member_lookup_out_of_range_is_an_invariant_break() -> None:
    model = _model("struct S { int _x; }")
    with pytest.raises(NeverThrown):
        model.member(5)
