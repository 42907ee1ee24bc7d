from __future__ import annotations

from structscope.analysis.eligibility import SuggestionKind, is_eligible
from structscope.analysis.members import MemberKind
from structscope.analysis.resolver import Verdict


def _names(analysis) -> list[str]:
    return [suggestion.display_name for suggestion in analysis.suggestions]


def test_accessors_are_reported_one_by_one_unless_all_qualify(analyze) -> None:
    analysis = analyze(
        """
        struct S
        {
            int _f;
            int P { get => _f; set => _f = value; }
            int Q { get => _f; set { } }
        }
        """
    )
    getter, whole = analysis.suggestions
    assert getter.display_name == "P.get"
    assert getter.member_kind is MemberKind.PROPERTY_GETTER
    assert getter.report_token.text == "get"
    assert getter.fix_anchor.text == "get"
    assert whole.display_name == "Q"
    assert whole.member_kind is MemberKind.PROPERTY
    assert len(whole.member_ids) == 2
    assert whole.report_token.text == "Q"
    assert whole.fix_anchor.text == "int"


def test_indexers_report_on_this(analyze) -> None:
    analysis = analyze(
        """
        struct S
        {
            int[] _items;
            int this[int i] => _items[i];
        }
        """
    )
    (suggestion,) = analysis.suggestions
    assert suggestion.target == "this"
    assert suggestion.report_token.text == "this"
    assert suggestion.fix_anchor.text == "int"
    assert suggestion.message == (
        "Member 'this' does not modify the state of 'S' and can be made readonly"
    )


def test_explicit_interface_members_keep_their_qualification(analyze) -> None:
    analysis = analyze(
        """
        interface IFoo { int Value { get; } }

        struct S : IFoo
        {
            int _f;
            int IFoo.Value => _f;
        }
        """
    )
    (suggestion,) = analysis.suggestions
    assert suggestion.display_name == "IFoo.Value"
    assert suggestion.message == (
        "Member 'IFoo.Value' does not modify the state of 'S' and can be made readonly"
    )


def test_already_readonly_and_static_members_are_not_suggested(analyze) -> None:
    analysis = analyze(
        """
        struct S
        {
            int _f;
            readonly int Get() => _f;
            static int Count() => 0;
            int Other() => _f;
            int R { get => _f; init => _f = value; }
            public static S operator +(S a, S b) => a;
        }
        """
    )
    assert _names(analysis) == ["Other", "R.get"]


def test_declaration_suggestion_replaces_member_suggestions(analyze) -> None:
    analysis = analyze(
        """
        struct Pair
        {
            readonly int _left;
            readonly int _right;
            int Sum() => _left + _right;
            int Left => _left;
        }
        """
    )
    (suggestion,) = analysis.suggestions
    assert suggestion.kind is SuggestionKind.DECLARATION
    assert suggestion.message == "Struct 'Pair' can be made readonly"
    assert suggestion.report_token.text == "Pair"
    assert suggestion.fix_anchor.text == "struct"
    assert suggestion.member_ids == ()


def test_no_declaration_suggestion_while_a_member_mutates(analyze) -> None:
    analysis = analyze(
        """
        struct S
        {
            readonly int _f;
            void M(S other) { this = other; }
            int Get() => _f;
        }
        """
    )
    assert _names(analysis) == ["Get"]
    assert all(suggestion.kind is SuggestionKind.MEMBER for suggestion in analysis.suggestions)


def test_instance_reassignment_leaves_other_members_suggestible(analyze) -> None:
    analysis = analyze(
        """
        struct T
        {
            public readonly int F;
            public void Reset(T o) { this = o; }
            public int X => 42;
        }
        """
    )
    assert _names(analysis) == ["X"]
    assert analysis.declaration("T").verdict_of("Reset") is Verdict.MUTATING


def test_mutable_field_keeps_member_granularity(analyze) -> None:
    analysis = analyze(
        """
        struct S
        {
            readonly int _f;
            int _g;
            int Get() => _f;
        }
        """
    )
    assert [s.kind for s in analysis.suggestions] == [SuggestionKind.MEMBER]
    assert _names(analysis) == ["Get"]


def test_malformed_members_disable_the_declaration_suggestion(analyze) -> None:
    analysis = analyze(
        """
        struct S
        {
            readonly int _f;
            int Get() => _f;
            int Broken() { return _f +; }
        }
        """
    )
    assert _names(analysis) == ["Get"]


def test_member_cut_off_at_end_of_file_keeps_siblings(analyze) -> None:
    analysis = analyze("struct S { int _f; int Ok() => 1; int M() { return _f;")
    assert _names(analysis) == ["Ok"]
    (declaration,) = analysis.declarations
    assert declaration.model.has_malformed_members


def test_member_missing_its_closing_brace_keeps_siblings(analyze) -> None:
    analysis = analyze("struct S { int _f; int Ok() => 1; int M() { return _f }")
    assert _names(analysis) == ["Ok"]
    (declaration,) = analysis.declarations
    assert declaration.model.has_malformed_members


def test_readonly_declarations_get_nothing(analyze) -> None:
    analysis = analyze(
        """
        readonly struct S
        {
            readonly int _f;
            int Get() => _f;
        }
        """
    )
    assert analysis.suggestions == ()


def test_suggestions_come_in_source_order(analyze) -> None:
    analysis = analyze(
        """
        struct S
        {
            int _f;
            int C() => _f;
            int A() => _f;
            int B { get => _f; set { } }
        }
        """
    )
    assert _names(analysis) == ["C", "A", "B"]
    starts = [s.report_token.start for s in analysis.suggestions]
    assert starts == sorted(starts)


def test_is_eligible_requires_not_mutating(analyze) -> None:
    analysis = analyze("struct S { int _f; int Get() => _f; }")
    model = analysis.declaration("S").model
    member = model.member(1)
    assert is_eligible(member, Verdict.NOT_MUTATING)
    assert not is_eligible(member, Verdict.MUTATING)
    assert not is_eligible(member, Verdict.UNKNOWN)
    assert not is_eligible(model.member(0), Verdict.NOT_MUTATING)
