from __future__ import annotations

import pytest

from structscope.analysis.engine import analyze_source
from structscope.refactor import ReadonlyFixer, TextEdit, apply_edits


def _fixed(source: str) -> str:
    analysis = analyze_source(source)
    updated, plan = ReadonlyFixer().fix(source, analysis.suggestions, path="S.cs")
    assert plan.warnings == []
    return updated


@pytest.mark.parametrize(
    ("source", "expected"),
    [
        (
            "struct S { int _f; public int Get() => _f; }",
            "struct S { int _f; public readonly int Get() => _f; }",
        ),
        (
            "struct S { int _f; public ref readonly int Find() => ref _f; }",
            "struct S { int _f; public readonly ref readonly int Find() => ref _f; }",
        ),
        (
            "struct S { int _f; int P { get => _f; set => _f = value; } }",
            "struct S { int _f; int P { readonly get => _f; set => _f = value; } }",
        ),
        (
            "struct S { int _f; public int P { get => _f; set { } } }",
            "struct S { int _f; public readonly int P { get => _f; set { } } }",
        ),
        (
            "struct S { int[] _a; public int this[int i] => _a[i]; }",
            "struct S { int[] _a; public readonly int this[int i] => _a[i]; }",
        ),
        (
            "struct S : I { int _f; int I.Value => _f; }",
            "struct S : I { int _f; readonly int I.Value => _f; }",
        ),
        (
            "public struct S { readonly int _f; int Get() => _f; }",
            "public readonly struct S { readonly int _f; int Get() => _f; }",
        ),
        (
            "public partial struct S { readonly int _f; }",
            "public readonly partial struct S { readonly int _f; }",
        ),
        (
            "ref struct S { readonly int _f; }",
            "readonly ref struct S { readonly int _f; }",
        ),
        (
            "record struct S { readonly int _f; }",
            "readonly record struct S { readonly int _f; }",
        ),
    ],
)
def test_readonly_is_inserted_before_the_type(source: str, expected: str) -> None:
    assert _fixed(source) == expected


def test_documentation_and_formatting_are_preserved() -> None:
    source = (
        "struct S\r\n"
        "{\r\n"
        "    int _f;\r\n"
        "\r\n"
        "    /// <summary>Current value.</summary>\r\n"
        "    [Pure]\r\n"
        "    public   int   Get() => _f;\r\n"
        "}\r\n"
    )
    assert _fixed(source) == source.replace(
        "public   int   Get()", "public   readonly int   Get()"
    )


def test_plan_records_entries_and_edits() -> None:
    source = "struct S { int _f; int A() => _f; int B { get => _f; set => _f = 1; } }"
    analysis = analyze_source(source)
    plan = ReadonlyFixer().plan(source, analysis.suggestions, path="S.cs")
    assert [entry.target for entry in plan.entries] == ["A", "B.get"]
    assert [entry.kind for entry in plan.entries] == ["member", "member"]
    assert plan.entries[0].summary == (
        "Member 'A' does not modify the state of 'S' and can be made readonly"
    )
    assert [edit.start for edit in plan.edits] == [(0, 19), (0, 42)]
    assert [entry.anchor for entry in plan.entries] == [(0, 19), (0, 42)]
    assert all(edit.start == edit.end for edit in plan.edits)
    assert {edit.path for edit in plan.edits} == {"S.cs"}


def test_duplicate_suggestions_produce_one_edit() -> None:
    source = "struct S { int _f; int A() => _f; }"
    suggestions = analyze_source(source).suggestions
    plan = ReadonlyFixer().plan(source, suggestions + suggestions)
    assert len(plan.edits) == 1


def test_anchor_already_preceded_by_readonly_is_skipped() -> None:
    padding = " " * len("readonly ")
    source = "struct S { int _f; " + padding + "int Get() => _f; }"
    suggestions = analyze_source(source).suggestions
    edited = source.replace(padding + "int Get", "readonly int Get")
    updated, plan = ReadonlyFixer().fix(edited, suggestions)
    assert updated == edited
    assert plan.edits == []
    assert len(plan.warnings) == 1


def test_apply_edits_from_back_to_front() -> None:
    edits = [
        TextEdit(path="", start=(0, 0), end=(0, 0), replacement="Y"),
        TextEdit(path="", start=(1, 1), end=(1, 1), replacement="X"),
    ]
    assert apply_edits("ab\ncd", edits) == "Yab\ncXd"
    assert apply_edits("ab\ncd", []) == "ab\ncd"


def test_apply_edits_rejects_overlaps_and_bad_positions() -> None:
    with pytest.raises(ValueError):
        apply_edits(
            "abcdef",
            [
                TextEdit(path="", start=(0, 0), end=(0, 3), replacement="x"),
                TextEdit(path="", start=(0, 1), end=(0, 2), replacement="y"),
            ],
        )
    with pytest.raises(ValueError):
        apply_edits("abc", [TextEdit(path="", start=(5, 0), end=(5, 0), replacement="x")])
    with pytest.raises(ValueError):
        apply_edits("abc", [TextEdit(path="", start=(0, 9), end=(0, 9), replacement="x")])
    with pytest.raises(ValueError):
        apply_edits("abc", [TextEdit(path="", start=(0, 2), end=(0, 1), replacement="x")])
