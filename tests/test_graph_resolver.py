from __future__ import annotations

import textwrap

import pytest

from structscope.analysis.detector import (
    DependencyKind,
    DependencyRef,
    LocalStatus,
    LocalVerdict,
    MutationReason,
    MutationRule,
    NOT_MUTATING,
)
from structscope.analysis.graph import DependencyGraph, build_dependency_graph, resolve_reference
from structscope.analysis.members import build_declaration_model
from structscope.analysis.resolver import Verdict, resolve, trivially_not_mutating
from structscope.analysis.timeout_context import GasMeter, TimeoutExceeded, deadline_clock_scope
from structscope.exceptions import NeverThrown
from structscope.syntax.declarations import iter_type_declarations
from structscope.syntax.source import Span, parse_source

MUTATING = LocalVerdict(
    status=LocalStatus.DIRECTLY_MUTATING,
    reasons=(MutationReason(rule=MutationRule.FIELD_WRITE, span=None),),
)


def _graph(size: int, edges: list[tuple[int, int]]) -> DependencyGraph:
    successors: list[set[int]] = [set() for _ in range(size)]
    predecessors: list[set[int]] = [set() for _ in range(size)]
    for caller, callee in edges:
        successors[caller].add(callee)
        predecessors[callee].add(caller)
    return DependencyGraph(
        successors=tuple(tuple(sorted(items)) for items in successors),
        predecessors=tuple(tuple(sorted(items)) for items in predecessors),
    )


def _model(source: str):
    source_tree = parse_source(textwrap.dedent(source).lstrip())
    (declaration,) = [decl for decl in iter_type_declarations(source_tree) if decl.is_struct]
    return build_declaration_model(declaration)


def _ref(kind: DependencyKind, name: str, arity: int | None = None) -> DependencyRef:
    return DependencyRef(kind=kind, name=name, span=Span(0, 0), arity=arity)


def test_mutation_propagates_to_transitive_callers() -> None:
    # 0 -> 1 -> 2 (mutating); 3 is unrelated.
    graph = _graph(4, [(0, 1), (1, 2)])
    local = [NOT_MUTATING, NOT_MUTATING, MUTATING, NOT_MUTATING]
    resolution = resolve(graph, local)
    assert resolution.verdicts == (
        Verdict.MUTATING,
        Verdict.MUTATING,
        Verdict.MUTATING,
        Verdict.NOT_MUTATING,
    )
    assert resolution.cause_chain(0) == [0, 1, 2]
    assert resolution.cause_chain(2) == [2]


def test_cycle_without_mutating_entry_stays_not_mutating() -> None:
    graph = _graph(3, [(0, 1), (1, 0), (2, 2)])
    resolution = resolve(graph, [NOT_MUTATING] * 3)
    assert set(resolution.verdicts) == {Verdict.NOT_MUTATING}
    assert resolution.causes == {}


def test_cycle_with_mutating_member_turns_entirely_mutating() -> None:
    graph = _graph(4, [(0, 1), (1, 2), (2, 0), (3, 0)])
    local = [NOT_MUTATING, NOT_MUTATING, MUTATING, NOT_MUTATING]
    resolution = resolve(graph, local)
    assert set(resolution.verdicts) == {Verdict.MUTATING}


def test_monotonic_propagation_over_every_edge() -> None:
    edges = [(0, 1), (1, 2), (2, 3), (3, 1), (4, 0), (5, 4), (6, 6)]
    graph = _graph(7, edges)
    local = [NOT_MUTATING] * 7
    local[3] = MUTATING
    resolution = resolve(graph, local)
    for caller, callee in graph.edges():
        if resolution.verdict(callee) is Verdict.MUTATING:
            assert resolution.verdict(caller) is Verdict.MUTATING
    assert resolution.verdict(6) is Verdict.NOT_MUTATING


def test_resolver_is_iterative_on_long_chains() -> None:
    size = 20_000
    graph = _graph(size, [(index, index + 1) for index in range(size - 1)])
    local = [NOT_MUTATING] * size
    local[-1] = MUTATING
    resolution = resolve(graph, local)
    assert resolution.verdict(0) is Verdict.MUTATING


def test_resolver_checks_the_deadline() -> None:
    graph = _graph(50, [(index, index + 1) for index in range(49)])
    local = [NOT_MUTATING] * 50
    local[-1] = MUTATING
    with deadline_clock_scope(GasMeter(limit=5)):
        with pytest.raises(TimeoutExceeded):
            resolve(graph, local)


def test_resolver_rejects_mismatched_inputs() -> None:
    with pytest.raises(NeverThrown):
        resolve(_graph(2, []), [NOT_MUTATING])


def test_trivial_resolution_for_immutable_declarations() -> None:
    assert trivially_not_mutating(3).verdicts == (Verdict.NOT_MUTATING,) * 3


def test_graph_collapses_duplicates_and_keeps_self_loops() -> None:
    model = _model(
        """
        struct S
        {
            int _f;
            int A() => A() + B() + B();
            int B() => _f;
        }
        """
    )
    local = [
        NOT_MUTATING,
        LocalVerdict(
            status=LocalStatus.NOT_MUTATING,
            dependencies=(
                _ref(DependencyKind.METHOD, "A", 0),
                _ref(DependencyKind.METHOD, "B", 0),
                _ref(DependencyKind.METHOD, "B", 0),
            ),
        ),
        NOT_MUTATING,
    ]
    graph = build_dependency_graph(model, local)
    assert graph.callees(1) == (1, 2)
    assert graph.callers(2) == (1,)
    assert graph.edges() == [(1, 1), (1, 2)]


def test_overloads_are_filtered_by_arity() -> None:
    model = _model(
        """
        struct S
        {
            int _f;
            void Set() { _f = 0; }
            int Set(int a) => a;
            int Sum(params int[] values) => 0;
            int Opt(int a, int b = 1) => a;
        }
        """
    )
    assert resolve_reference(model, _ref(DependencyKind.METHOD, "Set", 0)) == [1]
    assert resolve_reference(model, _ref(DependencyKind.METHOD, "Set", 1)) == [2]
    assert resolve_reference(model, _ref(DependencyKind.METHOD, "Set")) == [1, 2]
    assert resolve_reference(model, _ref(DependencyKind.METHOD, "Sum", 5)) == [3]
    assert resolve_reference(model, _ref(DependencyKind.METHOD, "Opt", 1)) == [4]
    assert resolve_reference(model, _ref(DependencyKind.METHOD, "Opt", 2)) == [4]


def test_property_and_indexer_references() -> None:
    model = _model(
        """
        struct S
        {
            int _f;
            int P { get => _f; set => _f = value; }
            int Q => _f;
            int this[int i] { get => i; set { } }
            int R { get => _f; init => _f = value; }
        }
        """
    )
    assert resolve_reference(model, _ref(DependencyKind.GETTER, "P")) == [1]
    assert resolve_reference(model, _ref(DependencyKind.SETTER, "P")) == [2]
    assert resolve_reference(model, _ref(DependencyKind.GETTER, "Q")) == [3]
    assert resolve_reference(model, _ref(DependencyKind.INDEXER_GETTER, "this")) == [4]
    assert resolve_reference(model, _ref(DependencyKind.INDEXER_SETTER, "this")) == [5]
    assert resolve_reference(model, _ref(DependencyKind.SETTER, "R")) == []


def test_unresolved_references_link_to_malformed_members() -> None:
    model = _model(
        """
        struct S
        {
            int _f;
            int Broken() { return _f +; }
            int Caller() => Missing();
        }
        """
    )
    local = [
        NOT_MUTATING,
        MUTATING,
        LocalVerdict(
            status=LocalStatus.NOT_MUTATING,
            dependencies=(_ref(DependencyKind.METHOD, "Missing", 0),),
        ),
    ]
    graph = build_dependency_graph(model, local)
    assert graph.callees(2) == (1,)
    assert resolve(graph, local).verdict(2) is Verdict.MUTATING


def test_unresolved_references_are_dropped_without_malformed_members() -> None:
    model = _model("struct S { int _f; int Caller() => Missing(); }")
    local = [
        NOT_MUTATING,
        LocalVerdict(
            status=LocalStatus.NOT_MUTATING,
            dependencies=(_ref(DependencyKind.METHOD, "Missing", 0),),
        ),
    ]
    assert build_dependency_graph(model, local).edges() == []
