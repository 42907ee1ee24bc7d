from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import logging

from structscope.analysis.detector import DependencyKind, DependencyRef, LocalVerdict
from structscope.analysis.members import DeclarationModel, Member, MemberKind
from structscope.invariants import require

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyGraph:
    """Caller -> callee edges between the members of one declaration.

    ``successors[i]`` are the members ``i`` depends on; ``predecessors[i]``
    are the members that depend on ``i``. Both are sorted and duplicate-free.
    """

    successors: tuple[tuple[int, ...], ...]
    predecessors: tuple[tuple[int, ...], ...]

    @property
    def size(self) -> int:
        return len(self.successors)

    def callees(self, member_id: int) -> tuple[int, ...]:
        return self.successors[member_id]

    def callers(self, member_id: int) -> tuple[int, ...]:
        return self.predecessors[member_id]

    def edges(self) -> list[tuple[int, int]]:
        return [
            (caller, callee)
            for caller, callees in enumerate(self.successors)
            for callee in callees
        ]


def _instance_targets(model: DeclarationModel) -> list[Member]:
    return [
        member
        for member in model.members
        if not member.is_static and member.explicit_interface is None
    ]


def resolve_reference(model: DeclarationModel, ref: DependencyRef) -> list[int]:
    """Member ids a syntactic reference can denote."""
    targets = _instance_targets(model)
    malformed = [m.member_id for m in targets if m.is_malformed and m.name == ref.name]
    match ref.kind:
        case DependencyKind.METHOD:
            overloads = [
                member
                for member in targets
                if member.kind is MemberKind.METHOD
                and not member.is_malformed
                and member.name == ref.name
            ]
            if ref.arity is not None:
                matching = [member for member in overloads if member.accepts_arity(ref.arity)]
                if matching:
                    overloads = matching
            return [member.member_id for member in overloads] + malformed
        case DependencyKind.GETTER | DependencyKind.SETTER:
            wanted = (
                (MemberKind.PROPERTY_GETTER, MemberKind.PROPERTY)
                if ref.kind is DependencyKind.GETTER
                else (MemberKind.PROPERTY_SETTER,)
            )
            found = [
                member.member_id
                for member in targets
                if member.kind in wanted
                and member.name == ref.name
                and not member.is_init_accessor
            ]
            return found + malformed
        case DependencyKind.INDEXER_GETTER | DependencyKind.INDEXER_SETTER:
            wanted = (
                (MemberKind.INDEXER_GETTER, MemberKind.INDEXER)
                if ref.kind is DependencyKind.INDEXER_GETTER
                else (MemberKind.INDEXER_SETTER,)
            )
            return [
                member.member_id
                for member in targets
                if member.kind in wanted and not member.is_init_accessor
            ]
    return []


def build_dependency_graph(
    model: DeclarationModel, verdicts: Sequence[LocalVerdict]
) -> DependencyGraph:
    """Resolve each member's references to member ids.

    References that resolve to nothing are dropped, except in declarations
    with malformed members: there they may denote one of the unparsed members
    and are linked to all of them.
    """
    size = len(model.members)
    require(
        len(verdicts) == size,
        "one local verdict per member",
        members=size,
        verdicts=len(verdicts),
    )
    malformed = model.malformed_ids
    successors: list[set[int]] = [set() for _ in range(size)]
    for member, verdict in zip(model.members, verdicts):
        for ref in verdict.dependencies:
            targets = resolve_reference(model, ref)
            if not targets:
                if not malformed:
                    logger.debug(
                        "%s.%s: dropping unresolved %s reference %s",
                        model.name,
                        member.name,
                        ref.kind,
                        ref.name,
                    )
                    continue
                targets = list(malformed)
            successors[member.member_id].update(targets)
    predecessors: list[set[int]] = [set() for _ in range(size)]
    for caller, callees in enumerate(successors):
        for callee in callees:
            predecessors[callee].add(caller)
    return DependencyGraph(
        successors=tuple(tuple(sorted(items)) for items in successors),
        predecessors=tuple(tuple(sorted(items)) for items in predecessors),
    )
