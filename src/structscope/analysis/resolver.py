"""Fixpoint over the dependency graph.

Directly mutating members seed a worklist; every caller of a mutating member
becomes mutating in turn. Whatever is still undecided once the worklist is
empty cannot reach a mutation and resolves to NOT_MUTATING, which also
settles members that only call each other in a cycle.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from structscope.analysis.detector import LocalVerdict
from structscope.analysis.graph import DependencyGraph
from structscope.analysis.timeout_context import check_deadline
from structscope.invariants import never, require


class Verdict(StrEnum):
    UNKNOWN = "unknown"
    NOT_MUTATING = "not-mutating"
    MUTATING = "mutating"


@dataclass(frozen=True)
class Resolution:
    verdicts: tuple[Verdict, ...]
    # For each member made MUTATING through a callee, the callee responsible.
    causes: dict[int, int]

    def verdict(self, member_id: int) -> Verdict:
        return self.verdicts[member_id]

    def cause_chain(self, member_id: int) -> list[int]:
        """Members from ``member_id`` down to the one that mutates directly."""
        chain = [member_id]
        seen = {member_id}
        current = member_id
        while current in self.causes:
            current = self.causes[current]
            if current in seen:
                never("cycle in mutation causes", member_id=member_id, at=current)
            seen.add(current)
            chain.append(current)
        return chain


def resolve(graph: DependencyGraph, local: Sequence[LocalVerdict]) -> Resolution:
    require(
        graph.size == len(local),
        "graph and local verdicts disagree on member count",
        graph=graph.size,
        local=len(local),
    )
    verdicts = [Verdict.UNKNOWN] * graph.size
    causes: dict[int, int] = {}
    queue: deque[int] = deque()
    for member_id, verdict in enumerate(local):
        if verdict.is_mutating:
            verdicts[member_id] = Verdict.MUTATING
            queue.append(member_id)
    while queue:
        check_deadline()
        callee = queue.popleft()
        for caller in graph.callers(callee):
            if verdicts[caller] is Verdict.MUTATING:
                continue
            verdicts[caller] = Verdict.MUTATING
            causes[caller] = callee
            queue.append(caller)
    resolved = tuple(
        Verdict.NOT_MUTATING if verdict is Verdict.UNKNOWN else verdict for verdict in verdicts
    )
    for member_id, verdict in enumerate(resolved):
        if verdict is Verdict.UNKNOWN:
            never("unresolved verdict escaped the fixpoint", member_id=member_id)
    return Resolution(verdicts=resolved, causes=causes)


def trivially_not_mutating(size: int) -> Resolution:
    """Resolution for a declaration that is already readonly."""
    return Resolution(verdicts=(Verdict.NOT_MUTATING,) * size, causes={})
