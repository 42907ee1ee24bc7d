from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from structscope.analysis.members import DeclarationModel, Member, MemberKind
from structscope.analysis.resolver import Resolution, Verdict
from structscope.invariants import never
from structscope.syntax.source import Token


class SuggestionKind(StrEnum):
    MEMBER = "member"
    DECLARATION = "declaration"


@dataclass(frozen=True)
class Suggestion:
    kind: SuggestionKind
    declaration: str
    # Member name, "this" for indexers, or the declaration name.
    target: str
    member_ids: tuple[int, ...]
    report_token: Token
    fix_anchor: Token
    member_kind: MemberKind | None = None
    explicit_interface: str | None = None

    @property
    def message(self) -> str:
        if self.kind is SuggestionKind.DECLARATION:
            return f"Struct '{self.declaration}' can be made readonly"
        return (
            f"Member '{self.display_name}' does not modify the state of "
            f"'{self.declaration}' and can be made readonly"
        )

    @property
    def display_name(self) -> str:
        name = self.target
        if self.explicit_interface:
            name = f"{self.explicit_interface}.{name}"
        if self.member_kind is not None and self.member_kind.is_accessor:
            accessor = "get" if self.member_kind.is_getter else "set"
            return f"{name}.{accessor}"
        return name


def is_eligible(member: Member, verdict: Verdict) -> bool:
    return (
        verdict is Verdict.NOT_MUTATING
        and member.kind not in (MemberKind.FIELD, MemberKind.OPERATOR)
        and not member.already_immutable
        and member.has_inspectable_body
        and not member.is_static
        and not member.is_init_accessor
        and not member.is_malformed
        and member.report_token is not None
        and member.fix_anchor is not None
    )


def _member_suggestion(model: DeclarationModel, member: Member) -> Suggestion:
    if member.report_token is None or member.fix_anchor is None:
        never("eligible member without report location", member=member.name)
    return Suggestion(
        kind=SuggestionKind.MEMBER,
        declaration=model.name,
        target=member.name,
        member_ids=(member.member_id,),
        report_token=member.report_token,
        fix_anchor=member.fix_anchor,
        member_kind=member.kind,
        explicit_interface=member.explicit_interface,
    )


def _declaration_suggestion(model: DeclarationModel) -> Suggestion:
    return Suggestion(
        kind=SuggestionKind.DECLARATION,
        declaration=model.name,
        target=model.name,
        member_ids=(),
        report_token=model.name_token,
        fix_anchor=model.fix_anchor,
    )


def select_suggestions(model: DeclarationModel, resolution: Resolution) -> tuple[Suggestion, ...]:
    """Turn resolved verdicts into suggestions, sorted by report position.

    A declaration without ordinarily mutable instance storage whose instance
    members all resolved NOT_MUTATING gets a single declaration-level
    suggestion instead of per-member ones. When any member mutates (through
    `this` reassignment, say), the members that do not are suggested one
    by one.
    """
    if model.is_immutable_declaration:
        return ()
    if (
        not model.mutable_storage
        and not model.has_malformed_members
        and all(
            resolution.verdict(member.member_id) is Verdict.NOT_MUTATING
            for member in model.iter_candidates()
        )
    ):
        return (_declaration_suggestion(model),)
    eligible = {
        member.member_id
        for member in model.members
        if is_eligible(member, resolution.verdict(member.member_id))
    }
    suggestions: list[Suggestion] = []
    grouped: set[int] = set()
    for owner in model.owners:
        ids = owner.accessor_ids
        grouped.update(ids)
        if not ids or owner.already_immutable:
            continue
        if all(member_id in eligible for member_id in ids):
            suggestions.append(
                Suggestion(
                    kind=SuggestionKind.MEMBER,
                    declaration=model.name,
                    target=owner.name,
                    member_ids=ids,
                    report_token=owner.report_token,
                    fix_anchor=owner.fix_anchor,
                    member_kind=owner.kind,
                    explicit_interface=owner.explicit_interface,
                )
            )
            continue
        for member_id in ids:
            if member_id in eligible:
                suggestions.append(_member_suggestion(model, model.member(member_id)))
    for member in model.members:
        if member.member_id in eligible and member.member_id not in grouped:
            suggestions.append(_member_suggestion(model, member))
    suggestions.sort(key=lambda suggestion: suggestion.report_token.start)
    return tuple(suggestions)
