from __future__ import annotations

from dataclasses import dataclass

from structscope.analysis.detector import MutationReason
from structscope.analysis.eligibility import Suggestion, SuggestionKind
from structscope.analysis.engine import DeclarationAnalysis, SourceAnalysis
from structscope.analysis.members import Member
from structscope.analysis.resolver import Verdict
from structscope.config import Severity
from structscope.schema import SourceReportDTO, SpanDTO, SuggestionDTO, TextEditDTO
from structscope.syntax.source import LineIndex

MEMBER_CODE = "SSR0001"
DECLARATION_CODE = "SSR0002"


@dataclass(frozen=True)
class ReportRange:
    """0-based, end-exclusive range of a report token."""

    line: int
    column: int
    end_line: int
    end_column: int


def suggestion_code(suggestion: Suggestion) -> str:
    if suggestion.kind is SuggestionKind.DECLARATION:
        return DECLARATION_CODE
    return MEMBER_CODE


def suggestion_range(suggestion: Suggestion, lines: LineIndex) -> ReportRange:
    token = suggestion.report_token
    end_line, end_column = lines.position(token.end)
    return ReportRange(
        line=token.line,
        column=token.column,
        end_line=end_line,
        end_column=end_column,
    )


def render_suggestion(
    path: str | None, suggestion: Suggestion, severity: Severity = Severity.INFO
) -> str:
    token = suggestion.report_token
    location = f"{path or '<source>'}:{token.line + 1}:{token.column + 1}"
    return f"{location}: {severity}: {suggestion.message} [{suggestion_code(suggestion)}]"


def render_source(analysis: SourceAnalysis, severity: Severity = Severity.INFO) -> list[str]:
    if analysis.error is not None:
        return [f"{analysis.path or '<source>'}: error: {analysis.error}"]
    return [
        render_suggestion(analysis.path, suggestion, severity)
        for suggestion in analysis.suggestions
    ]


def _describe_member(member: Member) -> str:
    if member.explicit_interface:
        return f"{member.explicit_interface}.{member.name} ({member.kind})"
    return f"{member.name} ({member.kind})"


def _describe_reason(reason: MutationReason, lines: LineIndex | None) -> str:
    text = str(reason.rule)
    if reason.detail:
        text = f"{text}: {reason.detail}"
    if reason.span is not None and lines is not None:
        line, column = lines.position(reason.span.start)
        text = f"{text} at {line + 1}:{column + 1}"
    return text


def explain(
    analysis: DeclarationAnalysis, member_id: int, lines: LineIndex | None = None
) -> list[str]:
    """Why a member resolved the way it did, one line per step."""
    model = analysis.model
    member = model.member(member_id)
    if analysis.resolution.verdict(member_id) is Verdict.NOT_MUTATING:
        return [f"{_describe_member(member)} does not mutate '{model.name}'"]
    chain = analysis.resolution.cause_chain(member_id)
    out: list[str] = []
    for caller_id, callee_id in zip(chain, chain[1:]):
        caller = model.member(caller_id)
        callee = model.member(callee_id)
        out.append(f"{_describe_member(caller)} uses {_describe_member(callee)}")
    origin = model.member(chain[-1])
    reasons = analysis.local[origin.member_id].reasons
    if reasons:
        for reason in reasons:
            out.append(f"{_describe_member(origin)}: {_describe_reason(reason, lines)}")
    else:
        out.append(f"{_describe_member(origin)} mutates '{model.name}'")
    return out


def explain_declaration(analysis: DeclarationAnalysis, lines: LineIndex | None = None) -> list[str]:
    out: list[str] = []
    for member in analysis.model.iter_candidates():
        if analysis.resolution.verdict(member.member_id) is Verdict.MUTATING:
            out.extend(explain(analysis, member.member_id, lines))
    return out


def suggestion_dto(
    suggestion: Suggestion, lines: LineIndex, severity: Severity = Severity.INFO
) -> SuggestionDTO:
    report = suggestion_range(suggestion, lines)
    anchor = suggestion.fix_anchor
    return SuggestionDTO(
        kind=str(suggestion.kind),
        code=suggestion_code(suggestion),
        declaration=suggestion.declaration,
        target=suggestion.display_name,
        member_kind=str(suggestion.member_kind) if suggestion.member_kind is not None else None,
        message=suggestion.message,
        severity=str(severity),
        span=SpanDTO(
            start=(report.line, report.column),
            end=(report.end_line, report.end_column),
        ),
        fix_anchor=(anchor.line, anchor.column),
    )


def source_report(
    analysis: SourceAnalysis,
    severity: Severity = Severity.INFO,
    *,
    explanations: bool = False,
    edits: list[TextEditDTO] | None = None,
) -> SourceReportDTO:
    if analysis.error is not None:
        return SourceReportDTO(path=analysis.path, error=analysis.error)
    lines = LineIndex(analysis.text)
    notes: list[str] = []
    if explanations:
        for declaration in analysis.declarations:
            notes.extend(
                f"{declaration.model.name}: {line}"
                for line in explain_declaration(declaration, lines)
            )
    return SourceReportDTO(
        path=analysis.path,
        suggestions=[suggestion_dto(s, lines, severity) for s in analysis.suggestions],
        edits=list(edits or []),
        explanations=notes,
    )
