from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse
import logging

from pydantic import ValidationError
from pygls.lsp.server import LanguageServer
from lsprotocol.types import (
    TEXT_DOCUMENT_CODE_ACTION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DID_SAVE,
    CodeAction,
    CodeActionKind,
    CodeActionParams,
    Diagnostic,
    DiagnosticSeverity,
    Position,
    PublishDiagnosticsParams,
    Range,
    TextEdit,
    WorkspaceEdit,
)

from structscope.analysis.engine import SourceAnalysis, analyze_paths, analyze_source
from structscope.analysis.reporting import source_report, suggestion_code, suggestion_range
from structscope.analysis.timeout_context import Deadline, TimeoutExceeded, deadline_scope
from structscope.config import RunConfig, Severity, resolve_run_config
from structscope.exceptions import SourceSyntaxError
from structscope.invariants import never
from structscope.refactor.engine import READONLY_TEXT
from structscope.schema import AnalysisRequest, AnalysisResponseDTO
from structscope.syntax.source import LineIndex

logger = logging.getLogger(__name__)

server = LanguageServer("structscope", "0.1.0")

ANALYZE_COMMAND = "structscope.analyze"
SOURCE_NAME = "structscope"

_SEVERITIES = {
    Severity.HINT: DiagnosticSeverity.Hint,
    Severity.INFO: DiagnosticSeverity.Information,
    Severity.WARNING: DiagnosticSeverity.Warning,
    Severity.ERROR: DiagnosticSeverity.Error,
}


def _require_payload(payload: object, *, command: str) -> dict[str, object]:
    if payload is None:
        never("missing command payload", command=command)
    if not isinstance(payload, dict):
        never(
            "invalid command payload type",
            command=command,
            payload_type=type(payload).__name__,
        )
    return payload


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


def _workspace_root(ls: LanguageServer) -> Path | None:
    root = ls.workspace.root_path
    return Path(root) if root else None


@contextmanager
def _server_deadline_scope(config: RunConfig):
    with deadline_scope(Deadline.from_timeout_ms(config.timeout_ms)):
        yield


def _analyze_text(text: str, path: str | None) -> SourceAnalysis | None:
    try:
        return analyze_source(text, path=path)
    except SourceSyntaxError as exc:
        # A half-typed file is normal while editing; report nothing until it parses.
        logger.debug("not analyzing %s: %s", path, exc)
        return None


def _diagnostics(analysis: SourceAnalysis, severity: Severity) -> list[Diagnostic]:
    lines = LineIndex(analysis.text)
    diagnostics: list[Diagnostic] = []
    for suggestion in analysis.suggestions:
        report = suggestion_range(suggestion, lines)
        anchor = suggestion.fix_anchor
        diagnostics.append(
            Diagnostic(
                range=Range(
                    start=Position(line=report.line, character=report.column),
                    end=Position(line=report.end_line, character=report.end_column),
                ),
                message=suggestion.message,
                severity=_SEVERITIES[severity],
                code=suggestion_code(suggestion),
                source=SOURCE_NAME,
                data={"fix_anchor": [anchor.line, anchor.column]},
            )
        )
    return diagnostics


def diagnostics_for_text(
    text: str, path: str | None = None, severity: Severity = Severity.INFO
) -> list[Diagnostic]:
    analysis = _analyze_text(text, path)
    if analysis is None:
        return []
    return _diagnostics(analysis, severity)


def _overlaps(left: Range, right: Range) -> bool:
    def key(position: Position) -> tuple[int, int]:
        return (position.line, position.character)

    return key(left.start) <= key(right.end) and key(right.start) <= key(left.end)


def code_actions_for(
    uri: str, text: str, requested: Range, path: str | None = None
) -> list[CodeAction]:
    """Quick fixes for every suggestion whose report range touches ``requested``."""
    analysis = _analyze_text(text, path)
    if analysis is None:
        return []
    actions: list[CodeAction] = []
    for diagnostic in _diagnostics(analysis, Severity.INFO):
        if not _overlaps(diagnostic.range, requested):
            continue
        line, column = diagnostic.data["fix_anchor"]
        anchor = Position(line=line, character=column)
        actions.append(
            CodeAction(
                title="Add readonly modifier",
                kind=CodeActionKind.QuickFix,
                diagnostics=[diagnostic],
                is_preferred=True,
                edit=WorkspaceEdit(
                    changes={
                        uri: [
                            TextEdit(
                                range=Range(start=anchor, end=anchor),
                                new_text=READONLY_TEXT,
                            )
                        ]
                    }
                ),
            )
        )
    return actions


def _publish(ls: LanguageServer, uri: str) -> None:
    path = _uri_to_path(uri)
    if path.suffix != ".cs":
        return
    document = ls.workspace.get_text_document(uri)
    config = resolve_run_config(root=_workspace_root(ls))
    diagnostics: list[Diagnostic] = []
    if config.enabled:
        try:
            with _server_deadline_scope(config):
                diagnostics = diagnostics_for_text(document.source, str(path), config.severity)
        except TimeoutExceeded as exc:
            logger.warning("analysis of %s timed out at %s", uri, exc.context.site)
    ls.text_document_publish_diagnostics(
        PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics)
    )


@server.command(ANALYZE_COMMAND)
def execute_analyze(ls: LanguageServer, payload: dict | None = None) -> dict:
    payload = _require_payload(payload, command=ANALYZE_COMMAND)
    try:
        request = AnalysisRequest.model_validate(payload)
    except ValidationError as exc:
        return AnalysisResponseDTO(errors=[str(exc)]).model_dump()
    config = resolve_run_config(
        {key: payload.get(key) for key in ("jobs", "timeout_ms", "severity")},
        root=_workspace_root(ls),
    )
    try:
        with _server_deadline_scope(config):
            if request.text is not None:
                path = str(_uri_to_path(request.uri)) if request.uri else None
                try:
                    analyses = [analyze_source(request.text, path=path)]
                except SourceSyntaxError as exc:
                    analyses = [
                        SourceAnalysis(
                            path=path,
                            text=request.text,
                            error=str(exc),
                            error_position=(exc.line, exc.column),
                        )
                    ]
            else:
                analyses = analyze_paths(
                    [Path(item) for item in request.paths], config=config
                )
            sources = [
                source_report(analysis, config.severity, explanations=request.explain)
                for analysis in analyses
            ]
    except TimeoutExceeded as exc:
        return AnalysisResponseDTO(
            errors=[f"analysis timed out at {exc.context.site}"],
            timeout_context=exc.context.as_payload(),
        ).model_dump()
    response = AnalysisResponseDTO(
        sources=sources,
        stats={
            "files": len(analyses),
            "suggestions": sum(len(analysis.suggestions) for analysis in analyses),
            "errors": sum(1 for analysis in analyses if analysis.error is not None),
        },
        errors=[
            f"{analysis.path or '<source>'}: {analysis.error}"
            for analysis in analyses
            if analysis.error is not None
        ],
    )
    return response.model_dump()


@server.feature(TEXT_DOCUMENT_CODE_ACTION)
def code_action(ls: LanguageServer, params: CodeActionParams) -> list[CodeAction]:
    uri = params.text_document.uri
    document = ls.workspace.get_text_document(uri)
    config = resolve_run_config(root=_workspace_root(ls))
    if not config.enabled:
        return []
    try:
        with _server_deadline_scope(config):
            return code_actions_for(
                uri, document.source, params.range, str(_uri_to_path(uri))
            )
    except TimeoutExceeded as exc:
        logger.warning("code actions for %s timed out at %s", uri, exc.context.site)
        return []


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params) -> None:
    _publish(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LanguageServer, params) -> None:
    _publish(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_SAVE)
def did_save(ls: LanguageServer, params) -> None:
    _publish(ls, params.text_document.uri)


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Start the language server."""
    (start_fn or server.start_io)()
