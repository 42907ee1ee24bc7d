from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional
import json
import logging

import typer

from structscope.analysis.engine import SourceAnalysis, analyze_paths
from structscope.analysis.reporting import (
    explain_declaration,
    render_source,
    source_report,
)
from structscope.analysis.timeout_context import Deadline, TimeoutExceeded, deadline_scope
from structscope.config import RunConfig, resolve_run_config
from structscope.refactor import ReadonlyFixer
from structscope.schema import AnalysisResponseDTO, TextEditDTO
from structscope.syntax.source import LineIndex

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False)

EXIT_CLEAN = 0
EXIT_SUGGESTIONS = 1
EXIT_ERROR = 2


@contextmanager
def _cli_deadline_scope(config: RunConfig):
    with deadline_scope(Deadline.from_timeout_ms(config.timeout_ms)):
        yield


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _fix_source(analysis: SourceAnalysis, fixer: ReadonlyFixer) -> list[TextEditDTO]:
    """Write the fixes for one analyzed file and return the applied edits."""
    if analysis.path is None or not analysis.suggestions:
        return []
    updated, plan = fixer.fix(analysis.text, analysis.suggestions, path=analysis.path)
    for warning in plan.warnings:
        logger.debug("%s: %s", analysis.path, warning)
    if not plan.edits:
        return []
    with Path(analysis.path).open("w", encoding="utf-8", newline="") as handle:
        handle.write(updated)
    return [
        TextEditDTO(
            path=edit.path,
            start=edit.start,
            end=edit.end,
            replacement=edit.replacement,
        )
        for edit in plan.edits
    ]


def run_check(
    paths: List[Path],
    *,
    config: RunConfig,
    as_json: bool = False,
    fix: bool = False,
    explain: bool = False,
) -> int:
    with _cli_deadline_scope(config):
        analyses = analyze_paths(paths, config=config)
        fixer = ReadonlyFixer()
        exit_code = EXIT_CLEAN
        reports = []
        total = 0
        for analysis in analyses:
            if analysis.error is not None:
                exit_code = EXIT_ERROR
            edits = _fix_source(analysis, fixer) if fix else []
            total += len(analysis.suggestions)
            if analysis.suggestions and not fix and exit_code == EXIT_CLEAN:
                exit_code = EXIT_SUGGESTIONS
            if as_json:
                reports.append(
                    source_report(
                        analysis, config.severity, explanations=explain, edits=edits
                    )
                )
                continue
            for line in render_source(analysis, config.severity):
                typer.echo(line)
            if fix and edits:
                typer.echo(f"{analysis.path}: applied {len(edits)} fix(es)")
            if explain and analysis.error is None:
                lines = LineIndex(analysis.text)
                for declaration in analysis.declarations:
                    for line in explain_declaration(declaration, lines):
                        typer.echo(f"  {declaration.model.name}: {line}")
    if as_json:
        response = AnalysisResponseDTO(
            sources=reports,
            stats={
                "files": len(analyses),
                "suggestions": total,
                "errors": sum(1 for analysis in analyses if analysis.error is not None),
            },
        )
        typer.echo(json.dumps(response.model_dump(), indent=2))
    return exit_code


@app.command()
def check(
    paths: List[Path] = typer.Argument(..., help="C# files or directories to analyze."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to structscope.toml."),
    as_json: bool = typer.Option(False, "--json", help="Emit a JSON report."),
    fix: bool = typer.Option(False, "--fix", help="Insert readonly where suggested."),
    explain: bool = typer.Option(
        False, "--explain", help="Show why members were found to mutate."
    ),
    jobs: Optional[int] = typer.Option(None, "--jobs", min=1),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", min=1),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Report struct members that can be made readonly."""
    _configure_logging(verbose)
    run_config = resolve_run_config(
        {"jobs": jobs, "timeout_ms": timeout_ms},
        config_path=config,
    )
    try:
        exit_code = run_check(
            paths,
            config=run_config,
            as_json=as_json,
            fix=fix,
            explain=explain,
        )
    except TimeoutExceeded as exc:
        typer.echo(f"error: analysis timed out ({exc.context.site})", err=True)
        raise typer.Exit(code=EXIT_ERROR)
    raise typer.Exit(code=exit_code)


@app.command()
def lsp() -> None:
    """Run the language server over stdio."""
    from structscope.server import start

    start()


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
