"""Drive the pipeline over declarations, sources and file trees.

Every struct declaration is analyzed on its own: model, local verdicts,
dependency graph, fixpoint, eligibility. Declarations of one source and
sources of one run are independent, so both levels fan out over a thread
pool when more than one job is requested.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
import contextvars
import logging
from typing import TypeVar

from structscope.analysis.detector import InstanceScope, LocalVerdict, NOT_MUTATING, detect
from structscope.analysis.eligibility import Suggestion, select_suggestions
from structscope.analysis.graph import DependencyGraph, build_dependency_graph
from structscope.analysis.members import DeclarationModel, build_declaration_model
from structscope.analysis.resolver import Resolution, Verdict, resolve, trivially_not_mutating
from structscope.analysis.timeout_context import check_deadline, deadline_loop_iter
from structscope.analysis.type_categories import TypeCatalog
from structscope.config import RunConfig
from structscope.exceptions import SourceSyntaxError
from structscope.syntax.declarations import (
    TypeDeclaration,
    iter_type_declarations,
    stray_syntax_error,
)
from structscope.syntax.source import parse_source

logger = logging.getLogger(__name__)

_Item = TypeVar("_Item")
_Result = TypeVar("_Result")


@dataclass(frozen=True)
class DeclarationAnalysis:
    model: DeclarationModel
    local: tuple[LocalVerdict, ...]
    graph: DependencyGraph
    resolution: Resolution
    suggestions: tuple[Suggestion, ...]

    def verdict_of(self, name: str) -> Verdict:
        """Combined verdict of every member called ``name`` (MUTATING wins)."""
        verdicts = [
            self.resolution.verdict(member.member_id)
            for member in self.model.members
            if member.name == name
        ]
        if not verdicts:
            raise KeyError(name)
        if Verdict.MUTATING in verdicts:
            return Verdict.MUTATING
        return Verdict.NOT_MUTATING


@dataclass(frozen=True)
class SourceAnalysis:
    path: str | None
    text: str
    declarations: tuple[DeclarationAnalysis, ...] = ()
    error: str | None = None
    error_position: tuple[int, int] | None = None

    @property
    def suggestions(self) -> tuple[Suggestion, ...]:
        return tuple(
            suggestion
            for declaration in self.declarations
            for suggestion in declaration.suggestions
        )

    def declaration(self, name: str) -> DeclarationAnalysis:
        for analysis in self.declarations:
            if analysis.model.name == name:
                return analysis
        raise KeyError(name)


def _run_parallel(
    function: Callable[[_Item], _Result], items: Sequence[_Item], jobs: int
) -> list[_Result]:
    if jobs <= 1 or len(items) <= 1:
        return [function(item) for item in deadline_loop_iter(items)]
    with ThreadPoolExecutor(max_workers=min(jobs, len(items))) as pool:
        # Each worker needs its own copy of the caller's context so the
        # deadline is visible there.
        futures = [
            pool.submit(contextvars.copy_context().run, function, item) for item in items
        ]
        return [future.result() for future in futures]


def analyze_declaration(
    declaration: TypeDeclaration,
    *,
    catalog: TypeCatalog | None = None,
) -> DeclarationAnalysis:
    """Run the whole pipeline for one struct declaration."""
    if catalog is None:
        catalog = TypeCatalog.from_source(declaration.source)
    model = build_declaration_model(declaration)
    if model.is_immutable_declaration:
        local = tuple(NOT_MUTATING for _ in model.members)
        graph = build_dependency_graph(model, local)
        resolution = trivially_not_mutating(len(model.members))
    else:
        scope = InstanceScope.from_model(model, catalog)
        verdicts = []
        for member in model.members:
            check_deadline()
            verdicts.append(detect(member, scope))
        local = tuple(verdicts)
        graph = build_dependency_graph(model, local)
        resolution = resolve(graph, local)
    suggestions = select_suggestions(model, resolution)
    logger.debug(
        "%s: %d members, %d mutating, %d suggestions",
        model.name,
        len(model.members),
        sum(1 for verdict in resolution.verdicts if verdict is Verdict.MUTATING),
        len(suggestions),
    )
    return DeclarationAnalysis(
        model=model,
        local=local,
        graph=graph,
        resolution=resolution,
        suggestions=suggestions,
    )


def analyze_source(text: str, *, path: str | None = None, jobs: int = 1) -> SourceAnalysis:
    """Analyze every struct declaration in ``text``.

    Raises :class:`SourceSyntaxError` when the file has syntax errors outside
    of every type declaration. Errors inside a declaration only make the
    members they touch malformed.
    """
    source = parse_source(text)
    found = list(iter_type_declarations(source))
    error = stray_syntax_error(source, found)
    if error is not None:
        raise error
    catalog = TypeCatalog.from_source(source)
    structs = [declaration for declaration in found if declaration.is_struct]
    declarations = _run_parallel(
        lambda declaration: analyze_declaration(declaration, catalog=catalog),
        structs,
        jobs,
    )
    return SourceAnalysis(path=path, text=text, declarations=tuple(declarations))


def _excluded(path: Path, root: Path, exclude: Iterable[str]) -> bool:
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = path.parts
    excluded = set(exclude)
    return any(part in excluded for part in parts[:-1])


def collect_sources(paths: Iterable[Path], exclude: Iterable[str] = ()) -> list[Path]:
    exclude = tuple(exclude)
    sources: list[Path] = []
    seen: set[Path] = set()
    for path in paths:
        if path.is_dir():
            candidates = sorted(
                candidate
                for candidate in path.rglob("*.cs")
                if candidate.is_file() and not _excluded(candidate, path, exclude)
            )
        else:
            candidates = [path]
        for candidate in candidates:
            if candidate not in seen:
                seen.add(candidate)
                sources.append(candidate)
    return sources


def _analyze_file(path: Path) -> SourceAnalysis:
    try:
        # newline="" keeps offsets aligned with the bytes a fix is written back to.
        with path.open(encoding="utf-8", newline="") as handle:
            text = handle.read()
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("skipping unreadable %s: %s", path, exc)
        return SourceAnalysis(path=str(path), text="", error=f"cannot read file: {exc}")
    try:
        return analyze_source(text, path=str(path))
    except SourceSyntaxError as exc:
        logger.debug("skipping unparsable %s: %s", path, exc)
        return SourceAnalysis(
            path=str(path),
            text=text,
            error=str(exc),
            error_position=(exc.line, exc.column),
        )


def analyze_paths(paths: Iterable[Path], *, config: RunConfig) -> list[SourceAnalysis]:
    """Analyze every ``*.cs`` file under ``paths``.

    Unreadable and unparsable files come back as analyses carrying ``error``
    so one bad file does not hide the rest.
    """
    if not config.enabled:
        logger.debug("readonly member analysis disabled by configuration")
        return []
    sources = collect_sources(paths, config.exclude)
    return _run_parallel(_analyze_file, sources, config.jobs)
