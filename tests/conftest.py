from __future__ import annotations

import sys
import textwrap
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from structscope.analysis.engine import SourceAnalysis, analyze_source
from structscope.analysis.timeout_context import (
    Deadline,
    GasMeter,
    deadline_clock_scope,
    deadline_scope,
)


@pytest.fixture(autouse=True)
def _deadline_scope_fixture():
    with deadline_scope(Deadline.from_timeout_ms(120_000)):
        with deadline_clock_scope(GasMeter(limit=100_000_000)):
            yield


@pytest.fixture
def analyze():
    def _analyze(source: str, *, path: str | None = None) -> SourceAnalysis:
        return analyze_source(textwrap.dedent(source).lstrip(), path=path)

    return _analyze


@pytest.fixture
def write_source(tmp_path: Path):
    def _write(name: str, source: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source).lstrip(), encoding="utf-8")
        return path

    return _write
