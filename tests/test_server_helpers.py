from __future__ import annotations

import textwrap
from pathlib import Path
from types import SimpleNamespace

import pytest

pytest.importorskip("pygls")
pytest.importorskip("lsprotocol")

from lsprotocol.types import DiagnosticSeverity, Position, Range

from structscope import server
from structscope.config import Severity
from structscope.exceptions import NeverThrown

GETTER = textwrap.dedent(
    """
    struct S
    {
        int _f;
        int Get() => _f;
    }
    """
).lstrip()


class _FakeServer(SimpleNamespace):
    def __init__(self, root: Path, documents: dict[str, str] | None = None) -> None:
        documents = documents or {}
        super().__init__(
            workspace=SimpleNamespace(
                root_path=str(root),
                get_text_document=lambda uri: SimpleNamespace(source=documents[uri]),
            ),
            published=[],
        )

    def text_document_publish_diagnostics(self, params) -> None:
        self.published.append(params)


def _range(line: int, start: int, end: int) -> Range:
    return Range(
        start=Position(line=line, character=start),
        end=Position(line=line, character=end),
    )


def test_diagnostics_for_text() -> None:
    (diagnostic,) = server.diagnostics_for_text(GETTER, "S.cs")
    assert diagnostic.range == _range(3, 8, 11)
    assert diagnostic.code == "SSR0001"
    assert diagnostic.source == "structscope"
    assert diagnostic.severity == DiagnosticSeverity.Information
    assert diagnostic.data == {"fix_anchor": [3, 4]}
    assert "Member 'Get'" in diagnostic.message


def test_diagnostic_severity_follows_config() -> None:
    (diagnostic,) = server.diagnostics_for_text(GETTER, severity=Severity.ERROR)
    assert diagnostic.severity == DiagnosticSeverity.Error


def test_half_typed_sources_have_no_diagnostics() -> None:
    assert server.diagnostics_for_text("struct S { int _f;") == []


def test_code_actions_insert_readonly() -> None:
    uri = "file:///work/S.cs"
    (action,) = server.code_actions_for(uri, GETTER, _range(3, 9, 9))
    assert action.title == "Add readonly modifier"
    assert action.is_preferred is True
    (edit,) = action.edit.changes[uri]
    assert edit.range == _range(3, 4, 4)
    assert edit.new_text == "readonly "
    assert server.code_actions_for(uri, GETTER, _range(0, 0, 1)) == []
    assert server.code_actions_for(uri, "struct S {", _range(0, 0, 1)) == []


def test_uri_to_path() -> None:
    assert server._uri_to_path("file:///tmp/My%20File.cs") == Path("/tmp/My File.cs")
    assert server._uri_to_path("Relative.cs") == Path("Relative.cs")


def test_require_payload() -> None:
    assert server._require_payload({"text": ""}, command="x") == {"text": ""}
    with pytest.raises(NeverThrown):
        server._require_payload(None, command="x")
    with pytest.raises(NeverThrown):
        server._require_payload(["text"], command="x")


def test_execute_analyze_with_text(tmp_path: Path) -> None:
    ls = _FakeServer(tmp_path)
    result = server.execute_analyze(ls, {"text": GETTER, "uri": "file:///work/S.cs"})
    assert result["stats"] == {"files": 1, "suggestions": 1, "errors": 0}
    assert result["errors"] == []
    (source,) = result["sources"]
    assert source["path"] == "/work/S.cs"
    assert source["suggestions"][0]["target"] == "Get"


def test_execute_analyze_reports_syntax_errors(tmp_path: Path) -> None:
    ls = _FakeServer(tmp_path)
    result = server.execute_analyze(ls, {"text": "struct S { }\n}\n"})
    assert result["stats"]["errors"] == 1
    assert result["errors"][0].startswith("<source>: ")


def test_execute_analyze_with_paths(tmp_path: Path) -> None:
    (tmp_path / "S.cs").write_text(GETTER, encoding="utf-8")
    ls = _FakeServer(tmp_path)
    result = server.execute_analyze(
        ls, {"paths": [str(tmp_path)], "explain": True, "severity": "warning"}
    )
    assert result["stats"]["files"] == 1
    assert result["sources"][0]["suggestions"][0]["severity"] == "warning"


def test_execute_analyze_rejects_bad_payloads(tmp_path: Path) -> None:
    ls = _FakeServer(tmp_path)
    result = server.execute_analyze(ls, {"paths": 3})
    assert result["sources"] == []
    assert result["errors"]
    with pytest.raises(NeverThrown):
        server.execute_analyze(ls, None)


def test_publish_diagnostics_for_cs_documents(tmp_path: Path) -> None:
    uri = (tmp_path / "S.cs").as_uri()
    ls = _FakeServer(tmp_path, {uri: GETTER, "file:///work/notes.txt": GETTER})
    server.did_open(ls, SimpleNamespace(text_document=SimpleNamespace(uri=uri)))
    (params,) = ls.published
    assert params.uri == uri
    assert len(params.diagnostics) == 1
    server.did_change(
        ls, SimpleNamespace(text_document=SimpleNamespace(uri="file:///work/notes.txt"))
    )
    assert len(ls.published) == 1


def test_publish_respects_the_toggle(tmp_path: Path) -> None:
    (tmp_path / "structscope.toml").write_text(
        "[readonly_members]\nenabled = false\n", encoding="utf-8"
    )
    uri = (tmp_path / "S.cs").as_uri()
    ls = _FakeServer(tmp_path, {uri: GETTER})
    server.did_save(ls, SimpleNamespace(text_document=SimpleNamespace(uri=uri)))
    (params,) = ls.published
    assert params.diagnostics == []


def test_code_action_feature(tmp_path: Path) -> None:
    uri = (tmp_path / "S.cs").as_uri()
    ls = _FakeServer(tmp_path, {uri: GETTER})
    params = SimpleNamespace(text_document=SimpleNamespace(uri=uri), range=_range(3, 8, 11))
    (action,) = server.code_action(ls, params)
    assert action.edit.changes[uri][0].new_text == "readonly "


def test_start_uses_the_given_entry_point() -> None:
    calls: list[str] = []
    server.start(lambda: calls.append("io"))
    assert calls == ["io"]


def test_execute_analyze_reports_timeouts(tmp_path: Path, monkeypatch) -> None:
    from structscope.analysis.timeout_context import TimeoutContext, TimeoutExceeded

    def _expired(*args, **kwargs):
        raise TimeoutExceeded(TimeoutContext(site="resolver.resolve", checks=7, reason="gas"))

    monkeypatch.setattr(server, "analyze_source", _expired)
    result = server.execute_analyze(_FakeServer(tmp_path), {"text": GETTER})
    assert result["sources"] == []
    assert result["errors"] == ["analysis timed out at resolver.resolve"]
    assert result["timeout_context"] == {
        "site": "resolver.resolve",
        "checks": 7,
        "reason": "gas",
    }
