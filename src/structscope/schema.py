from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel


class SpanDTO(BaseModel):
    start: Tuple[int, int]
    end: Tuple[int, int]


class SuggestionDTO(BaseModel):
    kind: str
    code: str
    declaration: str
    target: str
    member_kind: Optional[str] = None
    message: str
    severity: str = "info"
    span: SpanDTO
    fix_anchor: Tuple[int, int]


class TextEditDTO(BaseModel):
    path: str
    start: Tuple[int, int]
    end: Tuple[int, int]
    replacement: str


class SourceReportDTO(BaseModel):
    path: Optional[str] = None
    suggestions: List[SuggestionDTO] = []
    edits: List[TextEditDTO] = []
    explanations: List[str] = []
    error: Optional[str] = None


class AnalysisRequest(BaseModel):
    paths: List[str] = []
    text: Optional[str] = None
    uri: Optional[str] = None
    explain: bool = False


class AnalysisResponseDTO(BaseModel):
    sources: List[SourceReportDTO] = []
    stats: Dict[str, int] = {}
    errors: List[str] = []
    timeout_context: Optional[Dict[str, Union[str, int]]] = None
