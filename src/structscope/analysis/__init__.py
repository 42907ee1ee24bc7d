"""Readonly-member analysis for C# struct declarations."""

from .eligibility import Suggestion, SuggestionKind
from .engine import (
    DeclarationAnalysis,
    SourceAnalysis,
    analyze_declaration,
    analyze_paths,
    analyze_source,
)
from .members import DeclarationModel, Member, MemberKind
from .resolver import Verdict

__all__ = [
    "DeclarationAnalysis",
    "DeclarationModel",
    "Member",
    "MemberKind",
    "SourceAnalysis",
    "Suggestion",
    "SuggestionKind",
    "Verdict",
    "analyze_declaration",
    "analyze_paths",
    "analyze_source",
]
