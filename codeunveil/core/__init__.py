"""Core analysis functionality."""

from codeunveil.core.analyzer import AnalysisResult, analyze, detect_advanced_patterns
from codeunveil.core.errors import (
    CodeUnveilError,
    ExpressionError,
    InputTooLargeError,
    InvalidLanguageError,
    StageError,
)
from codeunveil.core.languages import get_profile, language_from_path, normalize_language
from codeunveil.core.patterns import Pattern, Severity, get_pattern, patterns_for
from codeunveil.core.scoring import ConfidencePolicy, ObfuscationLevel
from codeunveil.core.threats import scan_threats

__all__ = [
    "AnalysisResult",
    "analyze",
    "detect_advanced_patterns",
    "CodeUnveilError",
    "ExpressionError",
    "InputTooLargeError",
    "InvalidLanguageError",
    "StageError",
    "get_profile",
    "language_from_path",
    "normalize_language",
    "Pattern",
    "Severity",
    "get_pattern",
    "patterns_for",
    "ConfidencePolicy",
    "ObfuscationLevel",
    "scan_threats",
]
