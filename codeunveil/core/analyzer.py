"""Pattern analysis: detection counts, severity, level and confidence."""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from codeunveil.core.languages import LUA
from codeunveil.core.patterns import Pattern, Severity, patterns_for
from codeunveil.core.scoring import ObfuscationLevel, level_for_score, pattern_confidence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectedPattern:
    """A catalog pattern together with where it matched."""
    pattern: Pattern
    match_count: int
    offsets: tuple[int, ...]

    def to_dict(self) -> dict:
        return {
            "name": self.pattern.name,
            "severity": self.pattern.severity.value,
            "description": self.pattern.description,
            "matches": self.match_count,
            "offsets": list(self.offsets),
        }


@dataclass(frozen=True)
class AdvancedPattern:
    """A structural technique recognized from aggregate signals."""
    type: str
    description: str
    severity: Severity
    count: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "description": self.description,
            "severity": self.severity.value,
            "count": self.count,
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Result of analyzing one input string for one language."""
    language: str
    detected_patterns: tuple[DetectedPattern, ...]
    severity_score: int
    obfuscation_level: ObfuscationLevel
    confidence: int
    classification: Optional[str]
    total_matches: int
    catalog_size: int
    advanced_patterns: tuple[AdvancedPattern, ...] = field(default_factory=tuple)

    @property
    def pattern_names(self) -> list[str]:
        return [d.pattern.name for d in self.detected_patterns]


# Checked in order; the first rule whose patterns all co-occur names the version.
LURAPH_VERSION_RULES = (
    (("VM Handler Pattern", "Bytecode Loading"), "Luraph v14.x (VM-based)"),
    (("Environment Manipulation", "String Character Encoding"), "Luraph v13.x"),
    (("Global Table Access", "Loadstring Obfuscation"), "Luraph v12.x"),
    (("String Character Encoding",), "Luraph v11.x"),
)


def analyze(code: str, language: str) -> AnalysisResult:
    """Scan ``code`` against the catalog applicable to ``language``.

    Patterns without matches are omitted. The result is a pure function of
    the inputs; absence of signal yields a light, unclassified result.
    """
    catalog = patterns_for(language)

    detected = []
    total_matches = 0
    severity_score = 0
    for pattern in catalog:
        matches = pattern.matcher(code)
        if not matches:
            continue
        detected.append(DetectedPattern(
            pattern=pattern,
            match_count=len(matches),
            offsets=tuple(m.offset for m in matches),
        ))
        total_matches += len(matches)
        severity_score += len(matches) * pattern.severity.weight

    confidence = pattern_confidence(len(detected), len(catalog), total_matches, len(code))
    classification = classify(language, [d.pattern.name for d in detected])

    logger.debug(
        "Analyzed %d chars of %s: %d patterns, score %d, confidence %d",
        len(code), language, len(detected), severity_score, confidence,
    )

    return AnalysisResult(
        language=language,
        detected_patterns=tuple(detected),
        severity_score=severity_score,
        obfuscation_level=level_for_score(severity_score),
        confidence=confidence,
        classification=classification,
        total_matches=total_matches,
        catalog_size=len(catalog),
        advanced_patterns=tuple(detect_advanced_patterns(code, language)),
    )


def classify(language: str, pattern_names: list[str]) -> Optional[str]:
    """Guess the obfuscator family from pattern co-occurrence."""
    if language == LUA:
        names = set(pattern_names)
        for required, label in LURAPH_VERSION_RULES:
            if names.issuperset(required):
                return label
        return None

    if pattern_names:
        return f"{language.upper()} Obfuscation"
    return None


_VM_INSTRUCTION = re.compile(r"\b[A-Z_]{2,}\s*=\s*\d+")
_ENCRYPTED_FUNCTION_TABLE = re.compile(r"\{\s*\[[\d\s,]+\]\s*=\s*function")
_STACK_OPERATION = re.compile(r"\b(?:push|pop|peek)\s*\(\s*[^)]+\s*\)")
_LAYERED_DECODE = re.compile(r"(?:atob|decode|decrypt)\s*\(\s*(?:atob|decode|decrypt)")
_VM_TABLE = re.compile(r"(?:vm|virtual|machine|execute|handler)\s*[=:]\s*\{", re.IGNORECASE)
_ANTI_DEBUG = re.compile(r"(?:debugger|console|devtools|debug)\s*[;,]", re.IGNORECASE)
_SWITCH_DISPATCH = re.compile(r"(?:switch|case)\s*\(\s*[a-zA-Z_]\w*\s*\[\s*[a-zA-Z_]\w*\s*\+\+\s*\]\s*\)")

# (regex, minimum count, type, description, severity)
_ADVANCED_RULES = (
    (_VM_INSTRUCTION, 11, "VM Instruction Table", "Detected VM instruction constant definitions", Severity.EXTREME),
    (_ENCRYPTED_FUNCTION_TABLE, 1, "Encrypted Function Table", "Functions stored in encrypted lookup table", Severity.HIGH),
    (_STACK_OPERATION, 6, "Stack Manipulation", "VM-style stack operations detected", Severity.EXTREME),
    (_LAYERED_DECODE, 1, "Multi-Layer Encryption", "Multiple encryption layers detected", Severity.EXTREME),
    (_VM_TABLE, 4, "VM Protection", "Virtual machine protection detected", Severity.EXTREME),
    (_ANTI_DEBUG, 3, "Anti-Debug Protection", "Anti-debugging mechanisms detected", Severity.HIGH),
    (_SWITCH_DISPATCH, 1, "Control Flow Obfuscation", "Advanced control flow obfuscation detected", Severity.HIGH),
)


def detect_advanced_patterns(code: str, language: str) -> list[AdvancedPattern]:
    """Detect structural techniques that single-match patterns miss."""
    found = []
    for regex, minimum, kind, description, severity in _ADVANCED_RULES:
        count = len(regex.findall(code))
        if count >= minimum:
            found.append(AdvancedPattern(type=kind, description=description, severity=severity, count=count))
    return found
