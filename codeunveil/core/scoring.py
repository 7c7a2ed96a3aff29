"""Heuristic scoring constants and policies.

All scores here are hand-tuned weighted sums. ``confidence`` is a heuristic
indicator of how much obfuscation signal was found, not a calibrated
probability, and ``code_quality`` only counts residual obfuscation markers.
"""

import re
from enum import Enum

SEVERITY_WEIGHTS = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "extreme": 4,
}

# Checked in order; the first threshold the score exceeds wins.
LEVEL_THRESHOLDS = (
    (50, "extreme"),
    (25, "heavy"),
    (10, "moderate"),
)

DIVERSITY_WEIGHT = 50
DENSITY_WEIGHT = 25
CONFIDENCE_BASE = 25
CONFIDENCE_BOOST = 25
FIXED_CONFIDENCE = 99
ENCODER_CONFIDENCE = 100
ENCODER_QUALITY_STEP = 10

QUALITY_PENALTIES = (
    (re.compile(r"string\.char"), 5, "Remaining string encoding"),
    (re.compile(r"[a-zA-Z_]\w*\s*=\s*[a-zA-Z_]\w*\s*\+\s*\d+"), 3, "Suspicious calculations"),
    (re.compile(r"\b[a-zA-Z_]\d+\b"), 2, "Obfuscated variable names"),
    (re.compile(r"loadstring"), 10, "Dynamic code execution"),
    (re.compile(r"\beval\("), 10, "Dynamic evaluation"),
)


class ObfuscationLevel(str, Enum):
    """Four-tier label derived from the aggregate severity score."""
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    EXTREME = "extreme"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = [
    ObfuscationLevel.LIGHT,
    ObfuscationLevel.MODERATE,
    ObfuscationLevel.HEAVY,
    ObfuscationLevel.EXTREME,
]


class ConfidencePolicy(str, Enum):
    """How a pipeline turns the analyzer's confidence into a reported one.

    PATTERN reports the diversity/density formula unchanged, BOOSTED adds a
    flat bonus (the advanced Lua pipeline) and FIXED reports a constant
    (the universal pipeline).
    """
    PATTERN = "pattern"
    BOOSTED = "boosted"
    FIXED = "fixed"


def level_for_score(score: int) -> ObfuscationLevel:
    """Map a severity score to an obfuscation level."""
    for threshold, label in LEVEL_THRESHOLDS:
        if score > threshold:
            return ObfuscationLevel(label)
    return ObfuscationLevel.LIGHT


def pattern_confidence(
    detected_count: int,
    catalog_size: int,
    total_matches: int,
    code_length: int,
) -> int:
    """Confidence from pattern diversity and match density.

    diversity = detected / catalog size, density = matches per 1000 chars.
    Both are 0 when their denominator is 0.
    """
    diversity = detected_count / catalog_size if catalog_size else 0.0
    density = total_matches / (code_length / 1000) if code_length else 0.0
    return min(100, round(diversity * DIVERSITY_WEIGHT + density * DENSITY_WEIGHT + CONFIDENCE_BASE))


def apply_confidence_policy(policy: ConfidencePolicy, base_confidence: int) -> int:
    """Derive the reported confidence from the analyzer's value."""
    policy = ConfidencePolicy(policy)
    if policy is ConfidencePolicy.BOOSTED:
        return min(100, base_confidence + CONFIDENCE_BOOST)
    if policy is ConfidencePolicy.FIXED:
        return FIXED_CONFIDENCE
    return base_confidence


def code_quality(code: str) -> int:
    """Start at 100 and subtract a penalty per residual obfuscation marker."""
    score = 100
    for pattern, penalty, _description in QUALITY_PENALTIES:
        score -= len(pattern.findall(code)) * penalty
    return max(0, min(100, score))


def complexity_reduction(original: str, final: str) -> int:
    """Percentage size reduction; negative when the output grew."""
    if not original:
        return 0
    return round((len(original) - len(final)) / len(original) * 100)


def encoder_quality(level: int) -> int:
    """Readability left after obfuscating at ``level``."""
    return max(0, 100 - level * ENCODER_QUALITY_STEP)
