"""Tests for analyzer module."""

from codeunveil.core.analyzer import analyze, classify, detect_advanced_patterns
from codeunveil.core.scoring import (
    ConfidencePolicy,
    ObfuscationLevel,
    apply_confidence_policy,
    code_quality,
    complexity_reduction,
    level_for_score,
    pattern_confidence,
)


class TestAnalyze:
    """Tests for analyze function."""

    def test_empty_input(self):
        """Empty input is light, unclassified and has base confidence."""
        result = analyze("", "lua")

        assert result.detected_patterns == ()
        assert result.obfuscation_level is ObfuscationLevel.LIGHT
        assert result.confidence == 25
        assert result.classification is None

    def test_detects_lua_patterns(self, lua_sample):
        """The Lua sample trips the string encoding pattern."""
        result = analyze(lua_sample, "lua")

        assert "String Character Encoding" in result.pattern_names
        assert result.total_matches >= len(result.detected_patterns)
        assert result.catalog_size == 10

    def test_denser_input_is_not_less_confident(self):
        """Duplicating every pattern occurrence never lowers confidence."""
        sparse = "local a = string.char(72)\nlocal pad = 'xxxxxxxxxxxxxxxxxxxxxxxxxxxxxx'\n"
        dense = sparse + "local b = string.char(72)\n"

        assert analyze(dense, "lua").confidence >= analyze(sparse, "lua").confidence

    def test_extreme_pattern_raises_score(self):
        """Adding an extreme-severity occurrence never lowers the level."""
        clean = "print('hello')\n"
        tainted = clean + "local f = load(string.dump(print))\n"
        before = analyze(clean, "lua")
        after = analyze(tainted, "lua")

        assert after.severity_score > before.severity_score
        assert after.obfuscation_level.rank >= before.obfuscation_level.rank

    def test_analysis_is_pure(self, js_sample):
        """Analyzing the same input twice gives the same result."""
        assert analyze(js_sample, "javascript") == analyze(js_sample, "javascript")


class TestClassify:
    """Tests for classify function."""

    def test_luraph_versions(self):
        """Co-occurring patterns name a Luraph version, first rule wins."""
        assert classify("lua", ["VM Handler Pattern", "Bytecode Loading"]) == "Luraph v14.x (VM-based)"
        assert classify("lua", ["String Character Encoding"]) == "Luraph v11.x"
        assert classify("lua", ["Table Index Obfuscation"]) is None

    def test_other_languages(self):
        """Other languages are labelled generically when anything matched."""
        assert classify("javascript", ["Base64 Encoding"]) == "JAVASCRIPT Obfuscation"
        assert classify("python", []) is None


class TestAdvancedPatterns:
    """Tests for detect_advanced_patterns function."""

    def test_layered_decode(self):
        """Nested decode calls are reported."""
        found = detect_advanced_patterns("x = atob(atob('U0dWc2JHOD0='))", "javascript")
        assert [p.type for p in found] == ["Multi-Layer Encryption"]

    def test_thresholds(self):
        """Stack operations need at least six occurrences."""
        five = "push(1) " * 5
        six = "push(1) " * 6
        assert detect_advanced_patterns(five, "lua") == []
        assert detect_advanced_patterns(six, "lua")[0].count == 6


class TestScoring:
    """Tests for scoring helpers."""

    def test_level_thresholds(self):
        """Scores map to levels with strict thresholds."""
        assert level_for_score(10) is ObfuscationLevel.LIGHT
        assert level_for_score(11) is ObfuscationLevel.MODERATE
        assert level_for_score(26) is ObfuscationLevel.HEAVY
        assert level_for_score(51) is ObfuscationLevel.EXTREME

    def test_confidence_handles_zero_denominators(self):
        """Empty catalogs and empty code do not divide by zero."""
        assert pattern_confidence(0, 0, 0, 0) == 25

    def test_confidence_is_capped(self):
        """Confidence never exceeds 100."""
        assert pattern_confidence(10, 10, 500, 100) == 100

    def test_policies(self):
        """Each confidence policy is independently testable."""
        assert apply_confidence_policy(ConfidencePolicy.PATTERN, 40) == 40
        assert apply_confidence_policy(ConfidencePolicy.BOOSTED, 40) == 65
        assert apply_confidence_policy(ConfidencePolicy.BOOSTED, 90) == 100
        assert apply_confidence_policy(ConfidencePolicy.FIXED, 40) == 99

    def test_code_quality_penalties(self):
        """Residual markers reduce quality, floored at zero."""
        assert code_quality("print('hi')") == 100
        assert code_quality("loadstring(x)") == 90
        assert code_quality("loadstring(x) " * 20) == 0

    def test_complexity_reduction(self):
        """Growth gives a negative reduction; empty input gives zero."""
        assert complexity_reduction("aaaa", "aa") == 50
        assert complexity_reduction("aa", "aaaa") == -100
        assert complexity_reduction("", "x") == 0
