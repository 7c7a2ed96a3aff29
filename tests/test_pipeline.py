"""Tests for the pipeline entry points."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from codeunveil import Config, ObfuscationConfig, analyze_and_rewrite, encode, rewrite
from codeunveil.core.errors import InputTooLargeError, InvalidLanguageError
from codeunveil.core.pipeline import build_rewrite_chain

STRINGS_ONLY = {
    "level": 3,
    "variable_renaming": False,
    "control_flow_obfuscation": False,
    "dead_code_injection": False,
    "anti_debug": False,
    "vm_protection": False,
    "bytecode_encryption": False,
    "custom_encryption": False,
}


class TestAnalyzeAndRewrite:
    """Tests for analyze_and_rewrite."""

    def test_empty_input(self):
        """Empty input yields a well-formed, clean report."""
        report = analyze_and_rewrite("", "lua")

        assert report.output_code == ""
        assert report.analysis.obfuscation_level == "light"
        assert report.analysis.confidence == 25
        assert report.analysis.patterns_detected == 0
        assert report.analysis.security_threats == ()
        assert report.analysis.complexity_reduction == 0
        assert report.errors == ()

    def test_char_codes_decode_to_hello(self):
        """A char-code construction of 72,101,108,108,111 yields "Hello"."""
        report = analyze_and_rewrite("print(string.char(72,101,108,108,111))", "lua")

        assert 'print("Hello")' in report.output_code
        assert report.analysis.strings_decrypted == 1
        assert "string.char" not in report.output_code

    def test_sample_report(self, lua_sample):
        """The Lua sample is classified, rewritten and logged."""
        report = analyze_and_rewrite(lua_sample, "lua")
        analysis = report.analysis

        assert analysis.patterns_detected > 0
        assert analysis.obfuscation_level in ("light", "moderate", "heavy", "extreme")
        assert analysis.step_log
        assert analysis.bytes_processed == len(lua_sample.encode("utf-8"))
        assert report.output_code.startswith("-- Deobfuscated by codeunveil")

    def test_threats_detected(self):
        """Dynamic evaluation left in the output is reported."""
        report = analyze_and_rewrite('loadstring("print(1)")()', "lua")
        assert "Dynamic string loading detected" in report.analysis.security_threats

    def test_no_threats_in_clean_code(self, python_sample):
        """Clean code produces no threats."""
        report = analyze_and_rewrite(python_sample, "python")
        assert report.analysis.security_threats == ()

    def test_rerun_does_not_regress(self, lua_sample, js_sample):
        """Re-running on prior output never adds threats or loses quality."""
        for code, language in ((lua_sample, "lua"), (js_sample, "javascript")):
            previous = analyze_and_rewrite(code, language)
            for _ in range(3):
                current = analyze_and_rewrite(previous.output_code, language)
                assert len(current.analysis.security_threats) <= len(previous.analysis.security_threats)
                assert current.analysis.code_quality >= previous.analysis.code_quality
                previous = current

    def test_header_added_once(self, js_sample):
        """Feeding output back in does not stack headers."""
        once = analyze_and_rewrite(js_sample, "javascript").output_code
        twice = analyze_and_rewrite(once, "javascript").output_code
        assert twice.count("Deobfuscated by codeunveil") == 1

    def test_unknown_language_falls_back(self):
        """Unrecognized tags still produce a report."""
        report = analyze_and_rewrite('puts "hi"', "ruby")

        assert report.analysis.language == "ruby"
        assert report.analysis.patterns_detected == 0

    def test_language_aliases(self):
        """Aliases normalize to the canonical tag."""
        assert analyze_and_rewrite("x = 1", "JS").analysis.language == "javascript"


class TestPolicies:
    """Tests for the confidence policies."""

    def test_policy_values(self, lua_sample):
        """PATTERN reports the base, BOOSTED adds 25, FIXED reports 99."""
        base = analyze_and_rewrite(lua_sample, "lua", policy="pattern").analysis
        boosted = analyze_and_rewrite(lua_sample, "lua", policy="boosted").analysis
        fixed = analyze_and_rewrite(lua_sample, "lua", policy="fixed").analysis

        assert boosted.confidence == min(100, base.confidence + 25)
        assert fixed.confidence == 99
        assert fixed.confidence_policy == "fixed"

    def test_policy_from_config(self):
        """The configured policy applies when none is passed."""
        report = analyze_and_rewrite("x = 1", "lua", config=Config(confidence_policy="fixed"))
        assert report.analysis.confidence == 99

    def test_invalid_policy(self):
        """Unknown policy names are rejected."""
        with pytest.raises(ValueError):
            analyze_and_rewrite("x = 1", "lua", policy="optimistic")


class TestFatalErrors:
    """Tests for invocation-level failures."""

    def test_non_string_code(self):
        """Code must be a string."""
        with pytest.raises(TypeError):
            analyze_and_rewrite(b"print(1)", "lua")

    @pytest.mark.parametrize("language", ["", "   ", None, 3])
    def test_invalid_language(self, language):
        """Missing or non-string tags abort the run."""
        with pytest.raises(InvalidLanguageError):
            analyze_and_rewrite("print(1)", language)

    def test_input_too_large(self):
        """Inputs over the configured size are rejected."""
        config = Config(max_input_bytes=10)
        with pytest.raises(InputTooLargeError) as excinfo:
            analyze_and_rewrite("print('hello world')", "lua", config=config)

        assert excinfo.value.limit == 10

    def test_encode_validates_too(self):
        """The encoder entry point runs the same checks."""
        with pytest.raises(InvalidLanguageError):
            encode("x = 1", "", ObfuscationConfig())


class TestRewrite:
    """Tests for the bare rewrite entry point."""

    def test_returns_code_and_context(self):
        """rewrite exposes the bookkeeping tables."""
        code, context = rewrite("local a = function(b) return b end", "lua")

        assert "local function init(param_1)" in code
        assert context.function_table == {"a": "init"}

    def test_chain_order(self):
        """The chain runs in the fixed stage order."""
        assert build_rewrite_chain().names == [
            "vm", "strings", "dead_code", "control_flow", "functions", "identifiers", "anti_debug", "beautify",
        ]

    def test_no_header_option(self):
        """Config.add_header=False leaves the header off."""
        code, _ = rewrite("x = 1", "python", Config(add_header=False))
        assert code == "x = 1\n"

    def test_concurrent_runs_are_independent(self, lua_sample, js_sample):
        """Parallel runs give the same results as sequential ones."""
        inputs = [(lua_sample, "lua"), (js_sample, "javascript")] * 4
        expected = [analyze_and_rewrite(code, language).output_code for code, language in inputs]

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda item: analyze_and_rewrite(*item).output_code, inputs))

        assert results == expected


class TestEncodeRoundTrip:
    """Encoded strings decode back through the rewrite pipeline."""

    @pytest.mark.parametrize(
        "language, source, expected",
        [
            ("lua", 'print("Hello")', 'print("Hello")'),
            ("javascript", 'console.log("Hello");', 'console.log("Hello");'),
            ("python", 'print("Hello")', 'print("Hello")'),
        ],
    )
    def test_xor_strings_round_trip(self, language, source, expected):
        """Level-3 XOR strings are recognized and decrypted."""
        encoded = encode(source, language, ObfuscationConfig(seed=7, **STRINGS_ONLY)).output_code
        assert '"Hello"' not in encoded

        report = analyze_and_rewrite(encoded, language)
        assert expected in report.output_code
        assert report.analysis.strings_decrypted == 1

    def test_settings_seed_applies(self):
        """Config.encoder_seed makes runs without a seed reproducible."""
        settings = Config(encoder_seed=42)
        first = encode("local x = 1", "lua", ObfuscationConfig(level=5), settings=settings)
        second = encode("local x = 1", "lua", ObfuscationConfig(level=5, seed=42))
        assert first.output_code == second.output_code
