"""Tests for the pattern catalog and value decoding."""

import pytest

from codeunveil.core.decoding import (
    decode_base64_text,
    decode_char_code_arguments,
    evaluate_arithmetic,
    quote_literal,
    split_arguments,
)
from codeunveil.core.errors import ExpressionError
from codeunveil.core.patterns import (
    LURAPH_PATTERNS,
    Severity,
    get_pattern,
    patterns_for,
)


class TestCatalogSelection:
    """Tests for patterns_for and get_pattern."""

    def test_lua_uses_luraph_catalog(self):
        """Lua gets its own catalog."""
        assert patterns_for("lua") == LURAPH_PATTERNS
        assert len(LURAPH_PATTERNS) == 10

    def test_universal_catalog_filters_by_language(self):
        """Other languages get the cross-language patterns that list them."""
        javascript = {p.name for p in patterns_for("javascript")}
        python = {p.name for p in patterns_for("python")}

        assert "Hex Encoding" not in javascript
        assert "Hex Encoding" in python
        assert "Base64 Encoding" in javascript

    def test_unknown_language_may_have_empty_catalog(self):
        """A language no pattern lists gets an empty catalog."""
        assert patterns_for("ruby") == ()

    def test_get_pattern_unknown(self):
        """Unknown names raise KeyError."""
        with pytest.raises(KeyError):
            get_pattern("No Such Pattern")

    def test_severity_weights(self):
        """Severity weights are 1 through 4."""
        assert [s.weight for s in Severity] == [1, 2, 3, 4]


class TestMatching:
    """Tests for Pattern.matcher."""

    def test_matches_report_offsets(self):
        """Each match records its offset and raw text."""
        code = "x = string.char(72, 105) y = string.char(33)"
        matches = get_pattern("String Character Encoding").matcher(code)

        assert [m.offset for m in matches] == [4, code.rindex("string.char")]
        assert matches[0].raw_text == "string.char(72, 105)"

    def test_vm_handler_signature(self):
        """Three-parameter named functions look like VM handlers."""
        pattern = get_pattern("VM Handler Pattern")
        assert pattern.matcher("function h(a, b, c) end")
        assert not pattern.matcher("function h(a, b) end")


class TestRewrites:
    """Tests for Pattern.apply_rewrite."""

    def test_string_char_decodes(self):
        """string.char with byte values becomes a literal."""
        code, count = get_pattern("String Character Encoding").apply_rewrite(
            "print(string.char(72, 101, 108, 108, 111))", "lua"
        )
        assert code == 'print("Hello")'
        assert count == 1

    def test_global_table_access(self):
        """_G["name"] becomes a bare name."""
        code, count = get_pattern("Global Table Access").apply_rewrite('_G["print"]("x")', "lua")
        assert code == 'print("x")'
        assert count == 1

    def test_table_constructor_keys_stay_bracketed(self):
        """Only indexing expressions become field access."""
        pattern = get_pattern("Table Index Obfuscation")
        code, _ = pattern.apply_rewrite('local t = {["key"] = 1} print(t["key"])', "lua")
        assert code == 'local t = {["key"] = 1} print(t.key)'

    def test_base64_decodes(self):
        """atob of printable base64 becomes a literal."""
        code, count = get_pattern("Base64 Encoding").apply_rewrite('x = atob("SGVsbG8=")', "javascript")
        assert code == 'x = "Hello"'
        assert count == 1

    def test_python_base64_without_decode_is_kept(self):
        """b64decode without .decode() yields bytes, so it stays."""
        source = 'x = base64.b64decode("SGVsbG8=")'
        code, count = get_pattern("Base64 Encoding").apply_rewrite(source, "python")
        assert code == source
        assert count == 0

    def test_failed_rewrite_reports_and_keeps_text(self):
        """A match that cannot be decoded is left unchanged."""
        messages = []
        source = "x = string.char(300)"
        code, count = get_pattern("String Character Encoding").apply_rewrite(source, "lua", messages.append)

        assert code == source
        assert count == 0
        assert len(messages) == 1


class TestDecoding:
    """Tests for decoding helpers."""

    def test_arithmetic(self):
        """Constant arithmetic is evaluated without eval."""
        assert evaluate_arithmetic("100 + 4 * 2") == 108
        assert evaluate_arithmetic("0x41", "javascript") == 65

    def test_arithmetic_rejects_names(self):
        """Non-constant expressions raise ExpressionError."""
        with pytest.raises(ExpressionError):
            evaluate_arithmetic("x + 1")

    def test_split_arguments_respects_nesting(self):
        """Commas inside parentheses do not split."""
        assert split_arguments("1, (2, 3), 4") == ["1", "(2, 3)", "4"]

    def test_char_codes(self):
        """Lua char codes are bytes; other languages use code points."""
        assert decode_char_code_arguments("72, 105") == "Hi"
        assert decode_char_code_arguments("9731", "javascript") == "☃"
        with pytest.raises(ExpressionError):
            decode_char_code_arguments("9731", "lua")

    def test_base64_must_be_printable(self):
        """Binary base64 payloads are rejected."""
        with pytest.raises(ExpressionError):
            decode_base64_text("AAEC")

    def test_quote_literal_escapes(self):
        """Literals are re-quoted per language."""
        assert quote_literal('say "hi"\n', "lua") == '"say \\"hi\\"\\n"'
        assert quote_literal("it's", "python") == '"it\'s"'
        assert quote_literal('a"b', "javascript") == '"a\\"b"'
