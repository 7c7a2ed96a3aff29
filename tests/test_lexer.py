"""Tests for lexer module."""

from codeunveil.core.lexer import (
    COMMENT,
    IDENTIFIER,
    STRING,
    CodeSpans,
    code_spans,
    find_block_end,
    find_matching,
    identifier_tokens,
    substitute_identifiers,
    tokenize,
)


class TestTokenize:
    """Tests for tokenize function."""

    def test_strings_and_comments_are_single_tokens(self):
        """Words inside strings and comments are not identifiers."""
        tokens = tokenize('local s = "if x then" -- end of line', "lua")

        assert [t.text for t in tokens if t.kind == IDENTIFIER] == ["local", "s"]
        assert [t.kind for t in tokens if t.kind in (STRING, COMMENT)] == [STRING, COMMENT]

    def test_lua_long_brackets(self):
        """Long-bracket strings and comments span lines."""
        code = "--[[ a\nb ]] local x = [==[ y\nz ]==]"
        tokens = tokenize(code, "lua")

        assert tokens[0].kind == COMMENT
        assert tokens[-1].kind == STRING
        assert tokens[-1].text.startswith("[==[")

    def test_javascript_template_literal(self):
        """Template literals are strings."""
        tokens = tokenize("const t = `a ${b}`;", "javascript")
        assert any(t.kind == STRING and t.text.startswith("`") for t in tokens)

    def test_python_prefixed_and_triple_quoted(self):
        """Prefixed and triple-quoted literals are single tokens."""
        tokens = tokenize('x = rb"\\x00"\ny = """doc\nmore"""', "python")
        strings = [t.text for t in tokens if t.kind == STRING]

        assert strings == ['rb"\\x00"', '"""doc\nmore"""']

    def test_offsets_match_source(self):
        """Token spans index back into the source."""
        code = "var answer = 42;"
        for token in tokenize(code, "javascript"):
            assert code[token.start:token.end] == token.text


class TestCodeSpans:
    """Tests for code span helpers."""

    def test_spans_skip_strings(self):
        """String contents are excluded from code spans."""
        code = 'a = "xyz" + b'
        spans = code_spans(code, "javascript")

        assert "".join(code[s:e] for s, e in spans) == "a =  + b"

    def test_membership(self):
        """Offsets inside literals are not code."""
        code = 'print("hi") -- note'
        spans = CodeSpans(code, "lua")

        assert 0 in spans
        assert code.index("hi") not in spans
        assert code.index("note") not in spans


class TestMatching:
    """Tests for bracket and block matching."""

    def test_find_matching_ignores_brackets_in_strings(self):
        """A closing paren inside a string does not close the call."""
        code = 'f(")", (1))'
        assert find_matching(code, 1, "javascript") == len(code) - 1

    def test_find_matching_unbalanced(self):
        """Unbalanced brackets report -1."""
        assert find_matching("f((1)", 1, "javascript") == -1

    def test_find_block_end_nested(self):
        """Nested Lua blocks are skipped over."""
        code = "if a then while b do x() end end print(1)"
        tokens = tokenize(code, "lua")
        end_index = find_block_end(tokens, 0)

        assert tokens[end_index].text == "end"
        assert tokens[end_index + 1].text == "print"


class TestIdentifiers:
    """Tests for identifier helpers."""

    def test_member_names_are_skipped(self):
        """Field names after a dot or colon are not variable references."""
        names = [t.text for t in identifier_tokens("obj.field = obj:method()", "lua")]
        assert names == ["obj", "obj"]

    def test_concatenation_is_not_member_access(self):
        """The Lua .. operator does not make the next name a field."""
        names = [t.text for t in identifier_tokens("x = a .. b", "lua")]
        assert names == ["x", "a", "b"]

    def test_substitute_leaves_strings_and_fields(self):
        """Renaming touches whole identifiers only."""
        code = 'a.b = a .. "a" .. ab'
        result = substitute_identifiers(code, "lua", {"a": "value", "b": "other"})

        assert result == 'value.b = value .. "a" .. ab'
