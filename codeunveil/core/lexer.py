"""Comment- and string-aware tokenizer shared by the rewrite stages.

This is not a parser: it only knows enough about each language to tell
identifiers apart from string literal contents and comments, and to balance
brackets and Lua keyword blocks.
"""

import bisect
import re
from dataclasses import dataclass
from functools import lru_cache

from codeunveil.core.languages import JAVASCRIPT, LUA, PYTHON

IDENTIFIER = "identifier"
NUMBER = "number"
STRING = "string"
COMMENT = "comment"
SYMBOL = "symbol"

_NUMBER = r"0[xX][0-9a-fA-F]+|\d+(?:\.\d+)?(?:[eE][+-]?\d+)?"
_DQ = r'"(?:\\.|[^"\\\n])*"'
_SQ = r"'(?:\\.|[^'\\\n])*'"

_LANGUAGE_RULES = {
    LUA: (
        r"--\[(?P<lceq>=*)\[.*?\](?P=lceq)\]|--[^\n]*",
        r"\[(?P<lseq>=*)\[.*?\](?P=lseq)\]|" + _DQ + "|" + _SQ,
        r"[A-Za-z_]\w*",
    ),
    JAVASCRIPT: (
        r"//[^\n]*|/\*.*?\*/",
        _DQ + "|" + _SQ + r"|`(?:\\.|[^`\\])*`",
        r"[A-Za-z_$][\w$]*",
    ),
    PYTHON: (
        r"#[^\n]*",
        r"(?:[rRbBuUfF]{1,2})?(?:'''.*?'''|\"\"\".*?\"\"\"|" + _DQ + "|" + _SQ + ")",
        r"[A-Za-z_]\w*",
    ),
}

_GENERIC_RULES = (
    r"//[^\n]*|/\*.*?\*/",
    _DQ + "|" + _SQ,
    r"[A-Za-z_$][\w$]*",
)

_OPENERS = {"(": ")", "[": "]", "{": "}"}


@dataclass(frozen=True)
class Token:
    """A lexical token with its span in the source string."""
    kind: str
    text: str
    start: int
    end: int


@lru_cache(maxsize=None)
def _token_regex(language: str) -> re.Pattern:
    comment, string, identifier = _LANGUAGE_RULES.get(language, _GENERIC_RULES)
    return re.compile(
        rf"(?P<comment>{comment})"
        rf"|(?P<string>{string})"
        rf"|(?P<number>{_NUMBER})"
        rf"|(?P<identifier>{identifier})"
        r"|(?P<space>\s+)"
        r"|(?P<symbol>.)",
        re.DOTALL,
    )


def tokenize(code: str, language: str) -> list[Token]:
    """Split code into tokens, dropping whitespace."""
    tokens = []
    for match in _token_regex(language).finditer(code):
        kind = match.lastgroup
        if kind == "space":
            continue
        tokens.append(Token(kind, match.group(0), match.start(), match.end()))
    return tokens


def code_spans(code: str, language: str) -> list[tuple[int, int]]:
    """Return spans of the code that are neither strings nor comments."""
    spans = []
    cursor = 0
    for token in tokenize(code, language):
        if token.kind in (STRING, COMMENT):
            if token.start > cursor:
                spans.append((cursor, token.start))
            cursor = token.end
    if cursor < len(code):
        spans.append((cursor, len(code)))
    return spans


class CodeSpans:
    """Membership test for offsets that fall in code (not strings or comments)."""

    def __init__(self, code: str, language: str):
        self.spans = code_spans(code, language)
        self._starts = [start for start, _ in self.spans]

    def __contains__(self, offset: int) -> bool:
        position = bisect.bisect_right(self._starts, offset) - 1
        if position < 0:
            return False
        start, end = self.spans[position]
        return start <= offset < end


def is_member_access(code: str, token: Token, language: str) -> bool:
    """Check if an identifier token is a field/method name (obj.name, obj:name)."""
    index = token.start - 1
    while index >= 0 and code[index] in " \t":
        index -= 1
    if index < 0:
        return False

    previous = code[index]
    if previous == ".":
        # Lua string concatenation and JS spread are operators, not member access.
        return not (index > 0 and code[index - 1] == ".")
    if previous == ":" and language == LUA:
        return not (index > 0 and code[index - 1] == ":")
    return False


def _is_object_key(code: str, token: Token) -> bool:
    """Check for ``{ key: value }`` style keys in JavaScript object literals."""
    after = token.end
    while after < len(code) and code[after] in " \t":
        after += 1
    if after >= len(code) or code[after] != ":" or code[after:after + 2] == "::":
        return False

    before = token.start - 1
    while before >= 0 and code[before] in " \t\n":
        before -= 1
    return before >= 0 and code[before] in "{,"


def identifier_tokens(code: str, language: str, skip_members: bool = True) -> list[Token]:
    """Identifier tokens that refer to names rather than fields."""
    result = []
    for token in tokenize(code, language):
        if token.kind != IDENTIFIER:
            continue
        if skip_members and is_member_access(code, token, language):
            continue
        if skip_members and language == JAVASCRIPT and _is_object_key(code, token):
            continue
        result.append(token)
    return result


def substitute_identifiers(
    code: str,
    language: str,
    mapping: dict[str, str],
    skip_members: bool = True,
) -> str:
    """Rename whole identifier tokens outside strings and comments."""
    if not mapping:
        return code

    parts = []
    cursor = 0
    for token in identifier_tokens(code, language, skip_members=skip_members):
        replacement = mapping.get(token.text)
        if replacement is None:
            continue
        parts.append(code[cursor:token.start])
        parts.append(replacement)
        cursor = token.end
    parts.append(code[cursor:])
    return "".join(parts)


def find_matching(code: str, open_index: int, language: str) -> int:
    """Find the index of the bracket closing the one at ``open_index``.

    Returns -1 when the brackets are unbalanced.
    """
    opener = code[open_index]
    closer = _OPENERS.get(opener)
    if closer is None:
        return -1

    depth = 0
    for token in tokenize(code[open_index:], language):
        if token.kind != SYMBOL:
            continue
        if token.text == opener:
            depth += 1
        elif token.text == closer:
            depth -= 1
            if depth == 0:
                return open_index + token.start
    return -1


_LUA_OPENERS = {"function", "if", "do", "repeat"}
_LUA_CLOSERS = {"end", "until"}


def find_block_end(tokens: list[Token], start_index: int) -> int:
    """Find the token index of the ``end``/``until`` closing a Lua block.

    ``start_index`` points at the opening keyword (``if``, ``function``,
    ``do``, ``while``, ``for`` or ``repeat``). Returns -1 when the block is
    not closed.
    """
    depth = 0
    pending_header = False
    for index in range(start_index, len(tokens)):
        token = tokens[index]
        if token.kind != IDENTIFIER:
            continue
        word = token.text
        if word in ("while", "for"):
            depth += 1
            pending_header = True
        elif word == "do" and pending_header:
            pending_header = False
        elif word in _LUA_OPENERS:
            depth += 1
        elif word in _LUA_CLOSERS:
            depth -= 1
            if depth == 0:
                return index
    return -1


def find_else(tokens: list[Token], start_index: int, end_index: int) -> int:
    """Find a top-level ``else`` of the Lua ``if`` block at ``start_index``.

    Returns -1 if there is no ``else`` at the block's own nesting level.
    """
    depth = 0
    pending_header = False
    for index in range(start_index, end_index):
        token = tokens[index]
        if token.kind != IDENTIFIER:
            continue
        word = token.text
        if word in ("while", "for"):
            depth += 1
            pending_header = True
        elif word == "do" and pending_header:
            pending_header = False
        elif word in _LUA_OPENERS:
            depth += 1
        elif word in _LUA_CLOSERS:
            depth -= 1
        elif word in ("else", "elseif") and depth == 1:
            return index
    return -1
