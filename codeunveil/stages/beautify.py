"""Beautify stage for code formatting."""

import bisect
import re

from codeunveil.core.languages import LUA, PYTHON
from codeunveil.core.lexer import COMMENT, IDENTIFIER, STRING, SYMBOL, tokenize
from codeunveil.stages.base import Stage, StageContext

HEADER_TEXT = "Deobfuscated by codeunveil"

_LUA_OPENERS = frozenset({"function", "do", "then", "repeat", "else", "{"})
_LUA_CLOSERS = frozenset({"end", "until", "else", "elseif", "}"})
_BRACE_OPENERS = frozenset({"{"})
_BRACE_CLOSERS = frozenset({"}"})

_BLANK_RUNS = re.compile(r"\n{3,}")


class BeautifyStage(Stage):
    """Stage to re-indent and tidy the rewritten code."""

    name = "beautify"
    description = "Re-indent code, strip trailing whitespace and collapse blank lines"
    priority = 80

    def __init__(self, indent_width: int = 2, add_header: bool = True):
        self.indent_width = indent_width
        self.add_header = add_header

    def process(self, context: StageContext) -> StageContext:
        """Beautify the code."""
        original = context.code
        if not original.strip():
            return context

        if context.language == PYTHON:
            code = original.expandtabs(4)
        else:
            code = self._reindent(original, context.language)

        code = "\n".join(line.rstrip() for line in code.split("\n"))
        code = _BLANK_RUNS.sub("\n\n", code).strip("\n") + "\n"

        if self.add_header:
            header = context.profile.comment(HEADER_TEXT)
            if not code.startswith(header):
                code = f"{header}\n{code}"

        if code != original:
            context.log_step("Formatted code structure")
        context.code = code
        return context

    def _reindent(self, code: str, language: str) -> str:
        if language == LUA:
            openers, closers = _LUA_OPENERS, _LUA_CLOSERS
        else:
            openers, closers = _BRACE_OPENERS, _BRACE_CLOSERS

        lines = code.split("\n")
        line_starts = [0]
        for line in lines[:-1]:
            line_starts.append(line_starts[-1] + len(line) + 1)

        structural: list[list[str]] = [[] for _ in lines]
        verbatim = set()
        for token in tokenize(code, language):
            first = bisect.bisect_right(line_starts, token.start) - 1
            if token.kind in (STRING, COMMENT):
                last = bisect.bisect_right(line_starts, max(token.start, token.end - 1)) - 1
                verbatim.update(range(first + 1, last + 1))
                continue
            if token.kind in (IDENTIFIER, SYMBOL) and (token.text in openers or token.text in closers):
                structural[first].append(token.text)

        level = 0
        result = []
        for number, line in enumerate(lines):
            if number in verbatim:
                result.append(line)
                continue
            words = structural[number]
            stripped = line.strip()
            leading = 0
            for word in words:
                if word in closers and _starts_with(stripped, word):
                    leading += 1
                    stripped = stripped[len(word):].lstrip()
                else:
                    break
            indent = max(0, level - leading)
            result.append(" " * (self.indent_width * indent) + line.strip() if line.strip() else "")

            opens = sum(1 for word in words if word in openers)
            closes = sum(1 for word in words if word in closers)
            level = max(0, level + opens - closes)
        return "\n".join(result)


def _starts_with(text: str, word: str) -> bool:
    if not text.startswith(word):
        return False
    rest = text[len(word):]
    return not word[-1].isalnum() or not rest or not (rest[0].isalnum() or rest[0] == "_")
