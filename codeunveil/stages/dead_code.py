"""Dead-code and junk removal, plus the constant-branch folding helpers."""

import re

from codeunveil.core.languages import JAVASCRIPT, LUA, PYTHON
from codeunveil.core.lexer import IDENTIFIER, STRING, NUMBER, SYMBOL, find_block_end, find_else, tokenize
from codeunveil.stages.base import (
    Stage,
    StageContext,
    dedent_lines,
    line_indent,
    python_block_end,
    splice,
)

LUA_FALSY = frozenset({"false", "nil"})
LUA_TRUTHY = frozenset({"true"})
JS_FALSY = frozenset({"false", "0", "!1", "null", "undefined", "void0", "!!0"})
JS_TRUTHY = frozenset({"true", "1", "!0", "!![]", "!!1"})
PYTHON_FALSY = frozenset({"False", "0", "None"})
PYTHON_TRUTHY = frozenset({"True", "1"})

_MAX_PASSES = 10_000

# Keywords after which "(name)" is a grouping, not syntax that needs the parentheses.
_GROUPING_KEYWORDS = frozenset({
    "return", "and", "or", "not", "then", "do", "else", "in", "local",
    "typeof", "await", "yield", "until", "case", "throw", "new",
})
_GROUPING_SYMBOLS = frozenset("=,([{;+-*/%<>!&|?:~^")


def _lua_fold_once(code: str, conditions: frozenset, keep_body: bool) -> tuple[str, bool]:
    tokens = tokenize(code, LUA)
    for index, token in enumerate(tokens[:-2]):
        if token.kind != IDENTIFIER or token.text != "if":
            continue
        if tokens[index + 1].text not in conditions or tokens[index + 2].text != "then":
            continue

        end_index = find_block_end(tokens, index)
        if end_index < 0:
            continue
        end = tokens[end_index]
        then = tokens[index + 2]
        else_index = find_else(tokens, index, end_index)

        if keep_body:
            body_end = tokens[else_index].start if else_index >= 0 else end.start
            return splice(code, [(token.start, end.end, code[then.end:body_end].strip())]), True

        if else_index < 0:
            return splice(code, [(token.start, end.end, "")]), True
        branch = tokens[else_index]
        if branch.text == "elseif":
            return splice(code, [(token.start, branch.end, "if")]), True
        return splice(code, [(token.start, end.end, code[branch.end:end.start].strip())]), True
    return code, False


def fold_lua_if(code: str, conditions: frozenset, keep_body: bool) -> tuple[str, int]:
    """Fold ``if <constant> then ... end`` blocks.

    With ``keep_body`` the then-branch replaces the block (always-true),
    otherwise the else-branch does (always-false).
    """
    count = 0
    for _ in range(_MAX_PASSES):
        code, changed = _lua_fold_once(code, conditions, keep_body)
        if not changed:
            break
        count += 1
    return code, count


def _js_block(tokens, brace_index: int) -> int:
    """Token index of the ``}`` closing the brace at ``brace_index``."""
    depth = 0
    for index in range(brace_index, len(tokens)):
        text = tokens[index].text
        if tokens[index].kind != SYMBOL:
            continue
        if text == "{":
            depth += 1
        elif text == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _js_paren_end(tokens, open_index: int) -> int:
    depth = 0
    for index in range(open_index, len(tokens)):
        if tokens[index].kind != SYMBOL:
            continue
        if tokens[index].text == "(":
            depth += 1
        elif tokens[index].text == ")":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _js_chain_end(tokens, after_index: int) -> int:
    """Token index of the last ``}`` of an ``else``/``else if`` chain, or -1 if none."""
    index = after_index
    last = -1
    while index < len(tokens) and tokens[index].text == "else":
        nxt = index + 1
        if nxt < len(tokens) and tokens[nxt].text == "if":
            paren_end = _js_paren_end(tokens, nxt + 1)
            if paren_end < 0 or paren_end + 1 >= len(tokens) or tokens[paren_end + 1].text != "{":
                return last
            close = _js_block(tokens, paren_end + 1)
        elif nxt < len(tokens) and tokens[nxt].text == "{":
            close = _js_block(tokens, nxt)
        else:
            return last
        if close < 0:
            return last
        last = close
        index = close + 1
    return last


def _js_fold_once(code: str, conditions: frozenset, keep_body: bool) -> tuple[str, bool]:
    tokens = tokenize(code, JAVASCRIPT)
    for index, token in enumerate(tokens):
        if token.kind != IDENTIFIER or token.text != "if" or index + 1 >= len(tokens):
            continue
        if tokens[index + 1].text != "(":
            continue
        paren_end = _js_paren_end(tokens, index + 1)
        if paren_end < 0 or paren_end + 1 >= len(tokens) or tokens[paren_end + 1].text != "{":
            continue
        condition = "".join(t.text for t in tokens[index + 2:paren_end])
        if condition not in conditions:
            continue

        close = _js_block(tokens, paren_end + 1)
        if close < 0:
            continue
        body = code[tokens[paren_end + 1].end:tokens[close].start].strip()
        else_at = close + 1

        if keep_body:
            chain_end = _js_chain_end(tokens, else_at)
            stop = tokens[chain_end].end if chain_end >= 0 else tokens[close].end
            return splice(code, [(token.start, stop, body)]), True

        if else_at < len(tokens) and tokens[else_at].text == "else":
            following = tokens[else_at + 1] if else_at + 1 < len(tokens) else None
            if following is not None and following.text == "if":
                return splice(code, [(token.start, following.start, "")]), True
            if following is not None and following.text == "{":
                else_close = _js_block(tokens, else_at + 1)
                if else_close >= 0:
                    else_body = code[following.end:tokens[else_close].start].strip()
                    return splice(code, [(token.start, tokens[else_close].end, else_body)]), True
            continue
        return splice(code, [(token.start, tokens[close].end, "")]), True
    return code, False


def fold_js_if(code: str, conditions: frozenset, keep_body: bool) -> tuple[str, int]:
    """Fold ``if (<constant>) { ... } [else ...]`` statements."""
    count = 0
    for _ in range(_MAX_PASSES):
        code, changed = _js_fold_once(code, conditions, keep_body)
        if not changed:
            break
        count += 1
    return code, count


def _python_header(keyword: str, conditions: frozenset) -> re.Pattern:
    options = "|".join(re.escape(c) for c in sorted(conditions))
    return re.compile(rf"^\s*{keyword}\s+\(?\s*(?:{options})\s*\)?\s*:\s*(?:#.*)?$")


def _next_code_line(lines: list[str], index: int) -> int:
    while index < len(lines) and not lines[index].strip():
        index += 1
    return index


def _python_fold_once(lines: list[str], header: re.Pattern, keep_body: bool) -> bool:
    for index, line in enumerate(lines):
        if not header.match(line):
            continue
        base = line_indent(line)
        end = python_block_end(lines, index)
        body = lines[index + 1:end]
        first = _next_code_line(body, 0)
        if first >= len(body):
            continue
        body_indent = line_indent(body[first]) - base

        if keep_body:
            chain_end = end
            nxt = _next_code_line(lines, chain_end)
            while nxt < len(lines) and line_indent(lines[nxt]) == base and re.match(r"\s*(?:elif\b|else\s*:)", lines[nxt]):
                chain_end = python_block_end(lines, nxt)
                nxt = _next_code_line(lines, chain_end)
            lines[index:chain_end] = dedent_lines(body, body_indent)
            return True

        nxt = _next_code_line(lines, end)
        if nxt < len(lines) and line_indent(lines[nxt]) == base:
            stripped = lines[nxt].lstrip()
            if stripped.startswith("elif "):
                lines[nxt] = lines[nxt][:base] + stripped[2:]
                del lines[index:nxt]
                return True
            if re.match(r"else\s*:", stripped):
                else_end = python_block_end(lines, nxt)
                else_body = lines[nxt + 1:else_end]
                else_first = _next_code_line(else_body, 0)
                if else_first < len(else_body):
                    amount = line_indent(else_body[else_first]) - base
                    lines[index:else_end] = dedent_lines(else_body, amount)
                    return True
        del lines[index:end]
        return True
    return False


def fold_python_if(code: str, conditions: frozenset, keep_body: bool, keyword: str = "if") -> tuple[str, int]:
    """Fold ``if <constant>:`` blocks by indentation."""
    header = _python_header(keyword, conditions)
    lines = code.split("\n")
    count = 0
    for _ in range(_MAX_PASSES):
        if not _python_fold_once(lines, header, keep_body):
            break
        count += 1
    return "\n".join(lines), count


class DeadCodeStage(Stage):
    """Remove statically false branches, empty statements and junk parentheses."""

    name = "dead_code"
    description = "Remove dead branches, empty statements and redundant parentheses"
    priority = 30

    def process(self, context: StageContext) -> StageContext:
        language = context.language
        if language == LUA:
            context.code, branches = fold_lua_if(context.code, LUA_FALSY, keep_body=False)
        elif language == PYTHON:
            context.code, branches = fold_python_if(context.code, PYTHON_FALSY, keep_body=False)
        else:
            context.code, branches = fold_js_if(context.code, JS_FALSY, keep_body=False)
        if branches:
            context.bump("dead_code_removed", branches)
            context.log_step(f"Removed {branches} dead code blocks")

        context.code, empties = self._collapse_empty_statements(context)
        if empties:
            context.bump("dead_code_removed", empties)
            context.log_step(f"Removed {empties} redundant empty statements")

        context.code, parens = self._strip_parentheses(context)
        if parens:
            context.bump("parentheses_removed", parens)
            context.log_step(f"Removed {parens} superfluous parentheses")
        return context

    def _collapse_empty_statements(self, context: StageContext) -> tuple[str, int]:
        code = context.code
        tokens = tokenize(code, context.language)
        edits = []
        depth = 0
        for index, token in enumerate(tokens):
            if token.kind != SYMBOL:
                continue
            if token.text == "(":
                depth += 1
            elif token.text == ")":
                depth = max(0, depth - 1)
            elif token.text == ";" and depth == 0 and index > 0:
                previous = tokens[index - 1]
                # for(;;) headers sit inside parentheses and are left alone.
                if previous.kind == SYMBOL and previous.text == ";":
                    edits.append((previous.end, token.end, ""))
        return splice(code, edits), len(edits)

    def _strip_parentheses(self, context: StageContext) -> tuple[str, int]:
        code = context.code
        tokens = tokenize(code, context.language)
        reserved = context.profile.reserved
        edits = []
        for index in range(len(tokens) - 2):
            opener, inner, closer = tokens[index], tokens[index + 1], tokens[index + 2]
            if opener.text != "(" or closer.text != ")" or inner.kind != IDENTIFIER:
                continue
            if inner.text in reserved:
                continue
            if index > 0:
                previous = tokens[index - 1]
                if previous.kind == IDENTIFIER:
                    if previous.text not in _GROUPING_KEYWORDS:
                        continue
                elif previous.kind in (STRING, NUMBER):
                    continue
                elif previous.text not in _GROUPING_SYMBOLS:
                    continue
            if context.language == JAVASCRIPT and index + 3 < len(tokens) and tokens[index + 3].text == "=":
                # (a) = 1 and (a) => 1 stay parenthesized alike.
                continue
            edits.append((opener.start, closer.end, inner.text))
        return splice(code, edits), len(edits)
