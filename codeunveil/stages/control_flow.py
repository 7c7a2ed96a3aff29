"""Control-flow simplification: flag folding, constant branches and block wrappers."""

import re
from collections import Counter

from codeunveil.core.languages import LUA, PYTHON
from codeunveil.core.lexer import (
    IDENTIFIER,
    NUMBER,
    SYMBOL,
    CodeSpans,
    find_block_end,
    identifier_tokens,
    tokenize,
)
from codeunveil.stages.base import Stage, StageContext, splice
from codeunveil.stages.dead_code import (
    JS_FALSY,
    JS_TRUTHY,
    LUA_FALSY,
    LUA_TRUTHY,
    PYTHON_FALSY,
    PYTHON_TRUTHY,
    fold_js_if,
    fold_lua_if,
    fold_python_if,
)

_EXPRESSION_CONTINUES = frozenset("+-*/%^.[(<>=&|~?")
_COMPOUND_OPERATORS = frozenset("+-*/%|&^")


def _number_value(text: str) -> float:
    if text.lower().startswith(("0x", "-0x")):
        return float(int(text, 16))
    return float(text)


def constant_flags(code: str, language: str) -> dict[str, float]:
    """Variables assigned exactly once, to a plain numeric literal."""
    tokens = tokenize(code, language)
    names = {t.start for t in identifier_tokens(code, language)}
    assignments: Counter = Counter()
    values: dict[str, float] = {}
    ambiguous = set()

    for index, token in enumerate(tokens):
        if token.kind != IDENTIFIER or token.start not in names:
            continue
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        after = tokens[index + 2] if index + 2 < len(tokens) else None
        previous = tokens[index - 1] if index > 0 else None

        if following is None:
            continue
        if following.text in ("+", "-") and after is not None and after.text == following.text and after.start == following.end:
            assignments[token.text] += 1
            continue
        if previous is not None and previous.text in ("+", "-") and index > 1 and tokens[index - 2].text == previous.text:
            assignments[token.text] += 1
            continue
        if following.text in _COMPOUND_OPERATORS and after is not None and after.text == "=" and after.start == following.end:
            assignments[token.text] += 1
            continue
        if following.text != "=" or (after is not None and after.text == "=" and after.start == following.end):
            continue

        assignments[token.text] += 1
        # Multiple assignment, numeric for loops, default and keyword arguments.
        if previous is not None and previous.text in (",", "for", "("):
            ambiguous.add(token.text)
            continue

        value_index = index + 2
        sign = 1
        if value_index < len(tokens) and tokens[value_index].text == "-":
            sign = -1
            value_index += 1
        if value_index >= len(tokens) or tokens[value_index].kind != NUMBER:
            ambiguous.add(token.text)
            continue
        trailing = tokens[value_index + 1] if value_index + 1 < len(tokens) else None
        if trailing is not None and trailing.kind == SYMBOL and trailing.text in _EXPRESSION_CONTINUES:
            ambiguous.add(token.text)
            continue
        try:
            values[token.text] = sign * _number_value(tokens[value_index].text)
        except ValueError:
            ambiguous.add(token.text)

    return {name: value for name, value in values.items() if assignments[name] == 1 and name not in ambiguous}


def fold_flag_comparisons(code: str, language: str, flags: dict[str, float]) -> tuple[str, int]:
    """Replace ``flag == N`` style comparisons with boolean literals."""
    if not flags:
        return code, 0

    true_text, false_text = ("True", "False") if language == PYTHON else ("true", "false")
    names = "|".join(re.escape(name) for name in sorted(flags, key=len, reverse=True))
    number = r"-?(?:0[xX][0-9a-fA-F]+|\d+(?:\.\d+)?)"
    comparison = re.compile(
        rf"(?<![\w.$])(?:(?P<name>{names})\s*(?P<op>===|!==|==|~=|!=)\s*(?P<value>{number})"
        rf"|(?P<value2>{number})\s*(?P<op2>===|!==|==|~=|!=)\s*(?P<name2>{names}))(?![\w.$])"
    )
    spans = CodeSpans(code, language)
    count = 0

    def fold(match: re.Match) -> str:
        nonlocal count
        if match.start() not in spans:
            return match.group(0)
        name = match.group("name") or match.group("name2")
        operator = match.group("op") or match.group("op2")
        literal = match.group("value") or match.group("value2")
        if operator == "~=" and language != LUA:
            return match.group(0)
        equal = flags[name] == _number_value(literal)
        count += 1
        return true_text if equal == (operator in ("==", "===")) else false_text

    return comparison.sub(fold, code), count


class ControlFlowStage(Stage):
    """Fold constant flags and collapse branches whose outcome is fixed."""

    name = "control_flow"
    description = "Simplify constant branches, dead loops and block wrappers"
    priority = 40

    def process(self, context: StageContext) -> StageContext:
        language = context.language
        flags = constant_flags(context.code, language)
        context.code, folded = fold_flag_comparisons(context.code, language, flags)
        if folded:
            context.log_step(f"Folded {folded} constant flag comparisons")

        if language == LUA:
            context.code, true_branches = fold_lua_if(context.code, LUA_TRUTHY, keep_body=True)
            context.code, false_branches = fold_lua_if(context.code, LUA_FALSY, keep_body=False)
            context.code, loops = self._remove_lua_dead_loops(context.code)
            context.code, wrappers = self._unwrap_lua_do_blocks(context.code)
        elif language == PYTHON:
            context.code, true_branches = fold_python_if(context.code, PYTHON_TRUTHY, keep_body=True)
            context.code, false_branches = fold_python_if(context.code, PYTHON_FALSY, keep_body=False)
            context.code, loops = fold_python_if(context.code, PYTHON_FALSY, keep_body=False, keyword="while")
            wrappers = 0
        else:
            context.code, true_branches = fold_js_if(context.code, JS_TRUTHY, keep_body=True)
            context.code, false_branches = fold_js_if(context.code, JS_FALSY, keep_body=False)
            context.code, loops = self._remove_js_dead_loops(context.code, language)
            wrappers = 0

        simplified = folded + true_branches + false_branches + loops + wrappers
        if simplified:
            context.bump("control_flow_simplified", simplified)
            context.log_step(f"Simplified {simplified} control flow structures")
        return context

    def _remove_lua_dead_loops(self, code: str) -> tuple[str, int]:
        count = 0
        while True:
            tokens = tokenize(code, LUA)
            edit = None
            for index in range(len(tokens) - 2):
                token = tokens[index]
                if token.kind != IDENTIFIER or token.text != "while":
                    continue
                if tokens[index + 1].text not in LUA_FALSY or tokens[index + 2].text != "do":
                    continue
                end_index = find_block_end(tokens, index)
                if end_index >= 0:
                    edit = (token.start, tokens[end_index].end, "")
                    break
            if edit is None:
                return code, count
            code = splice(code, [edit])
            count += 1

    def _unwrap_lua_do_blocks(self, code: str) -> tuple[str, int]:
        count = 0
        while True:
            tokens = tokenize(code, LUA)
            edit = None
            pending_header = 0
            for index, token in enumerate(tokens):
                if token.kind != IDENTIFIER:
                    continue
                if token.text in ("while", "for"):
                    pending_header += 1
                elif token.text == "do":
                    if pending_header:
                        pending_header -= 1
                        continue
                    end_index = find_block_end(tokens, index)
                    if end_index >= 0:
                        body = code[token.end:tokens[end_index].start].strip()
                        edit = (token.start, tokens[end_index].end, body)
                        break
            if edit is None:
                return code, count
            code = splice(code, [edit])
            count += 1

    def _remove_js_dead_loops(self, code: str, language: str) -> tuple[str, int]:
        count = 0
        while True:
            tokens = tokenize(code, language)
            edit = None
            for index in range(len(tokens) - 4):
                token = tokens[index]
                if token.kind != IDENTIFIER or token.text != "while":
                    continue
                if tokens[index + 1].text != "(" or tokens[index + 3].text != ")" or tokens[index + 4].text != "{":
                    continue
                if tokens[index + 2].text not in JS_FALSY:
                    continue
                depth = 0
                for close in range(index + 4, len(tokens)):
                    if tokens[close].kind != SYMBOL:
                        continue
                    if tokens[close].text == "{":
                        depth += 1
                    elif tokens[close].text == "}":
                        depth -= 1
                        if depth == 0:
                            edit = (token.start, tokens[close].end, "")
                            break
                if edit is not None:
                    break
            if edit is None:
                return code, count
            code = splice(code, [edit])
            count += 1
