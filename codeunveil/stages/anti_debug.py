"""Anti-debug removal: neutralize known anti-analysis calls."""

import re
from typing import NamedTuple

from codeunveil.core.languages import JAVASCRIPT, LUA, PYTHON
from codeunveil.core.lexer import CodeSpans, find_matching
from codeunveil.stages.base import Stage, StageContext, splice


class AntiDebugRule(NamedTuple):
    label: str
    regex: re.Pattern
    balanced: bool  # regex ends at "(" and the call extends to its matching ")"
    statement: bool  # a statement rather than an expression


def _call(label: str, prefix: str) -> AntiDebugRule:
    return AntiDebugRule(label, re.compile(prefix + r"\s*\("), True, False)


_LUA_RULES = (
    AntiDebugRule("pcall(debug.*)", re.compile(r"\bpcall\s*\((?=\s*debug\.\w+)"), True, False),
    _call("debug.getinfo", r"\bdebug\.getinfo"),
    _call("debug.traceback", r"\bdebug\.traceback"),
    _call("debug.getlocal", r"\bdebug\.getlocal"),
    _call("debug.getupvalue", r"\bdebug\.getupvalue"),
    _call("debug.sethook", r"\bdebug\.sethook"),
    AntiDebugRule("getfenv(0)", re.compile(r"\bgetfenv\s*\(\s*0\s*\)"), False, False),
)

_JS_RULES = (
    AntiDebugRule(
        "setInterval(debugger)",
        re.compile(
            r"\bsetInterval\s*\(\s*(?:\(\s*\)\s*=>|function\s*\(\s*\))\s*\{\s*debugger\s*;?\s*\}\s*,\s*\d+\s*\)"
        ),
        False,
        False,
    ),
    AntiDebugRule("debugger", re.compile(r"\bdebugger\b\s*;?"), False, True),
)

_NATIVE_RULES = (
    AntiDebugRule(
        "IsDebuggerPresent",
        re.compile(r"\b(?:ctypes\.windll\.kernel32\.)?IsDebuggerPresent\s*\(\s*\)"),
        False,
        False,
    ),
)

_PYTHON_RULES = (
    _call("sys.settrace", r"\bsys\.settrace"),
    _call("sys.gettrace", r"\bsys\.gettrace"),
) + _NATIVE_RULES


def rules_for(language: str) -> tuple:
    if language == LUA:
        return _LUA_RULES
    if language == PYTHON:
        return _PYTHON_RULES
    if language == JAVASCRIPT:
        return _JS_RULES
    return _JS_RULES + _NATIVE_RULES


class AntiDebugStage(Stage):
    """Replace anti-analysis calls with comment markers."""

    name = "anti_debug"
    description = "Remove debugger traps and anti-analysis calls"
    priority = 70

    def process(self, context: StageContext) -> StageContext:
        removed = 0
        for rule in rules_for(context.language):
            context.code, count = self._apply(context, rule)
            removed += count
        if removed:
            context.bump("anti_debug_removed", removed)
            context.log_step(f"Removed {removed} anti-debug mechanisms")
        return context

    def _apply(self, context: StageContext, rule: AntiDebugRule) -> tuple[str, int]:
        code = context.code
        spans = CodeSpans(code, context.language)
        edits = []
        cursor = 0
        for match in rule.regex.finditer(code):
            start = match.start()
            if start < cursor or start not in spans:
                continue
            end = match.end()
            if rule.balanced:
                close = find_matching(code, end - 1, context.language)
                if close < 0:
                    context.warn(f"Unbalanced {rule.label} call left in place")
                    continue
                end = close + 1
            edits.append((start, end, self._replacement(context, code, start, end, rule)))
            cursor = end
        return splice(code, edits), len(edits)

    def _replacement(self, context: StageContext, code: str, start: int, end: int, rule: AntiDebugRule) -> str:
        profile = context.profile
        marker = f"anti-debug removed: {rule.label}"

        line_start = code.rfind("\n", 0, start) + 1
        line_end = code.find("\n", end)
        if line_end < 0:
            line_end = len(code)
        whole_line = not code[line_start:start].strip() and code[end:line_end].strip() in ("", ";")

        if whole_line:
            if context.language == PYTHON:
                # A lone comment would leave an empty block behind.
                return f"pass  {profile.comment(marker)}"
            return profile.comment(marker)

        inline = profile.inline_comment(marker)
        if rule.statement:
            return inline or ""
        return f"{profile.neutral_value} {inline}" if inline else profile.neutral_value
