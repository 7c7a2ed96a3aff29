"""Function and structure restoration."""

import logging
import re
from typing import Optional

from codeunveil.core.languages import LUA, PYTHON
from codeunveil.core.lexer import (
    SYMBOL,
    CodeSpans,
    find_block_end,
    find_matching,
    substitute_identifiers,
    tokenize,
)
from codeunveil.core.patterns import get_pattern
from codeunveil.stages.base import Stage, StageContext
from codeunveil.stages.naming import function_name_for, is_obfuscated_name, unique_name

logger = logging.getLogger(__name__)

_LUA_DEFINITION = re.compile(r"local\s+(?P<name>[A-Za-z_]\w*)\s*=\s*function\s*\(")
_JS_DEFINITION = re.compile(
    r"(?:var|let|const)\s+(?P<name>[A-Za-z_$][\w$]*)\s*=\s*"
    r"(?:(?P<function>function)\s*\(|(?P<arrow>\()|(?P<single>[A-Za-z_$][\w$]*)\s*=>)"
)
_PY_LAMBDA = re.compile(
    r"^(?P<indent>[ \t]*)(?P<name>[A-Za-z_]\w*)\s*=\s*lambda\b(?P<params>[^:\n]*):(?P<body>[^\n]+)$",
    re.MULTILINE,
)

_LUA_TABLE_REWRITES = ("Global Table Access", "Table Index Obfuscation")


def restore_parameters(params: str) -> tuple[str, dict[str, str]]:
    """Rename single-letter parameters to ``param_<position>``."""
    names = [p.strip() for p in params.split(",")] if params.strip() else []
    mapping = {}
    restored = []
    for position, name in enumerate(names, 1):
        if len(name) == 1 and (name.isalpha() or name in "_$"):
            mapping[name] = f"param_{position}"
            restored.append(mapping[name])
        else:
            restored.append(name)
    return ", ".join(restored), mapping


class FunctionRestorationStage(Stage):
    """Give anonymous functions bound to short names descriptive names."""

    name = "functions"
    description = "Restore function definitions, parameter names and table accesses"
    priority = 50

    def process(self, context: StageContext) -> StageContext:
        preserve = context.options.get("preserve_common_names", True)
        language = context.language

        if language == LUA:
            restore = self._restore_lua
            candidates = _LUA_DEFINITION
        elif language == PYTHON:
            restore = self._restore_python
            candidates = _PY_LAMBDA
        else:
            restore = self._restore_js
            candidates = _JS_DEFINITION

        spans = CodeSpans(context.code, language)
        names = []
        for match in candidates.finditer(context.code):
            name = match.group("name")
            if match.start("name") in spans and is_obfuscated_name(name, preserve) and name not in names:
                names.append(name)

        restored = 0
        for name in names:
            if self._restore(context, name, restore):
                restored += 1
        if restored:
            context.bump("functions_restored", restored)
            context.log_step(f"Restored {restored} function structures")

        if language == LUA:
            rewritten = 0
            for pattern_name in _LUA_TABLE_REWRITES:
                context.code, count = get_pattern(pattern_name).apply_rewrite(context.code, LUA, on_error=context.warn)
                rewritten += count
            if rewritten:
                context.bump("table_accesses_restored", rewritten)
                context.log_step(f"Restored {rewritten} table accesses")
        return context

    def _restore(self, context: StageContext, name: str, restore) -> bool:
        taken = {t.text for t in tokenize(context.code, context.language)} | set(context.function_table.values())
        new_name = unique_name(function_name_for(name), taken)
        code = restore(context, name, new_name)
        if code is None:
            return False
        context.code = substitute_identifiers(code, context.language, {name: new_name})
        context.function_table[name] = new_name
        logger.debug("Restored function %s -> %s", name, new_name)
        return True

    def _restore_lua(self, context: StageContext, name: str, new_name: str) -> Optional[str]:
        code = context.code
        spans = CodeSpans(code, LUA)
        match = next(
            (m for m in _LUA_DEFINITION.finditer(code) if m.group("name") == name and m.start() in spans),
            None,
        )
        if match is None:
            return None

        open_index = match.end() - 1
        close_index = find_matching(code, open_index, LUA)
        if close_index < 0:
            context.warn(f"Unbalanced parameter list for function {name}")
            return None

        tokens = tokenize(code, LUA)
        function_index = next(i for i, t in enumerate(tokens) if t.text == "function" and t.start >= match.start())
        end_index = find_block_end(tokens, function_index)
        if end_index < 0:
            context.warn(f"Unterminated function body for {name}")
            return None
        body_end = tokens[end_index].start

        params, mapping = restore_parameters(code[open_index + 1:close_index])
        body = substitute_identifiers(code[close_index + 1:body_end], LUA, mapping)
        header = f"local function {new_name}({params})"
        return code[:match.start()] + header + body + code[body_end:]

    def _restore_js(self, context: StageContext, name: str, new_name: str) -> Optional[str]:
        code = context.code
        language = context.language
        spans = CodeSpans(code, language)
        match = next(
            (m for m in _JS_DEFINITION.finditer(code) if m.group("name") == name and m.start() in spans),
            None,
        )
        if match is None:
            return None

        if match.group("single"):
            params, mapping = restore_parameters(match.group("single"))
            body_start = match.end()
            body_end = self._arrow_body_end(code, body_start, language)
            body = substitute_identifiers(code[body_start:body_end], language, mapping)
            keyword = match.group(0).split()[0]
            return f"{code[:match.start()]}{keyword} {new_name} = {params} =>{body}{code[body_end:]}"

        open_index = match.end() - 1
        close_index = find_matching(code, open_index, language)
        if close_index < 0:
            context.warn(f"Unbalanced parameter list for function {name}")
            return None
        params, mapping = restore_parameters(code[open_index + 1:close_index])

        if match.group("function"):
            brace = code.find("{", close_index)
            body_end = find_matching(code, brace, language) + 1 if brace >= 0 else 0
            if body_end <= 0:
                context.warn(f"Unterminated function body for {name}")
                return None
            body = substitute_identifiers(code[close_index + 1:body_end], language, mapping)
            return f"{code[:match.start()]}function {new_name}({params}){body}{code[body_end:]}"

        arrow = re.compile(r"\s*=>").match(code, close_index + 1)
        if arrow is None:
            # Parenthesized expression, not an arrow function.
            return None
        body_start = arrow.end()
        body_end = self._arrow_body_end(code, body_start, language)
        body = substitute_identifiers(code[body_start:body_end], language, mapping)
        keyword = match.group(0).split()[0]
        return f"{code[:match.start()]}{keyword} {new_name} = ({params}) =>{body}{code[body_end:]}"

    def _arrow_body_end(self, code: str, start: int, language: str) -> int:
        index = start
        while index < len(code) and code[index] in " \t":
            index += 1
        if index < len(code) and code[index] == "{":
            close = find_matching(code, index, language)
            return close + 1 if close >= 0 else len(code)
        depth = 0
        previous_end = 0
        for token in tokenize(code[index:], language):
            if depth == 0 and previous_end and "\n" in code[index + previous_end:index + token.start]:
                return index + previous_end
            if token.text in "([{":
                depth += 1
            elif token.text in ")]}":
                if depth == 0:
                    return index + token.start
                depth -= 1
            elif token.text in (";", ",") and depth == 0:
                return index + token.start
            previous_end = token.end
        return len(code)

    def _restore_python(self, context: StageContext, name: str, new_name: str) -> Optional[str]:
        code = context.code
        spans = CodeSpans(code, PYTHON)
        match = next(
            (m for m in _PY_LAMBDA.finditer(code) if m.group("name") == name and m.start("name") in spans),
            None,
        )
        if match is None:
            return None
        if _bracket_depth(code, match.start("name")):
            context.warn(f"Lambda {name} is not a statement; left in place")
            return None

        body = match.group("body").strip()
        if not _balanced(body):
            context.warn(f"Lambda {name} spans several lines; left in place")
            return None
        params, mapping = restore_parameters(match.group("params"))
        body = substitute_identifiers(body, PYTHON, mapping)
        indent = match.group("indent")
        definition = f"{indent}def {new_name}({params}):\n{indent}    return {body}"
        return code[:match.start()] + definition + code[match.end():]


def _bracket_depth(code: str, offset: int) -> int:
    """Number of brackets still open at ``offset``."""
    depth = 0
    for token in tokenize(code, PYTHON):
        if token.start >= offset:
            break
        if token.kind != SYMBOL:
            continue
        if token.text in "([{":
            depth += 1
        elif token.text in ")]}" and depth:
            depth -= 1
    return depth


def _balanced(text: str) -> bool:
    depth = 0
    for char in text:
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0
