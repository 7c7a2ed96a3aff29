"""String decryption: turn char-code, XOR, base64 and hex constructions back into literals."""

import re
from typing import Callable, Optional

from codeunveil.core.decoding import (
    bytes_to_text,
    decode_char_code_arguments,
    evaluate_arithmetic,
    is_printable_text,
    quote_literal,
    split_arguments,
)
from codeunveil.core.errors import ExpressionError
from codeunveil.core.languages import JAVASCRIPT, LUA, PYTHON
from codeunveil.core.lexer import IDENTIFIER, STRING, SYMBOL, CodeSpans, find_matching, tokenize
from codeunveil.core.patterns import patterns_for
from codeunveil.stages.base import Stage, StageContext

_NUMERIC_ARGS = re.compile(r"^[\d\s,+\-*/%^~().xXa-fA-F]*$")
_NUMBER_LIST = r"[\d\s,xXa-fA-F]*"

_LUA_XOR = re.compile(
    r"(?P<open>\(\s*)?"
    r"string\.char\s*\((?P<args>" + _NUMBER_LIST + r")\)\s*:\s*gsub\s*\(\s*(?P<q>[\"'])(?:\.|\(\.\))(?P=q)\s*,\s*"
    r"function\s*\(\s*(?P<var>[A-Za-z_]\w*)\s*\)\s*return\s+string\.char\s*\(\s*"
    r"(?:(?P=var)\s*:\s*byte\s*\(\s*\)\s*~\s*(?P<key>\d+)"
    r"|bit32\.bxor\s*\(\s*(?P=var)\s*:\s*byte\s*\(\s*\)\s*,\s*(?P<bkey>\d+)\s*\))"
    r"\s*\)\s*end\s*\)"
    r"(?(open)\s*\))"
)
_LUA_UNPACK = re.compile(
    r"string\.char\s*\(\s*(?:table\.)?unpack\s*\(\s*\{(?P<args>[^{}]*)\}\s*\)\s*\)"
)
_LUA_CHAR_CALL = re.compile(r"string\.char\s*\(")

_JS_CHAR_CALL = re.compile(r"String\.fromCharCode\s*\(")
_JS_BYTES = re.compile(
    r"new\s+TextDecoder\s*\(\s*\)\s*\.decode\s*\(\s*Uint8Array\.from\s*\(\s*\[(?P<args>" + _NUMBER_LIST + r")\]\s*"
    r"(?:,\s*(?P<var>[A-Za-z_$][\w$]*)\s*=>\s*(?P=var)\s*\^\s*(?P<key>\d+)\s*)?\)\s*\)"
)

_PY_CHR = re.compile(r"(?<![\w.])chr\s*\(")
_PY_BYTES = re.compile(
    r"bytes\s*\(\s*(?:(?P<var>[A-Za-z_]\w*)\s*\^\s*(?P<key>\d+)\s+for\s+(?P=var)\s+in\s+)?"
    r"\[(?P<args>" + _NUMBER_LIST + r")\]\s*\)\s*\.decode\s*\(\s*(?:[\"']utf-?8[\"'])?\s*\)"
)

_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})|\\u([0-9a-fA-F]{4})")

# Tokens allowed around a pair of merged literals without changing evaluation order.
_MERGE_SAFE_BEFORE = {None, "=", "(", ",", "[", "{", ";", ":", "+", "return", "local", "and", "or", "not"}
_MERGE_UNSAFE_AFTER = {"*", "/", "%", "[", "(", "^", "#"}
# Lua arithmetic binds tighter than "..", so it must not touch a run on either side.
_LUA_ARITHMETIC = {"+", "-", "*", "/", "%", "^", "#"}


def _xor_bytes(arguments: str, key: int, language: str) -> str:
    values = [evaluate_arithmetic(part, language) for part in split_arguments(arguments)]
    if any(value < 0 or value > 255 for value in values):
        raise ExpressionError(f"Byte value out of range in {arguments[:40]!r}")
    return bytes_to_text(bytes(value ^ key for value in values))


class StringDecryptionStage(Stage):
    """Replace encoded string constructions with the literal they produce."""

    name = "strings"
    description = "Decrypt char-code, XOR, base64 and hex encoded strings"
    priority = 20

    def process(self, context: StageContext) -> StageContext:
        before = len(context.string_table)
        decoded = 0
        language = context.language

        if language == LUA:
            steps = [self._lua_xor, self._lua_unpack, self._lua_char_calls]
        elif language == JAVASCRIPT:
            steps = [self._js_bytes, self._js_char_calls, self._catalog_rewrites]
        elif language == PYTHON:
            steps = [self._python_bytes, self._python_chr, self._catalog_rewrites]
        else:
            steps = [self._catalog_rewrites, self._decode_escapes]

        for step in steps:
            context.code, count = step(context)
            decoded += count

        merged_code, merged = merge_concatenations(context.code, language)
        context.code = merged_code

        if decoded:
            context.bump("strings_decrypted", decoded)
            new_entries = len(context.string_table) - before
            context.log_step(f"Decrypted {decoded} encrypted strings ({new_entries} unique)")
        if merged:
            context.log_step(f"Merged {merged} constant string concatenations")
        return context

    # -- shared helpers -------------------------------------------------

    def _substitute(
        self,
        context: StageContext,
        regex: re.Pattern,
        decoder: Callable[[re.Match], Optional[str]],
    ) -> tuple[str, int]:
        """Replace regex matches outside strings/comments with decoded literals."""
        code = context.code
        spans = CodeSpans(code, context.language)
        count = 0

        def replace(match: re.Match) -> str:
            nonlocal count
            if match.start() not in spans:
                return match.group(0)
            try:
                value = decoder(match)
            except ExpressionError as e:
                context.warn(f"Could not decrypt {match.group(0)[:60]!r}: {e}")
                return match.group(0)
            if value is None:
                return match.group(0)
            count += 1
            context.string_table[match.group(0)] = value
            return quote_literal(value, context.language)

        return regex.sub(replace, code), count

    def _balanced_calls(
        self,
        context: StageContext,
        prefix: re.Pattern,
        decoder: Callable[[str], str],
    ) -> tuple[str, int]:
        """Decode ``name(args)`` calls whose arguments are numeric expressions."""
        code = context.code
        language = context.language
        spans = CodeSpans(code, language)

        parts = []
        cursor = 0
        count = 0
        for match in prefix.finditer(code):
            if match.start() < cursor or match.start() not in spans:
                continue
            open_index = match.end() - 1
            close_index = find_matching(code, open_index, language)
            if close_index < 0:
                context.warn(f"Unbalanced call {code[match.start():match.start() + 40]!r}")
                continue

            arguments = code[open_index + 1:close_index]
            call_text = code[match.start():close_index + 1]
            if not _NUMERIC_ARGS.match(arguments.replace("...", "").replace("[", "(").replace("]", ")")):
                context.warn(f"Dynamic arguments left in place: {call_text[:60]!r}")
                continue

            try:
                value = decoder(arguments)
            except ExpressionError as e:
                context.warn(f"Could not decrypt {call_text[:60]!r}: {e}")
                continue

            parts.append(code[cursor:match.start()])
            parts.append(quote_literal(value, language))
            context.string_table[call_text] = value
            cursor = close_index + 1
            count += 1

        parts.append(code[cursor:])
        return "".join(parts), count

    # -- Lua --------------------------------------------------------------

    def _lua_xor(self, context: StageContext) -> tuple[str, int]:
        code = context.code
        spans = CodeSpans(code, LUA)
        count = 0

        def replace(match: re.Match) -> str:
            nonlocal count
            if match.start() not in spans:
                return match.group(0)
            key = int(match.group("key") or match.group("bkey"))
            try:
                value = _xor_bytes(match.group("args"), key, LUA)
            except ExpressionError as e:
                context.warn(f"Could not decrypt XOR string {match.group(0)[:60]!r}: {e}")
                return match.group(0)

            count += 1
            context.string_table[match.group(0)] = value
            literal = quote_literal(value, LUA)
            if match.group("open") and _is_call_position(code, match.start()):
                return f"({literal})"
            return literal

        return _LUA_XOR.sub(replace, code), count

    def _lua_unpack(self, context: StageContext) -> tuple[str, int]:
        return self._substitute(
            context,
            _LUA_UNPACK,
            lambda m: decode_char_code_arguments(m.group("args"), LUA),
        )

    def _lua_char_calls(self, context: StageContext) -> tuple[str, int]:
        return self._balanced_calls(
            context,
            _LUA_CHAR_CALL,
            lambda args: decode_char_code_arguments(args, LUA),
        )

    # -- JavaScript -------------------------------------------------------

    def _js_bytes(self, context: StageContext) -> tuple[str, int]:
        return self._substitute(
            context,
            _JS_BYTES,
            lambda m: _xor_bytes(m.group("args"), int(m.group("key") or 0), JAVASCRIPT),
        )

    def _js_char_calls(self, context: StageContext) -> tuple[str, int]:
        def decode(arguments: str) -> str:
            arguments = arguments.strip()
            if arguments.startswith("...["):
                arguments = arguments[4:].rstrip().rstrip("]")
            return decode_char_code_arguments(arguments, JAVASCRIPT)

        return self._balanced_calls(context, _JS_CHAR_CALL, decode)

    # -- Python -----------------------------------------------------------

    def _python_bytes(self, context: StageContext) -> tuple[str, int]:
        return self._substitute(
            context,
            _PY_BYTES,
            lambda m: _xor_bytes(m.group("args"), int(m.group("key") or 0), PYTHON),
        )

    def _python_chr(self, context: StageContext) -> tuple[str, int]:
        return self._balanced_calls(
            context,
            _PY_CHR,
            lambda args: decode_char_code_arguments(args, PYTHON),
        )

    # -- catalog and escapes ------------------------------------------------

    def _catalog_rewrites(self, context: StageContext) -> tuple[str, int]:
        code = context.code
        total = 0
        for pattern in patterns_for(context.language):
            if pattern.rewrite is None or pattern.name == "String Concatenation Obfuscation":
                continue
            for match in pattern.regex.finditer(code):
                context.string_table.setdefault(match.group(0), "")
            code, count = pattern.apply_rewrite(code, context.language, on_error=context.warn)
            total += count
        # Entries whose rewrite failed were left unchanged; drop their placeholders.
        for key in [k for k, v in context.string_table.items() if v == "" and k in code]:
            del context.string_table[key]
        return code, total

    def _decode_escapes(self, context: StageContext) -> tuple[str, int]:
        code = context.code
        parts = []
        cursor = 0
        count = 0
        for token in tokenize(code, context.language):
            if token.kind != STRING or token.text[:1] not in "\"'" or "\\" not in token.text:
                continue
            quote = token.text[0]

            def decode(match: re.Match) -> str:
                char = chr(int(match.group(1) or match.group(2), 16))
                if char in (quote, "\\") or not is_printable_text(char) or char in "\r\n\t":
                    return match.group(0)
                return char

            decoded = _ESCAPE.sub(decode, token.text)
            if decoded != token.text:
                parts.append(code[cursor:token.start])
                parts.append(decoded)
                cursor = token.end
                context.string_table[token.text] = decoded[1:-1]
                count += 1
        parts.append(code[cursor:])
        return "".join(parts), count


def _is_call_position(code: str, index: int) -> bool:
    """Whether a parenthesis at ``index`` follows a callee (f(...), t[k](...))."""
    index -= 1
    while index >= 0 and code[index] in " \t":
        index -= 1
    return index >= 0 and (code[index].isalnum() or code[index] in "_)]")


def merge_concatenations(code: str, language: str) -> tuple[str, int]:
    """Merge adjacent constant string literals joined by the concat operator.

    Only plain single-line literals without escapes are merged, and only
    where no neighbouring operator binds tighter than concatenation.
    """
    tokens = tokenize(code, language)
    operator_text = ".." if language == LUA else "+"
    safe_before = _MERGE_SAFE_BEFORE
    unsafe_after = _MERGE_UNSAFE_AFTER
    if language == LUA:
        safe_before = _MERGE_SAFE_BEFORE - _LUA_ARITHMETIC
        unsafe_after = _MERGE_UNSAFE_AFTER | _LUA_ARITHMETIC

    def simple_literal(token) -> bool:
        return (
            token.kind == STRING
            and len(token.text) >= 2
            and token.text[0] in "\"'"
            and token.text[-1] == token.text[0]
            and "\\" not in token.text
            and "\n" not in token.text
        )

    def operator_at(index: int) -> int:
        """Number of tokens making up the concat operator at ``index`` (0 if none)."""
        if index >= len(tokens):
            return 0
        if operator_text == "..":
            if (
                index + 1 < len(tokens)
                and tokens[index].text == "."
                and tokens[index + 1].text == "."
                and tokens[index + 1].start == tokens[index].end
                and not (index + 2 < len(tokens) and tokens[index + 2].text == "." and tokens[index + 2].start == tokens[index + 1].end)
            ):
                return 2
            return 0
        return 1 if tokens[index].kind == SYMBOL and tokens[index].text == "+" else 0

    parts = []
    cursor = 0
    merged = 0
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if not simple_literal(token):
            index += 1
            continue

        previous = tokens[index - 1] if index > 0 else None
        previous_text = None if previous is None else previous.text
        if previous is not None and previous.kind == IDENTIFIER and previous_text not in safe_before:
            previous_text = "__identifier__"
        if previous is not None and previous_text == "." and language == LUA and index > 1 and tokens[index - 2].text == ".":
            previous_text = ".."
        if previous_text not in safe_before and previous_text != "..":
            index += 1
            continue

        run = [token]
        cursor_index = index + 1
        while True:
            width = operator_at(cursor_index)
            if not width or cursor_index + width >= len(tokens):
                break
            candidate = tokens[cursor_index + width]
            if not simple_literal(candidate):
                break
            after = tokens[cursor_index + width + 1] if cursor_index + width + 1 < len(tokens) else None
            if after is not None and (after.text in unsafe_after or (after.text == "." and operator_at(cursor_index + width + 1) == 0)):
                break
            run.append(candidate)
            cursor_index += width + 1

        if len(run) > 1:
            value = "".join(literal.text[1:-1] for literal in run)
            parts.append(code[cursor:token.start])
            parts.append(quote_literal(value, language))
            cursor = run[-1].end
            merged += len(run) - 1
        index = cursor_index if len(run) > 1 else index + 1

    parts.append(code[cursor:])
    return "".join(parts), merged
