"""The encoder's transformations, applied in a fixed order.

Every stage draws from its own ``random.Random`` seeded only by the run seed
and the stage name, and makes the same draws whatever the level is. The level
only decides which of the drawn edits are applied, so raising the level never
shortens the output.
"""

import ast
import base64
import hashlib
import logging
import random
import string
from dataclasses import dataclass, field
from typing import Callable, Optional

from codeunveil.core.languages import JAVASCRIPT, LUA, PYTHON, get_profile
from codeunveil.core.lexer import (
    COMMENT,
    IDENTIFIER,
    STRING,
    SYMBOL,
    Token,
    find_matching,
    substitute_identifiers,
    tokenize,
)
from codeunveil.encoder.declarations import declared_names
from codeunveil.encoder.dialects import Dialect
from codeunveil.stages.base import line_indent, splice

logger = logging.getLogger(__name__)

# String literals longer than this stay plain at the XOR-only level in Lua,
# where every byte becomes a separate call argument.
LUA_INLINE_ARGUMENT_LIMIT = 200

_NAME_ALPHABET = string.ascii_letters + string.digits
_BASE36 = string.digits + string.ascii_lowercase
_LUA_BLOCK_CONTINUATIONS = ("end", "else", "elseif", "until")
_LUA_TRAILING_OPERATORS = (",", "(", "{", "[", "=", "..", "+", "-", "*", "/", "%", "^", "<", ">", " and", " or", " not")
_JS_BLOCK_PREFIXES = frozenset({")", "=>", "else", "try", "finally", "do", "{", "}", ";", ""})


def run_seed(code: str, language: str, seed: Optional[int]) -> int:
    """The seed for a run: the caller's, or one derived from the input."""
    if seed is not None:
        return seed
    digest = hashlib.sha256(f"{language}\0{code}".encode("utf-8")).hexdigest()
    return int(digest[:16], 16)


@dataclass
class EncoderContext:
    """State shared by the encoder stages during one run."""
    code: str
    original: str
    language: str
    level: int
    dialect: Dialect
    seed: int
    needs_helpers: bool = False
    step_log: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def syntax(self) -> str:
        """The language whose lexical rules the templates follow."""
        return self.dialect.name

    def rng(self, stage: str) -> random.Random:
        return random.Random(f"{self.seed}:{stage}")

    def log_step(self, message: str) -> None:
        logger.debug("encoder: %s", message)
        self.step_log.append(message)

    def warn(self, message: str) -> None:
        logger.debug("encoder warning: %s", message)
        self.warnings.append(message)


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


# String encryption

def _literal_value(tokens: list[Token], index: int, syntax: str) -> Optional[str]:
    """The value of the string literal at ``index``, or None when it must stay a literal."""
    token = tokens[index]
    text = token.text
    previous = tokens[index - 1] if index > 0 else None
    following = tokens[index + 1] if index + 1 < len(tokens) else None

    if syntax == PYTHON:
        if index == 0 or text[0] not in "'\"" or text.startswith(("'''", '"""')):
            return None
        if (previous is not None and previous.kind == STRING) or (following is not None and following.kind == STRING):
            return None
        if previous is not None and previous.text == "case":
            return None
        value = ast.literal_eval(text)
        if any(0xD800 <= ord(ch) <= 0xDFFF for ch in value):
            return None
        return value or None

    if "\\" in text or text[0] not in "'\"":
        return None
    if syntax != LUA:
        if following is not None and following.text == ":":
            return None
        if previous is not None and previous.text in ("import", "from", "require"):
            return None
        if previous is not None and previous.text == "(" and index > 1 and tokens[index - 2].text == "require":
            return None
        if text[1:-1] == "use strict":
            return None
    return text[1:-1] or None


def encrypt_strings(context: EncoderContext) -> None:
    """Replace string literals with expressions that rebuild them at run time."""
    rng = context.rng("strings")
    tokens = tokenize(context.code, context.syntax)
    edits = []
    encrypted = 0
    for index, token in enumerate(tokens):
        if token.kind != STRING:
            continue
        key = rng.randint(1, 255)
        shift = rng.randint(1, 255)
        if context.level < 3:
            continue
        value = _literal_value(tokens, index, context.syntax)
        if value is None:
            continue

        codes = [byte ^ key for byte in value.encode("utf-8")]
        if context.level >= 9:
            payload = ",".join(f"{(c + shift) % 256:03d}" for c in codes)
            replacement = context.dialect.encoded_string(_b64(payload), key, shift)
            context.needs_helpers = True
        elif context.level >= 6:
            payload = ",".join(f"{c:03d}" for c in codes)
            replacement = context.dialect.encoded_string(_b64(payload), key)
            context.needs_helpers = True
        else:
            if context.syntax == LUA and len(codes) > LUA_INLINE_ARGUMENT_LIMIT:
                continue
            replacement = context.dialect.xor_string(", ".join(str(c) for c in codes), key)
        edits.append((token.start, token.end, replacement))
        encrypted += 1

    context.code = splice(context.code, edits)
    if encrypted:
        context.log_step(f"Encrypted {encrypted} string literals")


# Identifier scrambling

def _base36(number: int) -> str:
    digits = ""
    while True:
        number, remainder = divmod(number, 36)
        digits = _BASE36[remainder] + digits
        if number == 0:
            return digits


def scramble_identifiers(context: EncoderContext) -> None:
    """Give every renamable declared name a random, collision-free replacement."""
    rng = context.rng("identifiers")
    profile = get_profile(context.syntax)
    names = declared_names(context.original, context.syntax)
    taken = {t.text for t in tokenize(context.code, context.syntax) if t.kind == IDENTIFIER}
    length = max(1, context.level // 2)

    mapping = {}
    counter = 0
    for name in names:
        letter = rng.choice(string.ascii_letters)
        pool = "".join(rng.choice(_NAME_ALPHABET) for _ in range(5))
        while True:
            candidate = letter + pool[:length] + _base36(counter)
            counter += 1
            if candidate not in taken and not profile.is_protected(candidate):
                break
        taken.add(candidate)
        mapping[name] = candidate

    if not mapping:
        return
    context.code = substitute_identifiers(context.code, context.syntax, mapping)
    context.log_step(f"Renamed {len(mapping)} identifiers")


# Control-flow distortion

def _python_condition_end(tokens: list[Token], start: int) -> int:
    """Token index of the ``:`` closing a Python header, or -1."""
    depth = 0
    for index in range(start, len(tokens)):
        token = tokens[index]
        if token.kind == IDENTIFIER and token.text == "lambda":
            return -1
        if token.kind != SYMBOL:
            continue
        if token.text in "([{":
            depth += 1
        elif token.text in ")]}":
            depth -= 1
            if depth < 0:
                return -1
        elif token.text == ":" and depth == 0:
            following = tokens[index + 1] if index + 1 < len(tokens) else None
            if following is not None and following.text == "=" and following.start == token.end:
                continue
            return index
    return -1


def _starts_line(code: str, token: Token) -> bool:
    line_start = code.rfind("\n", 0, token.start) + 1
    return not code[line_start:token.start].strip()


def _condition_span(code: str, tokens: list[Token], index: int, syntax: str) -> Optional[tuple[int, int]]:
    """Character span of the condition governed by the keyword at ``index``."""
    if syntax == LUA:
        closer = "then" if tokens[index].text == "if" else "do"
        for position in range(index + 1, len(tokens)):
            token = tokens[position]
            if token.kind == IDENTIFIER and token.text == closer:
                return tokens[index + 1].start, tokens[position - 1].end
            if token.kind == IDENTIFIER and token.text in ("function", "if", "while"):
                return None
        return None

    if syntax == PYTHON:
        if not _starts_line(code, tokens[index]):
            return None
        end = _python_condition_end(tokens, index + 1)
        if end == -1 or end == index + 1:
            return None
        return tokens[index + 1].start, tokens[end - 1].end

    if index + 1 >= len(tokens) or tokens[index + 1].text != "(":
        return None
    close = find_matching(code, tokens[index + 1].start, syntax)
    if close == -1 or close == tokens[index + 1].end:
        return None
    return tokens[index + 1].end, close


_UNWRAPPABLE = {
    LUA: ("...",),
    PYTHON: ("yield", "await", ":="),
    JAVASCRIPT: ("yield", "await"),
}


def distort_control_flow(context: EncoderContext) -> None:
    """Guard ``if`` conditions with opaque predicates and wrap ``while`` conditions."""
    rng = context.rng("control_flow")
    syntax = context.syntax
    code = context.code
    tokens = tokenize(code, syntax)
    edits = []
    predicates = 0
    wrapped = 0
    for index, token in enumerate(tokens):
        if token.kind != IDENTIFIER or token.text not in ("if", "while"):
            continue
        if index > 0 and tokens[index - 1].text == ".":
            continue
        value = rng.randint(1, 99) if token.text == "if" else None
        if (token.text == "if" and context.level < 4) or (token.text == "while" and context.level < 7):
            continue
        span = _condition_span(code, tokens, index, syntax)
        if span is None:
            continue
        condition = code[span[0]:span[1]].strip()
        if token.text == "if":
            edits.append((span[0], span[1], context.dialect.opaque_condition(condition, value)))
            predicates += 1
        elif not any(marker in condition for marker in _UNWRAPPABLE.get(syntax, ())):
            edits.append((span[0], span[1], context.dialect.wrap_while(condition)))
            wrapped += 1

    context.code = splice(code, edits)
    if predicates:
        context.log_step(f"Added {predicates} opaque predicates")
    if wrapped:
        context.log_step(f"Wrapped {wrapped} loop conditions")


# Dead-code insertion

def _line_states(code: str, tokens: list[Token], syntax: str) -> list[tuple[bool, str, str]]:
    """Describe each line for dead-code placement.

    Each entry is ``(clean, enclosing_at_start, enclosing_at_end)``. A line is
    clean when it neither starts nor ends inside a multi-line string or
    comment. The enclosing context is the innermost open bracket, with
    JavaScript statement-block braces reported as ``"block"``.
    """
    states = []
    stack = []
    previous = ""
    position = 0
    line_start = 0
    for line in code.split("\n"):
        end = line_start + len(line)
        at_start = stack[-1] if stack else ""
        clean = not (position < len(tokens) and tokens[position].start < line_start)
        while position < len(tokens) and tokens[position].start < end:
            token = tokens[position]
            if token.end > end:
                clean = False
                break
            if token.kind == SYMBOL and token.text in "([{":
                kind = token.text
                if token.text == "{" and syntax not in (LUA, PYTHON):
                    kind = "block" if previous in _JS_BLOCK_PREFIXES else "{"
                stack.append(kind)
            elif token.kind == SYMBOL and token.text in ")]}" and stack:
                stack.pop()
            if token.kind != COMMENT:
                arrow = token.text == ">" and previous == "="
                previous = "=>" if arrow else token.text
            position += 1
        states.append((clean, at_start, stack[-1] if stack else ""))
        line_start = end + 1
    return states


def _code_text(line: str, syntax: str) -> str:
    """The stripped line, or an empty string for blank and comment-only lines."""
    marker = {LUA: "--", PYTHON: "#"}.get(syntax, "//")
    stripped = line.strip()
    if stripped.startswith(marker):
        return ""
    return stripped


def _is_boundary(lines: list[str], index: int, state: tuple[bool, str, str], syntax: str) -> bool:
    """Whether a statement can be inserted right after line ``index``."""
    clean, at_start, at_end = state
    text = _code_text(lines[index], syntax)
    if not clean or not text:
        return False

    if syntax == LUA:
        if at_end or text.endswith(_LUA_TRAILING_OPERATORS):
            return False
        for following in lines[index + 1:]:
            next_text = _code_text(following, syntax)
            if next_text:
                word = next_text.split(None, 1)[0].rstrip("(;")
                return word not in _LUA_BLOCK_CONTINUATIONS
        return False

    if syntax == PYTHON:
        if at_start or at_end or text.endswith((":", "\\", ",")) or text.startswith("@"):
            return False
        if index > 0 and lines[index - 1].rstrip().endswith("\\"):
            return False
        for following in lines[index + 1:]:
            if following.strip():
                return line_indent(following) <= line_indent(lines[index])
        return True

    return at_end in ("", "block") and text.endswith(";")


def _first_insertable_line(lines: list[str], syntax: str) -> int:
    """Python ``__future__`` imports must stay ahead of every other statement."""
    if syntax != PYTHON:
        return 0
    first = 0
    for index, line in enumerate(lines):
        if line.startswith("from __future__ import"):
            first = index
    return first


def insert_dead_code(context: EncoderContext) -> None:
    """Insert unreachable or side-effect-free statements after statement boundaries."""
    rng = context.rng("dead_code")
    syntax = context.syntax
    lines = context.code.split("\n")
    states = _line_states(context.code, tokenize(context.code, syntax), syntax)
    threshold = context.level / 10

    first = _first_insertable_line(lines, syntax)

    output = []
    inserted = 0
    for index, line in enumerate(lines):
        output.append(line)
        if index < first or not _is_boundary(lines, index, states[index], syntax):
            continue
        roll = rng.random()
        number = rng.randint(1, 9999)
        choice = rng.randint(0, 3)
        if roll >= threshold:
            continue
        indent = line[:line_indent(line)]
        snippet = context.dialect.dead_code(number, choice, indent)
        output.append(indent + snippet)
        inserted += 1

    context.code = "\n".join(output)
    if inserted:
        context.log_step(f"Inserted {inserted} dead code blocks")


# Anti-debug guards and runtime helpers

def insert_anti_debug(context: EncoderContext) -> None:
    guards = context.dialect.guards
    if context.level >= 8:
        selected = guards
    elif context.level >= 5:
        selected = guards[:1]
    else:
        return
    context.code = context.dialect.prepend(context.code, "\n".join(selected))
    context.log_step(f"Added {len(selected)} anti-debug guards")


def insert_helpers(context: EncoderContext) -> None:
    if not context.needs_helpers:
        return
    context.code = context.dialect.prepend(context.code, context.dialect.string_helpers())
    context.log_step("Added runtime decoders")


# Virtualization

def vm_wrap(context: EncoderContext) -> None:
    if context.level < 6:
        return
    context.code = context.dialect.vm_loader(_b64(context.code))
    context.log_step("Wrapped program in encoded loader")


def bytecode_wrap(context: EncoderContext) -> None:
    if context.level < 7:
        return
    byte_list = ", ".join(f"{byte:>3}" for byte in _b64(context.code).encode("ascii"))
    context.code = context.dialect.bytes_loader(byte_list)
    context.log_step("Encoded loader payload as a byte list")


def custom_wrap(context: EncoderContext) -> None:
    rng = context.rng("custom")
    shift = rng.randint(1, 255)
    if context.level < 9:
        return
    shifted = bytes((byte + shift) % 256 for byte in context.code.encode("utf-8"))
    payload = base64.b64encode(shifted).decode("ascii")[::-1]
    context.code = context.dialect.custom_loader(payload, shift)
    context.log_step("Applied shift, base64 and reverse layer")


# Each entry is (gating flag, stage); a None flag always runs.
ENCODER_STAGES: list[tuple[Optional[str], Callable[[EncoderContext], None]]] = [
    ("string_encryption", encrypt_strings),
    ("variable_renaming", scramble_identifiers),
    ("control_flow_obfuscation", distort_control_flow),
    ("dead_code_injection", insert_dead_code),
    ("anti_debug", insert_anti_debug),
    (None, insert_helpers),
    ("vm_protection", vm_wrap),
    ("bytecode_encryption", bytecode_wrap),
    ("custom_encryption", custom_wrap),
]
