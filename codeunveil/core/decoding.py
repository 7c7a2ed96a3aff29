"""Value decoding helpers shared by the catalog rewrites and the string stage."""

import ast
import base64
import binascii
import json
import operator
import string

from codeunveil.core.errors import ExpressionError
from codeunveil.core.languages import LUA, PYTHON

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.BitXor: operator.xor,
    ast.BitAnd: operator.and_,
    ast.BitOr: operator.or_,
    ast.LShift: operator.lshift,
    ast.RShift: operator.rshift,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Invert: operator.invert,
}

_MAX_EXPRESSION_LENGTH = 200
_MAX_EXPONENT = 64
_PRINTABLE = set(string.printable) - {"\x0b", "\x0c"}


def _eval_node(node):
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _eval_node(node.left)
        right = _eval_node(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > _MAX_EXPONENT:
            raise ExpressionError(f"Exponent too large: {right}")
        if isinstance(node.op, (ast.BitXor, ast.BitAnd, ast.BitOr, ast.LShift, ast.RShift)):
            left, right = int(left), int(right)
            if isinstance(node.op, ast.LShift) and right > _MAX_EXPONENT:
                raise ExpressionError(f"Shift too large: {right}")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        operand = _eval_node(node.operand)
        if isinstance(node.op, ast.Invert):
            operand = int(operand)
        return _UNARY_OPS[type(node.op)](operand)
    raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")


def evaluate_arithmetic(expression: str, language: str = LUA) -> int:
    """Evaluate a numeric literal expression without executing code.

    Only number literals, parentheses and arithmetic/bitwise operators are
    accepted. In Lua ``^`` is exponentiation and binary ``~`` is XOR.
    """
    expression = expression.strip()
    if not expression:
        raise ExpressionError("Empty expression")
    if len(expression) > _MAX_EXPRESSION_LENGTH:
        raise ExpressionError("Expression too long")

    if language == LUA:
        expression = expression.replace("^", "**")
        expression = _lua_xor_to_python(expression)

    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Malformed expression {expression!r}: {e.msg}") from e

    try:
        value = _eval_node(tree)
    except (ZeroDivisionError, OverflowError, TypeError) as e:
        raise ExpressionError(f"Cannot evaluate {expression!r}: {e}") from e

    if isinstance(value, float):
        if not value.is_integer():
            raise ExpressionError(f"Non-integer character code {value}")
        value = int(value)
    return value


def _lua_xor_to_python(expression: str) -> str:
    # Binary ~ (preceded by an operand) is XOR in Lua 5.3; unary ~ stays bitwise not.
    result = []
    previous = ""
    for char in expression:
        if char == "~" and previous and (previous.isalnum() or previous in ")_"):
            result.append("^")
        else:
            result.append(char)
        if not char.isspace():
            previous = char
    return "".join(result)


def split_arguments(arguments: str) -> list[str]:
    """Split a call argument list on top-level commas."""
    parts = []
    depth = 0
    current = []
    for char in arguments:
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    tail = "".join(current)
    if tail.strip() or parts:
        parts.append(tail)
    return [part.strip() for part in parts]


def chars_from_codes(codes: list[int]) -> str:
    """Turn character codes into a string, rejecting invalid code points."""
    try:
        return "".join(chr(code) for code in codes)
    except (ValueError, OverflowError) as e:
        raise ExpressionError(f"Invalid character code in {codes[:8]}: {e}") from e


def bytes_to_text(data: bytes) -> str:
    """Decode byte-valued character codes, preferring UTF-8."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def decode_char_code_arguments(arguments: str, language: str = LUA) -> str:
    """Decode a char-code call's argument list (``72, 100 + 1, ...``)."""
    parts = split_arguments(arguments)
    if not parts or any(not part for part in parts):
        raise ExpressionError(f"Empty argument in {arguments!r}")
    codes = [evaluate_arithmetic(part, language) for part in parts]
    if language == LUA:
        if any(code < 0 or code > 255 for code in codes):
            raise ExpressionError(f"Byte value out of range in {arguments!r}")
        return bytes_to_text(bytes(codes))
    return chars_from_codes(codes)


def decode_base64_text(data: str) -> str:
    """Decode base64 into printable text."""
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ExpressionError(f"Invalid base64 data: {e}") from e
    text = bytes_to_text(raw)
    if not is_printable_text(text):
        raise ExpressionError("Base64 payload is not printable text")
    return text


def decode_hex_text(data: str) -> str:
    """Decode a hex string into text."""
    if len(data) % 2:
        raise ExpressionError(f"Odd-length hex string {data[:16]!r}")
    try:
        return bytes_to_text(bytes.fromhex(data))
    except ValueError as e:
        raise ExpressionError(f"Invalid hex data: {e}") from e


def is_printable_text(text: str) -> bool:
    return all(char in _PRINTABLE or ord(char) > 127 for char in text)


def quote_literal(value: str, language: str) -> str:
    """Render ``value`` as a double-quoted string literal for ``language``."""
    if language == LUA:
        parts = []
        for char in value:
            code = ord(char)
            if char == "\\":
                parts.append("\\\\")
            elif char == '"':
                parts.append('\\"')
            elif char == "\n":
                parts.append("\\n")
            elif char == "\t":
                parts.append("\\t")
            elif code < 32 or code == 127:
                parts.append(f"\\{code:03d}")
            else:
                parts.append(char)
        return '"' + "".join(parts) + '"'

    if language == PYTHON:
        rendered = repr(value)
        if rendered.startswith("'") and '"' not in value:
            rendered = '"' + rendered[1:-1].replace("\\'", "'") + '"'
        return rendered

    return json.dumps(value, ensure_ascii=False)
