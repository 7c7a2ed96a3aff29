"""Pattern catalog: named obfuscation detection rules.

Catalogs are built once at import time and never mutated, so they can be
shared between concurrent analyses without locking.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from codeunveil.core.decoding import (
    decode_base64_text,
    decode_char_code_arguments,
    decode_hex_text,
    quote_literal,
)
from codeunveil.core.errors import ExpressionError
from codeunveil.core.languages import LUA, PYTHON, get_profile
from codeunveil.core.scoring import SEVERITY_WEIGHTS

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Severity tier of a detection rule."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"

    @property
    def weight(self) -> int:
        return SEVERITY_WEIGHTS[self.value]


@dataclass(frozen=True)
class Match:
    """One occurrence of a pattern in an input string."""
    pattern_name: str
    offset: int
    raw_text: str


RewriteFn = Callable[[re.Match, str], str]


@dataclass(frozen=True)
class Pattern:
    """A named rule pairing a regex with a severity and an optional rewrite."""
    name: str
    languages: frozenset
    regex: re.Pattern
    description: str
    severity: Severity
    rewrite: Optional[RewriteFn] = None

    def matcher(self, text: str) -> list[Match]:
        """All non-overlapping matches of this pattern."""
        return [
            Match(pattern_name=self.name, offset=m.start(), raw_text=m.group(0))
            for m in self.regex.finditer(text)
        ]

    def applies_to(self, language: str) -> bool:
        return language in self.languages

    def apply_rewrite(
        self,
        code: str,
        language: str,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> tuple[str, int]:
        """Apply the rewrite to every match.

        Returns the new code and the number of matches actually rewritten.
        A match whose rewrite fails is left unchanged and reported via
        ``on_error``.
        """
        if self.rewrite is None:
            return code, 0

        count = 0

        def replace(match: re.Match) -> str:
            nonlocal count
            try:
                replacement = self.rewrite(match, language)
            except ExpressionError as e:
                if on_error is not None:
                    on_error(f"{self.name}: could not rewrite {match.group(0)[:60]!r} ({e})")
                return match.group(0)
            if replacement != match.group(0):
                count += 1
            return replacement

        return self.regex.sub(replace, code), count


def _decode_string_char(match: re.Match, language: str) -> str:
    return quote_literal(decode_char_code_arguments(match.group("args"), language), language)


def _global_table_access(match: re.Match, language: str) -> str:
    name = match.group("name")
    if not re.fullmatch(r"[A-Za-z_]\w*", name) or name in get_profile(language).reserved:
        return match.group(0)
    return name


def _table_index(match: re.Match, language: str) -> str:
    key = match.group("key")
    if key in get_profile(language).reserved:
        return match.group(0)

    # Only indexing expressions (t["k"], f()["k"], t[1]["k"]) become field access;
    # table constructor keys ({["k"] = v}) must stay bracketed.
    text = match.string
    index = match.start() - 1
    while index >= 0 and text[index] in " \t":
        index -= 1
    if index < 0 or not (text[index].isalnum() or text[index] in "_)]"):
        return match.group(0)
    return f".{key}"


def _decode_base64_call(match: re.Match, language: str) -> str:
    if language == PYTHON and not match.group("decode"):
        return match.group(0)
    return quote_literal(decode_base64_text(match.group("data")), language)


def _decode_hex_call(match: re.Match, language: str) -> str:
    if language == PYTHON and not match.group("decode"):
        return match.group(0)
    return quote_literal(decode_hex_text(match.group("data")), language)


def _merge_concatenation(match: re.Match, language: str) -> str:
    return quote_literal(match.group("left")[1:-1] + match.group("right")[1:-1], language)


_CHAR_ARGS = r"(?P<args>[\d\s,+\-*/%^~()xXa-fA-F]+?)"
_DECODE_SUFFIX = r"(?P<decode>\.decode\(\s*(?:[\"'][\w-]+[\"'])?\s*\))?"


def _p(
    name: str,
    regex: str,
    description: str,
    severity: Severity,
    rewrite: Optional[RewriteFn] = None,
    languages: tuple = (LUA,),
) -> Pattern:
    return Pattern(
        name=name,
        languages=frozenset(languages),
        regex=re.compile(regex),
        description=description,
        severity=severity,
        rewrite=rewrite,
    )


LURAPH_PATTERNS = (
    _p(
        "String Character Encoding",
        r"string\.char\s*\(\s*" + _CHAR_ARGS + r"\s*\)",
        "Encoded strings using string.char with numeric values",
        Severity.HIGH,
        _decode_string_char,
    ),
    _p(
        "Global Table Access",
        r"_G\s*\[\s*[\"'](?P<name>[^\"']+)[\"']\s*\]",
        "Obfuscated global variable access through _G table",
        Severity.MEDIUM,
        _global_table_access,
    ),
    _p(
        "Loadstring Obfuscation",
        r"loadstring\s*\(\s*[\"']([^\"']+)[\"']\s*\)",
        "Dynamic code execution through loadstring",
        Severity.HIGH,
    ),
    _p(
        "Table Index Obfuscation",
        r"\[\s*[\"'](?P<key>[a-zA-Z_][a-zA-Z0-9_]*)[\"']\s*\]",
        "Obfuscated table access using string indices",
        Severity.LOW,
        _table_index,
    ),
    _p(
        "Function Name Obfuscation",
        r"local\s+([a-zA-Z_]\w*)\s*=\s*([a-zA-Z_]\w*)",
        "Local variable assignments hiding function references",
        Severity.MEDIUM,
    ),
    _p(
        "VM Handler Pattern",
        r"function\s+[a-zA-Z_]\w*\s*\(\s*[a-zA-Z_]\w*\s*,\s*[a-zA-Z_]\w*\s*,\s*[a-zA-Z_]\w*\s*\)",
        "Lua VM handler functions with specific parameter patterns",
        Severity.EXTREME,
    ),
    _p(
        "Bytecode Loading",
        r"string\.dump\s*\(\s*[^)]+\s*\)|load\s*\(\s*string\.dump",
        "Bytecode serialization and loading patterns",
        Severity.EXTREME,
    ),
    _p(
        "Environment Manipulation",
        r"(getfenv|setfenv)\s*\(\s*[^)]+\s*\)",
        "Environment table manipulation for obfuscation",
        Severity.HIGH,
    ),
    _p(
        "Control Flow Obfuscation",
        r"if\s+[a-zA-Z_]\w*\s*==\s*\d+\s+then|while\s+[a-zA-Z_]\w*\s*~=\s*\d+\s+do",
        "Obfuscated control flow using numeric comparisons",
        Severity.MEDIUM,
    ),
    _p(
        "Anti-Debug Patterns",
        r"(debug\.getinfo|debug\.traceback|debug\.getlocal)",
        "Anti-debugging and analysis prevention techniques",
        Severity.HIGH,
    ),
)

UNIVERSAL_PATTERNS = (
    _p(
        "Base64 Encoding",
        r"(?:\batob|base64\.b64decode|Base64\.decode|\bbase64_decode)\s*\(\s*[\"'](?P<data>[A-Za-z0-9+/=]+)[\"']\s*\)"
        + _DECODE_SUFFIX,
        "Base64 encoded strings across multiple languages",
        Severity.HIGH,
        _decode_base64_call,
        languages=("javascript", "python", "java", "csharp", "php"),
    ),
    _p(
        "Hex Encoding",
        r"(?:bytes\.fromhex|Convert\.FromHexString)\s*\(\s*[\"'](?P<data>[0-9a-fA-F]+)[\"']\s*\)" + _DECODE_SUFFIX,
        "Hexadecimal encoded strings",
        Severity.MEDIUM,
        _decode_hex_call,
        languages=("python", "java", "csharp", "cpp", "c"),
    ),
    _p(
        "Dynamic Code Execution",
        r"\b(?:eval|exec|loadstring|assert)\s*\(\s*[^)]+\s*\)",
        "Dynamic code execution patterns",
        Severity.EXTREME,
        languages=("javascript", "python", "php", "lua"),
    ),
    _p(
        "String Concatenation Obfuscation",
        r"(?<![\w\"'\\])(?P<left>\"[^\"'\\\n]*\"|'[^\"'\\\n]*')\s*\+\s*(?P<right>\"[^\"'\\\n]*\"|'[^\"'\\\n]*')",
        "Obfuscated string concatenation",
        Severity.LOW,
        _merge_concatenation,
        languages=("javascript", "python", "java", "csharp"),
    ),
    _p(
        "Character Code Obfuscation",
        r"(?:String\.fromCharCode|\bchr|Character\.toString|\(char\))\s*\(\s*" + _CHAR_ARGS + r"\s*\)",
        "Character code based string obfuscation",
        Severity.HIGH,
        _decode_string_char,
        languages=("javascript", "python", "java", "csharp"),
    ),
)


def patterns_for(language: str) -> tuple:
    """Select the catalog for a language.

    Lua has its own catalog; every other language gets the cross-language
    patterns that list it. The result may be empty.
    """
    if language == LUA:
        return LURAPH_PATTERNS
    return tuple(p for p in UNIVERSAL_PATTERNS if p.applies_to(language))


def get_pattern(name: str) -> Pattern:
    """Look a pattern up by name across both catalogs."""
    for pattern in LURAPH_PATTERNS + UNIVERSAL_PATTERNS:
        if pattern.name == name:
            return pattern
    raise KeyError(name)
