"""Language tags and per-language lexical profiles."""

import builtins
import keyword
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from codeunveil.core.errors import InvalidLanguageError

LUA = "lua"
JAVASCRIPT = "javascript"
PYTHON = "python"

_ALIASES = {
    "js": JAVASCRIPT,
    "node": JAVASCRIPT,
    "nodejs": JAVASCRIPT,
    "typescript": JAVASCRIPT,
    "ts": JAVASCRIPT,
    "py": PYTHON,
    "python3": PYTHON,
    "luau": LUA,
    "roblox": LUA,
    "c#": "csharp",
    "cs": "csharp",
    "c++": "cpp",
    "cc": "cpp",
}

_SUFFIXES = {
    ".lua": LUA,
    ".luau": LUA,
    ".js": JAVASCRIPT,
    ".mjs": JAVASCRIPT,
    ".cjs": JAVASCRIPT,
    ".ts": JAVASCRIPT,
    ".py": PYTHON,
    ".java": "java",
    ".cs": "csharp",
    ".php": "php",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
}

_LUA_RESERVED = frozenset({
    "and", "break", "do", "else", "elseif", "end", "false", "for",
    "function", "goto", "if", "in", "local", "nil", "not", "or", "repeat",
    "return", "then", "true", "until", "while",
})

_LUA_BUILTINS = frozenset({
    "print", "string", "table", "math", "io", "os", "debug", "coroutine",
    "utf8", "bit32", "pairs", "ipairs", "next", "select", "type",
    "tostring", "tonumber", "require", "load", "loadstring", "dofile",
    "pcall", "xpcall", "error", "assert", "rawget", "rawset", "rawequal",
    "rawlen", "setmetatable", "getmetatable", "unpack", "getfenv",
    "setfenv", "collectgarbage", "self", "arg", "game", "workspace",
    "script", "_G", "_ENV", "_VERSION",
})

_JS_RESERVED = frozenset({
    "break", "case", "catch", "class", "const", "continue", "debugger",
    "default", "delete", "do", "else", "export", "extends", "false",
    "finally", "for", "function", "if", "import", "in", "instanceof",
    "let", "new", "null", "of", "return", "super", "switch", "this",
    "throw", "true", "try", "typeof", "var", "void", "while", "with",
    "yield", "async", "await", "static", "get", "set",
})

_JS_BUILTINS = frozenset({
    "console", "window", "document", "globalThis", "self", "Math",
    "String", "Number", "Boolean", "Object", "Array", "JSON", "Date",
    "Error", "TypeError", "RegExp", "Promise", "Symbol", "Map", "Set",
    "Function", "Uint8Array", "TextDecoder", "TextEncoder", "atob", "btoa",
    "eval", "escape", "unescape", "decodeURIComponent",
    "encodeURIComponent", "parseInt", "parseFloat", "isNaN", "undefined",
    "NaN", "Infinity", "require", "module", "exports", "process",
    "setTimeout", "setInterval", "clearTimeout", "clearInterval",
    "arguments",
})

_PY_RESERVED = frozenset(keyword.kwlist) | frozenset(getattr(keyword, "softkwlist", ())) | {"print", "exec"}

_PY_BUILTINS = frozenset(name for name in dir(builtins) if not name.startswith("__")) | {
    "self", "cls", "sys", "os", "base64", "ctypes", "subprocess",
    "__name__", "__file__", "__import__",
}

# Other languages whose reserved words the conservative profile must also respect.
_OTHER_RESERVED = frozenset({
    "abstract", "boolean", "byte", "char", "double", "enum", "final",
    "float", "implements", "int", "interface", "long", "native",
    "package", "private", "protected", "public", "short", "synchronized",
    "throws", "transient", "volatile", "struct", "union", "unsigned",
    "signed", "sizeof", "typedef", "namespace", "using", "template",
    "virtual", "operator", "friend", "inline", "echo", "foreach",
    "elif", "def", "lambda", "pass", "raise", "except", "is", "as",
    "from", "global", "del", "not", "or", "and", "nil", "local", "then",
    "end", "elseif", "until", "repeat", "goto", "string", "object",
    "bool", "decimal", "out", "ref", "params", "base", "fn", "go",
})


@dataclass(frozen=True)
class LanguageProfile:
    """Lexical facts about a language used by the rewrite stages."""
    name: str
    reserved: frozenset
    builtins: frozenset
    line_comment: str
    block_comment: Optional[tuple[str, str]]
    neutral_value: str
    identifier_pattern: str = r"[A-Za-z_]\w*"

    def is_protected(self, name: str) -> bool:
        """Reserved words and builtins are never renamed."""
        return name in self.reserved or name in self.builtins

    def comment(self, text: str) -> str:
        """Render a full-line comment."""
        return f"{self.line_comment} {text}"

    def inline_comment(self, text: str) -> Optional[str]:
        """Render a comment that can sit in the middle of an expression."""
        if self.block_comment is None:
            return None
        start, end = self.block_comment
        return f"{start} {text} {end}"


_PROFILES = {
    LUA: LanguageProfile(
        name=LUA,
        reserved=_LUA_RESERVED,
        builtins=_LUA_BUILTINS,
        line_comment="--",
        block_comment=("--[[", "]]"),
        neutral_value="nil",
    ),
    JAVASCRIPT: LanguageProfile(
        name=JAVASCRIPT,
        reserved=_JS_RESERVED,
        builtins=_JS_BUILTINS,
        line_comment="//",
        block_comment=("/*", "*/"),
        neutral_value="undefined",
        identifier_pattern=r"[A-Za-z_$][\w$]*",
    ),
    PYTHON: LanguageProfile(
        name=PYTHON,
        reserved=_PY_RESERVED,
        builtins=_PY_BUILTINS,
        line_comment="#",
        block_comment=None,
        neutral_value="None",
    ),
}


def _conservative_profile(name: str) -> LanguageProfile:
    return LanguageProfile(
        name=name,
        reserved=_LUA_RESERVED | _JS_RESERVED | _PY_RESERVED | _OTHER_RESERVED,
        builtins=_LUA_BUILTINS | _JS_BUILTINS,
        line_comment="//",
        block_comment=("/*", "*/"),
        neutral_value="null",
    )


def normalize_language(tag) -> str:
    """Normalize a caller-supplied language tag.

    Unknown tags are kept as-is so they can fall back to the cross-language
    catalog; only missing or non-string tags are rejected.
    """
    if not isinstance(tag, str):
        raise InvalidLanguageError(f"Language tag must be a string, got {type(tag).__name__}")

    normalized = tag.strip().lower()
    if not normalized:
        raise InvalidLanguageError("Language tag is empty")

    return _ALIASES.get(normalized, normalized)


def get_profile(language: str) -> LanguageProfile:
    """Return the profile for a normalized language tag."""
    profile = _PROFILES.get(language)
    if profile is None:
        return _conservative_profile(language)
    return profile


def language_from_path(path: Path) -> Optional[str]:
    """Guess a language tag from a file suffix."""
    return _SUFFIXES.get(path.suffix.lower())
