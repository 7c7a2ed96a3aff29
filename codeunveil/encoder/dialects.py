"""Per-language templates used by the encoder."""

import re
from abc import ABC, abstractmethod
from typing import Optional

from codeunveil.core.languages import JAVASCRIPT, LUA, PYTHON

# Prefix for every name the encoder introduces.
HELPER_PREFIX = "_cu_"


def opaque_predicate(value: int) -> str:
    """An arithmetic comparison that is always true: n*n + n is even."""
    return f"(({value} * {value} + {value}) % 2 == 0)"


class Dialect(ABC):
    """Abstract base class for encoder dialects."""

    name: str = "base"
    and_operator: str = "and"

    @abstractmethod
    def xor_string(self, codes: str, key: int) -> str:
        """Expression rebuilding a string from XOR-ed byte codes."""
        pass

    @abstractmethod
    def encoded_string(self, payload: str, key: int, shift: Optional[int] = None) -> str:
        """Expression rebuilding a string from a base64 payload of byte codes."""
        pass

    @abstractmethod
    def string_helpers(self) -> str:
        """Runtime helpers needed by ``encoded_string``."""
        pass

    @property
    @abstractmethod
    def guards(self) -> tuple[str, ...]:
        pass

    @abstractmethod
    def dead_code(self, number: int, choice: int, indent: str) -> str:
        pass

    def opaque_condition(self, condition: str, value: int) -> str:
        return f"{opaque_predicate(value)} {self.and_operator} ({condition})"

    @abstractmethod
    def wrap_while(self, condition: str) -> str:
        pass

    @abstractmethod
    def vm_loader(self, payload: str) -> str:
        pass

    @abstractmethod
    def bytes_loader(self, byte_list: str) -> str:
        pass

    @abstractmethod
    def custom_loader(self, reversed_payload: str, shift: int) -> str:
        pass

    def prepend(self, code: str, block: str) -> str:
        """Insert ``block`` before the program, after any shebang line."""
        if code.startswith("#!"):
            first, _, rest = code.partition("\n")
            return f"{first}\n{block}\n{rest}"
        return f"{block}\n{code}"


class LuaDialect(Dialect):
    name = LUA
    and_operator = "and"

    _XOR_TAIL = ':gsub(".", function(c) return string.char(c:byte() ~ {key}) end))'

    def xor_string(self, codes: str, key: int) -> str:
        return "(string.char(" + codes + ")" + self._XOR_TAIL.format(key=key)

    def encoded_string(self, payload: str, key: int, shift: Optional[int] = None) -> str:
        arguments = f'"{payload}"' if shift is None else f'"{payload}", {shift}'
        return f"(string.char({HELPER_PREFIX}codes({arguments}))" + self._XOR_TAIL.format(key=key)

    def string_helpers(self) -> str:
        return "\n".join([
            self._base64_helper(),
            f"local function {HELPER_PREFIX}codes(data, shift)",
            "  local codes = {}",
            f'  for value in {HELPER_PREFIX}b64(data):gmatch("%d+") do',
            "    codes[#codes + 1] = (tonumber(value) - (shift or 0)) % 256",
            "  end",
            "  return (table.unpack or unpack)(codes)",
            "end",
        ])

    def _base64_helper(self) -> str:
        return "\n".join([
            f"local function {HELPER_PREFIX}b64(data)",
            '  local alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"',
            '  data = data:gsub("[^" .. alphabet .. "=]", "")',
            '  return (data:gsub(".", function(ch)',
            '    if ch == "=" then return "" end',
            '    local bits, index = "", alphabet:find(ch, 1, true) - 1',
            '    for i = 6, 1, -1 do bits = bits .. (index % 2 ^ i - index % 2 ^ (i - 1) > 0 and "1" or "0") end',
            "    return bits",
            '  end):gsub("%d%d?%d?%d?%d?%d?%d?%d?", function(byte)',
            '    if #byte ~= 8 then return "" end',
            "    local value = 0",
            '    for i = 1, 8 do value = value + (byte:sub(i, i) == "1" and 2 ^ (8 - i) or 0) end',
            "    return string.char(value)",
            "  end))",
            "end",
        ])

    @property
    def guards(self) -> tuple[str, ...]:
        return (
            'if debug and debug.gethook and debug.gethook() then error("debugger detected") end',
            'if os and os.getenv and os.getenv("LUA_DEBUG") then error("debug mode not allowed") end',
        )

    def dead_code(self, number: int, choice: int, indent: str) -> str:
        snippets = (
            f"do local {HELPER_PREFIX}d{number} = {number} % 7 + 1 end",
            f"if {HELPER_PREFIX}n{number} then {HELPER_PREFIX}n{number} = nil end",
            f"do local {HELPER_PREFIX}t{number} = {{}} end",
            f"for {HELPER_PREFIX}i{number} = 1, 0 do end",
        )
        return snippets[choice % len(snippets)]

    def wrap_while(self, condition: str) -> str:
        return f"(function() return {condition} end)()"

    def vm_loader(self, payload: str) -> str:
        return f'{self._base64_helper()}\nreturn (loadstring or load)({HELPER_PREFIX}b64("{payload}"))(...)'

    def bytes_loader(self, byte_list: str) -> str:
        p = HELPER_PREFIX
        return "\n".join([
            self._base64_helper(),
            f"local {p}bytes = {{{byte_list}}}",
            f"local {p}parts = {{}}",
            f"for {p}i = 1, #{p}bytes do {p}parts[{p}i] = string.char({p}bytes[{p}i]) end",
            f"return (loadstring or load)({p}b64(table.concat({p}parts)))(...)",
        ])

    def custom_loader(self, reversed_payload: str, shift: int) -> str:
        p = HELPER_PREFIX
        decoded = (
            f'({p}b64(("{reversed_payload}"):reverse()):gsub(".", '
            f"function(c) return string.char((c:byte() - {shift}) % 256) end))"
        )
        return f"{self._base64_helper()}\nreturn (loadstring or load)({decoded})(...)"


class JavaScriptDialect(Dialect):
    name = JAVASCRIPT
    and_operator = "&&"

    def xor_string(self, codes: str, key: int) -> str:
        return f"new TextDecoder().decode(Uint8Array.from([{codes}], c => c ^ {key}))"

    def encoded_string(self, payload: str, key: int, shift: Optional[int] = None) -> str:
        arguments = f'"{payload}"' if shift is None else f'"{payload}", {shift}'
        return f"new TextDecoder().decode(Uint8Array.from({HELPER_PREFIX}codes({arguments}), c => c ^ {key}))"

    def string_helpers(self) -> str:
        return "\n".join([
            f"function {HELPER_PREFIX}codes(data, shift = 0) {{",
            '  return atob(data).split(",").map((value) => (Number(value) - shift + 256) % 256);',
            "}",
        ])

    def opaque_condition(self, condition: str, value: int) -> str:
        return f"{opaque_predicate(value).replace('==', '===')} && ({condition})"

    @property
    def guards(self) -> tuple[str, ...]:
        return (
            f"(function () {{ const {HELPER_PREFIX}t = Date.now(); debugger; "
            f'if (Date.now() - {HELPER_PREFIX}t > 100) {{ throw new Error("debugger detected"); }} }})();',
            "setInterval(() => { debugger; }, 4000);",
        )

    def dead_code(self, number: int, choice: int, indent: str) -> str:
        p = HELPER_PREFIX
        snippets = (
            f"var {p}d{number} = {number} % 7 + 1;",
            f'if (typeof {p}n{number} !== "undefined") {{ {p}n{number} = null; }}',
            f"void ({number} * 0);",
            f"for (let {p}i{number} = 0; {p}i{number} < 0; {p}i{number}++) {{}}",
        )
        return snippets[choice % len(snippets)]

    def wrap_while(self, condition: str) -> str:
        return f"(() => {condition})()"

    def _run(self, base64_expression: str, byte_transform: str = "c.charCodeAt(0)") -> str:
        return (
            "new Function(new TextDecoder().decode("
            f"Uint8Array.from(atob({base64_expression}), c => {byte_transform})))();"
        )

    def vm_loader(self, payload: str) -> str:
        return self._run(f'"{payload}"')

    def bytes_loader(self, byte_list: str) -> str:
        return self._run(f'[{byte_list}].map(c => String.fromCharCode(c)).join("")')

    def custom_loader(self, reversed_payload: str, shift: int) -> str:
        return self._run(
            f'"{reversed_payload}".split("").reverse().join("")',
            f"(c.charCodeAt(0) - {shift} + 256) % 256",
        )


class PythonDialect(Dialect):
    name = PYTHON
    and_operator = "and"

    _IMPORT_BASE64 = f"import base64 as {HELPER_PREFIX}base64"
    _PREAMBLE = re.compile(r"^(?:#![^\n]*\n)?(?:#[^\n]*coding[:=][^\n]*\n)?(?:from __future__ import [^\n]*\n)*")

    def xor_string(self, codes: str, key: int) -> str:
        return f"bytes(b ^ {key} for b in [{codes}]).decode()"

    def encoded_string(self, payload: str, key: int, shift: Optional[int] = None) -> str:
        arguments = f'"{payload}"' if shift is None else f'"{payload}", {shift}'
        return f"bytes(b ^ {key} for b in {HELPER_PREFIX}codes({arguments})).decode()"

    def string_helpers(self) -> str:
        return "\n".join([
            self._IMPORT_BASE64,
            "",
            "",
            f"def {HELPER_PREFIX}codes(data, shift=0):",
            f'    return [(int(value) - shift) % 256 for value in {HELPER_PREFIX}base64.b64decode(data).decode().split(",")]',
            "",
        ])

    @property
    def guards(self) -> tuple[str, ...]:
        return (
            'import sys\nif sys.gettrace() is not None:\n    raise SystemExit("debugger detected")',
            'import sys\nif "pydevd" in sys.modules:\n    raise SystemExit("debugger detected")',
        )

    def dead_code(self, number: int, choice: int, indent: str) -> str:
        p = HELPER_PREFIX
        snippets = (
            f"{p}d{number} = {number} % 7 + 1",
            f"if {number} < 0:\n{indent}    {p}d{number} = None",
            f"{p}sink = [{number}][0] * 0",
            f"for {p}i{number} in range(0):\n{indent}    pass",
        )
        return snippets[choice % len(snippets)]

    def wrap_while(self, condition: str) -> str:
        return f"(lambda: {condition})()"

    def vm_loader(self, payload: str) -> str:
        return f'{self._IMPORT_BASE64}\nexec({HELPER_PREFIX}base64.b64decode("{payload}").decode())'

    def bytes_loader(self, byte_list: str) -> str:
        return f"{self._IMPORT_BASE64}\nexec({HELPER_PREFIX}base64.b64decode(bytes([{byte_list}])).decode())"

    def custom_loader(self, reversed_payload: str, shift: int) -> str:
        return (
            f"{self._IMPORT_BASE64}\n"
            f'exec(bytes((b - {shift}) % 256 for b in {HELPER_PREFIX}base64.b64decode("{reversed_payload}"[::-1])).decode())'
        )

    def prepend(self, code: str, block: str) -> str:
        """Insert ``block`` after the shebang, coding line and __future__ imports."""
        preamble = self._PREAMBLE.match(code).group(0)
        rest = code[len(preamble):]
        return f"{preamble}{block}\n{rest}"


DIALECTS = {
    LUA: LuaDialect(),
    JAVASCRIPT: JavaScriptDialect(),
    PYTHON: PythonDialect(),
}


def dialect_for(language: str) -> tuple[Dialect, Optional[str]]:
    """Return the dialect for ``language`` and a warning if it had to fall back."""
    dialect = DIALECTS.get(language)
    if dialect is not None:
        return dialect, None
    return DIALECTS[JAVASCRIPT], f"No dedicated encoder dialect for '{language}'; using JavaScript templates"
