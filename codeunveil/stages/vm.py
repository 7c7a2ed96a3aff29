"""VM instruction table decoding and bytecode round-trip simplification (Lua)."""

import re

from codeunveil.core.languages import LUA
from codeunveil.stages.base import Stage, StageContext

# Lua 5.1 opcode names by the 1-based numbering used in VM instruction tables.
LUA51_OPCODES = (
    "MOVE", "LOADK", "LOADBOOL", "LOADNIL", "GETUPVAL", "GETGLOBAL",
    "GETTABLE", "SETGLOBAL", "SETUPVAL", "SETTABLE", "NEWTABLE", "SELF",
    "ADD", "SUB", "MUL", "DIV", "MOD", "POW", "UNM", "NOT", "LEN",
    "CONCAT", "JMP", "EQ", "LT", "LE", "TEST", "TESTSET", "CALL",
    "TAILCALL", "RETURN", "FORLOOP", "FORPREP", "TFORLOOP", "SETLIST",
    "CLOSE", "CLOSURE",
)

_VM_TABLE = re.compile(
    r"local\s+(?P<name>[a-zA-Z_]\w*)\s*=\s*\{\s*(?P<body>(?:\[\d+\]\s*=\s*\d+\s*(?:[,;]\s*)?)+)\}"
)
_VM_ENTRY = re.compile(r"\[(\d+)\]\s*=\s*(\d+)")
_DUMP_ROUND_TRIP = re.compile(
    r"\b(?:loadstring|load)\s*\(\s*string\.dump\s*\(\s*(?P<target>[A-Za-z_][\w.]*)\s*\)\s*\)"
)
_DUMP = re.compile(r"string\.dump\s*\(")


def decode_opcode(value: int) -> str:
    """Name a VM opcode number, falling back to UNKNOWN_<n>."""
    if 1 <= value <= len(LUA51_OPCODES):
        return LUA51_OPCODES[value - 1]
    return f"UNKNOWN_{value}"


class VMStructureStage(Stage):
    """Decode VM instruction tables and unwrap load(string.dump(f))."""

    name = "vm"
    description = "Decode VM instruction tables and bytecode round trips"
    priority = 10
    languages = frozenset({LUA})

    def process(self, context: StageContext) -> StageContext:
        context.code = self._annotate_vm_tables(context)
        context.code = self._simplify_bytecode(context)
        return context

    def _annotate_vm_tables(self, context: StageContext) -> str:
        code = context.code
        handlers = 0

        def annotate(match: re.Match) -> str:
            nonlocal handlers
            table = match.group("name")
            decoded = []
            for key, value in _VM_ENTRY.findall(match.group("body")):
                opcode = decode_opcode(int(value))
                context.vm_instructions[f"{table}[{key}]"] = opcode
                decoded.append(f"[{key}]={opcode}")
                handlers += 1

            annotation = context.profile.comment(f"VM opcode table {table}: {', '.join(decoded)}")
            preceding = code[:match.start()].rstrip()
            if preceding.endswith(annotation):
                return match.group(0)
            return f"{annotation}\n{match.group(0)}"

        code = _VM_TABLE.sub(annotate, code)
        if handlers:
            context.bump("vm_handlers", handlers)
            context.log_step(f"Decrypted {handlers} VM handlers")
        return code

    def _simplify_bytecode(self, context: StageContext) -> str:
        code, count = _DUMP_ROUND_TRIP.subn(lambda m: m.group("target"), context.code)
        if count:
            context.bump("bytecode_simplified", count)
            context.log_step(f"Simplified {count} bytecode round trips")

        leftover = len(_DUMP.findall(code))
        if leftover:
            context.warn(f"{leftover} string.dump call(s) left in place; bytecode is not decompiled")
        return code
