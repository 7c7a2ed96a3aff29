"""Naming heuristics shared by function restoration and identifier normalization."""

import re

# Rotating vocabulary for renamed variables: data_1, value_2, result_3, ...
VARIABLE_VOCABULARY = ("data", "value", "result", "temp", "buffer", "config", "state", "info")

# Best-guess function names keyed by the obfuscated short name.
FUNCTION_NAMES = {
    "a": "init",
    "b": "process",
    "c": "validate",
    "d": "execute",
    "e": "cleanup",
    "f": "helper",
    "g": "utility",
    "h": "handler",
}

# Common meaningful short names to preserve
PRESERVED_NAMES = frozenset({
    "i", "j", "k",  # Loop counters
    "x", "y", "z",  # Coordinates
    "id", "db", "io", "ui", "os",
    "fn", "cb", "ev", "el", "tx", "rx",
    "up", "on", "to", "ok",
})

_SHORT_SHAPE = re.compile(r"^[A-Za-z]{1,3}\d*$")
_GENERATED = re.compile(r"^(?:" + "|".join(VARIABLE_VOCABULARY) + r"|param|restored)_\d+$")


def is_obfuscated_name(name: str, preserve_common: bool = True) -> bool:
    """Check if a name looks machine-generated.

    Considers names as obfuscated if they are:
    - One or two characters (a, _b, q1)
    - Up to three letters, optionally followed by digits (abc, x1, abc12)
    """
    if not name:
        return False
    if preserve_common and name.lower() in PRESERVED_NAMES:
        return False
    if len(name) <= 2:
        return True
    return bool(_SHORT_SHAPE.match(name))


def is_generated_name(name: str) -> bool:
    """Names this tool produces itself (data_1, param_2, restored_3)."""
    return bool(_GENERATED.match(name))


def unique_name(base: str, taken: set) -> str:
    """Return ``base`` or ``base_<n>``, whichever is not yet taken."""
    if base not in taken:
        return base
    suffix = 2
    while f"{base}_{suffix}" in taken:
        suffix += 1
    return f"{base}_{suffix}"


def function_name_for(short_name: str) -> str:
    return FUNCTION_NAMES.get(short_name, f"restored_{short_name}")


def vocabulary_name(index: int) -> str:
    """The ``index``-th (1-based) name from the rotating vocabulary."""
    return f"{VARIABLE_VOCABULARY[(index - 1) % len(VARIABLE_VOCABULARY)]}_{index}"
