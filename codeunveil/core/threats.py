"""Threat scanner for dangerous runtime behavior left in the code."""

import re

THREAT_CATALOG = (
    (re.compile(r"\beval\s*\("), "Dynamic code execution detected"),
    (re.compile(r"\bloadstring\s*\(|(?<![\w.:])load\s*\("), "Dynamic string loading detected"),
    (re.compile(r"(?<![\w.])exec\s*\("), "Dynamic exec call detected"),
    (re.compile(r"\bos\.execute\s*\(|\bos\.system\s*\("), "System command execution detected"),
    (re.compile(r"\bio\.popen\s*\(|\bchild_process\b|\bsubprocess\.\w+\s*\("), "Process execution detected"),
    (re.compile(r"require\s*\(?\s*[\"'](?:socket|net|dgram)[\"']|\bsocket\.socket\s*\("), "Network socket usage detected"),
    (
        re.compile(r"require\s*\(?\s*[\"'](?:http|https|ssl\.https)[\"']|:HttpGet\s*\(|\bXMLHttpRequest\b|\burllib\.request\b"),
        "HTTP client usage detected",
    ),
    (re.compile(r"\b(?:getfenv|setfenv)\s*\("), "Environment manipulation detected"),
    (re.compile(r"\bnew\s+Function\s*\(|(?<![\w.])Function\s*\(\s*[\"'`]"), "Runtime function construction detected"),
)


def scan_threats(code: str) -> list[str]:
    """Return one message per catalog entry that matches, in catalog order."""
    return [message for pattern, message in THREAT_CATALOG if pattern.search(code)]
