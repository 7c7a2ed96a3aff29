"""codeunveil - pattern-driven deobfuscator and obfuscator for Lua, JavaScript and Python."""

__version__ = "0.1.0"
__author__ = "codeunveil"

from codeunveil.config import Config
from codeunveil.core.pipeline import analyze_and_rewrite, encode, rewrite
from codeunveil.encoder import ObfuscationConfig

__all__ = [
    "__version__",
    "Config",
    "analyze_and_rewrite",
    "rewrite",
    "encode",
    "ObfuscationConfig",
]
