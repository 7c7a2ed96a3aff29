"""Rewrite stages for codeunveil."""

from codeunveil.stages.anti_debug import AntiDebugStage
from codeunveil.stages.base import Stage, StageChain, StageContext
from codeunveil.stages.beautify import BeautifyStage
from codeunveil.stages.control_flow import ControlFlowStage
from codeunveil.stages.dead_code import DeadCodeStage
from codeunveil.stages.functions import FunctionRestorationStage
from codeunveil.stages.identifiers import IdentifierNormalizationStage
from codeunveil.stages.strings import StringDecryptionStage
from codeunveil.stages.vm import VMStructureStage

__all__ = [
    "Stage",
    "StageChain",
    "StageContext",
    "VMStructureStage",
    "StringDecryptionStage",
    "DeadCodeStage",
    "ControlFlowStage",
    "FunctionRestorationStage",
    "IdentifierNormalizationStage",
    "AntiDebugStage",
    "BeautifyStage",
]
