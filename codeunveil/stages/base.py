"""Base stage interface and the per-run bookkeeping context."""

import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from codeunveil.core.errors import StageError
from codeunveil.core.languages import LanguageProfile, get_profile

logger = logging.getLogger(__name__)


@dataclass
class StageContext:
    """Context passed from stage to stage during one pipeline run.

    A fresh context is created per invocation and discarded once the report
    is built; nothing in it is shared between runs.
    """
    code: str
    language: str
    profile: Optional[LanguageProfile] = None
    string_table: dict[str, str] = field(default_factory=dict)
    variable_map: dict[str, str] = field(default_factory=dict)
    function_table: dict[str, str] = field(default_factory=dict)
    vm_instructions: dict[str, str] = field(default_factory=dict)
    counters: Counter = field(default_factory=Counter)
    step_log: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    options: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.profile is None:
            self.profile = get_profile(self.language)

    def log_step(self, message: str) -> None:
        self.step_log.append(message)

    def warn(self, message: str) -> None:
        logger.debug("warning: %s", message)
        self.warnings.append(message)

    def error(self, message: str) -> None:
        logger.debug("error: %s", message)
        self.errors.append(message)

    def bump(self, counter: str, amount: int = 1) -> None:
        self.counters[counter] += amount


def splice(code: str, edits: list[tuple[int, int, str]]) -> str:
    """Apply non-overlapping ``(start, end, replacement)`` edits to ``code``."""
    parts = []
    cursor = 0
    for start, end, replacement in sorted(edits):
        if start < cursor:
            continue
        parts.append(code[cursor:start])
        parts.append(replacement)
        cursor = end
    parts.append(code[cursor:])
    return "".join(parts)


def line_indent(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def python_block_end(lines: list[str], header_index: int) -> int:
    """Index one past the last line of the indented block under ``header_index``."""
    base = line_indent(lines[header_index])
    index = header_index + 1
    last = header_index
    while index < len(lines):
        line = lines[index]
        if line.strip():
            if line_indent(line) <= base:
                break
            last = index
        index += 1
    return last + 1


def dedent_lines(lines: list[str], amount: int) -> list[str]:
    return [line[min(amount, line_indent(line)):] if line.strip() else line for line in lines]


class Stage(ABC):
    """Abstract base class for rewrite stages."""

    name: str = "base_stage"
    description: str = "Base stage class"
    priority: int = 100  # Lower priority runs first
    languages: Optional[frozenset] = None  # None means every language

    @abstractmethod
    def process(self, context: StageContext) -> StageContext:
        """Transform ``context.code`` and return the context.

        Args:
            context: Current processing context

        Returns:
            Updated context with modifications
        """
        pass

    def should_run(self, context: StageContext) -> bool:
        """Determine if this stage applies to the context's language."""
        return self.languages is None or context.language in self.languages


class StageChain:
    """A fixed, priority-ordered sequence of stages."""

    def __init__(self, stages: Optional[list[Stage]] = None):
        self.stages: list[Stage] = []
        for stage in stages or []:
            self.add_stage(stage)

    def add_stage(self, stage: Stage) -> "StageChain":
        """Add a stage to the chain.

        Args:
            stage: Stage to add

        Returns:
            Self for chaining
        """
        self.stages.append(stage)
        self.stages.sort(key=lambda s: s.priority)
        return self

    @property
    def names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    def run(self, context: StageContext) -> StageContext:
        """Run all applicable stages in order.

        A stage that cannot proceed is recorded in ``context.errors`` and the
        next stage runs on the last good code. Unexpected exceptions are
        programming defects and propagate.
        """
        for stage in self.stages:
            if not stage.should_run(context):
                continue

            before = context.code
            logger.debug("Running stage %s on %d chars", stage.name, len(before))
            try:
                context = stage.process(context)
            except (StageError, re.error, RecursionError) as e:
                context.code = before
                context.error(f"Stage '{stage.name}' failed: {e}")
        return context
