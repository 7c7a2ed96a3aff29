"""Entry points: analyze-and-rewrite, bare rewrite, and encode."""

import logging
import time
from typing import Optional, Union

from codeunveil.config import Config
from codeunveil.core.analyzer import analyze
from codeunveil.core.errors import InputTooLargeError
from codeunveil.core.languages import normalize_language
from codeunveil.core.report import ProcessingReport, build_report
from codeunveil.core.scoring import ConfidencePolicy
from codeunveil.core.threats import scan_threats
from codeunveil.encoder import ObfuscationConfig, encode_code
from codeunveil.stages import (
    AntiDebugStage,
    BeautifyStage,
    ControlFlowStage,
    DeadCodeStage,
    FunctionRestorationStage,
    IdentifierNormalizationStage,
    StageChain,
    StageContext,
    StringDecryptionStage,
    VMStructureStage,
)

logger = logging.getLogger(__name__)


def build_rewrite_chain(config: Optional[Config] = None) -> StageChain:
    """The fixed, priority-ordered rewrite chain."""
    config = config or Config()
    return StageChain([
        VMStructureStage(),
        StringDecryptionStage(),
        DeadCodeStage(),
        ControlFlowStage(),
        FunctionRestorationStage(),
        IdentifierNormalizationStage(),
        AntiDebugStage(),
        BeautifyStage(indent_width=config.indent_width, add_header=config.add_header),
    ])


def validate_input(code: str, language: str, config: Config) -> str:
    """Run the fatal checks and return the normalized language tag."""
    if not isinstance(code, str):
        raise TypeError(f"code must be str, not {type(code).__name__}")
    language = normalize_language(language)
    size = len(code.encode("utf-8"))
    if size > config.max_input_bytes:
        raise InputTooLargeError(size, config.max_input_bytes)
    return language


def rewrite(code: str, language: str, config: Optional[Config] = None) -> tuple[str, StageContext]:
    """Run the rewrite chain over ``code``.

    Returns the rewritten code and the run's bookkeeping context.
    """
    config = config or Config()
    language = validate_input(code, language, config)
    context = StageContext(code=code, language=language, options=config.stage_options())
    context = build_rewrite_chain(config).run(context)
    return context.code, context


def analyze_and_rewrite(
    code: str,
    language: str,
    *,
    policy: Optional[Union[ConfidencePolicy, str]] = None,
    config: Optional[Config] = None,
) -> ProcessingReport:
    """Analyze ``code``, rewrite it, scan the result and build the report.

    Raises:
        TypeError: ``code`` is not a string
        InvalidLanguageError: the language tag is empty or not a string
        InputTooLargeError: the input exceeds ``config.max_input_bytes``
    """
    config = config or Config()
    policy = ConfidencePolicy(policy or config.confidence_policy)
    language = validate_input(code, language, config)

    started = time.perf_counter()
    analysis = analyze(code, language)
    output, context = rewrite(code, language, config)
    threats = scan_threats(output)
    elapsed_ms = (time.perf_counter() - started) * 1000

    logger.debug(
        "Processed %d chars of %s in %.1f ms: %d steps, %d warnings, %d errors",
        len(code), language, elapsed_ms, len(context.step_log), len(context.warnings), len(context.errors),
    )
    return build_report(code, output, analysis, context, policy, elapsed_ms, threats)


def encode(code: str, language: str, options: ObfuscationConfig, *, settings: Optional[Config] = None) -> ProcessingReport:
    """Obfuscate ``code`` according to ``options``.

    ``settings.encoder_seed`` applies when ``options`` carries no seed.
    """
    settings = settings or Config()
    language = validate_input(code, language, settings)
    if options.seed is None and settings.encoder_seed is not None:
        options = options.model_copy(update={"seed": settings.encoder_seed})
    return encode_code(code, language, options)
