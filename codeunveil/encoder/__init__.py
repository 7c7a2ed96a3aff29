"""Obfuscation encoder: the inverse direction of the rewrite pipeline."""

import logging
import time

from codeunveil.core.report import ProcessingReport, build_encoder_report
from codeunveil.core.scoring import ENCODER_CONFIDENCE, encoder_quality
from codeunveil.encoder.dialects import Dialect, dialect_for
from codeunveil.encoder.options import FLAG_NAMES, MAX_LEVEL, MIN_LEVEL, ObfuscationConfig
from codeunveil.encoder.stages import ENCODER_STAGES, EncoderContext, run_seed

logger = logging.getLogger(__name__)

__all__ = [
    "Dialect",
    "EncoderContext",
    "FLAG_NAMES",
    "MAX_LEVEL",
    "MIN_LEVEL",
    "ObfuscationConfig",
    "encode_code",
]


def encode_code(code: str, language: str, options: ObfuscationConfig) -> ProcessingReport:
    """Obfuscate ``code`` and report what was applied.

    Args:
        code: Source code to protect
        language: Normalized language tag
        options: Level, per-protection flags and optional seed

    Returns:
        A report in the same shape as a deobfuscation report
    """
    started = time.perf_counter()
    dialect, warning = dialect_for(language)
    context = EncoderContext(
        code=code,
        original=code,
        language=language,
        level=options.level,
        dialect=dialect,
        seed=run_seed(code, language, options.seed),
    )
    if warning:
        context.warn(warning)

    for flag, stage in ENCODER_STAGES:
        if flag is None or getattr(options, flag):
            stage(context)

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.debug(
        "Encoded %d chars of %s at level %d into %d chars in %.1f ms",
        len(code), language, options.level, len(context.code), elapsed_ms,
    )
    return build_encoder_report(
        input_code=code,
        output_code=context.code,
        language=language,
        level=options.level,
        enabled_flags=len(options.enabled_flags),
        quality=encoder_quality(options.level),
        confidence=ENCODER_CONFIDENCE,
        elapsed_ms=elapsed_ms,
        step_log=context.step_log,
        warnings=context.warnings,
    )
