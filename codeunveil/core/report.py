"""Report building: combine analysis, bookkeeping and threats into one result."""

from dataclasses import asdict, dataclass, field
from typing import Optional

from codeunveil.core.analyzer import AnalysisResult
from codeunveil.core.languages import JAVASCRIPT, LUA, PYTHON, get_profile
from codeunveil.core.lexer import IDENTIFIER, identifier_tokens, tokenize
from codeunveil.core.scoring import ConfidencePolicy, apply_confidence_policy, code_quality, complexity_reduction

_FUNCTION_KEYWORDS = {
    LUA: frozenset({"function"}),
    PYTHON: frozenset({"def", "lambda"}),
    JAVASCRIPT: frozenset({"function"}),
}


@dataclass(frozen=True)
class ReportAnalysis:
    """Metrics describing one pipeline run."""
    language: str
    obfuscation_type: str
    obfuscation_level: str
    confidence: int
    confidence_policy: str
    patterns_detected: int
    code_quality: int
    complexity_reduction: int
    processing_time_ms: float
    bytes_processed: int
    line_count: int
    function_count: int
    variable_count: int
    strings_decrypted: int = 0
    variables_renamed: int = 0
    functions_restored: int = 0
    vm_handlers_detected: int = 0
    bytecode_simplified: int = 0
    control_flow_simplified: int = 0
    anti_debug_removed: int = 0
    dead_code_removed: int = 0
    detected_patterns: tuple = field(default_factory=tuple)
    advanced_patterns: tuple = field(default_factory=tuple)
    security_threats: tuple = field(default_factory=tuple)
    step_log: tuple = field(default_factory=tuple)

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("detected_patterns", "advanced_patterns", "security_threats", "step_log"):
            data[key] = list(data[key])
        return data


@dataclass(frozen=True)
class ProcessingReport:
    """The result returned to callers; read-only once built."""
    output_code: str
    input_code: str
    analysis: ReportAnalysis
    warnings: tuple = field(default_factory=tuple)
    errors: tuple = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        """True when the run was confident and clean."""
        return not self.warnings and not self.errors

    def to_dict(self, include_code: bool = True) -> dict:
        data = {
            "analysis": self.analysis.to_dict(),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }
        if include_code:
            data["output_code"] = self.output_code
            data["input_code"] = self.input_code
        return data


def count_functions(code: str, language: str) -> int:
    """Count function definitions in ``code`` from its tokens."""
    keywords = _FUNCTION_KEYWORDS.get(language, _FUNCTION_KEYWORDS[JAVASCRIPT])
    tokens = tokenize(code, language)
    count = sum(1 for t in tokens if t.kind == IDENTIFIER and t.text in keywords)
    if language not in (LUA, PYTHON):
        count += sum(
            1 for a, b in zip(tokens, tokens[1:])
            if a.text == "=" and b.text == ">" and a.end == b.start
        )
    return count


def count_variables(code: str, language: str) -> int:
    """Count distinct non-keyword, non-builtin names referenced in ``code``."""
    profile = get_profile(language)
    return len({t.text for t in identifier_tokens(code, language) if not profile.is_protected(t.text)})


def line_count(code: str) -> int:
    return len(code.splitlines())


def build_report(
    input_code: str,
    output_code: str,
    analysis: AnalysisResult,
    context,
    policy: ConfidencePolicy,
    elapsed_ms: float,
    threats: list[str],
) -> ProcessingReport:
    """Assemble the report for a deobfuscation run.

    Counts come from the run's bookkeeping tables; size metrics are
    computed from the input.
    """
    counters = context.counters
    report_analysis = ReportAnalysis(
        language=analysis.language,
        obfuscation_type=analysis.classification or "Unknown",
        obfuscation_level=analysis.obfuscation_level.value,
        confidence=apply_confidence_policy(policy, analysis.confidence),
        confidence_policy=ConfidencePolicy(policy).value,
        patterns_detected=len(analysis.detected_patterns),
        code_quality=code_quality(output_code),
        complexity_reduction=complexity_reduction(input_code, output_code),
        processing_time_ms=round(elapsed_ms, 3),
        bytes_processed=len(input_code.encode("utf-8")),
        line_count=line_count(input_code),
        function_count=count_functions(input_code, analysis.language),
        variable_count=count_variables(input_code, analysis.language),
        strings_decrypted=len(context.string_table),
        variables_renamed=len(context.variable_map),
        functions_restored=len(context.function_table),
        vm_handlers_detected=len(context.vm_instructions),
        bytecode_simplified=counters["bytecode_simplified"],
        control_flow_simplified=counters["control_flow_simplified"],
        anti_debug_removed=counters["anti_debug_removed"],
        dead_code_removed=counters["dead_code_removed"],
        detected_patterns=tuple(d.to_dict() for d in analysis.detected_patterns),
        advanced_patterns=tuple(a.to_dict() for a in analysis.advanced_patterns),
        security_threats=tuple(threats),
        step_log=tuple(context.step_log),
    )
    return ProcessingReport(
        output_code=output_code,
        input_code=input_code,
        analysis=report_analysis,
        warnings=tuple(context.warnings),
        errors=tuple(context.errors),
    )


def build_encoder_report(
    input_code: str,
    output_code: str,
    language: str,
    level: int,
    enabled_flags: int,
    quality: int,
    confidence: int,
    elapsed_ms: float,
    step_log: list[str],
    warnings: Optional[list[str]] = None,
) -> ProcessingReport:
    """Assemble the report for an encoder run, reusing the decode shape."""
    report_analysis = ReportAnalysis(
        language=language,
        obfuscation_type=f"Level {level} Obfuscation",
        obfuscation_level=_encoder_label(level),
        confidence=confidence,
        confidence_policy=ConfidencePolicy.FIXED.value,
        patterns_detected=enabled_flags,
        code_quality=quality,
        complexity_reduction=complexity_reduction(input_code, output_code),
        processing_time_ms=round(elapsed_ms, 3),
        bytes_processed=len(input_code.encode("utf-8")),
        line_count=line_count(input_code),
        function_count=count_functions(input_code, language),
        variable_count=count_variables(input_code, language),
        security_threats=(),
        step_log=tuple(step_log),
    )
    return ProcessingReport(
        output_code=output_code,
        input_code=input_code,
        analysis=report_analysis,
        warnings=tuple(warnings or ()),
    )


def _encoder_label(level: int) -> str:
    if level >= 9:
        return "extreme"
    if level >= 6:
        return "heavy"
    if level >= 3:
        return "moderate"
    return "light"
