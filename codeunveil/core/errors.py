"""Exception hierarchy for codeunveil.

Failures fall into three tiers:

- per-match problems (a malformed char-code expression, a bad base64 blob)
  raise ``ExpressionError`` inside a stage, which catches it, keeps the
  original text and records a warning;
- stage-level problems raise ``StageError``; the stage chain records them in
  the report's ``errors`` and keeps going with the best available string;
- invocation-level problems (``InvalidLanguageError``, ``InputTooLargeError``)
  abort the run and reach the caller.
"""


class CodeUnveilError(Exception):
    """Base exception for all codeunveil errors."""
    pass


class InvalidLanguageError(CodeUnveilError, ValueError):
    """Language tag is missing or not a string."""
    pass


class InputTooLargeError(CodeUnveilError):
    """Input exceeds the configured maximum size."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Input is {size} bytes, limit is {limit} bytes")


class StageError(CodeUnveilError):
    """A whole rewrite stage could not proceed."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"{stage}: {message}")


class ExpressionError(CodeUnveilError, ValueError):
    """A single matched expression could not be evaluated or decoded."""
    pass
