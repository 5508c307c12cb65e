"""
Error types for the evaluation pipeline.

Only the unusable-topic case surfaces to callers as an exception. Everything
else is handled inside the pipeline (logged, recorded in
generation_metadata["warnings"]) and degrades to local content.
"""


class EvaluationError(Exception):
    """Base class for every error raised by the evaluation engine."""


class ConfigurationError(EvaluationError, RuntimeError):
    """No usable AI provider key is configured."""


class UpstreamParseError(EvaluationError, ValueError):
    """The AI response could not be turned into the expected question list."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw or ""


class TemplateExhaustionWarning(EvaluationError, UserWarning):
    """A slot could not get a unique template and was given a variant suffix."""


class InvariantViolation(EvaluationError, AssertionError):
    """An assembled evaluation does not match the requested per-type counts."""
