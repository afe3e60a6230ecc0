"""
Exception types raised by the interview engine.
"""
from enum import Enum
from typing import Optional


class InterviewStateError(ValueError):
    """The caller handed the engine a session or step it must never see."""


class InterviewExtractOutputSchemaError(ValueError):
    """The model payload does not match the extraction contract."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class ExtractorErrorCode(str, Enum):
    """Why an extraction attempt produced no usable output."""
    PROVIDER_TRANSIENT = "provider_transient"
    PROVIDER_NON_TRANSIENT = "provider_non_transient"
    TIMEOUT = "timeout"
    INVALID_JSON = "invalid_json"
    SCHEMA_INVALID = "schema_invalid"
    GUARDRAIL_VIOLATION = "guardrail_violation"
    STEP_MISMATCH = "step_mismatch"


class InterviewExtractorError(RuntimeError):
    """
    Typed extraction failure. Callers always fall back to deterministic parsing.
    """

    should_fallback = True

    def __init__(self,
                 code: ExtractorErrorCode,
                 message: str,
                 transient: bool,
                 correlation_id: str,
                 prompt_version: str,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.code = code
        self.transient = transient
        self.correlation_id = correlation_id
        self.prompt_version = prompt_version
        self.cause = cause
