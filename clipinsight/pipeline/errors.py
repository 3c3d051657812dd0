"""
Error classification for pipeline stages.

Decides whether a stage failure is worth retrying and, once a failure is
final, which job status it lands the job in.
"""

from enum import Enum
from typing import FrozenSet, Optional

from clipinsight.jobs.states import JobStatus, PipelineStage


class ErrorCode(str, Enum):
    # Validation
    INVALID_INPUT = "INVALID_INPUT"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    DURATION_EXCEEDED = "DURATION_EXCEEDED"
    INVALID_URL = "INVALID_URL"
    # Entitlement
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    PLAN_LIMIT_REACHED = "PLAN_LIMIT_REACHED"
    FEATURE_NOT_ENABLED = "FEATURE_NOT_ENABLED"
    # Processing (transient)
    UPLOAD_FAILED = "UPLOAD_FAILED"
    TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
    GENERATION_FAILED = "GENERATION_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    # Upstream API
    API_QUOTA_EXCEEDED = "API_QUOTA_EXCEEDED"
    API_KEY_INVALID = "API_KEY_INVALID"
    API_UNAVAILABLE = "API_UNAVAILABLE"
    # Content
    LOW_QUALITY_TRANSCRIPT = "LOW_QUALITY_TRANSCRIPT"
    CONTENT_POLICY_VIOLATION = "CONTENT_POLICY_VIOLATION"
    HIGH_RISK_CONTENT = "HIGH_RISK_CONTENT"
    # System
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_ERRORS: FrozenSet[ErrorCode] = frozenset({
    ErrorCode.UPLOAD_FAILED,
    ErrorCode.TRANSCRIPTION_FAILED,
    ErrorCode.GENERATION_FAILED,
    ErrorCode.RATE_LIMITED,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK_ERROR,
})

NON_RETRYABLE_ERRORS: FrozenSet[ErrorCode] = frozenset(ErrorCode) - RETRYABLE_ERRORS

# Ordered: first match wins
_TEXT_RULES = (
    (("429", "quota", "RESOURCE_EXHAUSTED"), ErrorCode.API_QUOTA_EXCEEDED),
    (("401", "API key", "UNAUTHENTICATED"), ErrorCode.API_KEY_INVALID),
    (("503", "unavailable", "UNAVAILABLE"), ErrorCode.API_UNAVAILABLE),
    (("timeout", "DEADLINE_EXCEEDED"), ErrorCode.TIMEOUT),
    (("network", "ECONNREFUSED", "connection refused"), ErrorCode.NETWORK_ERROR),
)


def is_retryable_error(code) -> bool:
    return code in RETRYABLE_ERRORS


def coerce_error_code(value) -> ErrorCode:
    """Map a reported code (enum or raw string) onto the closed set."""
    if isinstance(value, ErrorCode):
        return value
    try:
        return ErrorCode(str(value))
    except ValueError:
        return ErrorCode.UNKNOWN_ERROR


def classify_error_text(text: Optional[str], fallback: ErrorCode = ErrorCode.UNKNOWN_ERROR) -> ErrorCode:
    """Best-effort mapping of raw upstream error text to an API error code.

    Plain substring matching, case-sensitive like the upstream SDK messages it
    was written against. Text that matches nothing returns ``fallback``.
    """
    if not text:
        return fallback
    for needles, code in _TEXT_RULES:
        if any(needle in text for needle in needles):
            return code
    return fallback


def failure_status_for(stage: PipelineStage, code: ErrorCode) -> JobStatus:
    """Terminal or escalation status for a job whose stage failed for good."""
    if stage == PipelineStage.VALIDATION:
        return JobStatus.FAILED_VALIDATION
    if code == ErrorCode.QUOTA_EXCEEDED:
        return JobStatus.BLOCKED_ENTITLEMENT
    if code == ErrorCode.HIGH_RISK_CONTENT:
        return JobStatus.REQUIRES_MANUAL_REVIEW
    if code == ErrorCode.LOW_QUALITY_TRANSCRIPT:
        return JobStatus.NEEDS_USER_INPUT
    return JobStatus.FAILED
