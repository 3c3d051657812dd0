"""
Stage execution: error classification, retry/backoff, the per-stage executor
and the orchestrator that walks the seven stages of a run.
"""

from .context import PipelineContext, StepResult
from .errors import ErrorCode, classify_error_text, is_retryable_error
from .executor import StepExecutor
from .orchestrator import PipelineOrchestrator, RunOutcome
from .retry import RetryConfig, calculate_retry_delay
from .scheduler import AsyncioScheduler, Scheduler

__all__ = [
    "PipelineContext",
    "StepResult",
    "ErrorCode",
    "classify_error_text",
    "is_retryable_error",
    "StepExecutor",
    "PipelineOrchestrator",
    "RunOutcome",
    "RetryConfig",
    "calculate_retry_delay",
    "AsyncioScheduler",
    "Scheduler",
]
