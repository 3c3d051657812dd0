"""
Job state machine and lifecycle.

- states.py: status enums, transition table and predicates
- errors.py: JobError hierarchy raised by the lifecycle layer
- contract.py: generation contract defaults and layered merge
- lifecycle.py: JobLifecycleManager over an injected JobRepository
"""

from .errors import (
    InvalidJobInputError,
    InvalidStateTransitionError,
    JobError,
    JobNotFoundError,
    RunConflictError,
    RunNotFoundError,
)
from .states import (
    JobStatus,
    PipelineStage,
    RunStatus,
    RunTrigger,
    SourceType,
    StepStatus,
    calculate_progress,
    can_transition_to,
    is_terminal_state,
    requires_user_action,
)

__all__ = [
    "InvalidJobInputError",
    "InvalidStateTransitionError",
    "JobError",
    "JobNotFoundError",
    "RunConflictError",
    "RunNotFoundError",
    "JobStatus",
    "PipelineStage",
    "RunStatus",
    "RunTrigger",
    "SourceType",
    "StepStatus",
    "calculate_progress",
    "can_transition_to",
    "is_terminal_state",
    "requires_user_action",
]
