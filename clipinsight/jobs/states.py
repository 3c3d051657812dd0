"""
Job state machine: status enums, the legal transition table and the
predicates built on top of it.

Job lifecycle (success path):
RECEIVED → VALIDATED → INGESTED → TRANSCRIBED → INSIGHTS → DRAFTED →
REVIEWED → DELIVERED → STORED → ANALYTICS_LOGGED

The literal status names are read by external pollers, so they must not change.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .errors import InvalidStateTransitionError


class JobStatus(str, Enum):
    RECEIVED = "RECEIVED"
    VALIDATED = "VALIDATED"
    INGESTED = "INGESTED"
    TRANSCRIBED = "TRANSCRIBED"
    INSIGHTS = "INSIGHTS"
    DRAFTED = "DRAFTED"
    REVIEWED = "REVIEWED"
    DELIVERED = "DELIVERED"
    STORED = "STORED"
    ANALYTICS_LOGGED = "ANALYTICS_LOGGED"
    FAILED_VALIDATION = "FAILED_VALIDATION"
    BLOCKED_ENTITLEMENT = "BLOCKED_ENTITLEMENT"
    REQUIRES_MANUAL_REVIEW = "REQUIRES_MANUAL_REVIEW"
    NEEDS_USER_INPUT = "NEEDS_USER_INPUT"
    FAILED = "FAILED"


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class StepStatus(str, Enum):
    STARTED = "STARTED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"


class PipelineStage(str, Enum):
    VALIDATION = "VALIDATION"
    INGESTION = "INGESTION"
    ASR = "ASR"
    INSIGHTS = "INSIGHTS"
    DRAFTING = "DRAFTING"
    QA = "QA"
    DELIVERY = "DELIVERY"


class RunTrigger(str, Enum):
    USER_CREATE = "USER_CREATE"
    REGENERATE = "REGENERATE"
    RETRY = "RETRY"
    SYSTEM = "SYSTEM"


class SourceType(str, Enum):
    UPLOAD = "UPLOAD"
    YOUTUBE_URL = "YOUTUBE_URL"
    OTHER_URL = "OTHER_URL"


JOB_STATE_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.RECEIVED: frozenset({JobStatus.VALIDATED, JobStatus.FAILED_VALIDATION}),
    JobStatus.VALIDATED: frozenset({JobStatus.INGESTED, JobStatus.BLOCKED_ENTITLEMENT}),
    JobStatus.INGESTED: frozenset({JobStatus.TRANSCRIBED, JobStatus.FAILED}),
    JobStatus.TRANSCRIBED: frozenset({JobStatus.INSIGHTS, JobStatus.NEEDS_USER_INPUT, JobStatus.FAILED}),
    JobStatus.INSIGHTS: frozenset({JobStatus.DRAFTED, JobStatus.FAILED}),
    JobStatus.DRAFTED: frozenset({JobStatus.REVIEWED, JobStatus.FAILED}),
    JobStatus.REVIEWED: frozenset({JobStatus.DELIVERED, JobStatus.REQUIRES_MANUAL_REVIEW, JobStatus.FAILED}),
    JobStatus.DELIVERED: frozenset({JobStatus.STORED, JobStatus.FAILED}),
    JobStatus.STORED: frozenset({JobStatus.ANALYTICS_LOGGED, JobStatus.FAILED}),
    JobStatus.ANALYTICS_LOGGED: frozenset(),
    JobStatus.FAILED_VALIDATION: frozenset(),
    JobStatus.BLOCKED_ENTITLEMENT: frozenset(),
    # Escalation states, resumable once someone acts on them
    JobStatus.REQUIRES_MANUAL_REVIEW: frozenset({JobStatus.DELIVERED, JobStatus.FAILED}),
    JobStatus.NEEDS_USER_INPUT: frozenset({JobStatus.TRANSCRIBED, JobStatus.FAILED}),
    JobStatus.FAILED: frozenset(),
}

TERMINAL_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.ANALYTICS_LOGGED,
    JobStatus.FAILED_VALIDATION,
    JobStatus.BLOCKED_ENTITLEMENT,
    JobStatus.FAILED,
})

USER_ACTION_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.REQUIRES_MANUAL_REVIEW,
    JobStatus.NEEDS_USER_INPUT,
})

FINISHED_RUN_STATES: FrozenSet[RunStatus] = frozenset({
    RunStatus.SUCCEEDED,
    RunStatus.FAILED,
    RunStatus.CANCELLED,
})

ACTIVE_RUN_STATES: FrozenSet[RunStatus] = frozenset({RunStatus.PENDING, RunStatus.RUNNING})

PIPELINE_STAGE_ORDER: List[PipelineStage] = [
    PipelineStage.VALIDATION,
    PipelineStage.INGESTION,
    PipelineStage.ASR,
    PipelineStage.INSIGHTS,
    PipelineStage.DRAFTING,
    PipelineStage.QA,
    PipelineStage.DELIVERY,
]

STAGE_TO_STATUS: Dict[PipelineStage, JobStatus] = {
    PipelineStage.VALIDATION: JobStatus.VALIDATED,
    PipelineStage.INGESTION: JobStatus.INGESTED,
    PipelineStage.ASR: JobStatus.TRANSCRIBED,
    PipelineStage.INSIGHTS: JobStatus.INSIGHTS,
    PipelineStage.DRAFTING: JobStatus.DRAFTED,
    PipelineStage.QA: JobStatus.REVIEWED,
    PipelineStage.DELIVERY: JobStatus.DELIVERED,
}

_PROGRESS: Dict[JobStatus, int] = {
    JobStatus.RECEIVED: 0,
    JobStatus.VALIDATED: 10,
    JobStatus.INGESTED: 25,
    JobStatus.TRANSCRIBED: 40,
    JobStatus.INSIGHTS: 55,
    JobStatus.DRAFTED: 70,
    JobStatus.REVIEWED: 85,
    JobStatus.DELIVERED: 95,
    JobStatus.STORED: 98,
    JobStatus.ANALYTICS_LOGGED: 100,
    JobStatus.FAILED_VALIDATION: 0,
    JobStatus.BLOCKED_ENTITLEMENT: 0,
    JobStatus.REQUIRES_MANUAL_REVIEW: 85,
    JobStatus.NEEDS_USER_INPUT: 40,
    JobStatus.FAILED: 0,
}


def allowed_transitions(status: JobStatus) -> List[JobStatus]:
    """Permitted targets for ``status``, in declaration order of JobStatus."""
    targets = JOB_STATE_TRANSITIONS.get(JobStatus(status), frozenset())
    return [s for s in JobStatus if s in targets]


def can_transition_to(current: JobStatus, target: JobStatus) -> bool:
    """
    Check if a job may move from ``current`` to ``target``.

    Unlike run bookkeeping, a job never "transitions" to its own status:
    a self-transition is only legal if the table lists it (none do).
    """
    try:
        return JobStatus(target) in JOB_STATE_TRANSITIONS[JobStatus(current)]
    except (KeyError, ValueError):
        return False


def is_terminal_state(status: JobStatus) -> bool:
    return status in TERMINAL_STATES


def requires_user_action(status: JobStatus) -> bool:
    return status in USER_ACTION_STATES


def validate_job_transition(current: JobStatus, target: JobStatus) -> None:
    """
    Validate a job state transition, raising if it is not in the table.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_to(current, target):
        raise InvalidStateTransitionError(
            "job",
            JobStatus(current).value,
            JobStatus(target).value,
            allowed=[s.value for s in allowed_transitions(current)],
        )


def calculate_progress(status: JobStatus) -> int:
    """Rough completion percentage shown to pollers for a job status."""
    return _PROGRESS.get(status, 0)


def get_next_stage(stage: PipelineStage) -> Optional[PipelineStage]:
    try:
        idx = PIPELINE_STAGE_ORDER.index(PipelineStage(stage))
    except ValueError:
        return None
    if idx == len(PIPELINE_STAGE_ORDER) - 1:
        return None
    return PIPELINE_STAGE_ORDER[idx + 1]
