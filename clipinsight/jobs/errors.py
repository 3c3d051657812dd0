"""
Job lifecycle error types.

All errors inherit from JobError so the API layer can catch them in one place.
"""

from typing import List, Optional


class JobError(Exception):
    """Base exception for job/run lifecycle failures."""
    pass


class JobNotFoundError(JobError):
    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class RunNotFoundError(JobError):
    def __init__(self, run_id):
        self.run_id = run_id
        super().__init__(f"Job run not found: {run_id}")


class InvalidStateTransitionError(JobError):
    """Raised when attempting a transition the state table does not permit."""

    def __init__(self, entity_type: str, current_state: str, target_state: str,
                 allowed: Optional[List[str]] = None):
        self.entity_type = entity_type
        self.current_state = current_state
        self.target_state = target_state
        self.allowed = list(allowed or [])
        valid = ", ".join(self.allowed) if self.allowed else "none"
        super().__init__(
            f"Invalid {entity_type} state transition: {current_state} -> {target_state}. "
            f"Valid transitions: {valid}"
        )


class RunConflictError(JobError):
    """Raised when a new run is requested while the job cannot accept one."""

    def __init__(self, job_id, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Cannot create run for job {job_id}: {reason}")


class InvalidJobInputError(JobError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid job input: {reason}")
