"""
Job / Run / RunStep lifecycle.

Every status change goes through here: job statuses are validated against the
transition table, runs get their numbering, contract and timestamps, and
steps are recorded per stage. Storage is whatever ``JobRepository`` is
injected.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from clipinsight.db.repository import JobRepository
from clipinsight.db.schemas import JobCreate, RunCreate
from .contract import DEFAULT_CONTRACT, brand_preset_to_contract_overrides, merge_contract, validate_contract
from .errors import (
    InvalidJobInputError,
    InvalidStateTransitionError,
    JobNotFoundError,
    RunConflictError,
    RunNotFoundError,
)
from .states import (
    ACTIVE_RUN_STATES,
    FINISHED_RUN_STATES,
    JobStatus,
    PipelineStage,
    RunStatus,
    SourceType,
    StepStatus,
    is_terminal_state,
    requires_user_action,
    validate_job_transition,
)


def _now():
    return datetime.now(timezone.utc)


def can_rerun(job) -> bool:
    """A job can get a new run once it finished (unless blocked by entitlement) or is waiting on a person."""
    status = JobStatus(job.status)
    return (
        (is_terminal_state(status) and status != JobStatus.BLOCKED_ENTITLEMENT)
        or status == JobStatus.NEEDS_USER_INPUT
        or status == JobStatus.REQUIRES_MANUAL_REVIEW
    )


class JobLifecycleManager:
    def __init__(self, repository: JobRepository):
        self.repo = repository

    # Jobs

    def create_job(self, job_in: JobCreate):
        if job_in.source_type == SourceType.UPLOAD and not job_in.source_filename:
            raise InvalidJobInputError("source_filename is required for UPLOAD source type")
        if job_in.source_type in (SourceType.YOUTUBE_URL, SourceType.OTHER_URL) and not job_in.source_url:
            raise InvalidJobInputError(f"source_url is required for {job_in.source_type.value} source type")

        job = self.repo.create_job(
            workspace_id=job_in.workspace_id,
            created_by_user_id=job_in.user_id,
            source_type=job_in.source_type,
            source_url=job_in.source_url,
            source_filename=job_in.source_filename,
            language=job_in.language or "en",
            video_duration_sec=job_in.video_duration_sec,
            brand_preset_id=job_in.brand_preset_id,
            status=JobStatus.RECEIVED,
        )
        logger.info(f"Created job {job.id} ({job.source_type.value}) for workspace {job.workspace_id}")
        return job

    def get_job(self, job_id):
        job = self.repo.get_job(job_id)
        if not job:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, workspace_id: Optional[str] = None, status: Optional[JobStatus] = None,
                  limit: int = 50, offset: int = 0):
        return self.repo.list_jobs(workspace_id=workspace_id, status=status, limit=limit, offset=offset)

    def update_job_status(self, job_id, new_status: JobStatus, reason: Optional[str] = None):
        """Move a job to ``new_status`` if the transition table allows it.

        Raises:
            JobNotFoundError: unknown job
            InvalidStateTransitionError: the table has no ``current -> new_status`` edge
        """
        job = self.get_job(job_id)
        validate_job_transition(job.status, new_status)
        updated = self.repo.update_job(job_id, status=JobStatus(new_status), status_reason=reason, updated_at=_now())
        logger.debug(f"Job {job_id}: {JobStatus(job.status).value} -> {JobStatus(new_status).value}")
        return updated

    def reset_for_rerun(self, job_id):
        """Put a rerunnable job back at RECEIVED so a fresh run can walk the table again."""
        job = self.get_job(job_id)
        if not can_rerun(job):
            raise RunConflictError(job_id, f"job cannot be rerun from status {JobStatus(job.status).value}")
        logger.info(f"Resetting job {job_id} from {JobStatus(job.status).value} to RECEIVED for rerun")
        return self.repo.update_job(job_id, status=JobStatus.RECEIVED, status_reason=None, updated_at=_now())

    # Runs

    def resolve_contract(self, job, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        contract = merge_contract(DEFAULT_CONTRACT, {"language": job.language} if job.language else None)
        if job.brand_preset_id:
            preset = self.repo.get_brand_preset(job.brand_preset_id)
            if preset and preset.defaults:
                contract = merge_contract(contract, brand_preset_to_contract_overrides(preset.defaults))
            elif not preset:
                logger.warning(f"Job {job.id} references missing brand preset {job.brand_preset_id}")
        if overrides:
            contract = merge_contract(contract, overrides)
        return contract

    def create_run(self, run_in: RunCreate):
        job = self.get_job(run_in.job_id)
        runs = self.repo.list_runs(job.id)

        if any(RunStatus(r.status) in ACTIVE_RUN_STATES for r in runs):
            raise RunConflictError(job.id, "an active run already exists")
        status = JobStatus(job.status)
        # brand-new jobs are the only non-finished jobs that may start a run
        if runs and not (is_terminal_state(status) or requires_user_action(status)):
            raise RunConflictError(job.id, f"job is still in progress ({status.value})")

        contract = self.resolve_contract(job, run_in.contract_overrides)
        problems = validate_contract(contract)
        if problems:
            raise InvalidJobInputError("; ".join(problems))

        run = self.repo.create_run(
            job_id=job.id,
            run_number=self.repo.count_runs(job.id) + 1,
            trigger=run_in.trigger,
            status=RunStatus.PENDING,
            model_params=dict(run_in.model_params or {}),
            generation_contract=contract,
            total_tokens=0,
            cost_usd=0.0,
        )
        logger.info(f"Created run #{run.run_number} (id={run.id}, trigger={run.trigger.value}) for job {job.id}")
        return run

    def get_run(self, run_id):
        run = self.repo.get_run(run_id)
        if not run:
            raise RunNotFoundError(run_id)
        return run

    def list_runs(self, job_id) -> List[Any]:
        self.get_job(job_id)
        return self.repo.list_runs(job_id)

    def get_latest_run(self, job_id):
        runs = self.list_runs(job_id)
        return runs[0] if runs else None

    def update_run_status(self, run_id, status: RunStatus, error_message: Optional[str] = None):
        run = self.get_run(run_id)
        current = RunStatus(run.status)
        status = RunStatus(status)
        if current in FINISHED_RUN_STATES:
            raise InvalidStateTransitionError("run", current.value, status.value)

        updates: Dict[str, Any] = {"status": status}
        if status == RunStatus.RUNNING and run.started_at is None:
            updates["started_at"] = _now()
        if status in FINISHED_RUN_STATES:
            updates["finished_at"] = _now()
        if error_message:
            updates["error_message"] = error_message
        return self.repo.update_run(run_id, **updates)

    def add_run_metrics(self, run_id, tokens: int, cost_usd: float):
        if not tokens and not cost_usd:
            return self.get_run(run_id)
        return self.repo.add_run_metrics(run_id, tokens, cost_usd)

    # Steps

    def start_step(self, run_id, stage: PipelineStage):
        return self.repo.create_step(run_id=run_id, stage=PipelineStage(stage), status=StepStatus.STARTED, attempt=1)

    def update_step(self, step_id, **fields):
        return self.repo.update_step(step_id, **fields)

    def get_run_steps(self, run_id):
        return self.repo.list_steps(run_id)

    def rollback(self):
        self.repo.rollback()

    # Usage

    def record_usage(self, workspace_id: str, jobs: int = 0, minutes: int = 0, tokens: int = 0,
                     cost_usd: float = 0.0, day: Optional[date] = None):
        return self.repo.increment_daily_usage(workspace_id, day or _now().date(), jobs, minutes, tokens, cost_usd)

    def get_usage(self, workspace_id: str, day: Optional[date] = None):
        return self.repo.get_daily_usage(workspace_id, day or _now().date())
