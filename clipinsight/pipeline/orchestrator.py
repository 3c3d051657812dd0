"""
Pipeline orchestrator: drives one run through the fixed stage order.

VALIDATION → INGESTION → ASR → INSIGHTS → DRAFTING → QA → DELIVERY,
then DELIVERED → STORED → ANALYTICS_LOGGED once every stage succeeded.

Each call to ``PipelineOrchestrator.run`` is one sequential task; runs of
different jobs can be awaited concurrently on the same event loop.
"""

import math
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from clipinsight.jobs.lifecycle import JobLifecycleManager, can_rerun
from clipinsight.jobs.states import (
    PIPELINE_STAGE_ORDER,
    FINISHED_RUN_STATES,
    STAGE_TO_STATUS,
    JobStatus,
    PipelineStage,
    RunStatus,
    StepStatus,
    can_transition_to,
)
from .context import PipelineContext, StageHandler
from .errors import ErrorCode, failure_status_for
from .executor import StepExecutor
from .retry import DEFAULT_RETRY_CONFIG, RetryConfig
from .scheduler import Scheduler


@dataclass
class RunOutcome:
    run_id: Any
    job_id: Any
    success: bool
    job_status: Optional[JobStatus]
    failed_stage: Optional[PipelineStage] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    artifact_ids: Dict[str, Any] = field(default_factory=dict)


def failure_path(current: JobStatus, stage: PipelineStage, failure_status: JobStatus) -> List[JobStatus]:
    """Legal status sequence that lands a job whose ``stage`` failed in ``failure_status``.

    The direct edge is used when the table has it. Otherwise the job passes
    through the stage's own target first (QA flags content only after
    reviewing it, so DRAFTED reaches REQUIRES_MANUAL_REVIEW via REVIEWED).
    When ``failure_status`` is unreachable either way the same rule is
    applied to FAILED. An empty list means no legal path exists.

    The intermediate status is persisted, so pollers can briefly see it: an
    INGESTION failure other than quota reads INGESTED (25%) on its way to
    FAILED, because VALIDATED has no FAILED edge. The table is kept as is
    rather than widened for that window.
    """
    via = STAGE_TO_STATUS[PipelineStage(stage)]
    for target in dict.fromkeys([JobStatus(failure_status), JobStatus.FAILED]):
        if can_transition_to(current, target):
            return [target]
        if can_transition_to(current, via) and can_transition_to(via, target):
            return [via, target]
    return []


def _now():
    return datetime.now(timezone.utc)


class PipelineOrchestrator:
    def __init__(self, lifecycle: JobLifecycleManager, handlers: Mapping[PipelineStage, StageHandler],
                 scheduler: Optional[Scheduler] = None, retry_config: RetryConfig = DEFAULT_RETRY_CONFIG):
        handlers = {PipelineStage(stage): handler for stage, handler in handlers.items()}
        missing = [stage.value for stage in PIPELINE_STAGE_ORDER if stage not in handlers]
        if missing:
            raise ValueError(f"No stage handler configured for: {', '.join(missing)}")
        self.lifecycle = lifecycle
        self.handlers = handlers
        self.executor = StepExecutor(lifecycle, scheduler=scheduler, retry_config=retry_config)

    async def run(self, run_id) -> RunOutcome:
        """Execute every stage of ``run_id`` and leave both the run and its job in a final state.

        Raises only when the run itself cannot be loaded or started
        (``RunNotFoundError``, ``JobNotFoundError``, or a run that already finished).
        """
        run = self.lifecycle.get_run(run_id)
        job = self.lifecycle.get_job(run.job_id)
        job_id, run_id = job.id, run.id
        log = logger.bind(job_id=job_id, run_id=run_id)

        run = self.lifecycle.update_run_status(run_id, RunStatus.RUNNING)
        context = PipelineContext(
            job=job,
            run=run,
            contract=dict(run.generation_contract or {}),
            workspace_id=job.workspace_id,
            user_id=job.created_by_user_id,
        )
        log.info(f"Starting run #{run.run_number} for job {job_id}")

        stage = None
        try:
            if JobStatus(job.status) != JobStatus.RECEIVED:
                if not can_rerun(job):
                    return self._abort(context, job_id, run_id, None,
                                       f"Job {job_id} is not startable from {JobStatus(job.status).value}")
                context.job = self.lifecycle.reset_for_rerun(job_id)

            for stage in PIPELINE_STAGE_ORDER:
                log.info(f"Starting stage: {stage.value}")
                result = await self.executor.execute(stage, self.handlers[stage], context)
                if not result.success:
                    return self._fail(context, stage, result.error_code, result.error_message)
                context.job = self.lifecycle.update_job_status(job_id, STAGE_TO_STATUS[stage])
            stage = None

            self._record_usage(context)
            # TODO: decide whether an analytics-logging failure should roll the job back before ANALYTICS_LOGGED
            context.job = self.lifecycle.update_job_status(job_id, JobStatus.STORED)
            context.job = self.lifecycle.update_job_status(job_id, JobStatus.ANALYTICS_LOGGED)
            self.lifecycle.update_run_status(run_id, RunStatus.SUCCEEDED)
        except Exception as exc:
            log.exception(f"Run {run_id} aborted")
            try:
                self.lifecycle.rollback()
            except Exception:
                log.exception("Rollback before recording the abort failed")
            return self._abort(context, job_id, run_id, stage, str(exc) or exc.__class__.__name__, fail_job=True)

        log.info(f"Run {run_id} succeeded: tokens={context.total_tokens}, cost_usd={context.total_cost_usd:.4f}")
        return RunOutcome(
            run_id=run_id,
            job_id=job_id,
            success=True,
            job_status=JobStatus.ANALYTICS_LOGGED,
            total_tokens=context.total_tokens,
            total_cost_usd=context.total_cost_usd,
            artifact_ids=dict(context.artifact_ids),
        )

    def _record_usage(self, context: PipelineContext):
        minutes = math.ceil((context.job.video_duration_sec or 0) / 60)
        self.lifecycle.record_usage(
            context.workspace_id,
            jobs=1,
            minutes=minutes,
            tokens=context.total_tokens,
            cost_usd=context.total_cost_usd,
        )

    def _fail(self, context: PipelineContext, stage: PipelineStage, code: ErrorCode,
              message: Optional[str]) -> RunOutcome:
        job_id, run_id = context.job.id, context.run.id
        message = message or f"{stage.value} failed with {code.value}"
        target = failure_status_for(stage, code)
        current = JobStatus(self.lifecycle.get_job(job_id).status)
        path = failure_path(current, stage, target)
        if not path:
            return self._abort(context, job_id, run_id, stage,
                               f"No legal failure transition from {current.value}: {message}")
        if path[-1] != target:
            logger.warning(f"Job {job_id}: {target.value} not reachable from {current.value}, "
                           f"landing in {path[-1].value}")

        for status in path[:-1]:
            self.lifecycle.update_job_status(job_id, status)
        context.job = self.lifecycle.update_job_status(job_id, path[-1], message)
        self.lifecycle.update_run_status(run_id, RunStatus.FAILED, message)
        logger.error(f"Pipeline failed at stage {stage.value} for job {job_id}: "
                     f"{code.value} -> {path[-1].value} ({message})")
        return RunOutcome(
            run_id=run_id,
            job_id=job_id,
            success=False,
            job_status=path[-1],
            failed_stage=stage,
            error_code=code,
            error_message=message,
            total_tokens=context.total_tokens,
            total_cost_usd=context.total_cost_usd,
            artifact_ids=dict(context.artifact_ids),
        )

    def _abort(self, context: PipelineContext, job_id, run_id, stage: Optional[PipelineStage], message: str,
               fail_job: bool = False) -> RunOutcome:
        """End the run as FAILED/INTERNAL_ERROR after a bookkeeping problem rather than a stage failure.

        With ``fail_job`` the job is moved to the status an INTERNAL_ERROR in
        ``stage`` maps to, along ``failure_path``, so it is never left
        mid-pipeline beside a finished run.
        """
        job_status = None
        try:
            job_status = JobStatus(self.lifecycle.get_job(job_id).status)
            if fail_job:
                if stage is not None:
                    path = failure_path(job_status, stage, failure_status_for(stage, ErrorCode.INTERNAL_ERROR))
                else:
                    path = [JobStatus.FAILED] if can_transition_to(job_status, JobStatus.FAILED) else []
                for status in path[:-1]:
                    self.lifecycle.update_job_status(job_id, status)
                if path:
                    job_status = JobStatus(self.lifecycle.update_job_status(job_id, path[-1], message).status)
            for step in self.lifecycle.get_run_steps(run_id):
                if StepStatus(step.status) in (StepStatus.STARTED, StepStatus.RETRYING):
                    self.lifecycle.update_step(step.id, status=StepStatus.FAILED, finished_at=_now(),
                                               error_code=ErrorCode.INTERNAL_ERROR.value, error_detail=message)
            run = self.lifecycle.get_run(run_id)
            if RunStatus(run.status) not in FINISHED_RUN_STATES:
                self.lifecycle.update_run_status(run_id, RunStatus.FAILED, message)
        except Exception:
            logger.exception(f"Could not record failure of run {run_id}")
        logger.error(f"Run {run_id} for job {job_id} aborted: {message}")
        return RunOutcome(
            run_id=run_id,
            job_id=job_id,
            success=False,
            job_status=job_status,
            failed_stage=stage,
            error_code=ErrorCode.INTERNAL_ERROR,
            error_message=message,
            total_tokens=context.total_tokens,
            total_cost_usd=context.total_cost_usd,
        )
