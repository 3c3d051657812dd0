"""
Runs one pipeline stage with bounded retries.

Outcomes are always returned as ``StepResult``; neither a failed result nor
an exception raised by the handler escapes ``StepExecutor.execute``.
"""

import inspect
import time
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from clipinsight.jobs.lifecycle import JobLifecycleManager
from clipinsight.jobs.states import PipelineStage, StepStatus
from clipinsight.utils.json_types import convert_json_types
from .context import PipelineContext, StageHandler, StepResult, usage_from_metrics
from .errors import ErrorCode, classify_error_text, coerce_error_code, is_retryable_error
from .retry import DEFAULT_RETRY_CONFIG, RetryConfig, calculate_retry_delay
from .scheduler import AsyncioScheduler, Scheduler


def _now():
    return datetime.now(timezone.utc)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class StepExecutor:
    def __init__(self, lifecycle: JobLifecycleManager, scheduler: Optional[Scheduler] = None,
                 retry_config: RetryConfig = DEFAULT_RETRY_CONFIG):
        self.lifecycle = lifecycle
        self.scheduler = scheduler or AsyncioScheduler()
        self.retry_config = retry_config

    async def _invoke(self, handler: StageHandler, context: PipelineContext):
        result = handler(context)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _error_code_for(self, result: StepResult) -> ErrorCode:
        if result.error_code:
            return coerce_error_code(result.error_code)
        return classify_error_text(result.error_message, ErrorCode.UNKNOWN_ERROR)

    def _record_success(self, run_id, step_id, result: StepResult, context: PipelineContext):
        metrics = convert_json_types(result.metrics)
        tokens, cost = usage_from_metrics(metrics)
        self.lifecycle.add_run_metrics(run_id, tokens, cost)
        context.add_usage(metrics)
        context.merge_outputs(result.outputs)
        self.lifecycle.update_step(
            step_id,
            status=StepStatus.SUCCEEDED,
            finished_at=_now(),
            duration_ms=result.duration_ms,
            metrics=metrics,
        )

    async def execute(self, stage: PipelineStage, handler: StageHandler, context: PipelineContext) -> StepResult:
        stage = PipelineStage(stage)
        run_id = context.run.id
        log = logger.bind(job_id=context.job.id, run_id=run_id, stage=stage.value)
        step_id = self.lifecycle.start_step(run_id, stage).id
        max_attempts = self.retry_config.max_attempts
        attempt = 1

        while True:
            started = time.monotonic()
            raised = False
            try:
                result = await self._invoke(handler, context)
                if not isinstance(result, StepResult):
                    raise TypeError(f"stage handler returned {type(result).__name__}, expected StepResult")
            except Exception as exc:
                log.exception(f"Unexpected error in stage {stage.value} (attempt {attempt})")
                raised = True
                result = StepResult.failed(stage, ErrorCode.INTERNAL_ERROR, str(exc) or exc.__class__.__name__,
                                           duration_ms=_elapsed_ms(started))

            if result.success:
                try:
                    self._record_success(run_id, step_id, result, context)
                except Exception as exc:
                    # a result that cannot be stored fails the stage; the handler is not re-run
                    log.exception(f"Could not record result of stage {stage.value}")
                    try:
                        self.lifecycle.rollback()
                    except Exception:
                        log.exception("Rollback after a failed write failed")
                    result = StepResult.failed(stage, ErrorCode.INTERNAL_ERROR,
                                               f"Could not record {stage.value} result: {exc}",
                                               duration_ms=result.duration_ms, metrics=result.metrics)
                else:
                    log.info(f"Stage {stage.value} succeeded on attempt {attempt} in {result.duration_ms}ms")
                    return result

            code = ErrorCode.INTERNAL_ERROR if raised else self._error_code_for(result)
            # handler exceptions get the same retry budget as transient codes
            retryable = raised or is_retryable_error(code)

            if retryable and attempt < max_attempts:
                delay = calculate_retry_delay(attempt, self.retry_config)
                log.warning(f"Stage {stage.value} failed with {code.value}, retrying in {delay}ms "
                            f"(attempt {attempt}/{max_attempts})")
                self.lifecycle.update_step(
                    step_id,
                    status=StepStatus.RETRYING,
                    attempt=attempt + 1,
                    error_code=code.value,
                    error_detail=result.error_message,
                )
                await self.scheduler.wait(delay)
                attempt += 1
                continue

            self.lifecycle.update_step(
                step_id,
                status=StepStatus.FAILED,
                finished_at=_now(),
                duration_ms=result.duration_ms,
                error_code=code.value,
                error_detail=result.error_message,
                metrics=convert_json_types(result.metrics),
            )
            log.error(f"Stage {stage.value} failed with {code.value} after {attempt} attempt(s): {result.error_message}")
            return StepResult(
                success=False,
                stage=stage,
                duration_ms=result.duration_ms,
                error_code=code,
                error_message=result.error_message,
                metrics=result.metrics,
            )
