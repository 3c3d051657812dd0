import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session

from clipinsight import __version__
from clipinsight.config import load_config
from clipinsight.db import schemas
from clipinsight.db.init_db import init_db
from clipinsight.db.repository import SqlAlchemyJobRepository
from clipinsight.db.session import get_db, get_session_factory
from clipinsight.jobs.errors import (
    InvalidJobInputError,
    InvalidStateTransitionError,
    JobNotFoundError,
    RunConflictError,
    RunNotFoundError,
)
from clipinsight.jobs.lifecycle import JobLifecycleManager, can_rerun
from clipinsight.jobs.states import JobStatus, RunTrigger, calculate_progress
from clipinsight.pipeline.orchestrator import PipelineOrchestrator
from clipinsight.pipeline.retry import RetryConfig
from clipinsight.pipeline.stages import load_stage_handlers
from clipinsight.utils.logging_setup import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg = load_config()
    setup_logging(cfg.get('paths', {}).get('logs_dir', 'logs'), cfg.get('logging', {}).get('level', 'INFO'))
    init_db()
    yield


app = FastAPI(title="ClipInsight Orchestration API", version=__version__, lifespan=lifespan)


@lru_cache(maxsize=1)
def get_pipeline_config() -> dict:
    return load_config()


def get_stage_handlers():
    return load_stage_handlers(get_pipeline_config())


def get_retry_config() -> RetryConfig:
    return RetryConfig.from_config(get_pipeline_config())


def get_lifecycle(db: Session = Depends(get_db)) -> JobLifecycleManager:
    return JobLifecycleManager(SqlAlchemyJobRepository(db))


@app.exception_handler(JobNotFoundError)
@app.exception_handler(RunNotFoundError)
async def _not_found(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidJobInputError)
async def _bad_input(request: Request, exc: InvalidJobInputError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RunConflictError)
@app.exception_handler(InvalidStateTransitionError)
async def _conflict(request: Request, exc: Exception):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def _execute_run_background(run_id: int, handlers, session_factory, retry_config: RetryConfig):
    """Background task: run the pipeline for one run on its own session.

    Plain ``def`` so Starlette runs it in the threadpool: the repository is
    synchronous, and its commits must not block the server's event loop.
    The run gets a private loop in that worker thread.
    """
    db = session_factory()
    try:
        lifecycle = JobLifecycleManager(SqlAlchemyJobRepository(db))
        orchestrator = PipelineOrchestrator(lifecycle, handlers, retry_config=retry_config)
        outcome = asyncio.run(orchestrator.run(run_id))
        logger.info(f"Run {run_id} finished: success={outcome.success}, job_status={outcome.job_status}")
    except Exception:
        # Only reachable when the run could not even be started
        logger.exception(f"Run {run_id} could not be executed")
    finally:
        db.close()


def _dispatch(background_tasks: BackgroundTasks, run_id: int, handlers, session_factory, retry_config) -> bool:
    if not handlers:
        logger.warning(f"Run {run_id} created but not dispatched: no stage handlers configured")
        return False
    background_tasks.add_task(_execute_run_background, run_id, handlers, session_factory, retry_config)
    return True


@app.post("/jobs", response_model=schemas.JobCreated, status_code=201)
def create_job(
    job_in: schemas.JobCreate,
    background_tasks: BackgroundTasks,
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
    handlers=Depends(get_stage_handlers),
    session_factory=Depends(get_session_factory),
    retry_config: RetryConfig = Depends(get_retry_config),
):
    """Create a job and its first run, then hand the run to the pipeline."""
    job = lifecycle.create_job(job_in)
    run = lifecycle.create_run(schemas.RunCreate(
        job_id=job.id,
        trigger=RunTrigger.USER_CREATE,
        contract_overrides=job_in.custom_contract,
    ))
    dispatched = _dispatch(background_tasks, run.id, handlers, session_factory, retry_config)
    return {"job": job, "run": run, "dispatched": dispatched}


@app.get("/jobs", response_model=List[schemas.Job])
def list_jobs(
    workspace_id: Optional[str] = None,
    status: Optional[JobStatus] = None,
    limit: int = 20,
    offset: int = 0,
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
):
    """List jobs, newest first."""
    if limit < 1 or limit > 100 or offset < 0:
        raise HTTPException(status_code=400, detail="limit must be 1-100 and offset >= 0")
    return lifecycle.list_jobs(workspace_id=workspace_id, status=status, limit=limit, offset=offset)


@app.get("/jobs/{job_id}", response_model=schemas.JobDetail)
def get_job(job_id: int, lifecycle: JobLifecycleManager = Depends(get_lifecycle)):
    """Get job details with progress and rerun eligibility."""
    job = lifecycle.get_job(job_id)
    detail = schemas.Job.model_validate(job).model_dump()
    return {**detail, "progress": calculate_progress(job.status), "can_rerun": can_rerun(job)}


@app.get("/jobs/{job_id}/runs", response_model=schemas.JobRuns)
def list_job_runs(job_id: int, lifecycle: JobLifecycleManager = Depends(get_lifecycle)):
    """List runs of a job (newest first) with their step records."""
    job = lifecycle.get_job(job_id)
    runs = []
    for run in lifecycle.list_runs(job_id):
        data = schemas.JobRun.model_validate(run).model_dump()
        data["steps"] = [schemas.RunStep.model_validate(s) for s in lifecycle.get_run_steps(run.id)]
        runs.append(data)
    return {"runs": runs, "can_rerun": can_rerun(job)}


@app.post("/jobs/{job_id}/runs", response_model=schemas.JobRun, status_code=201)
def regenerate_job(
    job_id: int,
    background_tasks: BackgroundTasks,
    body: Optional[schemas.RegenerateRequest] = None,
    lifecycle: JobLifecycleManager = Depends(get_lifecycle),
    handlers=Depends(get_stage_handlers),
    session_factory=Depends(get_session_factory),
    retry_config: RetryConfig = Depends(get_retry_config),
):
    """Start a new run for a finished or escalated job."""
    job = lifecycle.get_job(job_id)
    if not can_rerun(job):
        raise HTTPException(status_code=400, detail="Job cannot be regenerated in current state")

    body = body or schemas.RegenerateRequest()
    # the run is created while the job still shows its finished status
    run = lifecycle.create_run(schemas.RunCreate(
        job_id=job_id,
        trigger=RunTrigger.REGENERATE,
        model_params=body.model_params,
        contract_overrides=body.contract_overrides,
    ))
    lifecycle.reset_for_rerun(job_id)
    _dispatch(background_tasks, run.id, handlers, session_factory, retry_config)
    return run


@app.post("/workspaces/{workspace_id}/presets", response_model=schemas.BrandPreset, status_code=201)
def create_brand_preset(workspace_id: str, preset: schemas.BrandPresetCreate,
                        lifecycle: JobLifecycleManager = Depends(get_lifecycle)):
    """Create a brand preset whose defaults feed the contract of runs on referencing jobs."""
    return lifecycle.repo.create_brand_preset(workspace_id, preset.name, preset.defaults, preset.is_default)


@app.get("/workspaces/{workspace_id}/usage", response_model=schemas.DailyUsage)
def get_workspace_usage(workspace_id: str, lifecycle: JobLifecycleManager = Depends(get_lifecycle)):
    """Today's usage counters for a workspace (zeros when nothing ran yet)."""
    usage = lifecycle.get_usage(workspace_id)
    if usage is None:
        return schemas.DailyUsage(workspace_id=workspace_id, date=datetime.now(timezone.utc).date())
    return usage


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "clipinsight-orchestrator",
        "version": __version__,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("clipinsight.api.main:app", host="0.0.0.0", port=8000)
