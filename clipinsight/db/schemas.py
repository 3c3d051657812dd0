from datetime import date as date_type, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from clipinsight.jobs.states import JobStatus, PipelineStage, RunStatus, RunTrigger, SourceType, StepStatus


class JobCreate(BaseModel):
    workspace_id: str = Field(..., min_length=1, max_length=64)
    user_id: str = Field(..., min_length=1, max_length=64)
    source_type: SourceType
    source_url: Optional[str] = None
    source_filename: Optional[str] = Field(None, max_length=255)
    language: str = Field("en", max_length=16)
    video_duration_sec: Optional[int] = Field(None, ge=0)
    brand_preset_id: Optional[int] = None
    custom_contract: Optional[Dict[str, Any]] = Field(None, description="Per-run contract overrides for the first run")


class RunCreate(BaseModel):
    job_id: int
    trigger: RunTrigger = RunTrigger.USER_CREATE
    model_params: Optional[Dict[str, Any]] = None
    contract_overrides: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(protected_namespaces=())


class RegenerateRequest(BaseModel):
    contract_overrides: Optional[Dict[str, Any]] = None
    model_params: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(protected_namespaces=())


class RunStep(BaseModel):
    id: int
    stage: PipelineStage
    status: StepStatus
    attempt: int
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    duration_ms: Optional[int]
    error_code: Optional[str]
    error_detail: Optional[str]
    metrics: Optional[Dict[str, Any]]

    model_config = ConfigDict(from_attributes=True)


class JobRun(BaseModel):
    id: int
    job_id: int
    run_number: int
    trigger: RunTrigger
    status: RunStatus
    model_params: Optional[Dict[str, Any]] = None
    generation_contract: Dict[str, Any]
    total_tokens: int
    cost_usd: float
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    error_message: Optional[str]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class JobRunWithSteps(JobRun):
    steps: List[RunStep] = Field(default_factory=list)


class Job(BaseModel):
    id: int
    workspace_id: str
    created_by_user_id: str
    source_type: SourceType
    source_url: Optional[str]
    source_filename: Optional[str]
    status: JobStatus
    status_reason: Optional[str]
    video_duration_sec: Optional[int]
    language: str
    brand_preset_id: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class JobDetail(Job):
    progress: int = Field(..., ge=0, le=100, description="Completion percentage derived from status")
    can_rerun: bool


class JobCreated(BaseModel):
    job: Job
    run: JobRun
    dispatched: bool = Field(..., description="Whether the run was handed to the pipeline")


class JobRuns(BaseModel):
    runs: List[JobRunWithSteps]
    can_rerun: bool


class BrandPresetCreate(BaseModel):
    name: str = Field(..., max_length=100)
    defaults: Dict[str, Any] = Field(default_factory=dict)
    is_default: bool = False


class BrandPreset(BaseModel):
    id: int
    workspace_id: str
    name: str
    defaults: Dict[str, Any]
    is_default: bool

    model_config = ConfigDict(from_attributes=True)


class DailyUsage(BaseModel):
    workspace_id: str
    date: date_type
    jobs_count: int = 0
    minutes_processed: int = 0
    tokens_used: int = 0
    cost_usd: float = 0.0

    model_config = ConfigDict(from_attributes=True)
