from sqlalchemy import (
    Boolean, Column, Date, DateTime, Enum, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from clipinsight.jobs.states import JobStatus, PipelineStage, RunStatus, RunTrigger, SourceType, StepStatus
from .base import Base


class Job(Base):
    __tablename__ = "jobs"
    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(String(64), nullable=False, index=True)
    created_by_user_id = Column(String(64), nullable=False)
    source_type = Column(Enum(SourceType), nullable=False)
    source_url = Column(Text, nullable=True)
    source_filename = Column(String(255), nullable=True)
    status = Column(Enum(JobStatus), default=JobStatus.RECEIVED, nullable=False, index=True)
    status_reason = Column(Text, nullable=True)
    video_duration_sec = Column(Integer, nullable=True)
    language = Column(String(16), nullable=False, default="en")
    brand_preset_id = Column(Integer, ForeignKey("brand_presets.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    runs = relationship("JobRun", back_populates="job", order_by="JobRun.run_number")


class JobRun(Base):
    __tablename__ = "job_runs"
    __table_args__ = (UniqueConstraint("job_id", "run_number", name="uq_job_runs_job_run_number"),)
    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    run_number = Column(Integer, nullable=False)
    trigger = Column(Enum(RunTrigger), nullable=False, default=RunTrigger.USER_CREATE)
    status = Column(Enum(RunStatus), nullable=False, default=RunStatus.PENDING, index=True)
    model_params = Column(JSON, nullable=True)
    generation_contract = Column(JSON, nullable=False)
    total_tokens = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Float, nullable=False, default=0.0)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    job = relationship("Job", back_populates="runs")
    steps = relationship("RunStep", back_populates="run", order_by="RunStep.id")


class RunStep(Base):
    __tablename__ = "run_steps"
    id = Column(Integer, primary_key=True, index=True)
    run_id = Column(Integer, ForeignKey("job_runs.id"), nullable=False, index=True)
    stage = Column(Enum(PipelineStage), nullable=False)
    status = Column(Enum(StepStatus), nullable=False, default=StepStatus.STARTED)
    attempt = Column(Integer, nullable=False, default=1)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    error_code = Column(String(64), nullable=True)
    error_detail = Column(Text, nullable=True)
    metrics = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    run = relationship("JobRun", back_populates="steps")


class BrandPreset(Base):
    __tablename__ = "brand_presets"
    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    defaults = Column(JSON, nullable=False, default=dict)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class DailyUsage(Base):
    __tablename__ = "daily_usage"
    __table_args__ = (UniqueConstraint("workspace_id", "date", name="uq_daily_usage_workspace_date"),)
    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(String(64), nullable=False, index=True)
    date = Column(Date, nullable=False)
    jobs_count = Column(Integer, nullable=False, default=0)
    minutes_processed = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    cost_usd = Column(Float, nullable=False, default=0.0)
