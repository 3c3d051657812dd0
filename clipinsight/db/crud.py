from datetime import date, datetime, timezone

from sqlalchemy.orm import Session

from . import models


def _now():
    return datetime.now(timezone.utc)


def _apply(db: Session, obj, fields: dict):
    for key, value in fields.items():
        setattr(obj, key, value)
    db.commit()
    db.refresh(obj)
    return obj


# Jobs

def create_job(db: Session, **fields):
    job = models.Job(**fields)
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_job(db: Session, job_id: int):
    return db.query(models.Job).filter(models.Job.id == job_id).first()


def update_job(db: Session, job_id: int, **fields):
    job = get_job(db, job_id)
    if not job:
        return None
    fields.setdefault("updated_at", _now())
    return _apply(db, job, fields)


def list_jobs(db: Session, workspace_id: str | None = None, status=None, limit: int = 50, offset: int = 0):
    query = db.query(models.Job)
    if workspace_id is not None:
        query = query.filter(models.Job.workspace_id == workspace_id)
    if status is not None:
        query = query.filter(models.Job.status == status)
    return query.order_by(models.Job.id.desc()).offset(offset).limit(limit).all()


# Runs

def create_run(db: Session, **fields):
    run = models.JobRun(**fields)
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def get_run(db: Session, run_id: int):
    return db.query(models.JobRun).filter(models.JobRun.id == run_id).first()


def update_run(db: Session, run_id: int, **fields):
    run = get_run(db, run_id)
    if not run:
        return None
    return _apply(db, run, fields)


def count_runs(db: Session, job_id: int) -> int:
    return db.query(models.JobRun).filter(models.JobRun.job_id == job_id).count()


def list_runs(db: Session, job_id: int):
    return (
        db.query(models.JobRun)
        .filter(models.JobRun.job_id == job_id)
        .order_by(models.JobRun.run_number.desc())
        .all()
    )


def add_run_metrics(db: Session, run_id: int, tokens: int, cost_usd: float):
    run = get_run(db, run_id)
    if not run:
        return None
    return _apply(db, run, {
        "total_tokens": (run.total_tokens or 0) + tokens,
        "cost_usd": (run.cost_usd or 0.0) + cost_usd,
    })


# Steps

def create_step(db: Session, **fields):
    fields.setdefault("started_at", _now())
    step = models.RunStep(**fields)
    db.add(step)
    db.commit()
    db.refresh(step)
    return step


def update_step(db: Session, step_id: int, **fields):
    step = db.query(models.RunStep).filter(models.RunStep.id == step_id).first()
    if not step:
        return None
    if "metrics" in fields and fields["metrics"] is not None:
        # JSON columns are not mutation-tracked; always assign a fresh dict
        fields["metrics"] = dict(fields["metrics"])
    return _apply(db, step, fields)


def list_steps(db: Session, run_id: int):
    return (
        db.query(models.RunStep)
        .filter(models.RunStep.run_id == run_id)
        .order_by(models.RunStep.id.asc())
        .all()
    )


# Brand presets

def create_brand_preset(db: Session, workspace_id: str, name: str, defaults: dict, is_default: bool = False):
    preset = models.BrandPreset(workspace_id=workspace_id, name=name, defaults=dict(defaults), is_default=is_default)
    db.add(preset)
    db.commit()
    db.refresh(preset)
    return preset


def get_brand_preset(db: Session, preset_id: int):
    return db.query(models.BrandPreset).filter(models.BrandPreset.id == preset_id).first()


# Daily usage

def get_daily_usage(db: Session, workspace_id: str, day: date):
    return (
        db.query(models.DailyUsage)
        .filter(models.DailyUsage.workspace_id == workspace_id, models.DailyUsage.date == day)
        .first()
    )


def increment_daily_usage(db: Session, workspace_id: str, day: date, jobs: int = 0, minutes: int = 0,
                          tokens: int = 0, cost_usd: float = 0.0):
    usage = get_daily_usage(db, workspace_id, day)
    if usage is None:
        usage = models.DailyUsage(workspace_id=workspace_id, date=day, jobs_count=0,
                                  minutes_processed=0, tokens_used=0, cost_usd=0.0)
        db.add(usage)
    usage.jobs_count += jobs
    usage.minutes_processed += minutes
    usage.tokens_used += tokens
    usage.cost_usd += cost_usd
    db.commit()
    db.refresh(usage)
    return usage
