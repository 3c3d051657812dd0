"""
Persistence port for the orchestration core.

The lifecycle manager and orchestrator only talk to a ``JobRepository``;
``SqlAlchemyJobRepository`` is the production adapter over ``crud``.
Implementations must give read-after-write consistency on the record they
just wrote; nothing here needs cross-record transactions.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from . import crud


class JobRepository(ABC):
    # Jobs
    @abstractmethod
    def create_job(self, **fields) -> Any: ...

    @abstractmethod
    def get_job(self, job_id) -> Optional[Any]: ...

    @abstractmethod
    def update_job(self, job_id, **fields) -> Optional[Any]: ...

    @abstractmethod
    def list_jobs(self, workspace_id=None, status=None, limit: int = 50, offset: int = 0) -> List[Any]: ...

    # Runs
    @abstractmethod
    def create_run(self, **fields) -> Any: ...

    @abstractmethod
    def get_run(self, run_id) -> Optional[Any]: ...

    @abstractmethod
    def update_run(self, run_id, **fields) -> Optional[Any]: ...

    @abstractmethod
    def count_runs(self, job_id) -> int: ...

    @abstractmethod
    def list_runs(self, job_id) -> List[Any]:
        """Runs of a job, newest first."""

    @abstractmethod
    def add_run_metrics(self, run_id, tokens: int, cost_usd: float) -> Optional[Any]: ...

    # Steps
    @abstractmethod
    def create_step(self, **fields) -> Any: ...

    @abstractmethod
    def update_step(self, step_id, **fields) -> Optional[Any]: ...

    @abstractmethod
    def list_steps(self, run_id) -> List[Any]: ...

    # Presets and usage
    @abstractmethod
    def create_brand_preset(self, workspace_id: str, name: str, defaults: dict, is_default: bool = False) -> Any: ...

    @abstractmethod
    def get_brand_preset(self, preset_id) -> Optional[Any]: ...

    @abstractmethod
    def get_daily_usage(self, workspace_id: str, day: date) -> Optional[Any]: ...

    @abstractmethod
    def increment_daily_usage(self, workspace_id: str, day: date, jobs: int = 0, minutes: int = 0,
                              tokens: int = 0, cost_usd: float = 0.0) -> Any: ...

    @abstractmethod
    def rollback(self) -> None:
        """Discard a write that failed half-way so later calls see committed state."""


class SqlAlchemyJobRepository(JobRepository):
    def __init__(self, db: Session):
        self.db = db

    def create_job(self, **fields):
        return crud.create_job(self.db, **fields)

    def get_job(self, job_id):
        return crud.get_job(self.db, job_id)

    def update_job(self, job_id, **fields):
        return crud.update_job(self.db, job_id, **fields)

    def list_jobs(self, workspace_id=None, status=None, limit=50, offset=0):
        return crud.list_jobs(self.db, workspace_id=workspace_id, status=status, limit=limit, offset=offset)

    def create_run(self, **fields):
        return crud.create_run(self.db, **fields)

    def get_run(self, run_id):
        return crud.get_run(self.db, run_id)

    def update_run(self, run_id, **fields):
        return crud.update_run(self.db, run_id, **fields)

    def count_runs(self, job_id):
        return crud.count_runs(self.db, job_id)

    def list_runs(self, job_id):
        return crud.list_runs(self.db, job_id)

    def add_run_metrics(self, run_id, tokens, cost_usd):
        return crud.add_run_metrics(self.db, run_id, tokens, cost_usd)

    def create_step(self, **fields):
        return crud.create_step(self.db, **fields)

    def update_step(self, step_id, **fields):
        return crud.update_step(self.db, step_id, **fields)

    def list_steps(self, run_id):
        return crud.list_steps(self.db, run_id)

    def create_brand_preset(self, workspace_id, name, defaults, is_default=False):
        return crud.create_brand_preset(self.db, workspace_id, name, defaults, is_default)

    def get_brand_preset(self, preset_id):
        return crud.get_brand_preset(self.db, preset_id)

    def get_daily_usage(self, workspace_id, day):
        return crud.get_daily_usage(self.db, workspace_id, day)

    def increment_daily_usage(self, workspace_id, day, jobs=0, minutes=0, tokens=0, cost_usd=0.0):
        return crud.increment_daily_usage(self.db, workspace_id, day, jobs, minutes, tokens, cost_usd)

    def rollback(self):
        self.db.rollback()
