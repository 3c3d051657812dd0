import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the project root is on PYTHONPATH so tests can import "clipinsight"
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from clipinsight.db.base import Base  # noqa: E402
from clipinsight.db import models  # noqa: E402,F401  (registers tables on Base)
from clipinsight.db.repository import SqlAlchemyJobRepository  # noqa: E402
from clipinsight.db.schemas import JobCreate, RunCreate  # noqa: E402
from clipinsight.jobs.lifecycle import JobLifecycleManager  # noqa: E402
from clipinsight.jobs.states import PIPELINE_STAGE_ORDER, PipelineStage, SourceType  # noqa: E402
from clipinsight.pipeline.context import StepResult  # noqa: E402
from clipinsight.pipeline.scheduler import RecordingScheduler  # noqa: E402


class ScriptedHandler:
    """Stage handler that replays scripted outcomes; the last outcome repeats.

    Outcomes are ``StepResult`` instances or exception instances (raised).
    """

    def __init__(self, stage, outcomes):
        self.stage = PipelineStage(stage)
        self.outcomes = list(outcomes)
        self.calls = 0
        self.contexts = []

    def __call__(self, context):
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        self.contexts.append(context)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def default_result(stage: PipelineStage) -> StepResult:
    """What a healthy handler returns for each stage."""
    if stage == PipelineStage.INGESTION:
        return StepResult.ok(stage, duration_ms=40, outputs={"media_asset_id": "media-1"})
    if stage == PipelineStage.ASR:
        return StepResult.ok(stage, duration_ms=900, outputs={"transcript_id": "tr-1"},
                             metrics={"segments": 42})
    if stage == PipelineStage.INSIGHTS:
        return StepResult.ok(stage, duration_ms=1200, outputs={"insight_pack_id": "ip-1"},
                             metrics={"tokens_used": 1200, "cost_usd": 0.01})
    if stage == PipelineStage.DRAFTING:
        return StepResult.ok(stage, duration_ms=2500,
                             outputs={"artifact_ids": {"newsletter": "a-1", "blog": "a-2"}},
                             metrics={"tokens_used": 3000, "cost_usd": 0.03})
    return StepResult.ok(stage, duration_ms=5)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def repo(db):
    return SqlAlchemyJobRepository(db)


@pytest.fixture
def lifecycle(repo):
    return JobLifecycleManager(repo)


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def make_job(lifecycle):
    """Create a YouTube job (125 s long) with optional field overrides."""
    def _make(**overrides):
        data = {
            "workspace_id": "ws-1",
            "user_id": "user-1",
            "source_type": SourceType.YOUTUBE_URL,
            "source_url": "https://www.youtube.com/watch?v=abc123",
            "video_duration_sec": 125,
        }
        data.update(overrides)
        return lifecycle.create_job(JobCreate(**data))
    return _make


@pytest.fixture
def make_run(lifecycle):
    def _make(job_id, **overrides):
        return lifecycle.create_run(RunCreate(job_id=job_id, **overrides))
    return _make


@pytest.fixture
def make_handlers():
    """Build a full handler map; pass ``ASR=[...]`` etc. to script a stage."""
    def _make(**scripts):
        handlers = {}
        for stage in PIPELINE_STAGE_ORDER:
            outcomes = scripts.get(stage.value) or [default_result(stage)]
            handlers[stage] = ScriptedHandler(stage, outcomes)
        return handlers
    return _make


@pytest.fixture
def break_session(db):
    """Fail a commit on ``db`` (duplicate run number), leaving the session pending rollback."""
    def _break(job_id):
        db.add(models.JobRun(job_id=job_id, run_number=1, generation_contract={}))
        db.commit()
    return _break
