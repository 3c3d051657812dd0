import pytest

from clipinsight.db.schemas import JobCreate, RunCreate
from clipinsight.jobs.contract import DEFAULT_CONTRACT
from clipinsight.jobs.errors import (
    InvalidJobInputError,
    InvalidStateTransitionError,
    JobNotFoundError,
    RunConflictError,
    RunNotFoundError,
)
from clipinsight.jobs.states import JobStatus, PipelineStage, RunStatus, RunTrigger, SourceType, StepStatus


def _advance(lifecycle, job_id, *statuses):
    for status in statuses:
        lifecycle.update_job_status(job_id, status)


def test_create_job_starts_received(make_job):
    job = make_job()
    assert job.id is not None
    assert job.status == JobStatus.RECEIVED
    assert job.language == "en"
    assert job.created_by_user_id == "user-1"


def test_upload_requires_filename(lifecycle):
    with pytest.raises(InvalidJobInputError, match="source_filename"):
        lifecycle.create_job(JobCreate(workspace_id="ws-1", user_id="u", source_type=SourceType.UPLOAD))


@pytest.mark.parametrize("source_type", [SourceType.YOUTUBE_URL, SourceType.OTHER_URL])
def test_url_sources_require_url(lifecycle, source_type):
    with pytest.raises(InvalidJobInputError, match="source_url"):
        lifecycle.create_job(JobCreate(workspace_id="ws-1", user_id="u", source_type=source_type))


def test_upload_with_filename(lifecycle):
    job = lifecycle.create_job(JobCreate(workspace_id="ws-1", user_id="u", source_type=SourceType.UPLOAD,
                                         source_filename="talk.mp4"))
    assert job.source_filename == "talk.mp4"


def test_get_missing_job(lifecycle):
    with pytest.raises(JobNotFoundError):
        lifecycle.get_job(999)
    with pytest.raises(RunNotFoundError):
        lifecycle.get_run(999)


def test_list_jobs_filters(make_job, lifecycle):
    a = make_job()
    make_job(workspace_id="ws-2")
    lifecycle.update_job_status(a.id, JobStatus.VALIDATED)

    assert [j.workspace_id for j in lifecycle.list_jobs(workspace_id="ws-2")] == ["ws-2"]
    assert [j.id for j in lifecycle.list_jobs(status=JobStatus.VALIDATED)] == [a.id]
    assert len(lifecycle.list_jobs(limit=1)) == 1


def test_update_job_status_valid(make_job, lifecycle):
    job = make_job()
    updated = lifecycle.update_job_status(job.id, JobStatus.VALIDATED)
    assert updated.status == JobStatus.VALIDATED
    assert updated.status_reason is None


def test_update_job_status_rejects_illegal_edge_and_keeps_status(make_job, lifecycle):
    job = make_job()
    with pytest.raises(InvalidStateTransitionError) as exc_info:
        lifecycle.update_job_status(job.id, JobStatus.DELIVERED)
    assert "RECEIVED -> DELIVERED" in str(exc_info.value)
    assert "Valid transitions: VALIDATED, FAILED_VALIDATION" in str(exc_info.value)
    assert lifecycle.get_job(job.id).status == JobStatus.RECEIVED


def test_update_job_status_records_reason(make_job, lifecycle):
    job = make_job()
    updated = lifecycle.update_job_status(job.id, JobStatus.FAILED_VALIDATION, "Video too long")
    assert updated.status_reason == "Video too long"


def test_first_run(make_job, make_run):
    job = make_job()
    run = make_run(job.id)
    assert run.run_number == 1
    assert run.status == RunStatus.PENDING
    assert run.trigger == RunTrigger.USER_CREATE
    assert run.total_tokens == 0
    assert run.started_at is None
    assert run.generation_contract == DEFAULT_CONTRACT


def test_second_run_rejected_while_first_is_active(make_job, make_run):
    job = make_job()
    make_run(job.id)
    with pytest.raises(RunConflictError, match="active run"):
        make_run(job.id)


def test_run_rejected_while_job_in_progress(make_job, make_run, lifecycle):
    job = make_job()
    run = make_run(job.id)
    lifecycle.update_run_status(run.id, RunStatus.RUNNING)
    lifecycle.update_run_status(run.id, RunStatus.FAILED, "stopped")
    lifecycle.update_job_status(job.id, JobStatus.VALIDATED)
    with pytest.raises(RunConflictError, match="still in progress"):
        make_run(job.id)


def test_run_numbers_increase_after_finished_runs(make_job, make_run, lifecycle):
    job = make_job()
    first = make_run(job.id)
    lifecycle.update_run_status(first.id, RunStatus.RUNNING)
    lifecycle.update_run_status(first.id, RunStatus.FAILED, "boom")
    lifecycle.update_job_status(job.id, JobStatus.FAILED_VALIDATION)

    second = make_run(job.id, trigger=RunTrigger.REGENERATE)
    assert second.run_number == 2
    assert [r.run_number for r in lifecycle.list_runs(job.id)] == [2, 1]
    assert lifecycle.get_latest_run(job.id).id == second.id


def test_contract_layering_with_preset_and_overrides(make_job, make_run, repo):
    preset = repo.create_brand_preset("ws-1", "Acme", {
        "tone": "friendly",
        "keywords": ["acme", "widgets"],
        "formats": {"linkedin": {"length": "100-200 words"}},
    })
    job = make_job(brand_preset_id=preset.id, language="de")
    run = make_run(job.id, contract_overrides={"tone": "bold", "brand": {"cta": "Buy now"}})

    contract = run.generation_contract
    assert contract["language"] == "de"
    assert contract["tone"] == "bold"
    assert contract["brand"]["keywords"] == ["acme", "widgets"]
    assert contract["brand"]["cta"] == "Buy now"
    assert contract["brand"]["banned_terms"] == DEFAULT_CONTRACT["brand"]["banned_terms"]
    assert contract["formats"]["linkedin"]["length"] == "100-200 words"
    assert contract["formats"]["blog"] == DEFAULT_CONTRACT["formats"]["blog"]


def test_missing_preset_falls_back_to_defaults(make_job, make_run):
    job = make_job(brand_preset_id=4242)
    run = make_run(job.id)
    assert run.generation_contract["tone"] == DEFAULT_CONTRACT["tone"]


def test_incomplete_contract_rejected(make_job, make_run):
    job = make_job()
    with pytest.raises(InvalidJobInputError, match="Missing audience"):
        make_run(job.id, contract_overrides={"audience": ""})


def test_run_timestamps(make_job, make_run, lifecycle):
    job = make_job()
    run = make_run(job.id)
    running = lifecycle.update_run_status(run.id, RunStatus.RUNNING)
    assert running.started_at is not None
    assert running.finished_at is None

    done = lifecycle.update_run_status(run.id, RunStatus.FAILED, "ASR failed")
    assert done.finished_at is not None
    assert done.error_message == "ASR failed"


def test_finished_run_is_immutable(make_job, make_run, lifecycle):
    job = make_job()
    run = make_run(job.id)
    lifecycle.update_run_status(run.id, RunStatus.RUNNING)
    lifecycle.update_run_status(run.id, RunStatus.SUCCEEDED)
    with pytest.raises(InvalidStateTransitionError, match="Invalid run state transition"):
        lifecycle.update_run_status(run.id, RunStatus.RUNNING)


def test_run_metrics_accumulate(make_job, make_run, lifecycle):
    job = make_job()
    run = make_run(job.id)
    lifecycle.add_run_metrics(run.id, 100, 0.5)
    updated = lifecycle.add_run_metrics(run.id, 50, 0.25)
    assert updated.total_tokens == 150
    assert updated.cost_usd == pytest.approx(0.75)


def test_steps(make_job, make_run, lifecycle):
    job = make_job()
    run = make_run(job.id)
    step = lifecycle.start_step(run.id, PipelineStage.ASR)
    assert step.status == StepStatus.STARTED
    assert step.attempt == 1
    assert step.started_at is not None

    lifecycle.update_step(step.id, status=StepStatus.FAILED, error_code="TIMEOUT", metrics={"x": 1})
    steps = lifecycle.get_run_steps(run.id)
    assert len(steps) == 1
    assert steps[0].status == StepStatus.FAILED
    assert steps[0].error_code == "TIMEOUT"
    assert steps[0].metrics == {"x": 1}


def test_reset_for_rerun(make_job, lifecycle):
    job = make_job()
    _advance(lifecycle, job.id, JobStatus.VALIDATED, JobStatus.INGESTED)
    lifecycle.update_job_status(job.id, JobStatus.FAILED, "ASR failed")

    reset = lifecycle.reset_for_rerun(job.id)
    assert reset.status == JobStatus.RECEIVED
    assert reset.status_reason is None


def test_reset_for_rerun_rejects_blocked_and_in_progress(make_job, lifecycle):
    blocked = make_job()
    _advance(lifecycle, blocked.id, JobStatus.VALIDATED, JobStatus.BLOCKED_ENTITLEMENT)
    with pytest.raises(RunConflictError):
        lifecycle.reset_for_rerun(blocked.id)

    busy = make_job()
    lifecycle.update_job_status(busy.id, JobStatus.VALIDATED)
    with pytest.raises(RunConflictError):
        lifecycle.reset_for_rerun(busy.id)


def test_usage_counters(lifecycle):
    assert lifecycle.get_usage("ws-1") is None
    lifecycle.record_usage("ws-1", jobs=1, minutes=3, tokens=100, cost_usd=0.1)
    usage = lifecycle.record_usage("ws-1", jobs=1, minutes=2, tokens=50, cost_usd=0.05)
    assert usage.jobs_count == 2
    assert usage.minutes_processed == 5
    assert usage.tokens_used == 150
    assert usage.cost_usd == pytest.approx(0.15)
    assert lifecycle.get_usage("ws-1").id == usage.id
    assert lifecycle.get_usage("ws-2") is None


def test_create_run_for_missing_job(lifecycle):
    with pytest.raises(JobNotFoundError):
        lifecycle.create_run(RunCreate(job_id=12345))
