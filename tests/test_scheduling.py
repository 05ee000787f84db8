from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from helpers import create_earn_row, create_user
from yumrun_api.jobs.loyalty import run_points_expiry
from yumrun_api.observability.scheduler import get_scheduler_store
from yumrun_api.scheduling import JobDefinition, JobScheduler, RetryPolicy, load_job_definitions
from yumrun_api.scheduling.runner import resolve_task


SCHEDULE_PATH = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"
NO_WAIT = RetryPolicy(max_attempts=3, base_backoff_seconds=0, max_backoff_seconds=0, jitter_seconds=0)


def _write(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "schedules.toml"
    path.write_text(body, encoding="utf-8")
    return path


def test_shipped_schedule_loads() -> None:
    config = load_job_definitions(SCHEDULE_PATH)

    assert config.timezone == "UTC"
    jobs = {job.id: job for job in config.jobs}
    assert set(jobs) == {"loyalty_points_expiry", "loyalty_tier_reconciliation"}
    assert jobs["loyalty_points_expiry"].cron == "0 2 * * *"
    assert jobs["loyalty_points_expiry"].retry.max_attempts == 3
    assert jobs["loyalty_tier_reconciliation"].kwargs == {"batch_size": 500}
    for job in jobs.values():
        assert resolve_task(job.task).__name__ == job.task.rsplit(".", 1)[1]


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ('[jobs.bad]\ntask = "expire"\ncron = "0 2 * * *"\n', "dotted"),
        ('[jobs.bad]\ntask = "a.b"\ncron = "0 2 * *"\n', "five-field"),
        ('[jobs.bad]\ntask = "a.b"\ncron = "0 2 * * *"\nkwargs = 3\n', "kwargs"),
    ],
)
def test_malformed_schedule_is_rejected(tmp_path, body, message) -> None:
    with pytest.raises(ValueError, match=message):
        load_job_definitions(_write(tmp_path, body))


def test_missing_schedule_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_job_definitions(tmp_path / "absent.toml")


def test_disabled_jobs_are_skipped(tmp_path) -> None:
    config = load_job_definitions(
        _write(
            tmp_path,
            '[jobs.on]\ntask = "a.b"\ncron = "* * * * *"\n\n[jobs.off]\ntask = "a.c"\ncron = "* * * * *"\nenabled = false\n',
        )
    )
    assert [job.id for job in config.enabled_jobs()] == ["on"]


def test_resolve_task_rejects_sync_and_unknown_callables() -> None:
    with pytest.raises(TypeError):
        resolve_task("yumrun_api.services.loyalty.tiers.calculate_tier")
    with pytest.raises(AttributeError):
        resolve_task("yumrun_api.jobs.loyalty.expiry.does_not_exist")


def test_backoff_is_exponential_and_capped() -> None:
    policy = RetryPolicy(max_attempts=4, base_backoff_seconds=1, backoff_multiplier=2, max_backoff_seconds=3, jitter_seconds=0)
    assert [policy.delay_for(attempt) for attempt in (1, 2, 3)] == [1, 2, 3]


@pytest.mark.asyncio
async def test_run_job_retries_until_success(tmp_path) -> None:
    calls: list[dict] = []

    async def flaky(*, session_factory, label):
        calls.append({"label": label})
        if len(calls) < 2:
            raise RuntimeError("database unavailable")
        return {"processed": 4}

    scheduler = JobScheduler(session_factory=lambda: None, config_path=tmp_path / "unused.toml")
    job = JobDefinition(id="flaky", task="tests.flaky", cron="* * * * *", kwargs={"label": "x"}, retry=NO_WAIT)

    assert await scheduler.run_job(job, flaky) == {"processed": 4}
    assert len(calls) == 2

    snapshot = get_scheduler_store().snapshot()
    assert snapshot.totals == {"dispatched": 1, "succeeded": 1, "failed": 0, "retries": 1}
    assert snapshot.jobs["flaky"].attempt_failures == 1
    assert snapshot.jobs["flaky"].last_attempts == 2


@pytest.mark.asyncio
async def test_run_job_gives_up_after_max_attempts(tmp_path) -> None:
    async def broken(*, session_factory):
        raise RuntimeError("still broken")

    scheduler = JobScheduler(session_factory=lambda: None, config_path=tmp_path / "unused.toml")
    job = JobDefinition(id="broken", task="tests.broken", cron="* * * * *", retry=NO_WAIT)

    assert await scheduler.run_job(job, broken) is None

    state = get_scheduler_store().snapshot().jobs["broken"]
    assert state.failed == 1
    assert state.attempt_failures == 3
    assert state.consecutive_failures == 1
    assert state.last_error == "still broken"


@pytest.mark.asyncio
async def test_run_job_executes_expiry_task(session_factory, tmp_path) -> None:
    async with session_factory() as session:
        member = await create_user(session, points=40)
        await create_earn_row(
            session,
            user_id=member.id,
            points=40,
            expiry_date=datetime.now(timezone.utc) - timedelta(days=1),
        )
        await session.commit()

    scheduler = JobScheduler(session_factory=session_factory, config_path=tmp_path / "unused.toml")
    job = JobDefinition(
        id="loyalty_points_expiry",
        task="yumrun_api.jobs.loyalty.expiry.run_points_expiry",
        cron="0 2 * * *",
    )

    summary = await scheduler.run_job(job, run_points_expiry)

    assert summary["processed"] == 1
    assert get_scheduler_store().snapshot().jobs["loyalty_points_expiry"].succeeded == 1


@pytest.mark.asyncio
async def test_scheduler_start_registers_jobs_and_reports_health(session_factory) -> None:
    scheduler = JobScheduler(session_factory=session_factory, config_path=SCHEDULE_PATH)
    scheduler.start()
    try:
        health = scheduler.health()
        assert health["running"] is True
        assert health["configuredJobs"] == 2
        assert {job["id"] for job in health["jobs"]} == {"loyalty_points_expiry", "loyalty_tier_reconciliation"}
        assert all(job["metrics"] is None for job in health["jobs"])
    finally:
        await scheduler.stop()

    assert scheduler.is_running is False
