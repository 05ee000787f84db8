"""In-process scheduler for the recurring maintenance jobs."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from yumrun_api.observability.scheduler import get_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]


def resolve_task(task: str) -> JobCallable:
    module_name, _, attr = task.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {task}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {task} not found")
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"Task {task} must be an async function")
    return func


class JobScheduler:
    """Registers catalogue jobs on an ``AsyncIOScheduler`` and runs them with retries."""

    def __init__(self, *, session_factory: SessionFactory, config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._observability = get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.enabled_jobs():
            func = resolve_task(job.task)
            trigger = CronTrigger.from_crontab(job.cron, timezone=timezone)
            scheduler.add_job(
                self.run_job,
                trigger=trigger,
                args=[job, func],
                id=job.id,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            logger.info("Registered scheduled job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        logger.info("Job scheduler started", jobs=len(config.enabled_jobs()), timezone=config.timezone)

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Job scheduler stopped")

    async def run_job(self, job: JobDefinition, func: JobCallable | None = None) -> Any:
        """Run one job now, retrying per its policy; returns the job's result or ``None`` on failure."""

        func = func or resolve_task(job.task)
        policy = job.retry
        self._observability.record_dispatch(job.id, job.task)
        started_at = time.perf_counter()

        for attempt in range(1, policy.max_attempts + 1):
            try:
                result = await func(session_factory=self._session_factory, **job.kwargs)
            except Exception as exc:
                error_message = str(exc)
                self._observability.record_attempt_failure(job.id, job.task, attempts=attempt, error=error_message)
                if attempt >= policy.max_attempts:
                    self._observability.record_run_failure(
                        job.id,
                        job.task,
                        runtime_seconds=time.perf_counter() - started_at,
                        attempts=attempt,
                        error=error_message,
                    )
                    logger.opt(exception=exc).error(
                        "Scheduled job failed after retries",
                        job_id=job.id,
                        task=job.task,
                        attempts=attempt,
                    )
                    return None

                delay = policy.delay_for(attempt)
                self._observability.record_retry(job.id, job.task, delay_seconds=delay, attempts=attempt + 1)
                logger.warning(
                    "Scheduled job retrying",
                    job_id=job.id,
                    task=job.task,
                    attempt=attempt + 1,
                    delay_seconds=delay,
                    error=error_message,
                )
                if delay:
                    await asyncio.sleep(delay)
                continue

            runtime_seconds = time.perf_counter() - started_at
            self._observability.record_success(job.id, job.task, runtime_seconds=runtime_seconds, attempts=attempt)
            logger.info(
                "Scheduled job completed",
                job_id=job.id,
                task=job.task,
                attempts=attempt,
                runtime_seconds=round(runtime_seconds, 3),
            )
            return result
        return None

    def health(self) -> dict[str, object]:
        snapshot = self._observability.snapshot()
        config_jobs = self._config.jobs if self._config else []
        jobs = [
            {
                "id": job.id,
                "task": job.task,
                "cron": job.cron,
                "enabled": job.enabled,
                "maxAttempts": job.retry.max_attempts,
                "metrics": snapshot.jobs[job.id].as_dict() if job.id in snapshot.jobs else None,
            }
            for job in config_jobs
        ]
        return {
            "running": self.is_running,
            "configuredJobs": len(config_jobs),
            "totals": snapshot.totals,
            "jobs": jobs,
        }


__all__ = ["JobScheduler", "resolve_task"]
