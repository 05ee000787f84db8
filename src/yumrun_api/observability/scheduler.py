"""Run counters for the maintenance job scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


@dataclass
class JobRunState:
    job_id: str
    task: str
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    attempt_failures: int = 0
    retries: int = 0
    consecutive_failures: int = 0
    last_started_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_attempts: int = 0
    last_runtime_seconds: Optional[float] = None

    def as_dict(self) -> Dict[str, object]:
        return {
            "jobId": self.job_id,
            "task": self.task,
            "dispatched": self.dispatched,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "attemptFailures": self.attempt_failures,
            "retries": self.retries,
            "consecutiveFailures": self.consecutive_failures,
            "lastStartedAt": _iso(self.last_started_at),
            "lastSuccessAt": _iso(self.last_success_at),
            "lastErrorAt": _iso(self.last_error_at),
            "lastError": self.last_error,
            "lastAttempts": self.last_attempts,
            "lastRuntimeSeconds": self.last_runtime_seconds,
        }


@dataclass
class SchedulerSnapshot:
    totals: Dict[str, int]
    jobs: Dict[str, JobRunState] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": dict(self.totals),
            "jobs": {job_id: state.as_dict() for job_id, state in self.jobs.items()},
        }


class SchedulerObservabilityStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, JobRunState] = {}

    def _state(self, job_id: str, task: str) -> JobRunState:
        state = self._jobs.get(job_id)
        if state is None:
            state = JobRunState(job_id=job_id, task=task)
            self._jobs[job_id] = state
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.dispatched += 1
            state.last_started_at = _utcnow()

    def record_success(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.succeeded += 1
            state.consecutive_failures = 0
            state.last_success_at = _utcnow()
            state.last_attempts = attempts
            state.last_runtime_seconds = round(runtime_seconds, 3)

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.attempt_failures += 1
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()

    def record_retry(self, job_id: str, task: str, *, delay_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.retries += 1
            state.last_attempts = attempts

    def record_run_failure(
        self,
        job_id: str,
        task: str,
        *,
        runtime_seconds: float,
        attempts: int,
        error: str,
    ) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.failed += 1
            state.consecutive_failures += 1
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()
            state.last_runtime_seconds = round(runtime_seconds, 3)

    def snapshot(self) -> SchedulerSnapshot:
        with self._lock:
            jobs = {job_id: JobRunState(**vars(state)) for job_id, state in self._jobs.items()}
        totals = {
            "dispatched": sum(state.dispatched for state in jobs.values()),
            "succeeded": sum(state.succeeded for state in jobs.values()),
            "failed": sum(state.failed for state in jobs.values()),
            "retries": sum(state.retries for state in jobs.values()),
        }
        return SchedulerSnapshot(totals=totals, jobs=jobs)

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()


_STORE = SchedulerObservabilityStore()


def get_scheduler_store() -> SchedulerObservabilityStore:
    return _STORE


__all__ = ["JobRunState", "SchedulerObservabilityStore", "SchedulerSnapshot", "get_scheduler_store"]
