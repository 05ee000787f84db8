"""Operations snapshots for loyalty activity and scheduled jobs."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from yumrun_api.api.dependencies.session import require_capability
from yumrun_api.api.envelope import ApiResponse, ok
from yumrun_api.observability.loyalty import get_loyalty_store
from yumrun_api.observability.scheduler import get_scheduler_store
from yumrun_api.services.auth import Capability


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_capability(Capability.VIEW_OPERATIONS))],
)


@router.get("/loyalty", response_model=ApiResponse[dict], summary="Loyalty ledger activity snapshot")
async def get_loyalty_snapshot() -> ApiResponse[dict]:
    return ok(get_loyalty_store().snapshot().as_dict())


@router.get("/scheduler", response_model=ApiResponse[dict], summary="Scheduled job health")
async def get_scheduler_snapshot(request: Request) -> ApiResponse[dict]:
    scheduler = getattr(request.app.state, "job_scheduler", None)
    if scheduler is not None:
        return ok(scheduler.health())
    snapshot = get_scheduler_store().snapshot().as_dict()
    return ok({"running": False, **snapshot})


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    loyalty_snapshot = get_loyalty_store().snapshot()
    scheduler_snapshot = get_scheduler_store().snapshot()

    lines: list[str] = []
    for transaction_type, value in sorted(loyalty_snapshot.transactions.items()):
        lines.extend(
            _format_metric(
                "yumrun_loyalty_transactions_total",
                "Loyalty ledger rows written, grouped by type",
                value,
                labels={"type": transaction_type},
            )
        )
    for transaction_type, value in sorted(loyalty_snapshot.points.items()):
        lines.extend(
            _format_metric(
                "yumrun_loyalty_points_total",
                "Signed loyalty points moved, grouped by type",
                value,
                labels={"type": transaction_type},
            )
        )
    for tier, value in sorted(loyalty_snapshot.tier_changes.items()):
        lines.extend(
            _format_metric(
                "yumrun_loyalty_tier_changes_total",
                "Tier changes grouped by the new tier",
                value,
                labels={"tier": tier},
            )
        )

    expiry = loyalty_snapshot.expiry
    lines.extend(_format_metric("yumrun_loyalty_expiry_runs_total", "Expiry sweeps executed", expiry.get("runs", 0)))
    lines.extend(
        _format_metric("yumrun_loyalty_expired_transactions_total", "Earn rows expired", expiry.get("processed", 0))
    )
    lines.extend(
        _format_metric("yumrun_loyalty_expiry_failures_total", "Earn rows that failed to expire", expiry.get("failures", 0))
    )

    for job_id, state in sorted(scheduler_snapshot.jobs.items()):
        labels = {"job_id": job_id}
        lines.extend(_format_metric("yumrun_scheduler_job_succeeded_total", "Successful job runs", state.succeeded, labels))
        lines.extend(_format_metric("yumrun_scheduler_job_failed_total", "Job runs that exhausted retries", state.failed, labels))
        lines.extend(_format_metric("yumrun_scheduler_job_retries_total", "Job retries scheduled", state.retries, labels))
        lines.extend(
            _format_metric(
                "yumrun_scheduler_job_consecutive_failures",
                "Consecutive failed runs",
                state.consecutive_failures,
                labels,
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
