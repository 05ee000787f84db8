from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional


@dataclass
class LoyaltySnapshot:
    transactions: Dict[str, int]
    points: Dict[str, int]
    tier_changes: Dict[str, int]
    expiry: Dict[str, object]

    def as_dict(self) -> Dict[str, object]:
        return {
            "transactions": dict(self.transactions),
            "points": dict(self.points),
            "tierChanges": dict(self.tier_changes),
            "expiry": dict(self.expiry),
        }


class LoyaltyObservabilityStore:
    """Counts ledger activity and expiry runs for the operations endpoint."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._transactions: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)
        self._tier_changes: Dict[str, int] = defaultdict(int)
        self._expiry_runs = 0
        self._expired_transactions = 0
        self._expiry_failures = 0
        self._last_expiry_run_at: Optional[datetime] = None

    def record_transaction(self, transaction_type: str, points: int) -> None:
        with self._lock:
            self._transactions[transaction_type] += 1
            self._points[transaction_type] += points

    def record_tier_change(self, tier: str) -> None:
        with self._lock:
            self._tier_changes[tier] += 1

    def record_expiry_run(self, *, processed: int, failed: int) -> None:
        with self._lock:
            self._expiry_runs += 1
            self._expired_transactions += processed
            self._expiry_failures += failed
            self._last_expiry_run_at = datetime.now(timezone.utc)

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            expiry: Dict[str, object] = {
                "runs": self._expiry_runs,
                "processed": self._expired_transactions,
                "failures": self._expiry_failures,
                "lastRunAt": self._last_expiry_run_at.isoformat() if self._last_expiry_run_at else None,
            }
            return LoyaltySnapshot(
                transactions=dict(self._transactions),
                points=dict(self._points),
                tier_changes=dict(self._tier_changes),
                expiry=expiry,
            )

    def reset(self) -> None:
        with self._lock:
            self._transactions.clear()
            self._points.clear()
            self._tier_changes.clear()
            self._expiry_runs = 0
            self._expired_transactions = 0
            self._expiry_failures = 0
            self._last_expiry_run_at = None


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
