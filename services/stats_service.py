"""
Assignment statistics for the dashboard.

Aggregates the assignment log over a period (per outcome and per platform),
a 7-day daily trend and the most recent batches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from domain.assignment import AssignmentBatch, OutcomeCounts
from domain.time import utc_now
from repositories import assignment_log_repository
from services.batch_ledger import BatchLedger

TREND_DAYS = 7
RECENT_BATCHES = 10


@dataclass(frozen=True, slots=True)
class AssignmentStats:
    date_from: datetime
    date_to: datetime
    counts: OutcomeCounts
    platform_stats: Dict[str, OutcomeCounts]
    daily_trend: Dict[str, OutcomeCounts]
    recent_batches: List[AssignmentBatch] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.counts.total

    @property
    def success_rate(self) -> int:
        """Share of processed contacts that were added, in whole percent."""
        if self.total == 0:
            return 0
        return round(self.counts.added / self.total * 100)


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def collect_stats(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    log_store: Any = assignment_log_repository,
    ledger: Optional[BatchLedger] = None,
) -> AssignmentStats:
    """
    Args:
        date_from: Start of the period (default: today 00:00 UTC)
        date_to: End of the period (default: now)
    """

    now = utc_now()
    date_to = date_to or now
    date_from = date_from or _start_of_day(now)

    counts = OutcomeCounts()
    per_platform: Dict[str, OutcomeCounts] = {}
    for outcome, platform_name, _ in log_store.list_outcomes(date_from, date_to):
        one = OutcomeCounts.of(outcome)
        counts = counts + one
        per_platform[platform_name] = per_platform.get(platform_name, OutcomeCounts()) + one

    trend: Dict[str, OutcomeCounts] = {}
    for outcome, _, created_at in log_store.list_outcomes(now - timedelta(days=TREND_DAYS), now):
        day = created_at.date().isoformat()
        trend[day] = trend.get(day, OutcomeCounts()) + OutcomeCounts.of(outcome)

    ledger = ledger or BatchLedger()
    return AssignmentStats(
        date_from=date_from,
        date_to=date_to,
        counts=counts,
        platform_stats=per_platform,
        daily_trend=dict(sorted(trend.items())),
        recent_batches=ledger.list_batches(limit=RECENT_BATCHES),
    )


__all__ = ["TREND_DAYS", "AssignmentStats", "collect_stats"]
