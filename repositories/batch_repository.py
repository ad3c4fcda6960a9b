"""
Assignment batch repository (persistence).

This module provides *only* persistence operations for AssignmentBatch. It
does not decide which status transitions are legal; it only offers the two
write primitives the ledger needs:

- an atomic additive progress increment (Postgres function
  `increment_assignment_batch_progress`), so concurrent chunks converge
  instead of overwriting each other;
- a conditional status update that only applies when the current status is
  one of the expected ones.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Collection, List, Mapping, Optional

from domain.assignment import (
    ACTIVE_STATUSES,
    AssignmentBatch,
    BatchStatus,
    OutcomeCounts,
    PlatformStats,
    ProgressDelta,
)
from domain.time import parse_optional_utc_datetime, parse_utc_datetime, to_iso_utc
from repositories.client import check_response, get_supabase

_BATCHES_TABLE: str = "campaign_assignment_batches"
_INCREMENT_RPC: str = "increment_assignment_batch_progress"


def _row_to_batch(row: Mapping[str, Any]) -> AssignmentBatch:
    """Convert a Supabase row into an AssignmentBatch."""

    platform_stats = {
        str(platform_id): PlatformStats.from_mapping(stats)
        for platform_id, stats in (row.get("platform_stats") or {}).items()
    }

    return AssignmentBatch(
        batch_id=str(row["batch_id"]),
        status=BatchStatus(str(row["status"])),
        total_candidates=int(row.get("total_candidates") or 0),
        started_at=parse_utc_datetime(row["started_at"]),
        counts=OutcomeCounts.from_mapping(row),
        platform_stats=platform_stats,
        orchestration_id=row.get("orchestration_id"),
        platform_id=str(row["platform_id"]) if row.get("platform_id") else None,
        max_total=row.get("max_total"),
        max_per_platform=row.get("max_per_platform"),
        dry_run=bool(row.get("dry_run", False)),
        completed_at=parse_optional_utc_datetime(row.get("completed_at")),
        lead_limit_reached=bool(row.get("lead_limit_reached", False)),
        last_error=row.get("last_error"),
    )


def _batch_to_row(batch: AssignmentBatch) -> dict[str, Any]:
    return {
        "batch_id": batch.batch_id,
        "orchestration_id": batch.orchestration_id,
        "platform_id": batch.platform_id,
        "status": batch.status.value,
        "total_candidates": batch.total_candidates,
        "processed": batch.processed,
        "added": batch.counts.added,
        "skipped": batch.counts.skipped,
        "skipped_klant": batch.counts.skipped_klant,
        "skipped_ai_error": batch.counts.skipped_ai_error,
        "skipped_duplicate": batch.counts.skipped_duplicate,
        "errors": batch.counts.errors,
        "platform_stats": batch.platform_stats_dict(),
        "max_total": batch.max_total,
        "max_per_platform": batch.max_per_platform,
        "dry_run": batch.dry_run,
        "started_at": to_iso_utc(batch.started_at, name="started_at"),
        "completed_at": to_iso_utc(batch.completed_at, name="completed_at") if batch.completed_at else None,
        "lead_limit_reached": batch.lead_limit_reached,
        "last_error": batch.last_error,
    }


def insert_batch(batch: AssignmentBatch) -> AssignmentBatch:
    """Insert a new batch row."""

    response = get_supabase().table(_BATCHES_TABLE).insert(_batch_to_row(batch)).execute()
    check_response(response, "create assignment batch")
    return batch


def get_batch(batch_id: str) -> Optional[AssignmentBatch]:
    response = (
        get_supabase()
        .table(_BATCHES_TABLE)
        .select("*")
        .eq("batch_id", batch_id)
        .limit(1)
        .execute()
    )
    rows = check_response(response, "fetch assignment batch")
    if not rows:
        return None
    return _row_to_batch(rows[0])


def find_active_global_batch() -> Optional[AssignmentBatch]:
    """
    Most recent pending/processing batch that is not platform-scoped.
    """

    response = (
        get_supabase()
        .table(_BATCHES_TABLE)
        .select("*")
        .in_("status", [status.value for status in ACTIVE_STATUSES])
        .is_("platform_id", "null")
        .order("started_at", desc=True)
        .limit(1)
        .execute()
    )
    rows = check_response(response, "find active assignment batch")
    if not rows:
        return None
    return _row_to_batch(rows[0])


def list_batches(limit: int = 10, orchestration_id: Optional[str] = None) -> List[AssignmentBatch]:
    """Most recent batches first."""

    query = get_supabase().table(_BATCHES_TABLE).select("*")
    if orchestration_id is not None:
        query = query.eq("orchestration_id", orchestration_id)
    response = query.order("started_at", desc=True).limit(limit).execute()
    rows = check_response(response, "list assignment batches")
    return [_row_to_batch(row) for row in rows]


def increment_progress(batch_id: str, delta: ProgressDelta) -> AssignmentBatch:
    """
    Atomically add a progress delta to a batch.

    The Postgres function adds every counter, merges platform_stats key by
    key and subtracts `dropped` from total_candidates in a single UPDATE.
    """

    params = {
        "p_batch_id": batch_id,
        "p_added": delta.counts.added,
        "p_skipped_klant": delta.counts.skipped_klant,
        "p_skipped_ai_error": delta.counts.skipped_ai_error,
        "p_skipped_duplicate": delta.counts.skipped_duplicate,
        "p_errors": delta.counts.errors,
        "p_dropped": delta.dropped,
        "p_platform_stats": {
            platform_id: stats.to_dict() for platform_id, stats in delta.platform_counts.items()
        },
    }
    response = get_supabase().rpc(_INCREMENT_RPC, params).execute()
    rows = check_response(response, "update assignment batch progress")
    if not rows:
        raise RuntimeError(f"Failed to update assignment batch progress: batch {batch_id} not found")
    return _row_to_batch(rows[0])


def update_status(
    batch_id: str,
    status: BatchStatus,
    expected: Collection[BatchStatus],
    completed_at: Optional[datetime] = None,
    lead_limit_reached: Optional[bool] = None,
    last_error: Optional[str] = None,
) -> Optional[AssignmentBatch]:
    """
    Set a batch's status only if its current status is in `expected`.

    Returns:
        The updated batch, or None when the condition did not match
    """

    payload: dict[str, Any] = {"status": status.value}
    if completed_at is not None:
        payload["completed_at"] = to_iso_utc(completed_at, name="completed_at")
    if lead_limit_reached is not None:
        payload["lead_limit_reached"] = lead_limit_reached
    if last_error is not None:
        payload["last_error"] = last_error

    response = (
        get_supabase()
        .table(_BATCHES_TABLE)
        .update(payload)
        .eq("batch_id", batch_id)
        .in_("status", [s.value for s in expected])
        .execute()
    )
    rows = check_response(response, "update assignment batch status")
    if not rows:
        return None
    return _row_to_batch(rows[0])


__all__ = [
    "insert_batch",
    "get_batch",
    "find_active_global_batch",
    "list_batches",
    "increment_progress",
    "update_status",
]
