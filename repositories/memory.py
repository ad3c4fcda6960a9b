"""
In-memory batch ledger and assignment log.

Same surface as `batch_repository` and `assignment_log_repository`. Dry runs
use these so they exercise the full pipeline without touching the persistent
ledger; tests use them as the persistence layer.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Collection, Dict, List, Optional, Set, Tuple

from domain.assignment import (
    AssignmentBatch,
    AssignmentLogEntry,
    AssignmentOutcome,
    BatchStatus,
    ProgressDelta,
)
from repositories.assignment_log_repository import LogPage, LogQueryFilters


class InMemoryBatchStore:
    """Thread-safe dictionary of batches keyed by batch_id."""

    def __init__(self) -> None:
        self._batches: Dict[str, AssignmentBatch] = {}
        self._lock = threading.Lock()

    def insert_batch(self, batch: AssignmentBatch) -> AssignmentBatch:
        with self._lock:
            if batch.batch_id in self._batches:
                raise RuntimeError(f"Failed to create assignment batch: {batch.batch_id} already exists")
            self._batches[batch.batch_id] = batch
        return batch

    def get_batch(self, batch_id: str) -> Optional[AssignmentBatch]:
        with self._lock:
            return self._batches.get(batch_id)

    def find_active_global_batch(self) -> Optional[AssignmentBatch]:
        with self._lock:
            active = [
                batch for batch in self._batches.values()
                if batch.status.is_active and batch.platform_id is None
            ]
        if not active:
            return None
        return max(active, key=lambda batch: batch.started_at)

    def list_batches(self, limit: int = 10, orchestration_id: Optional[str] = None) -> List[AssignmentBatch]:
        with self._lock:
            batches = list(self._batches.values())
        if orchestration_id is not None:
            batches = [batch for batch in batches if batch.orchestration_id == orchestration_id]
        batches.sort(key=lambda batch: batch.started_at, reverse=True)
        return batches[:limit]

    def increment_progress(self, batch_id: str, delta: ProgressDelta) -> AssignmentBatch:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise RuntimeError(f"Failed to update assignment batch progress: batch {batch_id} not found")
            updated = batch.apply(delta)
            self._batches[batch_id] = updated
            return updated

    def update_status(
        self,
        batch_id: str,
        status: BatchStatus,
        expected: Collection[BatchStatus],
        completed_at: Optional[datetime] = None,
        lead_limit_reached: Optional[bool] = None,
        last_error: Optional[str] = None,
    ) -> Optional[AssignmentBatch]:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None or batch.status not in expected:
                return None
            changes: dict = {"status": status}
            if completed_at is not None:
                changes["completed_at"] = completed_at
            if lead_limit_reached is not None:
                changes["lead_limit_reached"] = lead_limit_reached
            if last_error is not None:
                changes["last_error"] = last_error
            updated = replace(batch, **changes)
            self._batches[batch_id] = updated
            return updated


class InMemoryAssignmentLog:
    """Append-only list of log entries, unique per (batch_id, contact_id)."""

    def __init__(self) -> None:
        self._entries: List[AssignmentLogEntry] = []
        self._keys: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def append_entry(self, entry: AssignmentLogEntry) -> bool:
        key = (entry.batch_id, entry.contact_id)
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            self._entries.append(entry)
            return True

    def processed_contact_ids(self, batch_id: str) -> Set[str]:
        with self._lock:
            return {contact_id for logged_batch, contact_id in self._keys if logged_batch == batch_id}

    def list_entries_for_batch(self, batch_id: str) -> List[AssignmentLogEntry]:
        with self._lock:
            return [entry for entry in self._entries if entry.batch_id == batch_id]

    def query_entries(self, filters: LogQueryFilters, page: int = 1, limit: int = 50) -> LogPage:
        with self._lock:
            entries = list(self._entries)

        def matches(entry: AssignmentLogEntry) -> bool:
            if filters.status is not None and entry.outcome != filters.status:
                return False
            if filters.platform_id and entry.platform_id != filters.platform_id:
                return False
            if filters.batch_id and entry.batch_id != filters.batch_id:
                return False
            if filters.date_from is not None and entry.created_at < filters.date_from:
                return False
            if filters.date_to is not None and entry.created_at > filters.date_to:
                return False
            if filters.search:
                term = filters.search.lower()
                haystack = f"{entry.contact_email or ''} {entry.company_name or ''}".lower()
                if term not in haystack:
                    return False
            return True

        selected = sorted((e for e in entries if matches(e)), key=lambda e: e.created_at, reverse=True)
        offset = (page - 1) * limit
        return LogPage(entries=selected[offset:offset + limit], total=len(selected))

    def list_outcomes(self, date_from: datetime, date_to: datetime) -> List[Tuple[AssignmentOutcome, str, datetime]]:
        with self._lock:
            return [
                (entry.outcome, entry.platform_name or "Unknown", entry.created_at)
                for entry in self._entries
                if date_from <= entry.created_at <= date_to
            ]


__all__ = ["InMemoryBatchStore", "InMemoryAssignmentLog"]
