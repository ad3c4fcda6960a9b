"""
Batch ledger service.

Owns the batch lifecycle on top of a batch store (the Supabase repository,
or the in-memory store for dry runs):

    pending -> processing | cancelled | failed
    processing -> paused | completed | failed | cancelled
    paused -> processing | cancelled

Terminal statuses are never left. Every status write is conditional on the
current status, so a batch becomes terminal exactly once even when a cancel
races with the worker finalizing it.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime
from typing import Any, List, Optional

from domain.assignment import (
    AssignmentBatch,
    BatchStatus,
    ProgressDelta,
    can_transition,
    statuses_that_can_reach,
)
from domain.time import utc_now
from repositories import batch_repository
from services.errors import BatchNotFoundError, InvalidBatchTransitionError

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _random_suffix(length: int = 6) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def new_batch_id(now: Optional[datetime] = None) -> str:
    """batch_<yyyymmdd>_<hhmmss>_<rand6>"""
    now = now or utc_now()
    return f"batch_{now:%Y%m%d}_{now:%H%M%S}_{_random_suffix()}"


def new_orchestration_id(now: Optional[datetime] = None) -> str:
    """orch_<yyyymmddhhmmss>_<rand6>"""
    now = now or utc_now()
    return f"orch_{now:%Y%m%d%H%M%S}_{_random_suffix()}"


class BatchLedger:
    def __init__(self, store: Any = batch_repository) -> None:
        self._store = store

    def create_batch(
        self,
        total_candidates: int,
        max_total: int,
        max_per_platform: int,
        platform_id: Optional[str] = None,
        orchestration_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> AssignmentBatch:
        """Create a pending batch with zeroed counters."""

        started_at = utc_now()
        batch = AssignmentBatch(
            batch_id=new_batch_id(started_at),
            status=BatchStatus.PENDING,
            total_candidates=total_candidates,
            started_at=started_at,
            orchestration_id=orchestration_id,
            platform_id=platform_id,
            max_total=max_total,
            max_per_platform=max_per_platform,
            dry_run=dry_run,
        )
        self._store.insert_batch(batch)
        logger.info(
            "Created batch %s: %d candidates (platform=%s, orchestration=%s, dry_run=%s)",
            batch.batch_id,
            total_candidates,
            platform_id or "all",
            orchestration_id or "none",
            dry_run,
        )
        return batch

    def get_batch(self, batch_id: str) -> Optional[AssignmentBatch]:
        return self._store.get_batch(batch_id)

    def require_batch(self, batch_id: str) -> AssignmentBatch:
        batch = self._store.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def find_active_batch(self) -> Optional[AssignmentBatch]:
        """
        The active global batch, if any.

        Platform-scoped batches never count here: sibling workers of one
        orchestration run side by side.
        """
        return self._store.find_active_global_batch()

    def list_batches(self, limit: int = 10, orchestration_id: Optional[str] = None) -> List[AssignmentBatch]:
        return self._store.list_batches(limit=limit, orchestration_id=orchestration_id)

    def update_batch_progress(self, batch_id: str, delta: ProgressDelta) -> AssignmentBatch:
        """Add a progress delta to the batch counters (atomic increment)."""

        if delta.is_empty:
            return self.require_batch(batch_id)
        return self._store.increment_progress(batch_id, delta)

    def _transition(
        self,
        batch_id: str,
        target: BatchStatus,
        completed_at: Optional[datetime] = None,
        lead_limit_reached: Optional[bool] = None,
        last_error: Optional[str] = None,
    ) -> AssignmentBatch:
        batch = self.require_batch(batch_id)
        if not can_transition(batch.status, target):
            raise InvalidBatchTransitionError(batch_id, batch.status.value, target.value)

        updated = self._store.update_status(
            batch_id,
            target,
            expected=statuses_that_can_reach(target),
            completed_at=completed_at,
            lead_limit_reached=lead_limit_reached,
            last_error=last_error,
        )
        if updated is None:
            # Status changed between the read and the conditional write
            current = self.require_batch(batch_id)
            raise InvalidBatchTransitionError(batch_id, current.status.value, target.value)

        logger.info("Batch %s: %s -> %s", batch_id, batch.status.value, target.value)
        return updated

    def mark_processing(self, batch_id: str) -> AssignmentBatch:
        return self._transition(batch_id, BatchStatus.PROCESSING)

    def pause_batch(self, batch_id: str) -> AssignmentBatch:
        return self._transition(batch_id, BatchStatus.PAUSED)

    def resume_batch(self, batch_id: str) -> AssignmentBatch:
        batch = self.require_batch(batch_id)
        if batch.status != BatchStatus.PAUSED:
            raise InvalidBatchTransitionError(batch_id, batch.status.value, BatchStatus.PROCESSING.value)
        return self._transition(batch_id, BatchStatus.PROCESSING)

    def cancel_batch(self, batch_id: str) -> AssignmentBatch:
        return self._transition(batch_id, BatchStatus.CANCELLED, completed_at=utc_now())

    def cancel_active_batch(self) -> Optional[AssignmentBatch]:
        """Cancel the most recent active global batch; None when there is none."""

        active = self.find_active_batch()
        if active is None:
            return None
        return self.cancel_batch(active.batch_id)

    def finalize_batch(
        self,
        batch_id: str,
        status: BatchStatus = BatchStatus.COMPLETED,
        lead_limit_reached: Optional[bool] = None,
        last_error: Optional[str] = None,
    ) -> AssignmentBatch:
        """
        Move a batch to a terminal status and stamp completed_at.

        Raises:
            InvalidBatchTransitionError: the batch is already terminal, or
                `status` is not reachable from its current status
        """

        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        return self._transition(
            batch_id,
            status,
            completed_at=utc_now(),
            lead_limit_reached=lead_limit_reached,
            last_error=last_error,
        )


__all__ = ["BatchLedger", "new_batch_id", "new_orchestration_id"]
