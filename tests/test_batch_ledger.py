"""
Tests for `services/batch_ledger.py` and `domain/assignment.py`.

Covers contract rules:
- Batch ids and orchestration ids follow their formats.
- Status transitions follow the lifecycle; terminal statuses are never left.
- Progress is additive and processed never exceeds total_candidates.
- Only global batches count as the active batch.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

import pytest

from domain.assignment import (
    AssignmentBatch,
    AssignmentOutcome,
    BatchStatus,
    OutcomeCounts,
    ProgressDelta,
    can_transition,
)
from services.batch_ledger import new_batch_id, new_orchestration_id
from services.errors import BatchNotFoundError, InvalidBatchTransitionError


def test_id_formats() -> None:
    """Verify batch_YYYYmmdd_HHMMSS_xxxxxx and orch_YYYYmmddHHMMSS_xxxxxx ids."""

    now = datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc)

    assert re.fullmatch(r"batch_20250304_050607_[a-z0-9]{6}", new_batch_id(now))
    assert re.fullmatch(r"orch_20250304050607_[a-z0-9]{6}", new_orchestration_id(now))
    assert new_batch_id(now) != new_batch_id(now)


def test_lifecycle_transitions() -> None:
    """Verify the allowed transitions of the batch lifecycle."""

    assert can_transition(BatchStatus.PENDING, BatchStatus.PROCESSING)
    assert can_transition(BatchStatus.PROCESSING, BatchStatus.PAUSED)
    assert can_transition(BatchStatus.PAUSED, BatchStatus.PROCESSING)
    assert can_transition(BatchStatus.PAUSED, BatchStatus.CANCELLED)
    assert not can_transition(BatchStatus.PAUSED, BatchStatus.COMPLETED)
    assert not can_transition(BatchStatus.PENDING, BatchStatus.PAUSED)
    for terminal in (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED):
        assert terminal.is_terminal
        assert not any(can_transition(terminal, target) for target in BatchStatus)


def test_create_batch_is_pending(ledger) -> None:
    """Verify a new batch starts pending with zeroed counters."""

    batch = ledger.create_batch(total_candidates=12, max_total=50, max_per_platform=10, orchestration_id="orch_1")

    assert batch.status == BatchStatus.PENDING
    assert batch.processed == 0
    assert batch.counts == OutcomeCounts()
    assert batch.max_total == 50
    assert ledger.get_batch(batch.batch_id) == batch


def test_require_unknown_batch(ledger) -> None:
    """Verify unknown ids raise BatchNotFoundError."""

    assert ledger.get_batch("batch_nope") is None
    with pytest.raises(BatchNotFoundError):
        ledger.require_batch("batch_nope")


def test_progress_is_additive(ledger) -> None:
    """Verify deltas add up per outcome and per platform."""

    batch = ledger.create_batch(total_candidates=5, max_total=5, max_per_platform=5)
    ledger.update_batch_progress(batch.batch_id, ProgressDelta.for_outcome(AssignmentOutcome.ADDED, "p1", "One"))
    ledger.update_batch_progress(batch.batch_id, ProgressDelta.for_outcome(AssignmentOutcome.SKIPPED_KLANT, "p1", "One"))
    updated = ledger.update_batch_progress(
        batch.batch_id,
        ProgressDelta.for_outcome(AssignmentOutcome.ERROR, "p2", "Two") + ProgressDelta.for_dropped(1),
    )

    assert updated.processed == 3
    assert updated.total_candidates == 4
    assert updated.counts.added == 1
    assert updated.counts.skipped == 1
    assert updated.counts.errors == 1
    assert updated.platform_stats_dict()["p1"]["added"] == 1
    assert updated.platform_stats_dict()["p1"]["skipped_klant"] == 1
    assert updated.taken_per_platform() == {"p1": 2, "p2": 1}
    assert updated.stats_dict()["processed"] == 3


def test_processed_cannot_exceed_total(ledger) -> None:
    """Verify a delta that would overrun total_candidates is refused."""

    batch = ledger.create_batch(total_candidates=1, max_total=1, max_per_platform=1)
    ledger.update_batch_progress(batch.batch_id, ProgressDelta.for_outcome(AssignmentOutcome.ADDED, "p1", "One"))

    with pytest.raises(ValueError):
        ledger.update_batch_progress(batch.batch_id, ProgressDelta.for_outcome(AssignmentOutcome.ADDED, "p1", "One"))
    assert ledger.require_batch(batch.batch_id).processed == 1


def test_pause_resume_cancel(ledger) -> None:
    """Verify pause and resume round trip and cancel stamps completed_at."""

    batch = ledger.create_batch(total_candidates=3, max_total=3, max_per_platform=3)
    ledger.mark_processing(batch.batch_id)

    assert ledger.pause_batch(batch.batch_id).status == BatchStatus.PAUSED
    assert ledger.resume_batch(batch.batch_id).status == BatchStatus.PROCESSING

    cancelled = ledger.cancel_batch(batch.batch_id)
    assert cancelled.status == BatchStatus.CANCELLED
    assert cancelled.completed_at is not None


def test_invalid_transitions_raise(ledger) -> None:
    """Verify illegal moves raise InvalidBatchTransitionError and change nothing."""

    batch = ledger.create_batch(total_candidates=3, max_total=3, max_per_platform=3)

    with pytest.raises(InvalidBatchTransitionError):
        ledger.pause_batch(batch.batch_id)
    with pytest.raises(InvalidBatchTransitionError):
        ledger.resume_batch(batch.batch_id)

    ledger.mark_processing(batch.batch_id)
    ledger.finalize_batch(batch.batch_id)

    with pytest.raises(InvalidBatchTransitionError):
        ledger.cancel_batch(batch.batch_id)
    with pytest.raises(InvalidBatchTransitionError):
        ledger.finalize_batch(batch.batch_id)
    assert ledger.require_batch(batch.batch_id).status == BatchStatus.COMPLETED


def test_finalize_requires_terminal_status(ledger) -> None:
    """Verify finalize only accepts terminal statuses and records the lead limit."""

    batch = ledger.create_batch(total_candidates=3, max_total=3, max_per_platform=3)
    ledger.mark_processing(batch.batch_id)

    with pytest.raises(ValueError):
        ledger.finalize_batch(batch.batch_id, BatchStatus.PAUSED)

    finalized = ledger.finalize_batch(batch.batch_id, lead_limit_reached=True)
    assert finalized.status == BatchStatus.COMPLETED
    assert finalized.lead_limit_reached is True
    assert finalized.completed_at is not None


def test_lost_race_raises(ledger, batch_store) -> None:
    """Verify a status write that loses a race reports the winning status."""

    batch = ledger.create_batch(total_candidates=3, max_total=3, max_per_platform=3)
    ledger.mark_processing(batch.batch_id)

    original_update = batch_store.update_status

    def cancel_first(batch_id, status, expected, **kwargs):
        original_update(batch_id, BatchStatus.CANCELLED, expected={BatchStatus.PROCESSING})
        return original_update(batch_id, status, expected, **kwargs)

    batch_store.update_status = cancel_first

    with pytest.raises(InvalidBatchTransitionError) as excinfo:
        ledger.finalize_batch(batch.batch_id)
    assert excinfo.value.current == "cancelled"


def test_active_batch_is_global_only(ledger) -> None:
    """Verify platform batches are never returned as the active batch."""

    ledger.create_batch(total_candidates=3, max_total=3, max_per_platform=3, platform_id="p1")
    assert ledger.find_active_batch() is None
    assert ledger.cancel_active_batch() is None

    global_batch = ledger.create_batch(total_candidates=3, max_total=3, max_per_platform=3)
    assert ledger.find_active_batch().batch_id == global_batch.batch_id

    cancelled = ledger.cancel_active_batch()
    assert cancelled.batch_id == global_batch.batch_id
    assert ledger.find_active_batch() is None


def test_list_batches_by_orchestration(ledger) -> None:
    """Verify batches can be listed per orchestration."""

    ledger.create_batch(total_candidates=1, max_total=1, max_per_platform=1, platform_id="p1", orchestration_id="orch_a")
    ledger.create_batch(total_candidates=1, max_total=1, max_per_platform=1, platform_id="p2", orchestration_id="orch_a")
    ledger.create_batch(total_candidates=1, max_total=1, max_per_platform=1, platform_id="p1", orchestration_id="orch_b")

    assert len(ledger.list_batches(orchestration_id="orch_a")) == 2
    assert len(ledger.list_batches(limit=1)) == 1


def test_batch_timestamps_must_be_utc() -> None:
    """Verify batches reject naive timestamps."""

    with pytest.raises(ValueError):
        AssignmentBatch(
            batch_id="batch_x",
            status=BatchStatus.PENDING,
            total_candidates=0,
            started_at=datetime(2025, 1, 1, 0, 0, 0),
        )
