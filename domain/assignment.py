"""
Domain: assignment batches, outcomes and the append-only assignment log.

Invariants:
- A batch moves through pending -> processing -> {paused, completed, failed,
  cancelled}; completed/failed/cancelled are terminal and reached exactly once.
- processed <= total_candidates at every observation point.
- added + skipped + errors == processed (skipped is the sum of the three
  skip reasons), so no contact is ever counted twice.
- Progress is applied as additive deltas, never as overwrites.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .time import require_utc_timestamp


class AssignmentOutcome(str, Enum):
    ADDED = "added"
    SKIPPED_KLANT = "skipped_klant"
    SKIPPED_AI_ERROR = "skipped_ai_error"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    ERROR = "error"

    @property
    def is_skip(self) -> bool:
        return self.value.startswith("skipped_")


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({BatchStatus.PENDING, BatchStatus.PROCESSING})

ALLOWED_TRANSITIONS: Mapping[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset({BatchStatus.PROCESSING, BatchStatus.CANCELLED, BatchStatus.FAILED}),
    BatchStatus.PROCESSING: frozenset(
        {BatchStatus.PAUSED, BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED}
    ),
    BatchStatus.PAUSED: frozenset({BatchStatus.PROCESSING, BatchStatus.CANCELLED}),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.FAILED: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
}


def can_transition(current: BatchStatus, target: BatchStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def statuses_that_can_reach(target: BatchStatus) -> frozenset[BatchStatus]:
    """Statuses from which `target` is a legal transition."""
    return frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets)


@dataclass(frozen=True, slots=True)
class OutcomeCounts:
    """Per-outcome counters shared by batches, platforms and chunks."""

    added: int = 0
    skipped_klant: int = 0
    skipped_ai_error: int = 0
    skipped_duplicate: int = 0
    errors: int = 0

    def __post_init__(self) -> None:
        for name in ("added", "skipped_klant", "skipped_ai_error", "skipped_duplicate", "errors"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")

    @property
    def skipped(self) -> int:
        return self.skipped_klant + self.skipped_ai_error + self.skipped_duplicate

    @property
    def total(self) -> int:
        return self.added + self.skipped + self.errors

    @classmethod
    def of(cls, outcome: AssignmentOutcome) -> "OutcomeCounts":
        if outcome == AssignmentOutcome.ERROR:
            return cls(errors=1)
        return cls(**{outcome.value: 1})

    def __add__(self, other: "OutcomeCounts") -> "OutcomeCounts":
        return OutcomeCounts(
            added=self.added + other.added,
            skipped_klant=self.skipped_klant + other.skipped_klant,
            skipped_ai_error=self.skipped_ai_error + other.skipped_ai_error,
            skipped_duplicate=self.skipped_duplicate + other.skipped_duplicate,
            errors=self.errors + other.errors,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "added": self.added,
            "skipped": self.skipped,
            "skipped_klant": self.skipped_klant,
            "skipped_ai_error": self.skipped_ai_error,
            "skipped_duplicate": self.skipped_duplicate,
            "errors": self.errors,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "OutcomeCounts":
        return cls(
            added=int(data.get("added") or 0),
            skipped_klant=int(data.get("skipped_klant") or 0),
            skipped_ai_error=int(data.get("skipped_ai_error") or 0),
            skipped_duplicate=int(data.get("skipped_duplicate") or 0),
            errors=int(data.get("errors") or 0),
        )


@dataclass(frozen=True, slots=True)
class PlatformStats:
    platform_name: str
    counts: OutcomeCounts = field(default_factory=OutcomeCounts)

    def to_dict(self) -> dict[str, Any]:
        return {"platform_name": self.platform_name, **self.counts.to_dict()}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PlatformStats":
        return cls(platform_name=str(data.get("platform_name") or ""), counts=OutcomeCounts.from_mapping(data))


@dataclass(frozen=True, slots=True)
class ProgressDelta:
    """
    Additive progress report.

    `dropped` counts candidates that left the candidate set after the batch
    was sized (blocked, assigned elsewhere, disqualified); it lowers
    total_candidates instead of being counted as processed.
    """

    counts: OutcomeCounts = field(default_factory=OutcomeCounts)
    platform_counts: Mapping[str, PlatformStats] = field(default_factory=dict)
    dropped: int = 0

    def __post_init__(self) -> None:
        if self.dropped < 0:
            raise ValueError("dropped must be >= 0")

    @property
    def processed(self) -> int:
        return self.counts.total

    @property
    def is_empty(self) -> bool:
        return self.processed == 0 and self.dropped == 0

    @classmethod
    def for_outcome(cls, outcome: AssignmentOutcome, platform_id: str, platform_name: str) -> "ProgressDelta":
        counts = OutcomeCounts.of(outcome)
        return cls(counts=counts, platform_counts={platform_id: PlatformStats(platform_name, counts)})

    @classmethod
    def for_dropped(cls, dropped: int) -> "ProgressDelta":
        return cls(dropped=dropped)

    def __add__(self, other: "ProgressDelta") -> "ProgressDelta":
        return ProgressDelta(
            counts=self.counts + other.counts,
            platform_counts=merge_platform_stats(self.platform_counts, other.platform_counts),
            dropped=self.dropped + other.dropped,
        )


def merge_platform_stats(
    left: Mapping[str, PlatformStats],
    right: Mapping[str, PlatformStats],
) -> Dict[str, PlatformStats]:
    merged: Dict[str, PlatformStats] = dict(left)
    for platform_id, stats in right.items():
        existing = merged.get(platform_id)
        if existing is None:
            merged[platform_id] = stats
        else:
            merged[platform_id] = PlatformStats(
                platform_name=existing.platform_name or stats.platform_name,
                counts=existing.counts + stats.counts,
            )
    return merged


@dataclass(frozen=True, slots=True)
class AssignmentBatch:
    """
    Ledger entry for one tracked execution of the assignment pipeline.

    Global batches have platform_id None; platform-scoped worker batches carry
    their platform and the orchestration_id shared with their siblings.
    """

    batch_id: str
    status: BatchStatus
    total_candidates: int
    started_at: datetime

    counts: OutcomeCounts = field(default_factory=OutcomeCounts)
    platform_stats: Mapping[str, PlatformStats] = field(default_factory=dict)

    orchestration_id: Optional[str] = None
    platform_id: Optional[str] = None
    max_total: Optional[int] = None
    max_per_platform: Optional[int] = None
    dry_run: bool = False

    completed_at: Optional[datetime] = None
    lead_limit_reached: bool = False
    last_error: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("started_at", self.started_at)
        if self.completed_at is not None:
            require_utc_timestamp("completed_at", self.completed_at)
        if self.total_candidates < 0:
            raise ValueError("total_candidates must be >= 0")
        if self.processed > self.total_candidates:
            raise ValueError(
                f"processed ({self.processed}) cannot exceed total_candidates ({self.total_candidates})"
            )

    @property
    def processed(self) -> int:
        return self.counts.total

    @property
    def remaining(self) -> int:
        return self.total_candidates - self.processed

    @property
    def is_platform_scoped(self) -> bool:
        return self.platform_id is not None

    @property
    def is_finished(self) -> bool:
        return self.processed >= self.total_candidates

    def taken_per_platform(self) -> Dict[str, int]:
        """Candidates already processed per platform (quota consumed)."""
        return {platform_id: stats.counts.total for platform_id, stats in self.platform_stats.items()}

    def apply(self, delta: ProgressDelta) -> "AssignmentBatch":
        """
        Apply an additive progress delta.

        Raises ValueError when the delta would break processed <= total.
        """

        return replace(
            self,
            total_candidates=self.total_candidates - delta.dropped,
            counts=self.counts + delta.counts,
            platform_stats=merge_platform_stats(self.platform_stats, delta.platform_counts),
        )

    def stats_dict(self) -> dict[str, Any]:
        return {
            "total_candidates": self.total_candidates,
            "processed": self.processed,
            **self.counts.to_dict(),
        }

    def platform_stats_dict(self) -> dict[str, dict[str, Any]]:
        return {platform_id: stats.to_dict() for platform_id, stats in self.platform_stats.items()}


@dataclass(frozen=True, slots=True)
class AssignmentLogEntry:
    """
    Audit record of one classified contact. Never mutated after creation.

    The (batch_id, contact_id) pair is unique: it is the source of truth for
    "already processed in this batch".
    """

    batch_id: str
    contact_id: str
    platform_id: str
    outcome: AssignmentOutcome
    created_at: datetime

    platform_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    company_id: Optional[str] = None
    company_name: Optional[str] = None
    campaign_id: Optional[str] = None
    message: Optional[str] = None
    instantly_lead_id: Optional[str] = None
    pipedrive_org_id: Optional[int] = None
    pipedrive_is_klant: bool = False
    personalization: Optional[Mapping[str, Any]] = None
    ai_processing_time_ms: Optional[int] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
