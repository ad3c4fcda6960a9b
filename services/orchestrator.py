"""
Campaign assignment orchestrator.

Two entry points:

- run_daily_assignment: the single-process path. Opens a batch (resuming an
  explicit or active one when possible) and drives the assignment worker
  chunk by chunk until the batch is complete, pausing between chunks and
  stopping at a safety ceiling on the number of chunks.
- orchestrate: the parallel path. Selects once, then fans out one
  fire-and-forget worker dispatch per platform, all sharing one
  orchestration id.

The worker owns "process one chunk"; this module only decides which batch
to work on and keeps calling it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from clients.instantly_client import InstantlyClient
from clients.mistral_client import MistralClient
from clients.pipedrive_client import PipedriveClient
from domain.assignment import AssignmentBatch, BatchStatus
from domain.dispatch import PlatformDispatch, Sent
from domain.settings import AssignmentSettings
from repositories import assignment_log_repository
from repositories.memory import InMemoryAssignmentLog, InMemoryBatchStore
from services.assignment_worker import AssignmentWorker
from services.batch_ledger import BatchLedger, new_orchestration_id
from services.candidate_selector import CandidateSelector
from services.customer_check import CustomerChecker
from services.dispatcher import PlatformDispatcher
from services.errors import ConfigurationError
from services.settings_service import RunConfig, resolve_run_config

logger = logging.getLogger(__name__)

# Chunks driven in one call before giving up; the batch stays resumable
DEFAULT_MAX_ITERATIONS = 1000

WorkerFactory = Callable[[BatchLedger, Any, CandidateSelector, RunConfig, bool], AssignmentWorker]


@dataclass(frozen=True, slots=True)
class RunOptions:
    """Per-request overrides; None falls back to the settings."""
    max_total: Optional[int] = None
    max_per_platform: Optional[int] = None
    delay_ms: Optional[int] = None
    chunk_size: Optional[int] = None
    dry_run: bool = False
    resume_batch_id: Optional[str] = None
    platform_id: Optional[str] = None
    orchestration_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RunResult:
    """
    Result of run_daily_assignment.

    skipped: assignment is disabled, nothing was done
    has_more_to_process: the batch can be resumed by another trigger
    """
    message: str
    batch_id: Optional[str] = None
    status: Optional[BatchStatus] = None
    stats: Dict[str, int] = field(default_factory=dict)
    platform_stats: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    has_more_to_process: bool = False
    lead_limit_reached: bool = False
    is_resume: bool = False
    skipped: bool = False
    dry_run: bool = False
    chunks: int = 0


@dataclass(frozen=True, slots=True)
class OrchestrationResult:
    message: str
    success: bool
    orchestration_id: Optional[str] = None
    total_candidates: int = 0
    platforms: List[PlatformDispatch] = field(default_factory=list)
    dry_run: bool = False
    skipped: bool = False

    @property
    def triggered(self) -> int:
        return sum(1 for dispatch in self.platforms if isinstance(dispatch.outcome, Sent))


def build_worker(
    ledger: BatchLedger,
    log_store: Any,
    selector: CandidateSelector,
    config: RunConfig,
    dry_run: bool,
) -> AssignmentWorker:
    """Worker wired to the real external systems (from the environment)."""

    return AssignmentWorker(
        ledger,
        log_store=log_store,
        selector=selector,
        campaign=None if dry_run else InstantlyClient.from_env(),
        customer_checker=CustomerChecker(pipedrive=None if dry_run else PipedriveClient.from_env()),
        personalizer=None if dry_run else MistralClient.from_env(),
        delay_ms=config.delay_ms,
        chunk_size=config.chunk_size,
        dry_run=dry_run,
    )


class AssignmentOrchestrator:
    def __init__(
        self,
        selector: Optional[CandidateSelector] = None,
        ledger: Optional[BatchLedger] = None,
        log_store: Any = assignment_log_repository,
        worker_factory: WorkerFactory = build_worker,
        dispatcher: Optional[PlatformDispatcher] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._selector = selector or CandidateSelector()
        self._ledger = ledger or BatchLedger()
        self._log_store = log_store
        self._worker_factory = worker_factory
        self._dispatcher = dispatcher
        self._sleep = sleep
        self._max_iterations = max_iterations

    def run_daily_assignment(self, options: RunOptions, settings: AssignmentSettings) -> RunResult:
        """
        Run (or resume) a batch to completion.

        Raises:
            ConfigurationError: invalid overrides
            SelectionError: candidates could not be read; no batch was created
            BatchNotFoundError: resume_batch_id does not exist
        """

        if not settings.is_enabled:
            logger.info("Campaign assignment is disabled; skipping run")
            return RunResult(message="Campaign assignment is disabled", skipped=True, dry_run=options.dry_run)

        config = resolve_run_config(
            settings,
            max_total=options.max_total,
            max_per_platform=options.max_per_platform,
            delay_ms=options.delay_ms,
            chunk_size=options.chunk_size,
        )
        logger.info(
            "Campaign assignment run: max_total=%d max_per_platform=%d delay=%dms chunk_size=%d dry_run=%s platform=%s",
            config.max_total,
            config.max_per_platform,
            config.delay_ms,
            config.chunk_size,
            options.dry_run,
            options.platform_id or "all",
        )

        if options.dry_run:
            if options.resume_batch_id:
                raise ConfigurationError("Dry runs cannot resume a batch")
            # Dry runs never touch the persistent ledger or log
            ledger, log_store = BatchLedger(InMemoryBatchStore()), InMemoryAssignmentLog()
        else:
            ledger, log_store = self._ledger, self._log_store

        batch, is_resume = self._open_batch(ledger, options, config)
        worker = self._worker_factory(ledger, log_store, self._selector, config, options.dry_run)
        batch, chunks = self._drive(worker, batch.batch_id, config)

        return self._result(batch, is_resume=is_resume, dry_run=options.dry_run, chunks=chunks)

    def _open_batch(
        self,
        ledger: BatchLedger,
        options: RunOptions,
        config: RunConfig,
    ) -> Tuple[AssignmentBatch, bool]:
        if options.resume_batch_id:
            batch = ledger.require_batch(options.resume_batch_id)
            if batch.status == BatchStatus.PAUSED:
                batch = ledger.resume_batch(batch.batch_id)
            logger.info("Resuming batch %s (%s)", batch.batch_id, batch.status.value)
            return batch, True

        # Platform workers run side by side; only global runs resume the active batch
        if options.platform_id is None:
            active = ledger.find_active_batch()
            if active is not None:
                logger.info("Resuming active batch %s: %d/%d", active.batch_id, active.processed, active.total_candidates)
                return active, True

        if options.platform_id is not None:
            max_total = min(config.max_total, config.max_per_platform)
        else:
            max_total = config.max_total

        groups = self._selector.get_grouped_candidates_by_platform(
            max_total,
            config.max_per_platform,
            platform_id=options.platform_id,
        )
        batch = ledger.create_batch(
            total_candidates=sum(group.candidate_count for group in groups),
            max_total=max_total,
            max_per_platform=config.max_per_platform,
            platform_id=options.platform_id,
            orchestration_id=options.orchestration_id,
            dry_run=options.dry_run,
        )
        return batch, False

    def _drive(self, worker: AssignmentWorker, batch_id: str, config: RunConfig) -> Tuple[AssignmentBatch, int]:
        """Call the worker until the batch completes, halts or the ceiling is hit."""

        batch = None
        for chunk_number in range(1, self._max_iterations + 1):
            result = worker.process_next_batch(batch_id)
            if result.is_complete or result.halted_reason is not None:
                return result.batch, chunk_number

            batch = result.batch
            if chunk_number < self._max_iterations:
                self._sleep(config.delay_seconds)

        logger.warning(
            "Batch %s: stopped after %d chunks (iteration ceiling); batch remains resumable",
            batch_id,
            self._max_iterations,
        )
        return batch, self._max_iterations

    def _result(self, batch: AssignmentBatch, is_resume: bool, dry_run: bool, chunks: int) -> RunResult:
        has_more = not batch.status.is_terminal and batch.processed < batch.total_candidates

        if batch.lead_limit_reached:
            message = "Stopped: Instantly lead limit reached"
        elif batch.status in (BatchStatus.PAUSED, BatchStatus.CANCELLED):
            message = f"Batch {batch.status.value}: {batch.processed}/{batch.total_candidates} processed"
        elif has_more:
            message = f"Processed {batch.processed}/{batch.total_candidates}. More contacts remaining."
        else:
            message = (
                f"Campaign assignment completed: {batch.counts.added} added, "
                f"{batch.counts.skipped} skipped, {batch.counts.errors} errors"
            )

        return RunResult(
            message=message,
            batch_id=batch.batch_id,
            status=batch.status,
            stats=batch.stats_dict(),
            platform_stats=batch.platform_stats_dict(),
            has_more_to_process=has_more,
            lead_limit_reached=batch.lead_limit_reached,
            is_resume=is_resume,
            dry_run=dry_run,
            chunks=chunks,
        )

    def orchestrate(self, settings: AssignmentSettings, dry_run: bool = False) -> OrchestrationResult:
        """
        Fan out one worker dispatch per platform.

        success is False only when every dispatch failed.
        """

        if not settings.is_enabled:
            logger.info("Campaign assignment is disabled; skipping orchestration")
            return OrchestrationResult(message="Campaign assignment is disabled", success=True, skipped=True, dry_run=dry_run)

        config = resolve_run_config(settings)
        groups = self._selector.get_grouped_candidates_by_platform(config.max_total, config.max_per_platform)
        if not groups:
            return OrchestrationResult(message="No candidates found", success=True, dry_run=dry_run)

        orchestration_id = new_orchestration_id()
        total = sum(group.candidate_count for group in groups)
        logger.info(
            "Orchestrating %s: %d platforms, %d candidates, dry_run=%s",
            orchestration_id,
            len(groups),
            total,
            dry_run,
        )

        dispatcher = self._dispatcher or PlatformDispatcher.from_env()
        dispatches = dispatcher.dispatch_all(groups, orchestration_id, dry_run, config.delay_ms)
        triggered = sum(1 for dispatch in dispatches if isinstance(dispatch.outcome, Sent))
        success = triggered > 0

        if success:
            message = f"Triggered {triggered} of {len(dispatches)} platform workers"
        else:
            message = f"All {len(dispatches)} platform dispatches failed"
            logger.error("Orchestration %s: %s", orchestration_id, message)

        return OrchestrationResult(
            message=message,
            success=success,
            orchestration_id=orchestration_id,
            total_candidates=total,
            platforms=dispatches,
            dry_run=dry_run,
        )


__all__ = [
    "DEFAULT_MAX_ITERATIONS",
    "RunOptions",
    "RunResult",
    "OrchestrationResult",
    "build_worker",
    "AssignmentOrchestrator",
]
