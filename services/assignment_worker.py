"""
Assignment worker: processes exactly one chunk of a batch per call.

Each call:
1. Halts without work when the batch is paused or already terminal
2. Recomputes the batch's remaining candidates, excluding every contact that
   is already in the assignment log for this batch
3. Records candidates that left the candidate set as `dropped` (lowers
   total_candidates, never counted as processed)
4. Processes up to `chunk_size` candidates sequentially, checking the batch
   status before each one and waiting the configured delay between calls
5. Finalizes the batch once processed == total_candidates, or as soon as the
   campaign system reports its lead limit

The assignment log is the record of what has been processed: a contact is
counted in the batch only after its log entry was appended, and an append
that hits an existing entry is not counted again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from domain.assignment import (
    AssignmentBatch,
    AssignmentLogEntry,
    AssignmentOutcome,
    BatchStatus,
    ProgressDelta,
)
from domain.campaign import CampaignResponse, CampaignResponseStatus, CustomerCheck, Personalization
from domain.candidate import CandidateContact
from domain.settings import DEFAULT_CHUNK_SIZE, DEFAULT_DELAY_BETWEEN_CONTACTS_MS, DEFAULT_MAX_PER_PLATFORM
from domain.time import utc_now
from repositories import assignment_log_repository, contact_repository
from services.batch_ledger import BatchLedger
from services.candidate_selector import CandidateSelector
from services.customer_check import CustomerChecker
from services.errors import ConfigurationError, InvalidBatchTransitionError
from services.lead_limit_guard import LEAD_LIMIT_MESSAGE, LeadLimitGuard

logger = logging.getLogger(__name__)

DRY_RUN_MESSAGE = "Dry run: campaign call skipped"


@dataclass(frozen=True, slots=True)
class ChunkResult:
    """
    Outcome of one worker call.

    is_complete: No further calls are needed for this batch
    batch: Batch state after the chunk
    chunk: Progress made by this call only
    halted_reason: Why the chunk stopped early (paused, cancelled,
        lead_limit_reached, ...), None when it ran normally
    """
    is_complete: bool
    batch: AssignmentBatch
    chunk: ProgressDelta = field(default_factory=ProgressDelta)
    halted_reason: Optional[str] = None


@dataclass(slots=True)
class _Attempt:
    outcome: AssignmentOutcome
    message: Optional[str] = None
    lead_id: Optional[str] = None
    customer: Optional[CustomerCheck] = None
    personalization: Optional[Personalization] = None
    response: Optional[CampaignResponse] = None


class AssignmentWorker:
    def __init__(
        self,
        ledger: BatchLedger,
        log_store: Any = assignment_log_repository,
        selector: Optional[CandidateSelector] = None,
        campaign: Optional[Any] = None,
        customer_checker: Optional[CustomerChecker] = None,
        contacts: Any = contact_repository,
        personalizer: Optional[Any] = None,
        delay_ms: int = DEFAULT_DELAY_BETWEEN_CONTACTS_MS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if campaign is None and not dry_run:
            raise ConfigurationError("A campaign client is required unless running dry")
        if chunk_size < 1:
            raise ConfigurationError("chunk_size must be at least 1")

        self._ledger = ledger
        self._log = log_store
        self._selector = selector or CandidateSelector()
        self._campaign = campaign
        self._customers = customer_checker or CustomerChecker(contacts=contacts)
        self._contacts = contacts
        self._personalizer = personalizer
        self._delay_seconds = delay_ms / 1000.0
        self._chunk_size = chunk_size
        self._dry_run = dry_run
        self._sleep = sleep

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def process_next_batch(self, batch_id: str) -> ChunkResult:
        """
        Process the next chunk of a batch.

        Raises:
            BatchNotFoundError: unknown batch id
            SelectionError: candidates could not be read (batch left as is)
        """

        batch = self._ledger.require_batch(batch_id)

        if batch.status.is_terminal:
            return ChunkResult(is_complete=True, batch=batch, halted_reason=batch.status.value)
        if batch.status == BatchStatus.PAUSED:
            logger.info("Batch %s is paused; nothing to do", batch_id)
            return ChunkResult(is_complete=False, batch=batch, halted_reason=BatchStatus.PAUSED.value)
        if batch.status == BatchStatus.PENDING:
            batch = self._ledger.mark_processing(batch_id)

        if batch.is_finished:
            return self._complete(batch, ProgressDelta())

        chunk = ProgressDelta()
        processed_ids = self._log.processed_contact_ids(batch_id)
        remaining = batch.remaining
        candidates = self._selector.select(
            max_total=remaining,
            max_per_platform=batch.max_per_platform or DEFAULT_MAX_PER_PLATFORM,
            platform_id=batch.platform_id,
            exclude_ids=processed_ids,
            taken_per_platform=batch.taken_per_platform(),
        )

        if len(candidates) < remaining:
            dropped = ProgressDelta.for_dropped(remaining - len(candidates))
            batch = self._ledger.update_batch_progress(batch_id, dropped)
            chunk = chunk + dropped
            logger.info(
                "Batch %s: %d candidates left the candidate set; total is now %d",
                batch_id,
                dropped.dropped,
                batch.total_candidates,
            )

        guard = LeadLimitGuard(batch_id, tripped=batch.lead_limit_reached)
        wait_before_next = False

        for candidate in candidates[: self._chunk_size]:
            if wait_before_next:
                self._sleep(self._delay_seconds)
                wait_before_next = False

            current = self._ledger.require_batch(batch_id)
            if current.status != BatchStatus.PROCESSING:
                logger.info("Batch %s is %s; halting chunk", batch_id, current.status.value)
                return ChunkResult(
                    is_complete=current.status.is_terminal,
                    batch=current,
                    chunk=chunk,
                    halted_reason=current.status.value,
                )

            reason = self._selector.recheck(candidate)
            if reason is not None:
                logger.info("Dropping %s from batch %s: %s", candidate.contact_id, batch_id, reason)
                dropped = ProgressDelta.for_dropped(1)
                self._ledger.update_batch_progress(batch_id, dropped)
                chunk = chunk + dropped
                continue

            attempt = self._attempt(candidate, guard)
            chunk = chunk + self._record(batch_id, candidate, attempt)
            wait_before_next = not self._dry_run

            if guard.tripped:
                batch = self._finalize(batch_id, lead_limit_reached=True)
                return ChunkResult(
                    is_complete=True,
                    batch=batch,
                    chunk=chunk,
                    halted_reason="lead_limit_reached",
                )

        batch = self._ledger.require_batch(batch_id)
        logger.info(
            "Batch %s chunk done: processed %d (added=%d skipped=%d errors=%d), %d/%d overall",
            batch_id,
            chunk.processed,
            chunk.counts.added,
            chunk.counts.skipped,
            chunk.counts.errors,
            batch.processed,
            batch.total_candidates,
        )
        if batch.is_finished:
            return self._complete(batch, chunk)
        return ChunkResult(is_complete=False, batch=batch, chunk=chunk)

    def _complete(self, batch: AssignmentBatch, chunk: ProgressDelta) -> ChunkResult:
        batch = self._finalize(batch.batch_id)
        return ChunkResult(is_complete=True, batch=batch, chunk=chunk)

    def _finalize(self, batch_id: str, lead_limit_reached: Optional[bool] = None) -> AssignmentBatch:
        try:
            return self._ledger.finalize_batch(
                batch_id,
                BatchStatus.COMPLETED,
                lead_limit_reached=lead_limit_reached,
            )
        except InvalidBatchTransitionError as e:
            # Cancelled or finalized concurrently; its terminal status stands
            logger.info("Batch %s not finalized: %s", batch_id, e)
            return self._ledger.require_batch(batch_id)

    def _attempt(self, candidate: CandidateContact, guard: LeadLimitGuard) -> _Attempt:
        """Classify one candidate, calling the campaign system when needed."""

        customer = self._customers.check(candidate, dry_run=self._dry_run)
        if customer.is_customer:
            return _Attempt(
                outcome=AssignmentOutcome.SKIPPED_KLANT,
                message=customer.reason,
                customer=customer,
            )

        if self._dry_run:
            return _Attempt(outcome=AssignmentOutcome.ADDED, message=DRY_RUN_MESSAGE, customer=customer)

        personalization: Optional[Personalization] = None
        if self._personalizer is not None:
            try:
                personalization = self._personalizer.generate_personalization(candidate)
            except Exception as e:
                logger.warning("Personalization failed for %s: %s", candidate.email, e)
                return _Attempt(
                    outcome=AssignmentOutcome.SKIPPED_AI_ERROR,
                    message=f"Failed to generate AI personalization: {e}",
                    customer=customer,
                )

        try:
            response = self._campaign.assign(candidate, personalization)
        except Exception as e:
            logger.exception("Campaign call failed for %s", candidate.email)
            response = CampaignResponse(status=CampaignResponseStatus.ERROR, message=str(e))

        message = response.message
        if guard.observe(response):
            message = LEAD_LIMIT_MESSAGE

        return _Attempt(
            outcome=response.outcome,
            message=message,
            lead_id=response.lead_id,
            customer=customer,
            personalization=personalization,
            response=response,
        )

    def _record(self, batch_id: str, candidate: CandidateContact, attempt: _Attempt) -> ProgressDelta:
        """Append the log entry, count it, then update the contact."""

        entry = AssignmentLogEntry(
            batch_id=batch_id,
            contact_id=candidate.contact_id,
            platform_id=candidate.platform_id,
            outcome=attempt.outcome,
            created_at=utc_now(),
            platform_name=candidate.platform_name,
            contact_email=candidate.email,
            contact_name=candidate.full_name,
            company_id=candidate.company_id,
            company_name=candidate.company_name,
            campaign_id=candidate.campaign_id,
            message=attempt.message,
            instantly_lead_id=attempt.lead_id,
            pipedrive_org_id=attempt.customer.pipedrive_org_id if attempt.customer else None,
            pipedrive_is_klant=bool(attempt.customer and attempt.customer.is_customer),
            personalization=dict(attempt.personalization.fields) if attempt.personalization else None,
            ai_processing_time_ms=attempt.personalization.processing_time_ms if attempt.personalization else None,
        )

        if not self._log.append_entry(entry):
            logger.warning("Contact %s already logged for batch %s; not counted again", candidate.contact_id, batch_id)
            return ProgressDelta()

        delta = ProgressDelta.for_outcome(attempt.outcome, candidate.platform_id, candidate.platform_name)
        self._ledger.update_batch_progress(batch_id, delta)
        logger.debug("%s -> %s (%s)", candidate.email, attempt.outcome.value, attempt.message or "")

        if not self._dry_run:
            self._update_contact(candidate, attempt)
        return delta

    def _update_contact(self, candidate: CandidateContact, attempt: _Attempt) -> None:
        try:
            if attempt.outcome == AssignmentOutcome.ADDED:
                self._contacts.mark_assigned(
                    candidate.contact_id,
                    candidate.campaign_id,
                    candidate.platform_name,
                    instantly_lead_id=attempt.lead_id,
                )
            elif attempt.outcome == AssignmentOutcome.SKIPPED_DUPLICATE:
                # Already in Instantly; keep it out of future selections
                self._contacts.mark_assigned(candidate.contact_id, candidate.campaign_id, candidate.platform_name)
            elif attempt.outcome == AssignmentOutcome.ERROR and attempt.message != LEAD_LIMIT_MESSAGE:
                self._contacts.record_retry(candidate.contact_id, attempt.message or "Unknown campaign error")
        except Exception:
            logger.exception("Failed to update contact %s after %s", candidate.contact_id, attempt.outcome.value)


__all__ = ["DRY_RUN_MESSAGE", "ChunkResult", "AssignmentWorker"]
