"""
Tests for `services/assignment_worker.py`.

Covers:
- One call processes at most chunk_size contacts; repeated calls finish the batch.
- Resuming never re-processes a logged contact and never double counts.
- The lead limit stops the batch immediately and finalizes it once.
- Pause and cancel are honored before the next contact.
- Candidates that disappear after sizing lower total_candidates.
- Customer, personalization and campaign outcomes are classified per contact.
- Dry runs make no campaign calls and no contact updates.
"""

from __future__ import annotations

import pytest

from domain.assignment import AssignmentLogEntry, AssignmentOutcome, BatchStatus
from domain.campaign import CampaignResponse, CampaignResponseStatus, Personalization
from domain.time import utc_now
from fakes import FakePipedrive, lead_limit_response, make_candidate, make_candidates
from services.assignment_worker import DRY_RUN_MESSAGE, AssignmentWorker
from services.customer_check import CustomerChecker
from services.errors import BatchNotFoundError, ConfigurationError
from services.lead_limit_guard import LEAD_LIMIT_MESSAGE


def make_worker(ledger, log_store, selector, campaign, contacts, pipedrive=None, sleep=None, **kwargs) -> AssignmentWorker:
    return AssignmentWorker(
        ledger,
        log_store=log_store,
        selector=selector,
        campaign=campaign,
        customer_checker=CustomerChecker(pipedrive=pipedrive, contacts=contacts),
        contacts=contacts,
        sleep=sleep or (lambda seconds: None),
        **kwargs,
    )


def new_batch(ledger, total: int, max_per_platform: int = 30, platform_id=None):
    return ledger.create_batch(
        total_candidates=total,
        max_total=total,
        max_per_platform=max_per_platform,
        platform_id=platform_id,
    )


def test_worker_requires_campaign_client_unless_dry_run(ledger, log_store, selector, contacts) -> None:
    """Verify a live worker cannot be built without a campaign client."""

    with pytest.raises(ConfigurationError):
        AssignmentWorker(ledger, log_store=log_store, selector=selector, contacts=contacts)

    with pytest.raises(ConfigurationError):
        AssignmentWorker(ledger, log_store=log_store, selector=selector, campaign=object(), chunk_size=0)

    AssignmentWorker(ledger, log_store=log_store, selector=selector, contacts=contacts, dry_run=True)


def test_unknown_batch_raises(ledger, log_store, selector, campaign, contacts) -> None:
    """Verify processing an unknown batch id raises BatchNotFoundError."""

    worker = make_worker(ledger, log_store, selector, campaign, contacts)

    with pytest.raises(BatchNotFoundError):
        worker.process_next_batch("batch_missing")


def test_chunks_until_batch_completes(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify 10 candidates with chunk_size 4 need three calls and end completed."""

    candidate_store.add(*make_candidates(10))
    batch = new_batch(ledger, 10)
    worker = make_worker(ledger, log_store, selector, campaign, contacts, chunk_size=4)

    first = worker.process_next_batch(batch.batch_id)
    assert not first.is_complete
    assert first.chunk.processed == 4
    assert first.batch.status == BatchStatus.PROCESSING
    assert first.batch.processed == 4

    second = worker.process_next_batch(batch.batch_id)
    assert not second.is_complete
    assert second.batch.processed == 8

    third = worker.process_next_batch(batch.batch_id)
    assert third.is_complete
    assert third.chunk.processed == 2
    assert third.batch.status == BatchStatus.COMPLETED
    assert third.batch.completed_at is not None
    assert third.batch.counts.added == 10

    assert sorted(campaign.calls) == sorted(f"c{i}" for i in range(1, 11))
    assert len(log_store.list_entries_for_batch(batch.batch_id)) == 10


def test_resume_never_reprocesses_logged_contacts(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify contacts already in the log are excluded even when still unassigned."""

    candidate_store.add(*make_candidates(6))
    batch = new_batch(ledger, 6)
    worker = make_worker(ledger, log_store, selector, campaign, contacts, chunk_size=3)

    # First chunk errors out, so the contacts stay unassigned in the store
    for contact_id in ("c1", "c2", "c3"):
        campaign.respond(contact_id, CampaignResponse(status=CampaignResponseStatus.ERROR, message="boom"))

    worker.process_next_batch(batch.batch_id)
    assert campaign.calls == ["c1", "c2", "c3"]

    result = worker.process_next_batch(batch.batch_id)

    assert campaign.calls == ["c1", "c2", "c3", "c4", "c5", "c6"]
    assert result.is_complete
    assert result.batch.processed == 6
    assert result.batch.counts.errors == 3
    assert result.batch.counts.added == 3


def test_duplicate_log_append_is_not_counted(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify an entry already logged by a concurrent call is not counted twice."""

    candidate_store.add(make_candidate("c1"))
    batch = new_batch(ledger, 1)
    worker = make_worker(ledger, log_store, selector, campaign, contacts)

    # Another invocation logs c1 while this one is calling the campaign system
    def log_concurrently(number, candidate):
        log_store.append_entry(
            AssignmentLogEntry(
                batch_id=batch.batch_id,
                contact_id=candidate.contact_id,
                platform_id=candidate.platform_id,
                outcome=AssignmentOutcome.ADDED,
                created_at=utc_now(),
            )
        )

    campaign.on_call = log_concurrently
    result = worker.process_next_batch(batch.batch_id)

    assert result.chunk.processed == 0
    assert ledger.require_batch(batch.batch_id).processed == 0
    assert len(log_store.list_entries_for_batch(batch.batch_id)) == 1


def test_lead_limit_stops_batch_on_third_contact(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify the lead limit on the 3rd of 10 contacts ends the batch with 3 processed."""

    candidate_store.add(*make_candidates(10))
    campaign.respond("c3", lead_limit_response())
    batch = new_batch(ledger, 10)
    worker = make_worker(ledger, log_store, selector, campaign, contacts, chunk_size=10)

    result = worker.process_next_batch(batch.batch_id)

    assert result.is_complete
    assert result.halted_reason == "lead_limit_reached"
    assert campaign.calls == ["c1", "c2", "c3"]
    assert result.batch.status == BatchStatus.COMPLETED
    assert result.batch.lead_limit_reached is True
    assert result.batch.processed == 3
    assert result.batch.counts.added == 2
    assert result.batch.counts.errors == 1

    entry = log_store.list_entries_for_batch(batch.batch_id)[-1]
    assert entry.outcome == AssignmentOutcome.ERROR
    assert entry.message == LEAD_LIMIT_MESSAGE
    # The lead limit is not the contact's fault
    assert contacts.retries == {}

    # Further calls are no-ops
    again = worker.process_next_batch(batch.batch_id)
    assert again.is_complete
    assert campaign.calls == ["c1", "c2", "c3"]


def test_cancel_is_honored_before_next_contact(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify a cancel during the 2nd contact stops the chunk before the 3rd."""

    candidate_store.add(*make_candidates(5))
    batch = new_batch(ledger, 5)
    worker = make_worker(ledger, log_store, selector, campaign, contacts, chunk_size=5)

    def cancel_on_second(number, candidate):
        if number == 2:
            ledger.cancel_batch(batch.batch_id)

    campaign.on_call = cancel_on_second
    result = worker.process_next_batch(batch.batch_id)

    assert result.is_complete
    assert result.halted_reason == "cancelled"
    assert campaign.calls == ["c1", "c2"]
    assert result.batch.status == BatchStatus.CANCELLED
    assert result.batch.processed == 2

    # Cancelled is terminal: nothing else happens
    worker.process_next_batch(batch.batch_id)
    assert campaign.calls == ["c1", "c2"]


def test_pause_halts_and_resume_continues(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify a paused batch is left alone until it is resumed."""

    candidate_store.add(*make_candidates(4))
    batch = new_batch(ledger, 4)
    worker = make_worker(ledger, log_store, selector, campaign, contacts, chunk_size=4)

    def pause_on_first(number, candidate):
        if number == 1:
            ledger.pause_batch(batch.batch_id)

    campaign.on_call = pause_on_first
    paused = worker.process_next_batch(batch.batch_id)

    assert not paused.is_complete
    assert paused.halted_reason == "paused"
    assert paused.batch.processed == 1

    idle = worker.process_next_batch(batch.batch_id)
    assert idle.halted_reason == "paused"
    assert campaign.calls == ["c1"]

    ledger.resume_batch(batch.batch_id)
    campaign.on_call = None
    finished = worker.process_next_batch(batch.batch_id)

    assert finished.is_complete
    assert finished.batch.status == BatchStatus.COMPLETED
    assert campaign.calls == ["c1", "c2", "c3", "c4"]


def test_vanished_candidates_lower_total(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify candidates that left the candidate set are dropped from the total."""

    candidate_store.add(*make_candidates(5))
    batch = new_batch(ledger, 5)
    candidate_store.remove("c4")
    candidate_store.remove("c5")
    worker = make_worker(ledger, log_store, selector, campaign, contacts, chunk_size=10)

    result = worker.process_next_batch(batch.batch_id)

    assert result.chunk.dropped == 2
    assert result.is_complete
    assert result.batch.total_candidates == 3
    assert result.batch.processed == 3
    assert result.batch.status == BatchStatus.COMPLETED


def test_recheck_drops_candidate_assigned_mid_chunk(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify a candidate assigned elsewhere during the chunk is skipped and dropped."""

    candidate_store.add(*make_candidates(3))
    batch = new_batch(ledger, 3)
    worker = make_worker(ledger, log_store, selector, campaign, contacts, chunk_size=3)

    def assign_c3_elsewhere(number, candidate):
        if number == 1:
            candidate_store.mark_assigned("c3")

    campaign.on_call = assign_c3_elsewhere
    result = worker.process_next_batch(batch.batch_id)

    assert campaign.calls == ["c1", "c2"]
    assert result.batch.total_candidates == 2
    assert result.batch.processed == 2
    assert result.batch.status == BatchStatus.COMPLETED


def test_existing_customer_is_skipped_without_campaign_call(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify Klant companies (status or Pipedrive) are skipped before the campaign call."""

    candidate_store.add(
        make_candidate("c1", minutes=1, company_status="Klant"),
        make_candidate("c2", minutes=2, company_name="Acme BV"),
        make_candidate("c3", minutes=3),
    )
    pipedrive = FakePipedrive(organizations={"Acme BV": 42}, klant_ids={42})
    batch = new_batch(ledger, 3)
    worker = make_worker(ledger, log_store, selector, campaign, contacts, pipedrive=pipedrive)

    result = worker.process_next_batch(batch.batch_id)

    assert campaign.calls == ["c3"]
    assert result.batch.counts.skipped_klant == 2
    assert result.batch.counts.added == 1
    assert contacts.linked == {"co-c2": 42}

    entries = {entry.contact_id: entry for entry in log_store.list_entries_for_batch(batch.batch_id)}
    assert entries["c2"].pipedrive_is_klant is True
    assert entries["c2"].pipedrive_org_id == 42


def test_campaign_outcomes_are_classified(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify duplicate, rejected and error responses map to their outcomes and side effects."""

    candidate_store.add(*make_candidates(4))
    campaign.respond("c2", CampaignResponse(status=CampaignResponseStatus.DUPLICATE, message="exists"))
    campaign.respond("c3", CampaignResponse(status=CampaignResponseStatus.REJECTED, message="bad payload"))
    campaign.respond("c4", CampaignResponse(status=CampaignResponseStatus.ERROR, message="HTTP 500"))
    batch = new_batch(ledger, 4)
    worker = make_worker(ledger, log_store, selector, campaign, contacts)

    result = worker.process_next_batch(batch.batch_id)
    counts = result.batch.counts

    assert counts.added == 1
    assert counts.skipped_duplicate == 1
    assert counts.skipped_ai_error == 1
    assert counts.errors == 1
    assert counts.added + counts.skipped + counts.errors == result.batch.processed == 4

    # Added and duplicate contacts leave the candidate set; errors are retried later
    assert contacts.assigned == ["c1", "c2"]
    assert contacts.retries == {"c4": ["HTTP 500"]}


def test_campaign_exception_is_recorded_as_error(
    ledger, log_store, selector, candidate_store, contacts
) -> None:
    """Verify an exception from the campaign client never aborts the batch."""

    class ExplodingCampaign:
        def assign(self, candidate, personalization=None):
            raise RuntimeError("connection reset")

    candidate_store.add(*make_candidates(2))
    batch = new_batch(ledger, 2)
    worker = make_worker(ledger, log_store, selector, ExplodingCampaign(), contacts)

    result = worker.process_next_batch(batch.batch_id)

    assert result.is_complete
    assert result.batch.counts.errors == 2
    assert set(contacts.retries) == {"c1", "c2"}


def test_personalization_failure_skips_contact(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify a failing personalizer yields skipped_ai_error and no campaign call."""

    class Personalizer:
        def generate_personalization(self, candidate):
            if candidate.contact_id == "c1":
                raise RuntimeError("model unavailable")
            return Personalization(
                personalization="Hallo!",
                normalized_company="Company",
                fields={"sector": "Bouw"},
                processing_time_ms=12,
            )

    candidate_store.add(*make_candidates(2))
    batch = new_batch(ledger, 2)
    worker = make_worker(ledger, log_store, selector, campaign, contacts, personalizer=Personalizer())

    result = worker.process_next_batch(batch.batch_id)

    assert campaign.calls == ["c2"]
    assert campaign.personalizations[0].personalization == "Hallo!"
    assert result.batch.counts.skipped_ai_error == 1
    assert result.batch.counts.added == 1

    entries = {entry.contact_id: entry for entry in log_store.list_entries_for_batch(batch.batch_id)}
    assert entries["c2"].ai_processing_time_ms == 12


def test_dry_run_makes_no_external_changes(
    ledger, log_store, selector, candidate_store, contacts
) -> None:
    """Verify a dry run classifies every contact as added without campaign, Pipedrive or contact updates."""

    candidate_store.add(*make_candidates(3))
    batch = new_batch(ledger, 3)
    sleeps = []
    pipedrive = FakePipedrive(organizations={"Company c1": 12})
    worker = AssignmentWorker(
        ledger,
        log_store=log_store,
        selector=selector,
        customer_checker=CustomerChecker(pipedrive=pipedrive, contacts=contacts),
        contacts=contacts,
        dry_run=True,
        sleep=sleeps.append,
    )

    result = worker.process_next_batch(batch.batch_id)

    assert result.is_complete
    assert result.batch.counts.added == 3
    assert contacts.assigned == []
    assert sleeps == []
    assert pipedrive.searches == []
    assert contacts.linked == {}
    assert {entry.message for entry in log_store.list_entries_for_batch(batch.batch_id)} == {DRY_RUN_MESSAGE}


def test_waits_between_contacts(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify the configured delay is waited between two contacts, not after the last one."""

    candidate_store.add(*make_candidates(3))
    batch = new_batch(ledger, 3)
    sleeps = []
    worker = make_worker(ledger, log_store, selector, campaign, contacts, delay_ms=250, sleep=sleeps.append)

    worker.process_next_batch(batch.batch_id)

    assert sleeps == [0.25, 0.25]


def test_empty_batch_completes_immediately(ledger, log_store, selector, campaign, contacts) -> None:
    """Verify a batch sized at zero candidates goes straight to completed."""

    batch = new_batch(ledger, 0)
    worker = make_worker(ledger, log_store, selector, campaign, contacts)

    result = worker.process_next_batch(batch.batch_id)

    assert result.is_complete
    assert result.batch.status == BatchStatus.COMPLETED
    assert campaign.calls == []


def test_per_platform_quota_holds_across_chunks(
    ledger, log_store, selector, candidate_store, campaign, contacts
) -> None:
    """Verify a resumed batch never exceeds max_per_platform on any platform."""

    candidate_store.add(*make_candidates(5, platform_id="p1", prefix="a"))
    candidate_store.add(*make_candidates(5, platform_id="p2", prefix="b"))
    batch = new_batch(ledger, 4, max_per_platform=2)
    worker = make_worker(ledger, log_store, selector, campaign, contacts, chunk_size=1)

    for _ in range(4):
        result = worker.process_next_batch(batch.batch_id)

    assert result.is_complete
    per_platform = result.batch.taken_per_platform()
    assert per_platform == {"p1": 2, "p2": 2}
