"""
Assignment log repository (append-only audit trail).

Every classified contact is written here exactly once per batch; the unique
(batch_id, contact_id) constraint makes a repeated append a no-op. The log,
not the batch counters, is the source of truth for which contacts a batch
has already processed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Mapping, Optional, Set, Tuple

from domain.assignment import AssignmentLogEntry, AssignmentOutcome
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.client import check_response, get_supabase

_LOGS_TABLE: str = "campaign_assignment_logs"
_PAGE_SIZE: int = 1000


@dataclass(frozen=True, slots=True)
class LogQueryFilters:
    """Filter criteria for the paginated audit log."""
    status: Optional[AssignmentOutcome] = None
    platform_id: Optional[str] = None
    batch_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None  # matches contact email or company name


@dataclass(frozen=True, slots=True)
class LogPage:
    entries: List[AssignmentLogEntry]
    total: int


def _entry_to_row(entry: AssignmentLogEntry) -> dict[str, Any]:
    return {
        "batch_id": entry.batch_id,
        "contact_id": entry.contact_id,
        "contact_email": entry.contact_email,
        "contact_name": entry.contact_name,
        "company_id": entry.company_id,
        "company_name": entry.company_name,
        "platform_id": entry.platform_id,
        "platform_name": entry.platform_name,
        "instantly_campaign_id": entry.campaign_id,
        "status": entry.outcome.value,
        "skip_reason": entry.message if entry.outcome.is_skip else None,
        "error_message": entry.message if entry.outcome == AssignmentOutcome.ERROR else None,
        "instantly_lead_id": entry.instantly_lead_id,
        "pipedrive_org_id": entry.pipedrive_org_id,
        "pipedrive_is_klant": entry.pipedrive_is_klant,
        "ai_personalization": dict(entry.personalization) if entry.personalization else None,
        "ai_processing_time_ms": entry.ai_processing_time_ms,
        "created_at": to_iso_utc(entry.created_at, name="created_at"),
    }


def _row_to_entry(row: Mapping[str, Any]) -> AssignmentLogEntry:
    return AssignmentLogEntry(
        batch_id=str(row["batch_id"]),
        contact_id=str(row["contact_id"]),
        platform_id=str(row.get("platform_id") or ""),
        outcome=AssignmentOutcome(str(row["status"])),
        created_at=parse_utc_datetime(row["created_at"]),
        platform_name=row.get("platform_name"),
        contact_email=row.get("contact_email"),
        contact_name=row.get("contact_name"),
        company_id=row.get("company_id"),
        company_name=row.get("company_name"),
        campaign_id=row.get("instantly_campaign_id"),
        message=row.get("skip_reason") or row.get("error_message"),
        instantly_lead_id=row.get("instantly_lead_id"),
        pipedrive_org_id=row.get("pipedrive_org_id"),
        pipedrive_is_klant=bool(row.get("pipedrive_is_klant", False)),
        personalization=row.get("ai_personalization"),
        ai_processing_time_ms=row.get("ai_processing_time_ms"),
    )


def append_entry(entry: AssignmentLogEntry) -> bool:
    """
    Append one classified contact to the log.

    Returns:
        True if the entry was written, False if this contact was already
        logged for the batch (duplicate append ignored)
    """

    response = (
        get_supabase()
        .table(_LOGS_TABLE)
        .upsert(_entry_to_row(entry), on_conflict="batch_id,contact_id", ignore_duplicates=True)
        .execute()
    )
    rows = check_response(response, "append assignment log entry")
    return bool(rows)


def processed_contact_ids(batch_id: str) -> Set[str]:
    """Contact ids already logged for a batch."""

    contact_ids: Set[str] = set()
    offset = 0
    while True:
        response = (
            get_supabase()
            .table(_LOGS_TABLE)
            .select("contact_id")
            .eq("batch_id", batch_id)
            .range(offset, offset + _PAGE_SIZE - 1)
            .execute()
        )
        rows = check_response(response, "list processed contacts")
        contact_ids.update(str(row["contact_id"]) for row in rows)
        if len(rows) < _PAGE_SIZE:
            return contact_ids
        offset += _PAGE_SIZE


def list_entries_for_batch(batch_id: str) -> List[AssignmentLogEntry]:
    response = (
        get_supabase()
        .table(_LOGS_TABLE)
        .select("*")
        .eq("batch_id", batch_id)
        .order("created_at")
        .execute()
    )
    rows = check_response(response, "list assignment log entries")
    return [_row_to_entry(row) for row in rows]


def query_entries(filters: LogQueryFilters, page: int = 1, limit: int = 50) -> LogPage:
    """
    Paginated audit log read, newest first.

    Args:
        filters: Query filters
        page: 1-based page number
        limit: Page size
    """

    offset = (page - 1) * limit
    query = get_supabase().table(_LOGS_TABLE).select("*", count="exact")

    if filters.status is not None:
        query = query.eq("status", filters.status.value)
    if filters.platform_id:
        query = query.eq("platform_id", filters.platform_id)
    if filters.batch_id:
        query = query.eq("batch_id", filters.batch_id)
    if filters.date_from is not None:
        query = query.gte("created_at", to_iso_utc(filters.date_from, name="date_from"))
    if filters.date_to is not None:
        query = query.lte("created_at", to_iso_utc(filters.date_to, name="date_to"))
    if filters.search:
        term = filters.search.replace(",", " ").strip()
        query = query.or_(f"contact_email.ilike.%{term}%,company_name.ilike.%{term}%")

    response = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
    rows = check_response(response, "query assignment logs")
    total = getattr(response, "count", None) or 0
    return LogPage(entries=[_row_to_entry(row) for row in rows], total=int(total))


def list_outcomes(date_from: datetime, date_to: datetime) -> List[Tuple[AssignmentOutcome, str, datetime]]:
    """
    (outcome, platform name, created_at) for every entry in a period.
    """

    outcomes: List[Tuple[AssignmentOutcome, str, datetime]] = []
    offset = 0
    while True:
        response = (
            get_supabase()
            .table(_LOGS_TABLE)
            .select("status, platform_name, created_at")
            .gte("created_at", to_iso_utc(date_from, name="date_from"))
            .lte("created_at", to_iso_utc(date_to, name="date_to"))
            .range(offset, offset + _PAGE_SIZE - 1)
            .execute()
        )
        rows = check_response(response, "list assignment outcomes")
        outcomes.extend(
            (
                AssignmentOutcome(str(row["status"])),
                str(row.get("platform_name") or "Unknown"),
                parse_utc_datetime(row["created_at"]),
            )
            for row in rows
        )
        if len(rows) < _PAGE_SIZE:
            return outcomes
        offset += _PAGE_SIZE


__all__ = [
    "LogQueryFilters",
    "LogPage",
    "append_entry",
    "processed_contact_ids",
    "list_entries_for_batch",
    "query_entries",
    "list_outcomes",
]
