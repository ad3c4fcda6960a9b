"""
Candidate repository (read-only).

Reads the `campaign_assignment_candidates` view, which joins contacts with
their company, the platform of the company's job postings and that
platform's campaign (one row per contact and platform). Eligibility rules,
blocklist filtering and quotas are applied by the candidate selector, not
here.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional

from domain.candidate import CandidateContact, QualificationStatus
from domain.time import parse_utc_datetime
from repositories.client import check_response, get_supabase

_CANDIDATES_VIEW: str = "campaign_assignment_candidates"

# PostgREST caps a single response; page through larger result sets.
_PAGE_SIZE: int = 1000


def _qualification(value: Any) -> QualificationStatus:
    try:
        return QualificationStatus(str(value or "pending").lower())
    except ValueError:
        return QualificationStatus.PENDING


def _row_to_candidate(row: Mapping[str, Any]) -> CandidateContact:
    """Convert a view row into a CandidateContact."""

    def get_optional(key: str) -> str | None:
        value = row.get(key)
        return str(value) if value not in (None, "") else None

    industries = row.get("company_industries") or ()
    if isinstance(industries, str):
        industries = (industries,)

    return CandidateContact(
        contact_id=str(row["contact_id"]),
        email=str(row.get("email") or ""),
        company_id=str(row["company_id"]),
        company_name=str(row.get("company_name") or ""),
        platform_id=str(row["platform_id"]),
        platform_name=str(row.get("platform_name") or ""),
        created_at=parse_utc_datetime(row["created_at"]),
        qualification_status=_qualification(row.get("qualification_status")),
        campaign_id=get_optional("instantly_campaign_id"),
        already_assigned=bool(row.get("assigned_campaign_id")),
        company_status=get_optional("company_status"),
        company_pipedrive_id=get_optional("company_pipedrive_id"),
        first_name=get_optional("first_name"),
        last_name=get_optional("last_name"),
        title=get_optional("title"),
        phone=get_optional("phone"),
        linkedin_url=get_optional("linkedin_url"),
        company_website=get_optional("company_website"),
        company_description=get_optional("company_description"),
        company_location=get_optional("company_location"),
        company_category_size=get_optional("company_category_size"),
        company_industries=tuple(str(item) for item in industries),
        job_posting_title=get_optional("job_posting_title"),
        job_posting_location=get_optional("job_posting_location"),
    )


def list_unassigned_candidates(platform_id: Optional[str] = None) -> List[CandidateContact]:
    """
    List contacts that have not been assigned to any campaign yet.

    Args:
        platform_id: restrict to one platform (platform workers)

    Returns:
        Candidates ordered by creation time, oldest first
    """

    candidates: List[CandidateContact] = []
    offset = 0

    while True:
        query = (
            get_supabase()
            .table(_CANDIDATES_VIEW)
            .select("*")
            .is_("assigned_campaign_id", "null")
        )
        if platform_id is not None:
            query = query.eq("platform_id", platform_id)

        response = (
            query.order("created_at")
            .order("contact_id")
            .range(offset, offset + _PAGE_SIZE - 1)
            .execute()
        )
        rows = check_response(response, "list campaign assignment candidates")
        candidates.extend(_row_to_candidate(row) for row in rows)

        if len(rows) < _PAGE_SIZE:
            break
        offset += _PAGE_SIZE

    return candidates


def get_candidate(contact_id: str, platform_id: str) -> Optional[CandidateContact]:
    """
    Fetch the current state of one candidate (assigned or not).

    Returns:
        CandidateContact, or None when the contact/platform pair no longer exists
    """

    response = (
        get_supabase()
        .table(_CANDIDATES_VIEW)
        .select("*")
        .eq("contact_id", contact_id)
        .eq("platform_id", platform_id)
        .limit(1)
        .execute()
    )
    rows = check_response(response, "fetch campaign assignment candidate")
    if not rows:
        return None
    return _row_to_candidate(rows[0])


__all__ = ["list_unassigned_candidates", "get_candidate"]
