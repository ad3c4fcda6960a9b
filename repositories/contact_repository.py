"""
Contact bookkeeping after an assignment attempt (persistence).

Marks contacts as assigned so they drop out of future selections, and keeps
a retry counter for transient campaign errors. Contacts that errored remain
eligible for later runs; nothing here disqualifies them.
"""

from __future__ import annotations

from typing import Optional

from domain.time import utc_now
from repositories.client import check_response, get_supabase

_CONTACTS_TABLE: str = "contacts"
_COMPANIES_TABLE: str = "companies"


def mark_assigned(
    contact_id: str,
    campaign_id: str,
    campaign_name: str,
    instantly_lead_id: Optional[str] = None,
) -> None:
    """Record that a contact now belongs to a campaign."""

    payload = {
        "campaign_id": campaign_id,
        "campaign_name": campaign_name,
        "qualification_status": "in_campaign",
        "last_touch": utc_now().isoformat(),
    }
    if instantly_lead_id:
        payload["instantly_id"] = instantly_lead_id

    response = get_supabase().table(_CONTACTS_TABLE).update(payload).eq("id", contact_id).execute()
    check_response(response, "mark contact as assigned")


def record_retry(contact_id: str, error_message: str) -> int:
    """
    Increment the contact's retry counter and append a processing note.

    Returns:
        The new retry count
    """

    client = get_supabase()
    response = (
        client.table(_CONTACTS_TABLE)
        .select("retry_count, processing_notes")
        .eq("id", contact_id)
        .limit(1)
        .execute()
    )
    rows = check_response(response, "fetch contact retry state")
    current = rows[0] if rows else {}

    retry_count = int(current.get("retry_count") or 0) + 1
    notes = str(current.get("processing_notes") or "")
    note = f"[{utc_now().isoformat()}] Campaign error ({retry_count}): {error_message}"

    response = (
        client.table(_CONTACTS_TABLE)
        .update({"retry_count": retry_count, "processing_notes": f"{notes}\n{note}".strip()})
        .eq("id", contact_id)
        .execute()
    )
    check_response(response, "record contact retry")
    return retry_count


def link_company_to_pipedrive(company_id: str, pipedrive_org_id: int) -> None:
    """Store the Pipedrive organization found for a company."""

    response = (
        get_supabase()
        .table(_COMPANIES_TABLE)
        .update(
            {
                "pipedrive_id": str(pipedrive_org_id),
                "pipedrive_synced": True,
                "pipedrive_synced_at": utc_now().isoformat(),
            }
        )
        .eq("id", company_id)
        .execute()
    )
    check_response(response, "link company to Pipedrive")


__all__ = ["mark_assigned", "record_retry", "link_company_to_pipedrive"]
