"""
Domain: campaign assignment candidates.

A CandidateContact is a read-only view over a contact joined with its company,
the job-board platform its job posting came from, and that platform's
campaign. It is produced fresh by every selection and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from .time import require_utc_timestamp

# Company status that marks an existing customer ("klant").
CUSTOMER_COMPANY_STATUS = "Klant"


class QualificationStatus(str, Enum):
    QUALIFIED = "qualified"
    REVIEW = "review"
    DISQUALIFIED = "disqualified"
    PENDING = "pending"


def is_plausible_email(email: Optional[str]) -> bool:
    """
    Cheap sanity check for outreach addresses.

    Mirrors the selection query: exactly one '@', a dot in the domain part,
    and more than five characters.
    """

    if not email:
        return False
    value = email.strip()
    if len(value) <= 5 or value.count("@") != 1:
        return False
    local, domain = value.split("@")
    return bool(local) and "." in domain and not domain.startswith(".") and not domain.endswith(".")


def email_domain(email: Optional[str]) -> Optional[str]:
    if not email or "@" not in email:
        return None
    return email.rsplit("@", 1)[1].strip().lower() or None


@dataclass(frozen=True, slots=True)
class CandidateContact:
    """
    A contact that may be assigned to its platform's campaign.
    """

    contact_id: str
    email: str
    company_id: str
    company_name: str
    platform_id: str
    platform_name: str
    created_at: datetime

    # Eligibility inputs
    qualification_status: QualificationStatus = QualificationStatus.PENDING
    campaign_id: Optional[str] = None  # Campaign the platform assigns to
    already_assigned: bool = False
    company_status: Optional[str] = None
    company_pipedrive_id: Optional[str] = None

    # Contact details
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None

    # Company details
    company_website: Optional[str] = None
    company_description: Optional[str] = None
    company_location: Optional[str] = None
    company_category_size: Optional[str] = None
    company_industries: Tuple[str, ...] = field(default_factory=tuple)

    # Job posting the platform link came from
    job_posting_title: Optional[str] = None
    job_posting_location: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if not self.contact_id:
            raise ValueError("contact_id is required")
        if not self.platform_id:
            raise ValueError("platform_id is required")

    @property
    def full_name(self) -> Optional[str]:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or None

    @property
    def is_existing_customer(self) -> bool:
        return (self.company_status or "").strip().lower() == CUSTOMER_COMPANY_STATUS.lower()

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Oldest first, contact id as tie-break."""
        return (self.created_at, self.contact_id)

    def ineligibility_reason(self) -> Optional[str]:
        """
        Reason this contact may not be assigned, ignoring the blocklist.

        Returns None when the contact passes every non-blocklist rule.
        """

        if self.already_assigned:
            return "already assigned to a campaign"
        if self.qualification_status != QualificationStatus.QUALIFIED:
            return f"company qualification is {self.qualification_status.value}"
        if not self.campaign_id:
            return "platform has no campaign configured"
        if not is_plausible_email(self.email):
            return "email address is not usable"
        return None


@dataclass(frozen=True, slots=True)
class PlatformGroup:
    """Candidates of one platform, in dispatch order."""

    platform_id: str
    platform_name: str
    candidates: List[CandidateContact]

    @property
    def candidate_count(self) -> int:
        return len(self.candidates)
