"""
Domain: the contract expected from the external campaign system.

`assign(contact)` answers with one of four statuses and may additionally
report that the workspace-wide lead ceiling has been reached.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from .assignment import AssignmentOutcome


class CampaignResponseStatus(str, Enum):
    ADDED = "added"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    ERROR = "error"


_OUTCOME_BY_STATUS = {
    CampaignResponseStatus.ADDED: AssignmentOutcome.ADDED,
    CampaignResponseStatus.DUPLICATE: AssignmentOutcome.SKIPPED_DUPLICATE,
    CampaignResponseStatus.REJECTED: AssignmentOutcome.SKIPPED_AI_ERROR,
    CampaignResponseStatus.ERROR: AssignmentOutcome.ERROR,
}


@dataclass(frozen=True, slots=True)
class CampaignResponse:
    status: CampaignResponseStatus
    lead_id: Optional[str] = None
    lead_limit_reached: bool = False
    message: Optional[str] = None
    http_status: Optional[int] = None

    @property
    def outcome(self) -> AssignmentOutcome:
        """
        Classification of this response.

        A response that trips the lead limit is never counted as added.
        """

        if self.lead_limit_reached:
            return AssignmentOutcome.ERROR
        return _OUTCOME_BY_STATUS[self.status]


@dataclass(frozen=True, slots=True)
class CustomerCheck:
    """Result of the existing-customer lookup for a company."""

    is_customer: bool
    pipedrive_org_id: Optional[int] = None
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Personalization:
    """AI-generated copy attached to a lead before it is sent."""

    personalization: str
    normalized_company: str
    fields: Mapping[str, Any]
    processing_time_ms: int = 0

    def custom_variables(self) -> dict[str, str]:
        def text(key: str) -> str:
            value = self.fields.get(key)
            return str(value) if value else ""

        return {
            "company_sector": text("sector").lower(),
            "normalized_company_name": self.normalized_company,
            "similar_companies": text("similar_companies"),
            "job_category": text("category").lower(),
            "custom_region": text("region"),
            "normalized_title": text("normalized_title"),
            "company_description": text("company_description"),
        }
