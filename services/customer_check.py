"""
Existing-customer ("Klant") check.

A contact is skipped before the campaign call when its company is already a
customer: either the company status says so, or the company's Pipedrive
organization has the Klant status. Organizations found by name are linked
back to the company so later runs can use the stored id.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from domain.campaign import CustomerCheck
from domain.candidate import CandidateContact
from repositories import contact_repository

logger = logging.getLogger(__name__)


class CustomerChecker:
    def __init__(self, pipedrive: Optional[Any] = None, contacts: Any = contact_repository) -> None:
        self._pipedrive = pipedrive
        self._contacts = contacts

    def check(self, candidate: CandidateContact, dry_run: bool = False) -> CustomerCheck:
        """
        Args:
            candidate: The contact about to be assigned
            dry_run: Only consult the company status; Pipedrive is neither
                queried nor linked
        """

        if candidate.is_existing_customer:
            return CustomerCheck(is_customer=True, reason="Company status is Klant")

        if self._pipedrive is None or dry_run:
            return CustomerCheck(is_customer=False)

        try:
            org_id: Optional[int] = None
            if candidate.company_pipedrive_id and candidate.company_pipedrive_id.isdigit():
                org_id = int(candidate.company_pipedrive_id)
            else:
                org_id = self._pipedrive.search_organization(candidate.company_name)
                if org_id is not None:
                    self._contacts.link_company_to_pipedrive(candidate.company_id, org_id)

            if org_id is None:
                return CustomerCheck(is_customer=False)

            if self._pipedrive.is_klant(org_id):
                return CustomerCheck(
                    is_customer=True,
                    pipedrive_org_id=org_id,
                    reason='Company has "Klant" status in Pipedrive',
                )
            return CustomerCheck(is_customer=False, pipedrive_org_id=org_id)
        except Exception as e:
            # Pipedrive being down must not block assignment
            logger.warning("Pipedrive check failed for %s: %s", candidate.company_name, e)
            return CustomerCheck(is_customer=False)


__all__ = ["CustomerChecker"]
