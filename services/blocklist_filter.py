"""
Blocklist filter.

Built fresh from the active blocklist entries at the start of every
selection, so an entry added mid-run is honored by the next chunk.
Matching is case-insensitive and ignores a leading `www.`.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Set

from domain.blocklist import BlocklistEntry, BlocklistType, normalize_domain
from domain.candidate import CandidateContact, email_domain
from repositories import blocklist_repository

logger = logging.getLogger(__name__)


class BlocklistFilter:
    def __init__(
        self,
        emails: Iterable[str] = (),
        domains: Iterable[str] = (),
        companies: Iterable[str] = (),
    ) -> None:
        self._emails: Set[str] = {value.strip().lower() for value in emails if value and value.strip()}
        self._domains: Set[str] = {d for d in (normalize_domain(value) for value in domains) if d}
        self._companies: Set[str] = {value.strip().lower() for value in companies if value and value.strip()}

    @classmethod
    def from_entries(cls, entries: Iterable[BlocklistEntry]) -> "BlocklistFilter":
        emails: list[str] = []
        domains: list[str] = []
        companies: list[str] = []

        for entry in entries:
            if not entry.is_active:
                continue
            value = entry.normalized_value()
            if value is None:
                continue
            if entry.entry_type == BlocklistType.EMAIL:
                emails.append(value)
            elif entry.entry_type == BlocklistType.DOMAIN:
                domains.append(value)
            else:
                companies.append(value)
                # A company entry may name the company as well as link it
                if entry.company_id and entry.value and entry.value.strip() != entry.company_id:
                    companies.append(entry.value)

        return cls(emails=emails, domains=domains, companies=companies)

    @classmethod
    def load(cls, store: Any = blocklist_repository) -> "BlocklistFilter":
        """Build the filter from the currently active entries."""

        entries = store.list_active_entries()
        blocklist = cls.from_entries(entries)
        logger.debug(
            "Blocklist loaded: %d emails, %d domains, %d companies",
            len(blocklist._emails),
            len(blocklist._domains),
            len(blocklist._companies),
        )
        return blocklist

    def __len__(self) -> int:
        return len(self._emails) + len(self._domains) + len(self._companies)

    def is_blocked(
        self,
        email: Optional[str] = None,
        domain: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> bool:
        if email:
            normalized = email.strip().lower()
            if normalized in self._emails:
                return True
            if email_domain(normalized) in self._domains:
                return True
        if domain and normalize_domain(domain) in self._domains:
            return True
        if company_id and company_id.strip().lower() in self._companies:
            return True
        return False

    def is_candidate_blocked(self, candidate: CandidateContact) -> bool:
        """Check the contact email, its domain, the company website and the company itself."""

        if self.is_blocked(
            email=candidate.email,
            domain=candidate.company_website,
            company_id=candidate.company_id,
        ):
            return True
        return bool(candidate.company_name) and candidate.company_name.strip().lower() in self._companies


__all__ = ["BlocklistFilter"]
