"""
Domain: blocklist entries consulted before any contact is assigned.

Entries are maintained elsewhere; this service only reads them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class BlocklistType(str, Enum):
    EMAIL = "email"
    DOMAIN = "domain"
    COMPANY = "company"


def normalize_domain(value: Optional[str]) -> Optional[str]:
    """
    Reduce a website, URL or bare domain to a comparable host name.

    'https://www.Example.nl/vacatures' -> 'example.nl'
    """

    if not value:
        return None
    host = value.strip().lower()
    for prefix in ("https://", "http://"):
        if host.startswith(prefix):
            host = host[len(prefix):]
    host = host.split("/", 1)[0].split("?", 1)[0].split(":", 1)[0]
    if host.startswith("www."):
        host = host[4:]
    if "@" in host:
        host = host.rsplit("@", 1)[1]
    return host or None


@dataclass(frozen=True, slots=True)
class BlocklistEntry:
    entry_type: BlocklistType
    value: str
    is_active: bool = True
    company_id: Optional[str] = None
    reason: Optional[str] = None

    def normalized_value(self) -> Optional[str]:
        if self.entry_type == BlocklistType.DOMAIN:
            return normalize_domain(self.value)
        if self.entry_type == BlocklistType.COMPANY:
            return (self.company_id or self.value or "").strip() or None
        return self.value.strip().lower() or None
