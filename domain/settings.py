"""
Domain: campaign assignment settings.

The settings row is the quota and pacing configuration read at the start of
every run. It is never mutated during a run; a run receives an explicit
`AssignmentSettings` value.

Ranges:
- max_total_contacts: 1..5000
- max_per_platform: 1..500
- delay_between_contacts_ms: 100..5000
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Mapping, Optional

DEFAULT_MAX_TOTAL_CONTACTS = 500
DEFAULT_MAX_PER_PLATFORM = 30
DEFAULT_DELAY_BETWEEN_CONTACTS_MS = 500

MAX_TOTAL_RANGE = (1, 5000)
MAX_PER_PLATFORM_RANGE = (1, 500)
DELAY_MS_RANGE = (100, 5000)

DEFAULT_CHUNK_SIZE = 25
CHUNK_SIZE_RANGE = (1, 100)


def require_int_in_range(name: str, value: Any, bounds: tuple[int, int]) -> int:
    """
    Validate an integer setting against its inclusive range.

    Booleans are rejected even though they are ints in Python.
    """

    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer between {low} and {high}")
    if value < low or value > high:
        raise ValueError(f"{name} must be between {low} and {high}")
    return value


@dataclass(frozen=True, slots=True)
class AssignmentSettings:
    """Quota and pacing configuration for campaign assignment runs."""

    max_total_contacts: int = DEFAULT_MAX_TOTAL_CONTACTS
    max_per_platform: int = DEFAULT_MAX_PER_PLATFORM
    delay_between_contacts_ms: int = DEFAULT_DELAY_BETWEEN_CONTACTS_MS
    is_enabled: bool = True

    # Metadata
    settings_id: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    def __post_init__(self) -> None:
        require_int_in_range("max_total_contacts", self.max_total_contacts, MAX_TOTAL_RANGE)
        require_int_in_range("max_per_platform", self.max_per_platform, MAX_PER_PLATFORM_RANGE)
        require_int_in_range("delay_between_contacts_ms", self.delay_between_contacts_ms, DELAY_MS_RANGE)
        if not isinstance(self.is_enabled, bool):
            raise ValueError("is_enabled must be a boolean")

    @property
    def is_default(self) -> bool:
        """True when these settings were not loaded from a stored row."""
        return self.settings_id is None

    @classmethod
    def defaults(cls) -> "AssignmentSettings":
        return cls()

    def with_changes(self, changes: Mapping[str, Any]) -> "AssignmentSettings":
        """
        Return a copy with the given fields replaced (validated on construction).

        Unknown keys raise ValueError so that typos never silently pass.
        """

        allowed = {"max_total_contacts", "max_per_platform", "delay_between_contacts_ms", "is_enabled"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown settings fields: {', '.join(sorted(unknown))}")
        return replace(self, **dict(changes))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.settings_id or "default",
            "max_total_contacts": self.max_total_contacts,
            "max_per_platform": self.max_per_platform,
            "delay_between_contacts_ms": self.delay_between_contacts_ms,
            "is_enabled": self.is_enabled,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
        }
