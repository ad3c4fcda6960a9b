"""
Campaign assignment settings repository (persistence).

The settings table holds at most one row. This module only reads and writes
that row; defaults and validation live in the domain and service layers.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from domain.settings import AssignmentSettings
from domain.time import parse_optional_utc_datetime
from repositories.client import check_response, get_supabase

_SETTINGS_TABLE: str = "campaign_assignment_settings"


def _row_to_settings(row: Mapping[str, Any]) -> AssignmentSettings:
    return AssignmentSettings(
        max_total_contacts=int(row["max_total_contacts"]),
        max_per_platform=int(row["max_per_platform"]),
        delay_between_contacts_ms=int(row["delay_between_contacts_ms"]),
        is_enabled=bool(row["is_enabled"]),
        settings_id=str(row["id"]) if row.get("id") is not None else None,
        updated_at=parse_optional_utc_datetime(row.get("updated_at")),
        updated_by=row.get("updated_by"),
    )


def _settings_to_row(settings: AssignmentSettings) -> dict[str, Any]:
    return {
        "max_total_contacts": settings.max_total_contacts,
        "max_per_platform": settings.max_per_platform,
        "delay_between_contacts_ms": settings.delay_between_contacts_ms,
        "is_enabled": settings.is_enabled,
    }


def get_settings() -> Optional[AssignmentSettings]:
    """
    Fetch the stored settings row.

    Returns:
        AssignmentSettings, or None when no row exists yet
    """

    response = get_supabase().table(_SETTINGS_TABLE).select("*").limit(1).execute()
    rows = check_response(response, "fetch campaign assignment settings")
    if not rows:
        return None
    return _row_to_settings(rows[0])


def save_settings(settings: AssignmentSettings, updated_by: Optional[str] = None) -> AssignmentSettings:
    """
    Persist settings: update the existing row, or insert the first one.

    Returns:
        The stored settings as read back from Supabase
    """

    payload = _settings_to_row(settings)
    if updated_by is not None:
        payload["updated_by"] = updated_by

    table = get_supabase().table(_SETTINGS_TABLE)
    if settings.settings_id:
        response = table.update(payload).eq("id", settings.settings_id).execute()
        rows = check_response(response, "update campaign assignment settings")
    else:
        response = table.insert(payload).execute()
        rows = check_response(response, "create campaign assignment settings")

    if not rows:
        return settings
    return _row_to_settings(rows[0])


__all__ = ["get_settings", "save_settings"]
