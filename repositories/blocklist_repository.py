"""
Blocklist repository (read-only).

Blocklist entries are created and removed by the dashboard; assignment only
needs the active ones.
"""

from __future__ import annotations

from typing import Any, List, Mapping

from domain.blocklist import BlocklistEntry, BlocklistType
from repositories.client import check_response, get_supabase

_BLOCKLIST_TABLE: str = "blocklist_entries"


def _row_to_entry(row: Mapping[str, Any]) -> BlocklistEntry:
    return BlocklistEntry(
        entry_type=BlocklistType(str(row["type"]).lower()),
        value=str(row.get("value") or ""),
        is_active=bool(row.get("is_active", True)),
        company_id=str(row["company_id"]) if row.get("company_id") else None,
        reason=row.get("reason"),
    )


def list_active_entries() -> List[BlocklistEntry]:
    """Return every active blocklist entry of a known type."""

    response = (
        get_supabase()
        .table(_BLOCKLIST_TABLE)
        .select("type, value, is_active, company_id, reason")
        .eq("is_active", True)
        .execute()
    )
    rows = check_response(response, "list blocklist entries")

    entries: List[BlocklistEntry] = []
    for row in rows:
        try:
            entries.append(_row_to_entry(row))
        except ValueError:
            # Unknown entry types are managed by other features
            continue
    return entries


__all__ = ["list_active_entries"]
