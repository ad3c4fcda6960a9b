"""
Pipedrive API client (read side of the existing-customer check).

Organizations carry a "status prospect" custom field; option 303 means the
organization is a customer ("Klant").
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import requests

from clients.config import PipedriveConfig

logger = logging.getLogger(__name__)

KLANT_STATUS_ID = 303
REQUEST_TIMEOUT_SECONDS = 15


class PipedriveError(RuntimeError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PipedriveClient:
    def __init__(self, config: PipedriveConfig, session: Optional[requests.Session] = None) -> None:
        self._config = config
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls) -> Optional["PipedriveClient"]:
        config = PipedriveConfig.from_env()
        if config is None:
            return None
        return cls(config)

    def _get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        query = dict(params or {})
        query["api_token"] = self._config.api_token
        response = self._session.get(
            f"{self._config.base_url}{path}",
            params=query,
            headers={"Accept": "application/json"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise PipedriveError(f"Pipedrive GET {path} failed: HTTP {response.status_code}", status_code=response.status_code)
        body = response.json()
        return body.get("data") if isinstance(body, Mapping) else None

    def search_organization(self, name: str) -> Optional[int]:
        """
        Id of the first organization whose name matches, or None.
        """

        if not name or not name.strip():
            return None
        data = self._get("/organizations/search", {"term": name.strip(), "fields": "name", "limit": 1})
        items = (data or {}).get("items") or []
        if not items:
            return None
        first = items[0]
        item = first.get("item") if isinstance(first, Mapping) else None
        org_id = (item or first).get("id")
        return int(org_id) if org_id else None

    def get_organization_status(self, org_id: int) -> Optional[int]:
        """Status-prospect option id of an organization, or None when unset."""

        data = self._get(f"/organizations/{org_id}")
        if not data:
            return None
        value = data.get(self._config.status_field_key)
        if value in (None, ""):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Unexpected status value %r on Pipedrive organization %s", value, org_id)
            return None

    def is_klant(self, org_id: int) -> bool:
        return self.get_organization_status(org_id) == KLANT_STATUS_ID


__all__ = ["KLANT_STATUS_ID", "PipedriveError", "PipedriveClient"]
