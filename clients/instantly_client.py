"""
Instantly API client (campaign system).

Only lead creation is needed for assignment. Instantly answers every lead
with one of four statuses:

- added: the lead was created in the campaign
- duplicate: the lead already exists in the workspace, campaign or list
  (created with the skip_if_in_* flags, so Instantly skips it)
- rejected: Instantly refused the payload (HTTP 400/422)
- error: anything else, including network failures

A workspace at its lead ceiling is reported with `lead_limit_reached=True`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Optional

import requests

from clients.config import InstantlyConfig
from domain.campaign import CampaignResponse, CampaignResponseStatus, Personalization
from domain.candidate import CandidateContact

logger = logging.getLogger(__name__)

LEADS_PATH = "/api/v2/leads"
RATE_LIMIT_RETRY_SECONDS = 2.0
REQUEST_TIMEOUT_SECONDS = 30

_LEAD_LIMIT_MARKERS = ("lead limit", "leads limit", "limit of leads", "upload limit", "maximum number of leads")
_DUPLICATE_MARKERS = ("already exists", "already in", "skipped", "duplicate")


def _message_of(body: Any) -> str:
    if isinstance(body, Mapping):
        for key in ("message", "error", "detail", "status"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    if isinstance(body, str):
        return body
    return ""


def classify_response(status_code: int, body: Any) -> CampaignResponse:
    """Map an Instantly HTTP response onto a CampaignResponse."""

    message = _message_of(body)
    lowered = message.lower()

    if status_code == 402 or any(marker in lowered for marker in _LEAD_LIMIT_MARKERS):
        return CampaignResponse(
            status=CampaignResponseStatus.ERROR,
            lead_limit_reached=True,
            message=message or "Instantly lead limit reached",
            http_status=status_code,
        )

    if 200 <= status_code < 300:
        lead_id = body.get("id") if isinstance(body, Mapping) else None
        skipped = isinstance(body, Mapping) and (
            body.get("skipped") is True or str(body.get("status", "")).lower() == "skipped"
        )
        if skipped or any(marker in lowered for marker in _DUPLICATE_MARKERS):
            return CampaignResponse(
                status=CampaignResponseStatus.DUPLICATE,
                lead_id=str(lead_id) if lead_id else None,
                message="Lead already exists in Instantly workspace/campaign/list",
                http_status=status_code,
            )
        return CampaignResponse(
            status=CampaignResponseStatus.ADDED,
            lead_id=str(lead_id) if lead_id else None,
            http_status=status_code,
        )

    if status_code == 409:
        return CampaignResponse(
            status=CampaignResponseStatus.DUPLICATE,
            message=message or "Lead already exists in Instantly",
            http_status=status_code,
        )

    if status_code in (400, 422):
        return CampaignResponse(
            status=CampaignResponseStatus.REJECTED,
            message=message or f"Instantly rejected the lead (HTTP {status_code})",
            http_status=status_code,
        )

    return CampaignResponse(
        status=CampaignResponseStatus.ERROR,
        message=message or f"Instantly error (HTTP {status_code})",
        http_status=status_code,
    )


class InstantlyClient:
    def __init__(
        self,
        config: InstantlyConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._sleep = sleep
        self._timeout = timeout

    @classmethod
    def from_env(cls) -> "InstantlyClient":
        return cls(InstantlyConfig.from_env())

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }

    def lead_payload(
        self,
        candidate: CandidateContact,
        personalization: Optional[Personalization] = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "campaign": candidate.campaign_id,
            "email": candidate.email,
            "first_name": candidate.first_name,
            "last_name": candidate.last_name,
            "company_name": candidate.company_name,
            "website": candidate.company_website,
            "phone": candidate.phone,
            "skip_if_in_workspace": True,
            "skip_if_in_campaign": True,
            "skip_if_in_list": True,
        }
        if self._config.assigned_to:
            payload["assigned_to"] = self._config.assigned_to

        custom_variables: dict[str, Any] = {
            "linkedIn": candidate.linkedin_url,
            "company_size": candidate.company_category_size,
            "jobTitle": candidate.title,
        }
        if personalization is not None:
            payload["personalization"] = personalization.personalization
            custom_variables.update(personalization.custom_variables())
        payload["custom_variables"] = {k: v for k, v in custom_variables.items() if v not in (None, "")}

        return {k: v for k, v in payload.items() if v is not None}

    def _post(self, payload: Mapping[str, Any]) -> requests.Response:
        url = f"{self._config.base_url}{LEADS_PATH}"
        response = self._session.post(url, json=payload, headers=self._headers(), timeout=self._timeout)
        if response.status_code == 429:
            # Rate limit hit - wait and retry once
            logger.warning("Instantly rate limit hit, retrying in %.0fs", RATE_LIMIT_RETRY_SECONDS)
            self._sleep(RATE_LIMIT_RETRY_SECONDS)
            response = self._session.post(url, json=payload, headers=self._headers(), timeout=self._timeout)
        return response

    def assign(
        self,
        candidate: CandidateContact,
        personalization: Optional[Personalization] = None,
    ) -> CampaignResponse:
        """Create the candidate as a lead in its platform's campaign."""

        try:
            response = self._post(self.lead_payload(candidate, personalization))
        except requests.RequestException as e:
            logger.warning("Instantly request failed for %s: %s", candidate.email, e)
            return CampaignResponse(status=CampaignResponseStatus.ERROR, message=f"Instantly request failed: {e}")

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        result = classify_response(response.status_code, body)
        logger.debug("Instantly %s for %s (HTTP %s)", result.status.value, candidate.email, response.status_code)
        return result


__all__ = ["LEADS_PATH", "classify_response", "InstantlyClient"]
