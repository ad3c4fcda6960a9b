"""
Mistral chat-completions client for lead personalization.

Produces one short opening line plus a few normalized company fields used as
Instantly custom variables. Rate limits (429) and server errors are retried
with exponential backoff.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Mapping, Optional

import requests

from clients.config import MistralConfig
from domain.campaign import Personalization
from domain.candidate import CandidateContact

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 30

SYSTEM_PROMPT = (
    "You write personalization data for Dutch B2B cold e-mail about recruiting through regional job "
    "platforms. Answer with a JSON object with the keys: personalization (one or two sentences in "
    "Dutch, no greeting), normalized_company (company name without legal suffixes), "
    "company_description, category, sector, region, similar_companies, normalized_title."
)


class PersonalizationError(RuntimeError):
    """Personalization could not be generated for a contact."""


def _user_prompt(candidate: CandidateContact) -> str:
    industries = ", ".join(candidate.company_industries) or "unknown"
    return "\n".join(
        [
            f"Company: {candidate.company_name}",
            f"Job posting: {candidate.job_posting_title or 'none'}",
            f"Website: {candidate.company_website or 'unknown'}",
            f"Company location: {candidate.company_location or 'unknown'}",
            f"Job location: {candidate.job_posting_location or candidate.company_location or 'unknown'}",
            f"Platform/region: {candidate.platform_name}",
            f"Industries: {industries}",
            f"Contact title: {candidate.title or 'unknown'}",
        ]
    )


class MistralClient:
    def __init__(
        self,
        config: MistralConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_env(cls) -> Optional["MistralClient"]:
        config = MistralConfig.from_env()
        if config is None:
            return None
        return cls(config)

    def _complete(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        url = f"{self._config.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self._config.api_key}", "Content-Type": "application/json"}
        last_error: Optional[str] = None

        for attempt in range(MAX_ATTEMPTS):
            try:
                response = self._session.post(url, json=payload, headers=headers, timeout=REQUEST_TIMEOUT_SECONDS)
            except requests.RequestException as e:
                last_error = str(e)
            else:
                if response.status_code == 429 or 500 <= response.status_code < 600:
                    last_error = f"HTTP {response.status_code}"
                elif response.status_code >= 400:
                    raise PersonalizationError(f"Mistral API error: HTTP {response.status_code}")
                else:
                    return response.json()

            if attempt == MAX_ATTEMPTS - 1:
                break
            delay = BASE_DELAY_SECONDS * (2 ** attempt)
            logger.info("Mistral retry %d/%d in %.1fs (%s)", attempt + 1, MAX_ATTEMPTS, delay, last_error)
            self._sleep(delay)

        raise PersonalizationError(f"Mistral API unavailable after {MAX_ATTEMPTS} attempts: {last_error}")

    def generate_personalization(self, candidate: CandidateContact) -> Personalization:
        """
        Generate personalization for one candidate.

        Raises:
            PersonalizationError: the API failed or answered without usable JSON
        """

        started = time.monotonic()
        body = self._complete(
            {
                "model": self._config.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": _user_prompt(candidate)},
                ],
                "response_format": {"type": "json_object"},
                "max_tokens": 1000,
                "temperature": 0.7,
            }
        )

        try:
            content = body["choices"][0]["message"]["content"]
            fields = json.loads(content)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise PersonalizationError(f"Mistral returned no usable content: {e}") from e
        if not isinstance(fields, dict):
            raise PersonalizationError("Mistral returned a non-object JSON payload")

        fields.setdefault("category", "overig")
        fields.setdefault("sector", "overig")
        if not fields.get("region"):
            fields["region"] = candidate.platform_name

        return Personalization(
            personalization=str(fields.get("personalization") or ""),
            normalized_company=str(fields.get("normalized_company") or candidate.company_name),
            fields=fields,
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )


__all__ = ["PersonalizationError", "MistralClient"]
