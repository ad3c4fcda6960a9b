"""
Per-platform dispatch for parallel orchestration.

Each platform gets one HTTP POST to the worker route. The call only has to
be accepted: the worker keeps running after the 10 s timeout fires, so a
read timeout counts as Sent. Only a failure to reach the worker at all
(connection refused, DNS, connect timeout) is NotSent.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import requests

from clients.config import AppConfig
from domain.candidate import PlatformGroup
from domain.dispatch import DispatchOutcome, NotSent, PlatformDispatch, Sent

logger = logging.getLogger(__name__)

DISPATCH_TIMEOUT_SECONDS = 10.0
MAX_CONCURRENT_DISPATCHES = 16


class PlatformDispatcher:
    def __init__(
        self,
        worker_url: str,
        secret: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DISPATCH_TIMEOUT_SECONDS,
        max_workers: int = MAX_CONCURRENT_DISPATCHES,
    ) -> None:
        self._worker_url = worker_url
        self._secret = secret
        self._session = session or requests.Session()
        self._timeout = timeout
        self._max_workers = max_workers

    @classmethod
    def from_env(cls) -> "PlatformDispatcher":
        config = AppConfig.from_env()
        return cls(config.worker_url, secret=config.cron_secret)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._secret:
            headers["x-api-key"] = self._secret
        return headers

    def send(self, payload: dict) -> DispatchOutcome:
        try:
            response = self._session.post(
                self._worker_url,
                json=payload,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except requests.exceptions.ConnectTimeout as e:
            # ConnectTimeout is also a Timeout: the request never left
            return NotSent(reason=f"Connection timed out: {e}")
        except requests.exceptions.Timeout:
            return Sent(timed_out=True)
        except requests.exceptions.RequestException as e:
            return NotSent(reason=str(e) or e.__class__.__name__)
        return Sent(http_status=response.status_code)

    def dispatch(
        self,
        group: PlatformGroup,
        orchestration_id: str,
        dry_run: bool,
        delay_ms: int,
    ) -> PlatformDispatch:
        """
        Trigger the worker for one platform.

        maxPerPlatform carries the platform's share of the orchestration's
        selection, so the sibling workers together stay within max_total.
        """

        payload = {
            "platformId": group.platform_id,
            "orchestrationId": orchestration_id,
            "dryRun": dry_run,
            "maxPerPlatform": group.candidate_count,
            "delayBetweenContactsMs": delay_ms,
        }
        outcome = self.send(payload)
        if isinstance(outcome, NotSent):
            logger.warning("Dispatch to %s (%s) failed: %s", group.platform_name, group.platform_id, outcome.reason)
        else:
            logger.info(
                "Dispatched %s (%s): %s",
                group.platform_name,
                group.platform_id,
                "timed out after send" if outcome.timed_out else f"HTTP {outcome.http_status}",
            )
        return PlatformDispatch(
            platform_id=group.platform_id,
            platform_name=group.platform_name,
            candidate_count=group.candidate_count,
            outcome=outcome,
        )

    def dispatch_all(
        self,
        groups: Sequence[PlatformGroup],
        orchestration_id: str,
        dry_run: bool,
        delay_ms: int,
    ) -> List[PlatformDispatch]:
        """Dispatch every platform concurrently; results keep the group order."""

        if not groups:
            return []
        with ThreadPoolExecutor(max_workers=min(len(groups), self._max_workers)) as executor:
            return list(
                executor.map(
                    lambda group: self.dispatch(group, orchestration_id, dry_run, delay_ms),
                    groups,
                )
            )


__all__ = ["DISPATCH_TIMEOUT_SECONDS", "PlatformDispatcher"]
