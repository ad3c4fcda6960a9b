"""
Domain: outcome of handing one platform's work to a worker invocation.

Dispatch is fire-and-forget: the dispatcher waits only until the request has
been accepted, not until the worker finishes. The two outcomes are kept as
distinct types so a client-side timeout (request sent, worker still running)
is never confused with a failure to send.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True, slots=True)
class Sent:
    """The request reached the worker; it continues independently."""

    http_status: Optional[int] = None
    timed_out: bool = False


@dataclass(frozen=True, slots=True)
class NotSent:
    """The worker could not be reached at all."""

    reason: str


DispatchOutcome = Union[Sent, NotSent]


@dataclass(frozen=True, slots=True)
class PlatformDispatch:
    """Per-platform line of an orchestration report."""

    platform_id: str
    platform_name: str
    candidate_count: int
    outcome: DispatchOutcome

    @property
    def status(self) -> str:
        return "triggered" if isinstance(self.outcome, Sent) else "trigger_failed"

    def to_dict(self) -> dict:
        data: dict = {
            "platformId": self.platform_id,
            "platformName": self.platform_name,
            "candidateCount": self.candidate_count,
            "status": self.status,
        }
        if isinstance(self.outcome, Sent):
            if self.outcome.http_status is not None:
                data["httpStatus"] = self.outcome.http_status
        else:
            data["error"] = self.outcome.reason
        return data
