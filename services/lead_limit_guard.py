"""
Lead-limit guard.

    normal -> limit_reached

The campaign system has a workspace-wide ceiling on leads. Once it reports
that ceiling, the guard stays tripped for the rest of the batch; the next
run starts with a fresh guard and re-checks the live limit.
"""

from __future__ import annotations

import logging
from enum import Enum

from domain.campaign import CampaignResponse

logger = logging.getLogger(__name__)

LEAD_LIMIT_MESSAGE = "lead limit reached"


class LeadLimitState(str, Enum):
    NORMAL = "normal"
    LIMIT_REACHED = "limit_reached"


class LeadLimitGuard:
    def __init__(self, batch_id: str, tripped: bool = False) -> None:
        self.batch_id = batch_id
        self.state = LeadLimitState.LIMIT_REACHED if tripped else LeadLimitState.NORMAL

    @property
    def tripped(self) -> bool:
        return self.state == LeadLimitState.LIMIT_REACHED

    def observe(self, response: CampaignResponse) -> bool:
        """Trip on an explicit lead-limit signal. Returns True when tripped."""

        if response.lead_limit_reached and not self.tripped:
            self.state = LeadLimitState.LIMIT_REACHED
            logger.warning("Lead limit reached during batch %s; stopping dispatch", self.batch_id)
        return self.tripped


__all__ = ["LEAD_LIMIT_MESSAGE", "LeadLimitState", "LeadLimitGuard"]
