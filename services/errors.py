"""
Service-level exceptions for campaign assignment.

Routers map these to HTTP status codes; anything else is an unexpected
failure and becomes a 500.
"""


class CampaignAssignmentError(Exception):
    """Base class for campaign assignment failures."""


class ConfigurationError(CampaignAssignmentError):
    """Settings or run overrides outside their allowed ranges."""


class SelectionError(CampaignAssignmentError):
    """Candidates could not be read; no batch is created."""


class BatchNotFoundError(CampaignAssignmentError):
    def __init__(self, batch_id: str):
        super().__init__(f"Batch {batch_id} not found")
        self.batch_id = batch_id


class InvalidBatchTransitionError(CampaignAssignmentError):
    def __init__(self, batch_id: str, current: str, target: str):
        super().__init__(f"Batch {batch_id} cannot move from {current} to {target}")
        self.batch_id = batch_id
        self.current = current
        self.target = target


__all__ = [
    "CampaignAssignmentError",
    "ConfigurationError",
    "SelectionError",
    "BatchNotFoundError",
    "InvalidBatchTransitionError",
]
