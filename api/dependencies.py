"""
Service providers for the API.

Routers receive their collaborators through these functions so tests can
swap them with `app.dependency_overrides`.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional

from fastapi import Depends

from clients.config import AppConfig
from repositories import assignment_log_repository, settings_repository
from services.batch_ledger import BatchLedger
from services.candidate_selector import CandidateSelector
from services.orchestrator import AssignmentOrchestrator

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    return AppConfig.from_env()


def verify_supabase_session(token: str) -> Optional[str]:
    """Email of the user owning a Supabase access token, or None."""

    from repositories.client import get_supabase

    try:
        response = get_supabase().auth.get_user(token)
    except Exception as e:
        logger.info("Session verification failed: %s", e)
        return None
    user = getattr(response, "user", None)
    if user is None:
        return None
    return getattr(user, "email", None) or getattr(user, "id", None)


def get_session_verifier():
    return verify_supabase_session


def get_settings_store() -> Any:
    return settings_repository


def get_log_store() -> Any:
    return assignment_log_repository


def get_ledger() -> BatchLedger:
    return BatchLedger()


def get_selector() -> CandidateSelector:
    return CandidateSelector()


def get_orchestrator(
    selector: CandidateSelector = Depends(get_selector),
    ledger: BatchLedger = Depends(get_ledger),
    log_store: Any = Depends(get_log_store),
) -> AssignmentOrchestrator:
    return AssignmentOrchestrator(selector=selector, ledger=ledger, log_store=log_store)


__all__ = [
    "get_app_config",
    "verify_supabase_session",
    "get_session_verifier",
    "get_settings_store",
    "get_log_store",
    "get_ledger",
    "get_selector",
    "get_orchestrator",
]
