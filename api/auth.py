"""
Authorization for triggering and mutating assignment endpoints.

Two ways in:
- the shared scheduler secret (CRON_SECRET), sent as `Authorization: Bearer
  <secret>`, `x-api-key: <secret>` or `x-api-secret: <secret>`
- a Supabase session access token (`Authorization: Bearer <jwt>`) for
  manual triggers from the dashboard

With no secret configured and no verifiable session, requests are rejected.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request

from api.dependencies import get_app_config, get_session_verifier
from clients.config import AppConfig

logger = logging.getLogger(__name__)

SessionVerifier = Callable[[str], Optional[str]]


@dataclass(frozen=True, slots=True)
class Caller:
    """Who triggered the request: the scheduler, or a signed-in user."""
    kind: str  # "cron" | "session"
    identity: Optional[str] = None


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        return token or None
    return None


def require_caller(
    request: Request,
    config: AppConfig = Depends(get_app_config),
    verify_session: SessionVerifier = Depends(get_session_verifier),
) -> Caller:
    bearer = _bearer_token(request)
    presented = [
        token
        for token in (bearer, request.headers.get("x-api-key"), request.headers.get("x-api-secret"))
        if token
    ]

    if config.cron_secret:
        for token in presented:
            if hmac.compare_digest(token, config.cron_secret):
                return Caller(kind="cron")

    if bearer:
        email = verify_session(bearer)
        if email:
            return Caller(kind="session", identity=email)

    if not config.cron_secret:
        logger.warning("CRON_SECRET is not configured; only session-authenticated requests are accepted")
    raise HTTPException(status_code=401, detail="Unauthorized")


__all__ = ["Caller", "require_caller"]
