"""
Supabase client initialization.

This module contains *only* the database connection setup. The client is
created on first use through `get_supabase()` so that importing a repository
module never requires credentials (dry runs and tests use the in-memory
store instead).

Environment variables required:
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use the service-role key on the backend)
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# The dependency is `supabase` (supabase-py).
from supabase import Client, create_client  # type: ignore[import-not-found]

# Load environment variables from the .env file at the project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Return the shared Supabase client, creating it on first call."""

    supabase_url: str | None = os.getenv("SUPABASE_URL")
    supabase_key: str | None = os.getenv("SUPABASE_KEY")

    if not supabase_url:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_URL. "
            "Set SUPABASE_URL to your Supabase project URL."
        )

    if not supabase_key:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_KEY. "
            "Set SUPABASE_KEY to your Supabase API key."
        )

    return create_client(supabase_url, supabase_key)


def check_response(response: Any, action: str) -> list[dict[str, Any]]:
    """
    Raise if a Supabase response carries an error, otherwise return its rows.
    """

    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")
    data = getattr(response, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


__all__ = ["get_supabase", "check_response"]
