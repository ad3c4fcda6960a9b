"""
Settings service for campaign assignment runs.

Handles:
- Loading the stored settings row, falling back to defaults
- Validated updates of the settings row
- Merging per-request overrides into a frozen RunConfig
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from domain.settings import (
    CHUNK_SIZE_RANGE,
    DEFAULT_CHUNK_SIZE,
    DELAY_MS_RANGE,
    MAX_PER_PLATFORM_RANGE,
    MAX_TOTAL_RANGE,
    AssignmentSettings,
    require_int_in_range,
)
from repositories import settings_repository
from services.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunConfig:
    """
    Effective configuration of one run.

    max_total: Global quota
    max_per_platform: Per-platform quota
    delay_ms: Pause between two contacts
    chunk_size: Contacts processed per worker invocation
    """
    max_total: int
    max_per_platform: int
    delay_ms: int
    chunk_size: int = DEFAULT_CHUNK_SIZE

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0


def load_settings(store: Any = settings_repository) -> AssignmentSettings:
    """
    Read the settings row.

    A missing or unreadable row yields the defaults (500 / 30 / 500 ms,
    enabled); the run is never blocked on settings.
    """

    try:
        settings = store.get_settings()
    except Exception as e:
        logger.warning("Could not read campaign assignment settings, using defaults: %s", e)
        return AssignmentSettings.defaults()

    if settings is None:
        logger.info("No campaign assignment settings stored, using defaults")
        return AssignmentSettings.defaults()
    return settings


def update_settings(
    changes: Mapping[str, Any],
    updated_by: Optional[str] = None,
    store: Any = settings_repository,
) -> AssignmentSettings:
    """
    Validate and persist a partial settings update.

    Updates the existing row, or inserts defaults merged with `changes` when
    no row exists yet.

    Raises:
        ConfigurationError: a field is unknown or outside its range
    """

    current = store.get_settings() or AssignmentSettings.defaults()
    try:
        updated = current.with_changes({key: value for key, value in changes.items() if value is not None})
    except (TypeError, ValueError) as e:
        raise ConfigurationError(str(e)) from e

    saved = store.save_settings(updated, updated_by=updated_by)
    logger.info(
        "Campaign assignment settings updated: max_total=%d max_per_platform=%d delay_ms=%d enabled=%s",
        saved.max_total_contacts,
        saved.max_per_platform,
        saved.delay_between_contacts_ms,
        saved.is_enabled,
    )
    return saved


def resolve_run_config(
    settings: AssignmentSettings,
    max_total: Optional[int] = None,
    max_per_platform: Optional[int] = None,
    delay_ms: Optional[int] = None,
    chunk_size: Optional[int] = None,
) -> RunConfig:
    """
    Merge request overrides into the loaded settings.

    Raises:
        ConfigurationError: an override is outside its range
    """

    try:
        return RunConfig(
            max_total=require_int_in_range(
                "max_total_contacts",
                settings.max_total_contacts if max_total is None else max_total,
                MAX_TOTAL_RANGE,
            ),
            max_per_platform=require_int_in_range(
                "max_per_platform",
                settings.max_per_platform if max_per_platform is None else max_per_platform,
                MAX_PER_PLATFORM_RANGE,
            ),
            delay_ms=require_int_in_range(
                "delay_between_contacts_ms",
                settings.delay_between_contacts_ms if delay_ms is None else delay_ms,
                DELAY_MS_RANGE,
            ),
            chunk_size=require_int_in_range(
                "chunk_size",
                DEFAULT_CHUNK_SIZE if chunk_size is None else chunk_size,
                CHUNK_SIZE_RANGE,
            ),
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


__all__ = ["RunConfig", "load_settings", "update_settings", "resolve_run_config"]
