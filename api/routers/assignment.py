"""
Campaign Assignment API Endpoints.

Endpoints for triggering assignment runs, orchestrating per-platform workers,
managing the settings row and batches, and reading the audit log.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.auth import Caller, require_caller
from api.dependencies import (
    get_ledger,
    get_log_store,
    get_orchestrator,
    get_selector,
    get_settings_store,
)
from api.models import (
    BatchActionResponse,
    BatchListResponse,
    BatchResponse,
    CandidatePreview,
    LogEntryResponse,
    LogsResponse,
    OrchestrateRequest,
    OrchestrateResponse,
    Pagination,
    PlatformDispatchResponse,
    PlatformPreview,
    PreviewResponse,
    RunRequest,
    RunResponse,
    SettingsResponse,
    SettingsUpdateRequest,
    StatsResponse,
)
from domain.assignment import AssignmentBatch, AssignmentLogEntry, AssignmentOutcome, OutcomeCounts
from repositories.assignment_log_repository import LogQueryFilters
from services.batch_ledger import BatchLedger
from services.candidate_selector import CandidateSelector
from services.errors import BatchNotFoundError, ConfigurationError, InvalidBatchTransitionError
from services.orchestrator import AssignmentOrchestrator, RunOptions, RunResult
from services.settings_service import load_settings, resolve_run_config, update_settings
from services.stats_service import collect_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assignment")

MAX_LOG_PAGE_SIZE = 100


def _duration(started: float) -> str:
    return f"{int((time.monotonic() - started) * 1000)}ms"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _service_error(e: Exception, action: str) -> HTTPException:
    """Translate a service exception into the matching HTTP error."""

    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, BatchNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidBatchTransitionError):
        return HTTPException(status_code=409, detail=str(e))

    logger.exception("Failed to %s", action)
    return HTTPException(
        status_code=500,
        detail={
            "success": False,
            "error": "Internal server error",
            "message": f"Failed to {action}: {str(e)}",
        },
    )


def _batch_response(batch: AssignmentBatch) -> BatchResponse:
    return BatchResponse(
        batch_id=batch.batch_id,
        orchestration_id=batch.orchestration_id,
        platform_id=batch.platform_id,
        status=batch.status.value,
        total_candidates=batch.total_candidates,
        processed=batch.processed,
        added=batch.counts.added,
        skipped=batch.counts.skipped,
        skipped_klant=batch.counts.skipped_klant,
        skipped_ai_error=batch.counts.skipped_ai_error,
        skipped_duplicate=batch.counts.skipped_duplicate,
        errors=batch.counts.errors,
        platform_stats=batch.platform_stats_dict(),
        max_total=batch.max_total,
        max_per_platform=batch.max_per_platform,
        dry_run=batch.dry_run,
        lead_limit_reached=batch.lead_limit_reached,
        last_error=batch.last_error,
        started_at=batch.started_at,
        completed_at=batch.completed_at,
    )


def _log_entry_response(entry: AssignmentLogEntry) -> LogEntryResponse:
    return LogEntryResponse(
        batch_id=entry.batch_id,
        contact_id=entry.contact_id,
        contact_email=entry.contact_email,
        contact_name=entry.contact_name,
        company_id=entry.company_id,
        company_name=entry.company_name,
        platform_id=entry.platform_id,
        platform_name=entry.platform_name,
        instantly_campaign_id=entry.campaign_id,
        status=entry.outcome.value,
        skip_reason=entry.message if entry.outcome.is_skip else None,
        error_message=entry.message if entry.outcome == AssignmentOutcome.ERROR else None,
        instantly_lead_id=entry.instantly_lead_id,
        pipedrive_org_id=entry.pipedrive_org_id,
        pipedrive_is_klant=entry.pipedrive_is_klant,
        ai_processing_time_ms=entry.ai_processing_time_ms,
        created_at=entry.created_at,
    )


def _run_response(result: RunResult, started: float) -> RunResponse:
    return RunResponse(
        success=True,
        skipped=True if result.skipped else None,
        message=result.message,
        batch_id=result.batch_id,
        status=result.status.value if result.status else None,
        is_resume=result.is_resume,
        dry_run=result.dry_run,
        stats=result.stats,
        platform_stats=result.platform_stats,
        has_more_to_process=result.has_more_to_process,
        lead_limit_reached=result.lead_limit_reached,
        duration=_duration(started),
    )


def _camel_counts(counts: OutcomeCounts) -> Dict[str, int]:
    return {
        "total": counts.total,
        "added": counts.added,
        "skipped": counts.skipped,
        "skippedKlant": counts.skipped_klant,
        "skippedAiError": counts.skipped_ai_error,
        "skippedDuplicate": counts.skipped_duplicate,
        "errors": counts.errors,
    }


def _execute_run(
    request: RunRequest,
    orchestrator: AssignmentOrchestrator,
    settings_store: Any,
) -> RunResponse:
    started = time.monotonic()
    try:
        settings = load_settings(settings_store)
        options = RunOptions(
            max_total=request.max_total,
            max_per_platform=request.max_per_platform,
            delay_ms=request.delay_between_contacts_ms,
            chunk_size=request.chunk_size,
            dry_run=request.dry_run,
            resume_batch_id=request.resume_batch_id,
            platform_id=request.platform_id,
            orchestration_id=request.orchestration_id,
        )
        result = orchestrator.run_daily_assignment(options, settings)
        return _run_response(result, started)
    except Exception as e:
        raise _service_error(e, "run campaign assignment")


# ============================================================================
# Triggers
# ============================================================================

@router.post(
    "/run",
    response_model=RunResponse,
    response_model_by_alias=True,
    summary="Run Campaign Assignment",
    description="Create or resume a batch and process it chunk by chunk until it is complete."
)
def run_assignment(
    request: Optional[RunRequest] = None,
    caller: Caller = Depends(require_caller),
    orchestrator: AssignmentOrchestrator = Depends(get_orchestrator),
    settings_store: Any = Depends(get_settings_store),
):
    """
    Run (or resume) a campaign assignment batch.

    Every body field is optional; missing fields fall back to the stored
    settings. With `resumeBatchId` the given batch is continued, otherwise
    the most recent active global batch is resumed before a new one is
    created. With `platformId` the run is scoped to one platform (this is
    how orchestrated platform workers are invoked).

    **Example request:**
    ```json
    {"maxTotal": 100, "dryRun": true}
    ```
    """
    logger.info("Assignment run triggered by %s%s", caller.kind, f" ({caller.identity})" if caller.identity else "")
    return _execute_run(request or RunRequest(), orchestrator, settings_store)


@router.get(
    "/run",
    response_model=RunResponse,
    response_model_by_alias=True,
    summary="Run Campaign Assignment (scheduler)",
    description="Same as POST /assignment/run with the stored settings; used by the daily scheduler."
)
def run_assignment_from_scheduler(
    caller: Caller = Depends(require_caller),
    orchestrator: AssignmentOrchestrator = Depends(get_orchestrator),
    settings_store: Any = Depends(get_settings_store),
):
    logger.info("Scheduled assignment run triggered by %s", caller.kind)
    return _execute_run(RunRequest(), orchestrator, settings_store)


@router.post(
    "/orchestrate",
    response_model=OrchestrateResponse,
    response_model_by_alias=True,
    summary="Orchestrate Platform Workers",
    description="Select candidates once and trigger one worker run per platform."
)
def orchestrate_assignment(
    request: Optional[OrchestrateRequest] = None,
    caller: Caller = Depends(require_caller),
    orchestrator: AssignmentOrchestrator = Depends(get_orchestrator),
    settings_store: Any = Depends(get_settings_store),
):
    """
    Fan out the assignment to per-platform workers.

    The response returns once every dispatch has been sent (or has failed
    to send); the workers keep running independently. `success` is false
    only when no platform worker could be triggered.
    """
    started = time.monotonic()
    try:
        settings = load_settings(settings_store)
        dry_run = request.dry_run if request else False
        result = orchestrator.orchestrate(settings, dry_run=dry_run)
        return OrchestrateResponse(
            success=result.success,
            skipped=True if result.skipped else None,
            message=result.message,
            orchestration_id=result.orchestration_id,
            dry_run=result.dry_run,
            total_candidates=result.total_candidates,
            platforms=[PlatformDispatchResponse(**dispatch.to_dict()) for dispatch in result.platforms],
            duration=_duration(started),
        )
    except Exception as e:
        raise _service_error(e, "orchestrate campaign assignment")


# ============================================================================
# Settings
# ============================================================================

@router.get(
    "/settings",
    response_model=SettingsResponse,
    summary="Get Assignment Settings"
)
def get_assignment_settings(settings_store: Any = Depends(get_settings_store)):
    try:
        return SettingsResponse(settings=load_settings(settings_store).to_dict())
    except Exception as e:
        raise _service_error(e, "load settings")


@router.put(
    "/settings",
    response_model=SettingsResponse,
    summary="Update Assignment Settings",
    description="Partially update the quota and pacing settings. Values are range-checked."
)
def update_assignment_settings(
    request: SettingsUpdateRequest,
    caller: Caller = Depends(require_caller),
    settings_store: Any = Depends(get_settings_store),
):
    """
    Update the settings row.

    **Ranges:**
    - max_total_contacts: 1 - 5000
    - max_per_platform: 1 - 500
    - delay_between_contacts_ms: 100 - 5000
    """
    try:
        saved = update_settings(
            request.model_dump(exclude_none=True),
            updated_by=caller.identity or caller.kind,
            store=settings_store,
        )
        return SettingsResponse(settings=saved.to_dict())
    except Exception as e:
        raise _service_error(e, "update settings")


# ============================================================================
# Audit log, preview and statistics
# ============================================================================

@router.get(
    "/logs",
    response_model=LogsResponse,
    response_model_by_alias=True,
    summary="Query Assignment Logs",
    description="Paginated audit log of classified contacts, newest first."
)
def get_assignment_logs(
    status: Optional[str] = Query(None, description="Filter by outcome (e.g. 'added', 'skipped_klant')"),
    platform_id: Optional[str] = Query(None, alias="platformId"),
    batch_id: Optional[str] = Query(None, alias="batchId"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    search: Optional[str] = Query(None, description="Matches contact email or company name"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_LOG_PAGE_SIZE),
    log_store: Any = Depends(get_log_store),
):
    try:
        outcome = None
        if status:
            try:
                outcome = AssignmentOutcome(status)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid status: '{status}'")

        filters = LogQueryFilters(
            status=outcome,
            platform_id=platform_id,
            batch_id=batch_id,
            date_from=_as_utc(date_from),
            date_to=_as_utc(date_to),
            search=search.strip() if search else None,
        )
        result = log_store.query_entries(filters, page=page, limit=limit)
        return LogsResponse(
            data=[_log_entry_response(entry) for entry in result.entries],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=result.total,
                total_pages=(result.total + limit - 1) // limit,
            ),
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _service_error(e, "query assignment logs")


@router.get(
    "/preview",
    response_model=PreviewResponse,
    summary="Preview Next Run",
    description="Candidates the next run would pick with the stored settings, per platform."
)
def preview_assignment(
    selector: CandidateSelector = Depends(get_selector),
    settings_store: Any = Depends(get_settings_store),
):
    try:
        config = resolve_run_config(load_settings(settings_store))
        preview = selector.preview(config.max_total, config.max_per_platform)
        return PreviewResponse(
            total_candidates=preview.total_candidates,
            platforms=[
                PlatformPreview(
                    platform_id=group.platform_id,
                    platform_name=group.platform_name,
                    candidate_count=group.candidate_count,
                )
                for group in preview.groups
            ],
            sample=[
                CandidatePreview(
                    contact_id=candidate.contact_id,
                    email=candidate.email,
                    name=candidate.full_name,
                    company_name=candidate.company_name,
                    platform_id=candidate.platform_id,
                    platform_name=candidate.platform_name,
                    created_at=candidate.created_at,
                )
                for candidate in preview.sample
            ],
        )
    except Exception as e:
        raise _service_error(e, "preview campaign assignment")


@router.get(
    "/stats",
    response_model=StatsResponse,
    response_model_by_alias=True,
    summary="Assignment Statistics",
    description="Outcome totals for a period (default: today), per platform, 7-day trend and recent batches."
)
def get_assignment_stats(
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    log_store: Any = Depends(get_log_store),
    ledger: BatchLedger = Depends(get_ledger),
):
    try:
        stats = collect_stats(_as_utc(date_from), _as_utc(date_to), log_store=log_store, ledger=ledger)
        return StatsResponse(
            period={"from": stats.date_from, "to": stats.date_to},
            stats={**_camel_counts(stats.counts), "successRate": stats.success_rate},
            platform_stats={name: _camel_counts(counts) for name, counts in stats.platform_stats.items()},
            recent_batches=[_batch_response(batch) for batch in stats.recent_batches],
            daily_trend={day: _camel_counts(counts) for day, counts in stats.daily_trend.items()},
        )
    except Exception as e:
        raise _service_error(e, "collect assignment statistics")


# ============================================================================
# Batches
# ============================================================================

@router.get(
    "/batches",
    response_model=BatchListResponse,
    summary="List Batches",
    description="Most recent batches, optionally limited to one orchestration."
)
def list_assignment_batches(
    limit: int = Query(10, ge=1, le=100),
    orchestration_id: Optional[str] = Query(None, alias="orchestrationId"),
    ledger: BatchLedger = Depends(get_ledger),
):
    try:
        batches = ledger.list_batches(limit=limit, orchestration_id=orchestration_id)
        return BatchListResponse(batches=[_batch_response(batch) for batch in batches])
    except Exception as e:
        raise _service_error(e, "list batches")


@router.get(
    "/batches/{batch_id}",
    response_model=BatchResponse,
    summary="Get Batch"
)
def get_assignment_batch(batch_id: str, ledger: BatchLedger = Depends(get_ledger)):
    try:
        return _batch_response(ledger.require_batch(batch_id))
    except Exception as e:
        raise _service_error(e, "load batch")


@router.post(
    "/batches/{batch_id}/pause",
    response_model=BatchActionResponse,
    summary="Pause Batch",
    description="Pause a processing batch. The running chunk stops before its next contact."
)
def pause_assignment_batch(
    batch_id: str,
    caller: Caller = Depends(require_caller),
    ledger: BatchLedger = Depends(get_ledger),
):
    try:
        batch = ledger.pause_batch(batch_id)
        logger.info("Batch %s paused by %s", batch_id, caller.identity or caller.kind)
        return BatchActionResponse(message=f"Batch {batch_id} paused", batch=_batch_response(batch))
    except Exception as e:
        raise _service_error(e, "pause batch")


@router.post(
    "/batches/{batch_id}/resume",
    response_model=BatchActionResponse,
    summary="Resume Batch",
    description="Move a paused batch back to processing. The next run trigger continues it."
)
def resume_assignment_batch(
    batch_id: str,
    caller: Caller = Depends(require_caller),
    ledger: BatchLedger = Depends(get_ledger),
):
    try:
        batch = ledger.resume_batch(batch_id)
        logger.info("Batch %s resumed by %s", batch_id, caller.identity or caller.kind)
        return BatchActionResponse(message=f"Batch {batch_id} resumed", batch=_batch_response(batch))
    except Exception as e:
        raise _service_error(e, "resume batch")


@router.post(
    "/batches/{batch_id}/cancel",
    response_model=BatchActionResponse,
    summary="Cancel Batch"
)
def cancel_assignment_batch(
    batch_id: str,
    caller: Caller = Depends(require_caller),
    ledger: BatchLedger = Depends(get_ledger),
):
    try:
        batch = ledger.cancel_batch(batch_id)
        logger.info("Batch %s cancelled by %s", batch_id, caller.identity or caller.kind)
        return BatchActionResponse(message=f"Batch {batch_id} cancelled", batch=_batch_response(batch))
    except Exception as e:
        raise _service_error(e, "cancel batch")


@router.post(
    "/cancel",
    response_model=BatchActionResponse,
    summary="Cancel Active Batch",
    description="Cancel the most recent pending or processing global batch."
)
def cancel_active_assignment(
    caller: Caller = Depends(require_caller),
    ledger: BatchLedger = Depends(get_ledger),
):
    try:
        batch = ledger.cancel_active_batch()
        if batch is None:
            raise HTTPException(status_code=404, detail="No active batch found to cancel")
        logger.info("Active batch %s cancelled by %s", batch.batch_id, caller.identity or caller.kind)
        return BatchActionResponse(message=f"Batch {batch.batch_id} cancelled", batch=_batch_response(batch))
    except HTTPException:
        raise
    except Exception as e:
        raise _service_error(e, "cancel active batch")
