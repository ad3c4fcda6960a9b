"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
Trigger endpoints (run, orchestrate) speak camelCase for the scheduler;
settings, logs and batches mirror their table columns.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Run / Orchestrate Models
# ============================================================================

class RunRequest(BaseModel):
    """Overrides for one assignment run. Every field is optional."""
    max_total: Optional[int] = Field(None, alias="maxTotal")
    max_per_platform: Optional[int] = Field(None, alias="maxPerPlatform")
    delay_between_contacts_ms: Optional[int] = Field(None, alias="delayBetweenContactsMs")
    dry_run: bool = Field(False, alias="dryRun")
    chunk_size: Optional[int] = Field(None, alias="chunkSize")
    resume_batch_id: Optional[str] = Field(None, alias="resumeBatchId")
    platform_id: Optional[str] = Field(None, alias="platformId")
    orchestration_id: Optional[str] = Field(None, alias="orchestrationId")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "maxTotal": 200,
                "maxPerPlatform": 20,
                "delayBetweenContactsMs": 500,
                "dryRun": False,
                "chunkSize": 25
            }
        }


class RunResponse(BaseModel):
    success: bool
    skipped: Optional[bool] = None
    message: str
    batch_id: Optional[str] = Field(None, alias="batchId")
    status: Optional[str] = None
    is_resume: bool = Field(False, alias="isResume")
    dry_run: bool = Field(False, alias="dryRun")
    stats: Dict[str, int] = Field(default_factory=dict)
    platform_stats: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="platformStats")
    has_more_to_process: bool = Field(False, alias="hasMoreToProcess")
    lead_limit_reached: bool = Field(False, alias="leadLimitReached")
    duration: str

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Processed 25/120. More contacts remaining.",
                "batchId": "batch_20250101_060000_k3j9x2",
                "status": "processing",
                "isResume": False,
                "dryRun": False,
                "stats": {
                    "total_candidates": 120,
                    "processed": 25,
                    "added": 20,
                    "skipped": 4,
                    "skipped_klant": 1,
                    "skipped_ai_error": 0,
                    "skipped_duplicate": 3,
                    "errors": 1
                },
                "platformStats": {},
                "hasMoreToProcess": True,
                "leadLimitReached": False,
                "duration": "61234ms"
            }
        }


class OrchestrateRequest(BaseModel):
    dry_run: bool = Field(False, alias="dryRun")

    class Config:
        populate_by_name = True


class PlatformDispatchResponse(BaseModel):
    platform_id: str = Field(..., alias="platformId")
    platform_name: str = Field(..., alias="platformName")
    candidate_count: int = Field(..., alias="candidateCount")
    status: str  # "triggered" or "trigger_failed"
    http_status: Optional[int] = Field(None, alias="httpStatus")
    error: Optional[str] = None

    class Config:
        populate_by_name = True


class OrchestrateResponse(BaseModel):
    success: bool
    skipped: Optional[bool] = None
    message: str
    orchestration_id: Optional[str] = Field(None, alias="orchestrationId")
    dry_run: bool = Field(False, alias="dryRun")
    total_candidates: int = Field(0, alias="totalCandidates")
    platforms: List[PlatformDispatchResponse] = Field(default_factory=list)
    duration: str

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Triggered 2 of 3 platform workers",
                "orchestrationId": "orch_20250101060000_a1b2c3",
                "dryRun": False,
                "totalCandidates": 75,
                "platforms": [
                    {"platformId": "p1", "platformName": "GroningseBanen", "candidateCount": 30,
                     "status": "triggered", "httpStatus": 200},
                    {"platformId": "p2", "platformName": "UtrechtseBanen", "candidateCount": 30,
                     "status": "triggered"},
                    {"platformId": "p3", "platformName": "ZwolseBanen", "candidateCount": 15,
                     "status": "trigger_failed", "error": "Connection refused"}
                ],
                "duration": "10042ms"
            }
        }


# ============================================================================
# Settings Models
# ============================================================================

class SettingsModel(BaseModel):
    id: str
    max_total_contacts: int
    max_per_platform: int
    delay_between_contacts_ms: int
    is_enabled: bool
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class SettingsResponse(BaseModel):
    success: bool = True
    settings: SettingsModel

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "settings": {
                    "id": "default",
                    "max_total_contacts": 500,
                    "max_per_platform": 30,
                    "delay_between_contacts_ms": 500,
                    "is_enabled": True,
                    "updated_at": None,
                    "updated_by": None
                }
            }
        }


class SettingsUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their stored value."""
    max_total_contacts: Optional[int] = None
    max_per_platform: Optional[int] = None
    delay_between_contacts_ms: Optional[int] = None
    is_enabled: Optional[bool] = None

    class Config:
        json_schema_extra = {
            "example": {
                "max_total_contacts": 300,
                "is_enabled": True
            }
        }


# ============================================================================
# Log / Batch Models
# ============================================================================

class LogEntryResponse(BaseModel):
    batch_id: str
    contact_id: str
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    company_id: Optional[str] = None
    company_name: Optional[str] = None
    platform_id: str
    platform_name: Optional[str] = None
    instantly_campaign_id: Optional[str] = None
    status: str
    skip_reason: Optional[str] = None
    error_message: Optional[str] = None
    instantly_lead_id: Optional[str] = None
    pipedrive_org_id: Optional[int] = None
    pipedrive_is_klant: bool = False
    ai_processing_time_ms: Optional[int] = None
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(..., alias="totalPages")

    class Config:
        populate_by_name = True


class LogsResponse(BaseModel):
    success: bool = True
    data: List[LogEntryResponse]
    pagination: Pagination


class BatchResponse(BaseModel):
    batch_id: str
    orchestration_id: Optional[str] = None
    platform_id: Optional[str] = None
    status: str
    total_candidates: int
    processed: int
    added: int
    skipped: int
    skipped_klant: int
    skipped_ai_error: int
    skipped_duplicate: int
    errors: int
    platform_stats: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    max_total: Optional[int] = None
    max_per_platform: Optional[int] = None
    dry_run: bool = False
    lead_limit_reached: bool = False
    last_error: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class BatchActionResponse(BaseModel):
    success: bool = True
    message: str
    batch: BatchResponse


class BatchListResponse(BaseModel):
    success: bool = True
    batches: List[BatchResponse]


# ============================================================================
# Preview / Stats Models
# ============================================================================

class PlatformPreview(BaseModel):
    platform_id: str
    platform_name: str
    candidate_count: int


class CandidatePreview(BaseModel):
    contact_id: str
    email: str
    name: Optional[str] = None
    company_name: str
    platform_id: str
    platform_name: str
    created_at: datetime


class PreviewResponse(BaseModel):
    success: bool = True
    total_candidates: int
    platforms: List[PlatformPreview]
    sample: List[CandidatePreview]


class StatsResponse(BaseModel):
    success: bool = True
    period: Dict[str, datetime]
    stats: Dict[str, int]
    platform_stats: Dict[str, Dict[str, int]] = Field(..., alias="platformStats")
    recent_batches: List[BatchResponse] = Field(..., alias="recentBatches")
    daily_trend: Dict[str, Dict[str, int]] = Field(..., alias="dailyTrend")

    class Config:
        populate_by_name = True
