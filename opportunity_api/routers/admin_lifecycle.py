# opportunity_api/routers/admin_lifecycle.py
"""
Admin endpoints for policies and the opportunity lifecycle.

GET  /v1/admin/policy/cleanup                  - Cleanup policy document
PUT  /v1/admin/policy/cleanup                  - Update cleanup policy
GET  /v1/admin/policy/access                   - Access policy document
PUT  /v1/admin/policy/access                   - Update access policy
GET  /v1/admin/lifecycle/stats                 - Expired / expiring-soon counts
POST /v1/admin/lifecycle/cleanup/run           - Run a cleanup sweep
GET  /v1/admin/lifecycle/cleanup/runs          - Recent cleanup run summaries
GET  /v1/admin/lifecycle/bulk-delete/preview   - What a category bulk delete would remove
POST /v1/admin/lifecycle/bulk-delete/execute   - Delete a whole category (guarded)
"""

import logging
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from opportunity_api.auth import require_admin_key
from opportunity_api.constants import CleanupRunLimits
from opportunity_api.database import get_db
from opportunity_api.errors import LifecycleError
from opportunity_api.routers.http_errors import to_http_exception
from opportunity_api.schemas.policy import AccessPolicyResponse, CleanupPolicyResponse
from opportunity_api.services.lifecycle import (
    execute_bulk_delete,
    fetch_preview,
    get_expiration_stats,
    list_cleanup_runs,
    run_cleanup,
)
from opportunity_api.services.policy_store import PolicyStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin-lifecycle"])


# -----------------------------------------------------------------------------
# Request / Response Models
# -----------------------------------------------------------------------------


class PolicyUpdateRequest(BaseModel):
    """Change a policy document."""

    config: dict[str, Any] = Field(..., description="Fields to change (or the whole document with replace=true)")
    replace: bool = Field(False, description="Replace the document instead of merging the given fields")
    expected_version: int | None = Field(None, ge=0, description="Reject the save if the stored version differs")
    updated_by: str | None = Field("admin", max_length=64)


class CategoryStatsResponse(BaseModel):
    total: int
    expired: int
    expiring_in_7_days: int
    expiring_in_30_days: int


class ExpirationStatsResponse(BaseModel):
    """Catalog position against the cleanup policy."""

    expired_count: int
    expiring_in_7_days: int
    expiring_in_30_days: int
    no_deadline_count: int
    never_expire_count: int
    misconfigured: int
    total: int
    by_category: dict[str, CategoryStatsResponse]
    generated_at: datetime | None = None


class CleanupRunRequest(BaseModel):
    """Request to run a cleanup sweep."""

    dry_run: bool = Field(False, description="Count what would be deleted without deleting")
    confirm: bool = Field(False, description="Required confirmation for non-dry-run")
    timeout_seconds: float | None = Field(None, gt=0, le=3600)


class CleanupRunResponse(BaseModel):
    """Cleanup sweep result."""

    run_id: str | None
    success: bool
    dry_run: bool
    timed_out: bool
    scanned_count: int
    deleted_count: int
    deleted_by_category: dict[str, int]
    skipped_never_expire: int
    errors: list[str]
    started_at: datetime
    finished_at: datetime


class CleanupRunSummary(BaseModel):
    """Persisted cleanup run."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    started_at: datetime
    finished_at: datetime
    initiated_by: str
    scanned_count: int
    deleted_count: int
    deleted_by_category: dict[str, int]
    skipped_never_expire: int
    errors: list[str]
    timed_out: bool


class AffectedSourceResponse(BaseModel):
    id: str
    name: str
    total_processed: int
    total_published: int
    error_count: int
    last_fetched: datetime | None = None


class BulkDeletePreviewResponse(BaseModel):
    """What a category bulk delete would remove right now."""

    category: str
    opportunity_count: int
    affected_source_count: int
    affected_sources: list[AffectedSourceResponse]
    history_entry_count: int
    duplicate_tracking_count: int
    favorites_count: int
    generated_at: datetime


class BulkDeleteRequest(BaseModel):
    """Both guards must hold or nothing is deleted."""

    category: str
    typed_confirmation: str = Field(..., description="Must equal the category identifier exactly")
    acknowledged: bool = Field(False, description="Operator understands the deletion cannot be undone")


class BulkDeleteResponse(BaseModel):
    """Bulk delete result."""

    success: bool
    category: str
    deleted_opportunities: int
    deleted_history_entries: int
    deleted_duplicate_tracking_entries: int
    deleted_favorites: int
    reset_source_count: int
    reset_source_names: list[str]
    completed_steps: list[str]
    errors: list[str]
    timed_out: bool
    preview: BulkDeletePreviewResponse | None = Field(None, description="Counts re-derived just before deleting")


# -----------------------------------------------------------------------------
# Policy endpoints
# -----------------------------------------------------------------------------


@router.get("/policy/cleanup", response_model=CleanupPolicyResponse)
def get_cleanup_policy(
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> CleanupPolicyResponse:
    """Get the cleanup policy. Version 0 means the built-in defaults are in effect."""
    try:
        return PolicyStore(db).get_cleanup_policy()
    except LifecycleError as e:
        raise to_http_exception(e) from e


@router.put("/policy/cleanup", response_model=CleanupPolicyResponse)
def update_cleanup_policy(
    request: PolicyUpdateRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> CleanupPolicyResponse:
    """
    Update the cleanup policy.

    Invalid values are rejected with 400 naming the offending field; they
    are never clamped.
    """
    store = PolicyStore(db)
    save = store.save_cleanup_config if request.replace else store.update_cleanup_config
    try:
        return save(request.config, updated_by=request.updated_by, expected_version=request.expected_version)
    except LifecycleError as e:
        raise to_http_exception(e) from e


@router.get("/policy/access", response_model=AccessPolicyResponse)
def get_access_policy(
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> AccessPolicyResponse:
    """Get the membership access policy."""
    try:
        return PolicyStore(db).get_access_policy()
    except LifecycleError as e:
        raise to_http_exception(e) from e


@router.put("/policy/access", response_model=AccessPolicyResponse)
def update_access_policy(
    request: PolicyUpdateRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> AccessPolicyResponse:
    """Update the membership access policy."""
    store = PolicyStore(db)
    save = store.save_access_config if request.replace else store.update_access_config
    try:
        return save(request.config, updated_by=request.updated_by, expected_version=request.expected_version)
    except LifecycleError as e:
        raise to_http_exception(e) from e


# -----------------------------------------------------------------------------
# Lifecycle endpoints
# -----------------------------------------------------------------------------


@router.get("/lifecycle/stats", response_model=ExpirationStatsResponse)
def get_lifecycle_stats(
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> ExpirationStatsResponse:
    """Counts of expired and soon-to-expire opportunities under the current policy."""
    try:
        config = PolicyStore(db).get_cleanup_config()
        stats = get_expiration_stats(db, config)
    except LifecycleError as e:
        raise to_http_exception(e) from e
    return ExpirationStatsResponse(**asdict(stats))


@router.post("/lifecycle/cleanup/run", response_model=CleanupRunResponse)
def trigger_cleanup(
    request: CleanupRunRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> CleanupRunResponse:
    """
    Run a cleanup sweep now.

    **WARNING**: permanently deletes expired opportunities.
    Requires `confirm: true` for non-dry-run operations.
    """
    if not request.dry_run and not request.confirm:
        raise HTTPException(
            status_code=400,
            detail="Cleanup requires 'confirm: true' for non-dry-run operations",
        )

    try:
        config = PolicyStore(db).get_cleanup_config()
        result = run_cleanup(
            db,
            config,
            initiated_by="admin",
            dry_run=request.dry_run,
            timeout_seconds=request.timeout_seconds,
        )
    except LifecycleError as e:
        raise to_http_exception(e) from e

    return CleanupRunResponse(**result.to_dict())


@router.get("/lifecycle/cleanup/runs", response_model=list[CleanupRunSummary])
def get_cleanup_runs(
    limit: int = Query(CleanupRunLimits.DEFAULT_RUNS, ge=1, le=CleanupRunLimits.MAX_RUNS),
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> list[CleanupRunSummary]:
    """Recent cleanup runs, newest first."""
    try:
        runs = list_cleanup_runs(db, limit=limit)
    except LifecycleError as e:
        raise to_http_exception(e) from e
    return [CleanupRunSummary.model_validate(run) for run in runs]


@router.get("/lifecycle/bulk-delete/preview", response_model=BulkDeletePreviewResponse)
def get_bulk_delete_preview(
    category: str = Query(..., description="Opportunity category"),
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> BulkDeletePreviewResponse:
    """Fresh counts of everything a bulk delete of `category` would remove or reset."""
    try:
        preview = fetch_preview(db, category)
    except LifecycleError as e:
        raise to_http_exception(e) from e
    return BulkDeletePreviewResponse(**preview.to_dict())


@router.post("/lifecycle/bulk-delete/execute", response_model=BulkDeleteResponse)
def bulk_delete_category(
    request: BulkDeleteRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> BulkDeleteResponse:
    """
    Delete every opportunity of a category and reset its feeds.

    **WARNING**: irreversible. Refused with 400, without deleting anything,
    unless `typed_confirmation` equals the category exactly and
    `acknowledged` is true. 409 while the same category is being deleted;
    500 with the partial result if the opportunities could not be deleted.
    The preview is derived again just before deleting and returned with
    the result.
    """
    try:
        result = execute_bulk_delete(
            db,
            request.category,
            request.typed_confirmation,
            request.acknowledged,
            initiated_by="admin",
        )
    except LifecycleError as e:
        raise to_http_exception(e) from e

    return BulkDeleteResponse(**result.to_dict())
