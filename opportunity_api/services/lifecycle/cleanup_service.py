# opportunity_api/services/lifecycle/cleanup_service.py
"""
Cleanup sweep for expired opportunities.

One call to run_cleanup() is one sweep:
1. Scan every opportunity (any status) and apply the expiration evaluator
2. Delete expired records per category in batches, dependents first
   (duplicate tracking, favorites)
3. Persist an immutable run summary

The sweep is best-effort, not a transaction: a failing batch is retried
record by record and individual failures are reported in `errors`.
Counts come from affected rows, so a concurrent or repeated sweep reports
fewer (or zero) deletions instead of double counting. Scheduling is an
external concern; this module only defines a single run.
"""

import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from opportunity_api.config import get_settings
from opportunity_api.constants import CleanupRunLimits
from opportunity_api.database import STORE_UNAVAILABLE_ERRORS
from opportunity_api.errors import ConfigurationError, StoreUnavailableError
from opportunity_api.logging_config import log_stage
from opportunity_api.models import CleanupRun, DuplicateTracking, Opportunity, UserFavorite
from opportunity_api.schemas.policy import CleanupConfig
from opportunity_api.services.lifecycle.expiration import ExpirationReason, expiration_reason
from opportunity_api.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupRunResult:
    """Result of one cleanup sweep. Immutable once created."""

    deleted_count: int
    deleted_by_category: dict[str, int]
    skipped_never_expire: int
    errors: tuple[str, ...]
    started_at: datetime
    finished_at: datetime
    scanned_count: int = 0
    dry_run: bool = False
    timed_out: bool = False
    run_id: str | None = None

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "success": self.success,
            "dry_run": self.dry_run,
            "timed_out": self.timed_out,
            "scanned_count": self.scanned_count,
            "deleted_count": self.deleted_count,
            "deleted_by_category": dict(self.deleted_by_category),
            "skipped_never_expire": self.skipped_never_expire,
            "errors": list(self.errors),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass
class _ScanResult:
    """Expired record ids grouped by category, plus scan counters."""

    expired: dict[str, list[uuid.UUID]] = field(default_factory=lambda: defaultdict(list))
    scanned: int = 0
    skipped_never_expire: int = 0
    errors: list[str] = field(default_factory=list)


def _scan_expired(db: Session, config: CleanupConfig, now: datetime) -> _ScanResult:
    """Apply the evaluator to every opportunity. Reads only."""
    scan = _ScanResult()

    rows = db.query(
        Opportunity.id,
        Opportunity.category,
        Opportunity.created_at,
        Opportunity.deadline,
    ).all()

    for row in rows:
        scan.scanned += 1
        try:
            reason = expiration_reason(row, config, now)
        except ConfigurationError as e:
            scan.errors.append(f"Opportunity {row.id}: {e.message}")
            continue

        if reason is ExpirationReason.NEVER_EXPIRE:
            scan.skipped_never_expire += 1
        elif reason is not None:
            scan.expired[row.category].append(row.id)

    return scan


def _delete_opportunities(db: Session, ids: list[uuid.UUID]) -> int:
    """
    Delete opportunities and the rows that reference them.

    Returns the number of opportunities actually deleted; rows already gone
    are simply not counted.
    """
    db.query(DuplicateTracking).filter(DuplicateTracking.opportunity_id.in_(ids)).delete(synchronize_session=False)
    db.query(UserFavorite).filter(UserFavorite.opportunity_id.in_(ids)).delete(synchronize_session=False)
    return db.query(Opportunity).filter(Opportunity.id.in_(ids)).delete(synchronize_session=False)


def _delete_batch(db: Session, ids: list[uuid.UUID], errors: list[str]) -> int:
    """
    Delete one batch; on failure fall back to one record at a time.

    Connectivity failures are fatal and propagate; statement failures are
    recorded per record and the rest of the batch continues.
    """
    try:
        deleted = _delete_opportunities(db, ids)
        db.commit()
        return deleted
    except STORE_UNAVAILABLE_ERRORS:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Cleanup batch of {len(ids)} failed, retrying individually: {e}")

    deleted = 0
    for opportunity_id in ids:
        try:
            deleted += _delete_opportunities(db, [opportunity_id])
            db.commit()
        except STORE_UNAVAILABLE_ERRORS:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to delete opportunity {opportunity_id}: {e}")
            errors.append(f"Opportunity {opportunity_id}: {e}")
    return deleted


def _chunks(ids: list[uuid.UUID], size: int):
    for start in range(0, len(ids), size):
        yield ids[start : start + size]


def run_cleanup(
    db: Session,
    config: CleanupConfig,
    now: datetime | None = None,
    *,
    initiated_by: str = "scheduler",
    dry_run: bool = False,
    batch_size: int | None = None,
    timeout_seconds: float | None = None,
) -> CleanupRunResult:
    """
    Run one cleanup sweep.

    Args:
        db: Database session
        config: Cleanup policy (load it from the PolicyStore)
        now: Evaluation instant (defaults to the current time)
        initiated_by: Who triggered the run (scheduler, admin, cli)
        dry_run: Count what would be deleted without deleting or persisting
        batch_size: Max ids per delete statement
        timeout_seconds: Time budget; the sweep stops between batches once spent

    Returns:
        CleanupRunResult. Partial failures are listed in `errors`.

    Raises:
        StoreUnavailableError: the record store cannot be reached
    """
    settings = get_settings()
    now = as_utc(now) if now is not None else utcnow()
    batch_size = batch_size or settings.CLEANUP_BATCH_SIZE
    timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.CLEANUP_TIMEOUT_SECONDS

    started_at = utcnow()
    budget_ends = time.monotonic() + timeout_seconds
    deleted_by_category: dict[str, int] = {}
    timed_out = False

    with log_stage("cleanup_run", initiated_by=initiated_by, dry_run=dry_run):
        try:
            scan = _scan_expired(db, config, now)
        except STORE_UNAVAILABLE_ERRORS as e:
            raise StoreUnavailableError(f"Cleanup scan failed: {e}") from e

        errors = list(scan.errors)

        if dry_run:
            deleted_by_category = {category: len(ids) for category, ids in scan.expired.items()}
        else:
            pending = sum(len(ids) for ids in scan.expired.values())
            try:
                for category, ids in scan.expired.items():
                    for batch in _chunks(ids, batch_size):
                        if time.monotonic() > budget_ends:
                            timed_out = True
                            break
                        deleted = _delete_batch(db, batch, errors)
                        pending -= len(batch)
                        deleted_by_category[category] = deleted_by_category.get(category, 0) + deleted
                    if timed_out:
                        break
            except STORE_UNAVAILABLE_ERRORS as e:
                raise StoreUnavailableError(f"Cleanup deletion failed: {e}") from e

            if timed_out:
                errors.append(
                    f"Timed out after {timeout_seconds:.0f}s; {pending} expired opportunities not processed"
                )

        deleted_by_category = {c: n for c, n in deleted_by_category.items() if n > 0}
        deleted_count = sum(deleted_by_category.values())
        finished_at = utcnow()

        run_id = None
        if not dry_run:
            run_id = _persist_run(
                db,
                started_at=started_at,
                finished_at=finished_at,
                initiated_by=initiated_by,
                scanned_count=scan.scanned,
                deleted_count=deleted_count,
                deleted_by_category=deleted_by_category,
                skipped_never_expire=scan.skipped_never_expire,
                errors=errors,
                timed_out=timed_out,
            )

        result = CleanupRunResult(
            run_id=run_id,
            dry_run=dry_run,
            timed_out=timed_out,
            scanned_count=scan.scanned,
            deleted_count=deleted_count,
            deleted_by_category=deleted_by_category,
            skipped_never_expire=scan.skipped_never_expire,
            errors=tuple(errors),
            started_at=started_at,
            finished_at=finished_at,
        )

    logger.info(
        f"Cleanup complete: {result.deleted_count} deleted, "
        f"{result.skipped_never_expire} never-expire skipped, "
        f"{len(result.errors)} errors (dry_run={dry_run})",
        extra={
            "event": "cleanup_complete",
            "run_id": run_id,
            "deleted_count": result.deleted_count,
            "scanned_count": result.scanned_count,
            "skipped_never_expire": result.skipped_never_expire,
            "errors_count": len(result.errors),
        },
    )
    return result


def _persist_run(db: Session, *, errors: list[str], **summary: Any) -> str | None:
    """
    Store the run summary. A failure here is appended to `errors` rather than
    raised: the deletions have already happened and must still be reported.
    """
    run_id = uuid.uuid4()
    run = CleanupRun(
        id=run_id,
        errors=errors[: CleanupRunLimits.MAX_ERRORS_STORED],
        **summary,
    )
    try:
        db.add(run)
        db.commit()
        return str(run_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to persist cleanup run summary: {e}")
        errors.append(f"Run summary not persisted: {e}")
        return None


def list_cleanup_runs(db: Session, limit: int = CleanupRunLimits.DEFAULT_RUNS) -> list[CleanupRun]:
    """Most recent cleanup run summaries, newest first."""
    limit = max(1, min(limit, CleanupRunLimits.MAX_RUNS))
    try:
        return db.query(CleanupRun).order_by(CleanupRun.started_at.desc()).limit(limit).all()
    except STORE_UNAVAILABLE_ERRORS as e:
        raise StoreUnavailableError(f"Could not read cleanup runs: {e}") from e
