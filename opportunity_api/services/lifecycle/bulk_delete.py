# opportunity_api/services/lifecycle/bulk_delete.py
"""
Category-wide bulk deletion behind a guarded state machine.

    idle -> preview -> typed_confirmation -> final_confirmation -> executing -> executed
      ^        |              |                     |                  |
      +--------+--------------+---------------------+  (cancel)        +-> failed

Guards, all enforced here rather than by the client:
- a category must be selected and its fresh preview must be non-empty;
  an empty preview sends the workflow back to idle
- the typed confirmation must equal the category identifier exactly
  (case-sensitive, no trimming)
- the irreversible-action acknowledgement flag must be set
- only one execution per category may be in flight in this process

Execution steps, each committed on its own so completed steps survive a
later failure:
1. duplicate_tracking  - fingerprints of the category's opportunities
2. favorites           - viewer favorites of those opportunities
3. processing_history  - history of the category's opportunity feeds
4. opportunities       - the primary step
5. reset_sources       - zero the counters of those feeds

execute() derives the preview again before deleting anything. If the
category has emptied the workflow returns to idle; if the opportunity or
feed counts differ from what the operator confirmed, it returns to preview
and must be confirmed again. Reported counts come from affected rows.
"""

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from opportunity_api.config import get_settings
from opportunity_api.database import STORE_UNAVAILABLE_ERRORS
from opportunity_api.errors import (
    ConcurrentOperationError,
    PartialExecutionError,
    StoreUnavailableError,
    ValidationError,
)
from opportunity_api.logging_config import log_stage
from opportunity_api.models import (
    DuplicateTracking,
    FeedOutputType,
    Opportunity,
    ProcessingHistory,
    RssFeed,
    UserFavorite,
)
from opportunity_api.utils.categories import validate_category
from opportunity_api.utils.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

PRIMARY_STEP = "opportunities"


class BulkDeleteState(str, Enum):
    """Workflow states."""

    IDLE = "idle"
    PREVIEW = "preview"
    TYPED_CONFIRMATION = "typed_confirmation"
    FINAL_CONFIRMATION = "final_confirmation"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# -----------------------------------------------------------------------------
# Value objects
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class AffectedSource:
    """A feed tied to the category, with its counters at preview time."""

    id: uuid.UUID
    name: str
    total_processed: int
    total_published: int
    error_count: int
    last_fetched: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "total_processed": self.total_processed,
            "total_published": self.total_published,
            "error_count": self.error_count,
            "last_fetched": self.last_fetched,
        }


@dataclass(frozen=True)
class BulkDeletePreview:
    """What a bulk deletion of one category would remove right now."""

    category: str
    opportunity_count: int
    affected_source_count: int
    affected_sources: tuple[AffectedSource, ...]
    history_entry_count: int
    duplicate_tracking_count: int
    favorites_count: int
    generated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "opportunity_count": self.opportunity_count,
            "affected_source_count": self.affected_source_count,
            "affected_sources": [s.to_dict() for s in self.affected_sources],
            "history_entry_count": self.history_entry_count,
            "duplicate_tracking_count": self.duplicate_tracking_count,
            "favorites_count": self.favorites_count,
            "generated_at": self.generated_at,
        }


@dataclass(frozen=True)
class BulkDeleteResult:
    """Outcome of one execution. `completed_steps` lists what actually finished."""

    category: str
    deleted_opportunities: int
    deleted_history_entries: int
    deleted_duplicate_tracking_entries: int
    deleted_favorites: int
    reset_source_count: int
    reset_source_names: tuple[str, ...]
    completed_steps: tuple[str, ...]
    errors: tuple[str, ...]
    timed_out: bool = False
    preview: BulkDeletePreview | None = None

    @property
    def success(self) -> bool:
        return PRIMARY_STEP in self.completed_steps and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "category": self.category,
            "deleted_opportunities": self.deleted_opportunities,
            "deleted_history_entries": self.deleted_history_entries,
            "deleted_duplicate_tracking_entries": self.deleted_duplicate_tracking_entries,
            "deleted_favorites": self.deleted_favorites,
            "reset_source_count": self.reset_source_count,
            "reset_source_names": list(self.reset_source_names),
            "completed_steps": list(self.completed_steps),
            "errors": list(self.errors),
            "timed_out": self.timed_out,
            "preview": self.preview.to_dict() if self.preview else None,
        }


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------


def _category_opportunity_ids(category: str):
    return select(Opportunity.id).where(Opportunity.category == category)


def _category_feeds(db: Session, category: str) -> list[RssFeed]:
    """Opportunity feeds of the category (blog-post feeds are never touched)."""
    return (
        db.query(RssFeed)
        .filter(RssFeed.category == category, RssFeed.output_type == FeedOutputType.OPPORTUNITY.value)
        .order_by(RssFeed.name)
        .all()
    )


def fetch_preview(db: Session, category: str) -> BulkDeletePreview:
    """
    Compute a fresh preview for one category.

    Raises:
        ValidationError: category is not in the fixed set
        StoreUnavailableError: the record store cannot be reached
    """
    category = validate_category(category).value

    try:
        opportunity_count = (
            db.query(func.count(Opportunity.id)).filter(Opportunity.category == category).scalar()
        ) or 0

        feeds = _category_feeds(db, category)
        feed_ids = [f.id for f in feeds]

        history_count = (
            (db.query(func.count(ProcessingHistory.id)).filter(ProcessingHistory.feed_id.in_(feed_ids)).scalar() or 0)
            if feed_ids
            else 0
        )

        duplicate_count = (
            db.query(func.count(DuplicateTracking.id))
            .filter(DuplicateTracking.opportunity_id.in_(_category_opportunity_ids(category)))
            .scalar()
        ) or 0

        favorites_count = (
            db.query(func.count(UserFavorite.id))
            .filter(UserFavorite.opportunity_id.in_(_category_opportunity_ids(category)))
            .scalar()
        ) or 0
    except STORE_UNAVAILABLE_ERRORS as e:
        raise StoreUnavailableError(f"Could not build bulk-delete preview for '{category}': {e}") from e

    sources = tuple(
        AffectedSource(
            id=f.id,
            name=f.name,
            total_processed=f.total_processed or 0,
            total_published=f.total_published or 0,
            error_count=f.error_count or 0,
            last_fetched=as_utc(f.last_fetched),
        )
        for f in feeds
    )

    return BulkDeletePreview(
        category=category,
        opportunity_count=opportunity_count,
        affected_source_count=len(sources),
        affected_sources=sources,
        history_entry_count=history_count,
        duplicate_tracking_count=duplicate_count,
        favorites_count=favorites_count,
        generated_at=utcnow(),
    )


def _delete_duplicate_tracking(db: Session, category: str) -> int:
    return (
        db.query(DuplicateTracking)
        .filter(DuplicateTracking.opportunity_id.in_(_category_opportunity_ids(category)))
        .delete(synchronize_session=False)
    )


def _delete_favorites(db: Session, category: str) -> int:
    return (
        db.query(UserFavorite)
        .filter(UserFavorite.opportunity_id.in_(_category_opportunity_ids(category)))
        .delete(synchronize_session=False)
    )


def _delete_history(db: Session, feed_ids: list[uuid.UUID]) -> int:
    if not feed_ids:
        return 0
    return db.query(ProcessingHistory).filter(ProcessingHistory.feed_id.in_(feed_ids)).delete(synchronize_session=False)


def _delete_category_opportunities(db: Session, category: str) -> int:
    return db.query(Opportunity).filter(Opportunity.category == category).delete(synchronize_session=False)


def _reset_sources(db: Session, feed_ids: list[uuid.UUID]) -> list[str]:
    """
    Zero the counters of the given feeds.

    Only feeds that still carry state are touched, so re-running against an
    already reset category reports zero resets.
    """
    if not feed_ids:
        return []

    dirty = or_(
        RssFeed.total_processed != 0,
        RssFeed.total_published != 0,
        RssFeed.error_count != 0,
        RssFeed.last_fetched.isnot(None),
        RssFeed.last_error.isnot(None),
    )
    names = [row.name for row in db.query(RssFeed.name).filter(RssFeed.id.in_(feed_ids), dirty).order_by(RssFeed.name)]
    if not names:
        return []

    db.query(RssFeed).filter(RssFeed.id.in_(feed_ids), dirty).update(
        {
            "total_processed": 0,
            "total_published": 0,
            "error_count": 0,
            "last_fetched": None,
            "last_error": None,
        },
        synchronize_session=False,
    )
    return names


# -----------------------------------------------------------------------------
# Execution
# -----------------------------------------------------------------------------


def _run_steps(
    db: Session,
    category: str,
    timeout_seconds: float,
) -> BulkDeleteResult:
    """Run the deletion steps in order. See module docstring."""
    budget_ends = time.monotonic() + timeout_seconds

    # Re-derive the affected feeds now; the preview shown to the operator may be stale.
    try:
        feed_ids = [f.id for f in _category_feeds(db, category)]
    except STORE_UNAVAILABLE_ERRORS as e:
        raise StoreUnavailableError(f"Could not load feeds for '{category}': {e}") from e

    steps: list[tuple[str, Callable[[], Any]]] = [
        ("duplicate_tracking", lambda: _delete_duplicate_tracking(db, category)),
        ("favorites", lambda: _delete_favorites(db, category)),
        ("processing_history", lambda: _delete_history(db, feed_ids)),
        (PRIMARY_STEP, lambda: _delete_category_opportunities(db, category)),
        ("reset_sources", lambda: _reset_sources(db, feed_ids)),
    ]

    outcomes: dict[str, Any] = {}
    completed: list[str] = []
    errors: list[str] = []
    timed_out = False

    for step, action in steps:
        if time.monotonic() > budget_ends:
            timed_out = True
            errors.append(f"Timed out after {timeout_seconds:.0f}s before step '{step}'")
            break

        try:
            outcomes[step] = action()
            db.commit()
        except STORE_UNAVAILABLE_ERRORS as e:
            db.rollback()
            if not completed:
                raise StoreUnavailableError(f"Bulk delete of '{category}' could not start: {e}") from e
            logger.error(f"Bulk delete step {step} lost the store: {e}")
            errors.append(f"{step}: store unavailable: {e}")
            break
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Bulk delete step {step} failed for {category}: {e}")
            errors.append(f"{step}: {e}")
            if step == PRIMARY_STEP:
                break
            continue

        completed.append(step)
        rows = len(outcomes[step]) if isinstance(outcomes[step], list) else outcomes[step]
        logger.info(
            f"Bulk delete step {step} completed for {category}: {rows}",
            extra={"event": "bulk_delete_step", "category": category, "step": step, "rows": rows},
        )

    reset_names = outcomes.get("reset_sources", [])
    return BulkDeleteResult(
        category=category,
        deleted_opportunities=outcomes.get(PRIMARY_STEP, 0),
        deleted_history_entries=outcomes.get("processing_history", 0),
        deleted_duplicate_tracking_entries=outcomes.get("duplicate_tracking", 0),
        deleted_favorites=outcomes.get("favorites", 0),
        reset_source_count=len(reset_names),
        reset_source_names=tuple(reset_names),
        completed_steps=tuple(completed),
        errors=tuple(errors),
        timed_out=timed_out,
    )


class BulkDeletionWorkflow:
    """
    One operator's pass through the bulk-deletion guard.

    Usage:
        workflow = BulkDeletionWorkflow(db)
        preview = workflow.select_category("contest")
        workflow.begin_confirmation()
        workflow.confirm_typed("contest")
        workflow.acknowledge(True)
        result = workflow.execute()
    """

    # Categories with an execution in flight in this process
    _in_flight: set[str] = set()
    _in_flight_lock = threading.Lock()

    def __init__(self, db: Session, initiated_by: str = "admin"):
        self.db = db
        self.initiated_by = initiated_by
        self.state = BulkDeleteState.IDLE
        self.category: str | None = None
        self.preview: BulkDeletePreview | None = None
        self.transitions: list[tuple[BulkDeleteState, BulkDeleteState]] = []
        self._typed_match = False
        self._acknowledged = False

    # -------------------------------------------------------------------------
    # Guards
    # -------------------------------------------------------------------------

    def _transition(self, new_state: BulkDeleteState) -> None:
        old_state = self.state
        self.transitions.append((old_state, new_state))
        self.state = new_state
        logger.debug(
            f"Bulk delete workflow {old_state.value} -> {new_state.value}",
            extra={"event": "bulk_delete_transition", "category": self.category, "state": new_state.value},
        )

    def _require(self, action: str, *states: BulkDeleteState) -> None:
        if self.state not in states:
            raise ValidationError(
                f"Cannot {action} while the workflow is in state '{self.state.value}'",
                field="state",
            )

    def _clear(self) -> None:
        self.category = None
        self.preview = None
        self._typed_match = False
        self._acknowledged = False

    @property
    def can_execute(self) -> bool:
        return self.state is BulkDeleteState.FINAL_CONFIRMATION and self._typed_match and self._acknowledged

    @classmethod
    @contextmanager
    def _category_guard(cls, category: str) -> Iterator[None]:
        with cls._in_flight_lock:
            if category in cls._in_flight:
                raise ConcurrentOperationError(f"A bulk delete of '{category}' is already running")
            cls._in_flight.add(category)
        try:
            yield
        finally:
            with cls._in_flight_lock:
                cls._in_flight.discard(category)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def select_category(self, category: str) -> BulkDeletePreview:
        """
        idle -> preview.

        Fetches a fresh preview. If the category is empty the workflow stays
        idle (there is nothing to confirm). A failed fetch also leaves it idle
        and the error propagates.
        """
        self._require("select a category", BulkDeleteState.IDLE)

        preview = fetch_preview(self.db, category)
        if preview.opportunity_count == 0:
            logger.info(f"Bulk delete preview for {preview.category} is empty; nothing to confirm")
            self._clear()
            return preview

        self.category = preview.category
        self.preview = preview
        self._transition(BulkDeleteState.PREVIEW)
        return preview

    def begin_confirmation(self) -> None:
        """preview -> typed_confirmation (manual step)."""
        self._require("begin confirmation", BulkDeleteState.PREVIEW)
        self._transition(BulkDeleteState.TYPED_CONFIRMATION)

    def confirm_typed(self, text: str) -> None:
        """typed_confirmation -> final_confirmation, only on an exact match."""
        self._require("confirm the category", BulkDeleteState.TYPED_CONFIRMATION)
        if not isinstance(text, str) or text != self.category:
            raise ValidationError(
                "Confirmation does not match. Type the exact category identifier.",
                field="typed_confirmation",
            )
        self._typed_match = True
        self._transition(BulkDeleteState.FINAL_CONFIRMATION)

    def acknowledge(self, acknowledged: bool) -> None:
        """Record the 'this cannot be undone' acknowledgement."""
        self._require("acknowledge", BulkDeleteState.FINAL_CONFIRMATION)
        self._acknowledged = acknowledged is True

    def cancel(self) -> None:
        """Discard all confirmation state and return to idle. Not allowed once execution started."""
        self._require(
            "cancel",
            BulkDeleteState.IDLE,
            BulkDeleteState.PREVIEW,
            BulkDeleteState.TYPED_CONFIRMATION,
            BulkDeleteState.FINAL_CONFIRMATION,
        )
        self._transition(BulkDeleteState.CANCELLED)
        self._clear()
        self._transition(BulkDeleteState.IDLE)

    def _recheck_preview(self, category: str) -> BulkDeletePreview:
        """
        Derive the preview again and compare it with the confirmed one.

        An emptied category sends the workflow to idle. Changed counts send it
        back to preview with the fresh numbers, so the operator confirms what
        will actually be deleted.
        """
        fresh = fetch_preview(self.db, category)
        confirmed = self.preview

        if fresh.opportunity_count == 0:
            self._clear()
            self._transition(BulkDeleteState.IDLE)
            raise ValidationError(
                f"No opportunities left in category '{category}'; nothing to delete",
                field="category",
            )

        if confirmed is None or (fresh.opportunity_count, fresh.affected_source_count) != (
            confirmed.opportunity_count,
            confirmed.affected_source_count,
        ):
            self.preview = fresh
            self._typed_match = False
            self._acknowledged = False
            self._transition(BulkDeleteState.PREVIEW)
            raise ValidationError(
                f"Category '{category}' changed since it was confirmed "
                f"({confirmed.opportunity_count if confirmed else 0} -> {fresh.opportunity_count} opportunities); "
                "review the new preview and confirm again",
                field="preview",
            )

        self.preview = fresh
        return fresh

    def execute(self, timeout_seconds: float | None = None) -> BulkDeleteResult:
        """
        final_confirmation -> executing -> executed | failed.

        The preview is derived again first; see _recheck_preview().

        Raises:
            ValidationError: a guard does not hold, the category emptied, or
                its counts changed since confirmation; nothing is deleted
            ConcurrentOperationError: the category is already being deleted
            PartialExecutionError: the primary deletion did not complete
            StoreUnavailableError: the store was unreachable before any step completed
        """
        self._require("execute", BulkDeleteState.FINAL_CONFIRMATION)
        if not self._typed_match:
            raise ValidationError("Typed confirmation has not matched the category", field="typed_confirmation")
        if not self._acknowledged:
            raise ValidationError(
                "You must confirm that you understand this action cannot be undone.",
                field="acknowledged",
            )

        if timeout_seconds is None:
            timeout_seconds = get_settings().BULK_DELETE_TIMEOUT_SECONDS
        category = self.category

        with self._category_guard(category):
            preview = self._recheck_preview(category)

            self._transition(BulkDeleteState.EXECUTING)
            try:
                with log_stage("bulk_delete", category=category, initiated_by=self.initiated_by):
                    result = replace(_run_steps(self.db, category, timeout_seconds), preview=preview)
            except Exception:
                self._transition(BulkDeleteState.FAILED)
                raise

            if PRIMARY_STEP not in result.completed_steps:
                self._transition(BulkDeleteState.FAILED)
                raise PartialExecutionError(
                    f"Bulk delete of '{category}' did not complete: opportunities were not deleted",
                    result,
                )

            self._transition(BulkDeleteState.EXECUTED)

        logger.info(
            f"Bulk delete completed for {category}: {result.deleted_opportunities} opportunities, "
            f"{result.deleted_history_entries} history entries, "
            f"{result.deleted_duplicate_tracking_entries} duplicate entries, "
            f"{result.reset_source_count} feeds reset",
            extra={
                "event": "bulk_delete_complete",
                "category": category,
                "deleted_count": result.deleted_opportunities,
                "errors_count": len(result.errors),
                "initiated_by": self.initiated_by,
            },
        )
        return result


def execute_bulk_delete(
    db: Session,
    category: str,
    typed_confirmation: str,
    acknowledged: bool,
    *,
    initiated_by: str = "admin",
    timeout_seconds: float | None = None,
) -> BulkDeleteResult:
    """
    Drive the whole workflow for a single request.

    Every guard of the interactive flow applies: the category is previewed
    fresh, an empty category is refused, the typed confirmation must match
    and the acknowledgement must be set before anything is deleted.
    """
    workflow = BulkDeletionWorkflow(db, initiated_by=initiated_by)

    preview = workflow.select_category(category)
    if workflow.state is BulkDeleteState.IDLE:
        raise ValidationError(
            f"No opportunities in category '{preview.category}'; nothing to delete",
            field="category",
        )

    workflow.begin_confirmation()
    workflow.confirm_typed(typed_confirmation)
    workflow.acknowledge(acknowledged)
    return workflow.execute(timeout_seconds=timeout_seconds)
