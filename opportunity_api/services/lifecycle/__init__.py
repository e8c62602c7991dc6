# opportunity_api/services/lifecycle/__init__.py
"""
Opportunity lifecycle services.

Services:
- expiration: pure expire/retain decision per record
- cleanup_service: sweep that deletes expired records and logs the run
- bulk_delete: confirmation-guarded deletion of a whole category
- stats_service: expired / expiring-soon counts for dashboards
"""

from opportunity_api.services.lifecycle.bulk_delete import (
    AffectedSource,
    BulkDeletePreview,
    BulkDeleteResult,
    BulkDeleteState,
    BulkDeletionWorkflow,
    execute_bulk_delete,
    fetch_preview,
)
from opportunity_api.services.lifecycle.cleanup_service import (
    CleanupRunResult,
    list_cleanup_runs,
    run_cleanup,
)
from opportunity_api.services.lifecycle.expiration import (
    ExpirationReason,
    expiration_reason,
    expires_at,
    should_expire,
)
from opportunity_api.services.lifecycle.stats_service import (
    CategoryStats,
    ExpirationStats,
    get_expiration_stats,
)

__all__ = [
    # Expiration
    "should_expire",
    "expires_at",
    "expiration_reason",
    "ExpirationReason",
    # Cleanup
    "run_cleanup",
    "list_cleanup_runs",
    "CleanupRunResult",
    # Bulk delete
    "BulkDeletionWorkflow",
    "BulkDeleteState",
    "BulkDeletePreview",
    "BulkDeleteResult",
    "AffectedSource",
    "fetch_preview",
    "execute_bulk_delete",
    # Stats
    "get_expiration_stats",
    "ExpirationStats",
    "CategoryStats",
]
