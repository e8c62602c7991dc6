# opportunity_api/cli/lifecycle.py
"""
CLI commands for opportunity lifecycle management.

Usage:
    python -m opportunity_api.cli.lifecycle status
    python -m opportunity_api.cli.lifecycle show-policy
    python -m opportunity_api.cli.lifecycle cleanup --dry-run
    python -m opportunity_api.cli.lifecycle cleanup --confirm
    python -m opportunity_api.cli.lifecycle bulk-preview contest
    python -m opportunity_api.cli.lifecycle bulk-delete contest --type contest --yes
    python -m opportunity_api.cli.lifecycle runs --limit 10
"""

import argparse
import json
import sys

from dotenv import load_dotenv

load_dotenv()


def get_db_session():
    """Get a database session."""
    from opportunity_api.database import SessionLocal

    return SessionLocal()


def _fail(message: str) -> None:
    print(f"Error: {message}")
    sys.exit(1)


def cmd_status(args):
    """Show expiration statistics under the current cleanup policy."""
    from opportunity_api.errors import LifecycleError
    from opportunity_api.services.lifecycle import get_expiration_stats
    from opportunity_api.services.policy_store import PolicyStore

    db = get_db_session()
    try:
        try:
            config = PolicyStore(db).get_cleanup_config()
            stats = get_expiration_stats(db, config)
        except LifecycleError as e:
            _fail(e.message)

        print("\n=== Opportunity Lifecycle Status ===\n")
        print(f"Grace after deadline: {config.grace_days_after_deadline} days")
        print(f"\nTotal opportunities: {stats.total}")
        print(f"  Expired (next sweep deletes): {stats.expired_count}")
        print(f"  Expiring within 7 days: {stats.expiring_in_7_days}")
        print(f"  Expiring within 30 days: {stats.expiring_in_30_days}")
        print(f"  Without deadline: {stats.no_deadline_count}")
        print(f"  Never expire: {stats.never_expire_count}")
        if stats.misconfigured:
            print(f"  Misconfigured category: {stats.misconfigured}")

        if stats.by_category:
            print("\nBy category:")
            for category, counts in sorted(stats.by_category.items()):
                print(f"  {category}: {counts.total} total, {counts.expired} expired")
        print()
    finally:
        db.close()


def cmd_show_policy(args):
    """Print both policy documents."""
    from opportunity_api.errors import LifecycleError
    from opportunity_api.services.policy_store import PolicyStore

    db = get_db_session()
    try:
        store = PolicyStore(db)
        try:
            policies = [store.get_cleanup_policy(), store.get_access_policy()]
        except LifecycleError as e:
            _fail(e.message)

        for policy in policies:
            source = "built-in defaults" if policy.version == 0 else f"version {policy.version}"
            print(f"\n=== {policy.key} ({source}) ===")
            if policy.updated_by:
                print(f"Updated by {policy.updated_by} at {policy.updated_at}")
            print(json.dumps(policy.config.model_dump(mode="json"), indent=2, sort_keys=True))
        print()
    finally:
        db.close()


def cmd_cleanup(args):
    """Run a cleanup sweep."""
    from opportunity_api.errors import LifecycleError
    from opportunity_api.services.lifecycle import run_cleanup
    from opportunity_api.services.policy_store import PolicyStore

    # Safety check
    if not args.dry_run and not args.confirm:
        print("Error: Cleanup requires --confirm flag for non-dry-run operations")
        print("Use --dry-run to preview what would be deleted")
        sys.exit(1)

    db = get_db_session()
    try:
        print(f"\n{'DRY RUN - ' if args.dry_run else ''}Cleaning up expired opportunities...\n")

        try:
            config = PolicyStore(db).get_cleanup_config()
            result = run_cleanup(
                db,
                config,
                initiated_by="cli",
                dry_run=args.dry_run,
                batch_size=args.batch_size,
            )
        except LifecycleError as e:
            _fail(e.message)

        print(f"Scanned: {result.scanned_count}")
        print(f"{'Would delete' if args.dry_run else 'Deleted'}: {result.deleted_count}")
        print(f"Skipped (never expire): {result.skipped_never_expire}")

        if result.deleted_by_category:
            print("\nBy category:")
            for category, count in sorted(result.deleted_by_category.items()):
                print(f"  {category}: {count}")

        if result.errors:
            print("\nErrors:")
            for error in result.errors:
                print(f"  - {error}")

        if result.run_id:
            print(f"\nRun id: {result.run_id}")

        if not result.success:
            sys.exit(1)
    finally:
        db.close()


def _print_preview(preview) -> None:
    print(f"\n=== Bulk delete preview: {preview.category} ===\n")
    print(f"Opportunities: {preview.opportunity_count}")
    print(f"Duplicate-tracking entries: {preview.duplicate_tracking_count}")
    print(f"Favorites: {preview.favorites_count}")
    print(f"Processing-history entries: {preview.history_entry_count}")
    print(f"Feeds to reset: {preview.affected_source_count}")
    for source in preview.affected_sources:
        print(
            f"  {source.name}: processed={source.total_processed} "
            f"published={source.total_published} errors={source.error_count}"
        )


def cmd_bulk_preview(args):
    """Show what a bulk delete of one category would remove."""
    from opportunity_api.errors import LifecycleError
    from opportunity_api.services.lifecycle import fetch_preview

    db = get_db_session()
    try:
        try:
            preview = fetch_preview(db, args.category)
        except LifecycleError as e:
            _fail(e.message)
        _print_preview(preview)
        print()
    finally:
        db.close()


def cmd_bulk_delete(args):
    """Delete every opportunity of one category."""
    from opportunity_api.errors import LifecycleError, PartialExecutionError
    from opportunity_api.services.lifecycle import BulkDeleteState, BulkDeletionWorkflow

    db = get_db_session()
    try:
        workflow = BulkDeletionWorkflow(db, initiated_by="cli")
        try:
            preview = workflow.select_category(args.category)
            _print_preview(preview)
            if workflow.state is BulkDeleteState.IDLE:
                print("\nNothing to delete.")
                return

            workflow.begin_confirmation()
            workflow.confirm_typed(args.type or "")
            workflow.acknowledge(args.yes)
            if not workflow.can_execute:
                print("\nError: pass --yes to confirm that this deletion cannot be undone")
                workflow.cancel()
                sys.exit(1)

            result = workflow.execute()
        except PartialExecutionError as e:
            print(f"\nError: {e.message}")
            print(json.dumps(e.result.to_dict(), indent=2, default=str))
            sys.exit(1)
        except LifecycleError as e:
            _fail(e.message)

        print(f"\nDeleted opportunities: {result.deleted_opportunities}")
        print(f"Deleted duplicate-tracking entries: {result.deleted_duplicate_tracking_entries}")
        print(f"Deleted favorites: {result.deleted_favorites}")
        print(f"Deleted processing-history entries: {result.deleted_history_entries}")
        print(f"Feeds reset: {result.reset_source_count}")
        for name in result.reset_source_names:
            print(f"  {name}")

        if result.errors:
            print("\nErrors:")
            for error in result.errors:
                print(f"  - {error}")
            sys.exit(1)
    finally:
        db.close()


def cmd_runs(args):
    """List recent cleanup runs."""
    from opportunity_api.errors import LifecycleError
    from opportunity_api.services.lifecycle import list_cleanup_runs

    db = get_db_session()
    try:
        try:
            runs = list_cleanup_runs(db, limit=args.limit)
        except LifecycleError as e:
            _fail(e.message)

        print("\n=== Cleanup Runs ===\n")
        if not runs:
            print("No cleanup runs recorded.")
        for run in runs:
            flags = " [TIMED OUT]" if run.timed_out else ""
            print(f"{run.started_at} by {run.initiated_by}{flags}")
            print(f"  Scanned: {run.scanned_count}, deleted: {run.deleted_count}, errors: {len(run.errors or [])}")
        print()
    finally:
        db.close()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Opportunity Lifecycle Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check expiration status
  python -m opportunity_api.cli.lifecycle status

  # Preview what a cleanup sweep would delete
  python -m opportunity_api.cli.lifecycle cleanup --dry-run

  # Delete every contest (requires typing the category and --yes)
  python -m opportunity_api.cli.lifecycle bulk-delete contest --type contest --yes
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # status command
    status_parser = subparsers.add_parser("status", help="Show expiration statistics")
    status_parser.set_defaults(func=cmd_status)

    # show-policy command
    policy_parser = subparsers.add_parser("show-policy", help="Show cleanup and access policies")
    policy_parser.set_defaults(func=cmd_show_policy)

    # cleanup command
    cleanup_parser = subparsers.add_parser("cleanup", help="Delete expired opportunities")
    cleanup_parser.add_argument("--dry-run", action="store_true", help="Preview only, don't delete")
    cleanup_parser.add_argument("--confirm", action="store_true", help="Confirm deletion")
    cleanup_parser.add_argument("--batch-size", type=int, default=None, help="Max ids per delete statement")
    cleanup_parser.set_defaults(func=cmd_cleanup)

    # bulk-preview command
    preview_parser = subparsers.add_parser("bulk-preview", help="Preview a category bulk delete")
    preview_parser.add_argument("category", help="Opportunity category")
    preview_parser.set_defaults(func=cmd_bulk_preview)

    # bulk-delete command
    delete_parser = subparsers.add_parser("bulk-delete", help="Delete every opportunity of a category")
    delete_parser.add_argument("category", help="Opportunity category")
    delete_parser.add_argument("--type", default=None, help="Type the category again to confirm")
    delete_parser.add_argument("--yes", action="store_true", help="Acknowledge the deletion cannot be undone")
    delete_parser.set_defaults(func=cmd_bulk_delete)

    # runs command
    runs_parser = subparsers.add_parser("runs", help="List recent cleanup runs")
    runs_parser.add_argument("--limit", type=int, default=20, help="How many runs to show (default: 20)")
    runs_parser.set_defaults(func=cmd_runs)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
