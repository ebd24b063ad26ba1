#!/usr/bin/env python3
"""
Recording sync CLI.

Copies new Zoom cloud recordings to Google Drive and records them in the
sync ledger.

Usage:
    python scripts/sync_recordings.py                 # Full sync
    python scripts/sync_recordings.py --dry-run       # Preview without changes
    python scripts/sync_recordings.py --status        # Show ledger stats
    python scripts/sync_recordings.py --runs 5        # Show recent runs
    python scripts/sync_recordings.py --init-db       # Create ledger tables
    python scripts/sync_recordings.py --forget UUID   # Make a recording eligible again
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from meeting_sync.config import get_settings
from meeting_sync.exceptions import ConfigurationError
from meeting_sync.ledger import create_ledger
from meeting_sync.sync.orchestrator import TransferJob

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def progress_callback(current: int, total: int, message: str):
    """Display progress during sync."""
    percent = (current / total * 100) if total > 0 else 0
    bar_width = 40
    filled = int(bar_width * current / total) if total > 0 else 0
    bar = "=" * filled + "-" * (bar_width - filled)
    print(f"\r[{bar}] {percent:5.1f}% ({current}/{total}) {message[:50]:<50}", end="", flush=True)


def _mask(value: str) -> str:
    return "***" + value[-4:] if value else "Not set"


def show_status():
    """Display current ledger status."""
    print("\n=== Recording Sync Status ===\n")

    try:
        stats = create_ledger().get_stats()
    except Exception as e:
        print(f"Error getting status: {e}")
        return

    print(f"Ledger backend: {stats['backend']}")
    print(f"Tracked recordings: {stats['recordings']}")
    print("\nBy status:")
    for status, count in stats["by_status"].items():
        print(f"  {status.capitalize():<12} {count}")
    print(f"\nFiles transferred: {stats['files']} ({stats['bytes_transferred'] / 1024 / 1024:.1f} MB)")
    print(f"Runs logged: {stats['runs']}")

    last = stats.get("last_run")
    if last:
        print(f"\nLast run: {last['status']} at {last['completed_at']}")
        print(f"  New files: {last['new_files']}, duplicates skipped: {last['duplicates_skipped']}")
        if last.get("last_error"):
            print(f"  Last error: {last['last_error']}")


def show_runs(limit: int):
    """Display recent run summaries."""
    print(f"\n=== Last {limit} runs ===\n")
    try:
        runs = create_ledger().recent_runs(limit=limit)
    except Exception as e:
        print(f"Error listing runs: {e}")
        return

    for run in runs:
        print(
            f"#{run.run_id:<5} {run.started_at:%Y-%m-%d %H:%M} {run.status:<8} "
            f"new={run.new_files:<4} dup={run.duplicates_skipped:<4} "
            f"{run.duration_seconds:7.1f}s  {run.last_error or ''}"
        )
    if not runs:
        print("No runs logged yet")


def show_config():
    """Display current sync configuration."""
    settings = get_settings()

    print("\n=== Sync Configuration ===\n")
    print(f"Look-back window: {settings.lookback_days} days (page size {settings.zoom_page_size})")
    print(f"Staging directory: {settings.staging_dir}")
    print(f"Retry incomplete recordings: {settings.retry_incomplete_recordings}")
    print(f"Ledger read failure policy: {settings.ledger_read_failure}")
    print(f"\nZoom:")
    print(f"  Account ID: {settings.zoom_account_id or 'Not set'}")
    print(f"  Client ID: {_mask(settings.zoom_client_id)}")
    print(f"\nGoogle Drive:")
    print(f"  Folder ID: {settings.google_drive_folder_id or 'Not set'}")
    print(f"  Refresh token: {_mask(settings.google_refresh_token)}")
    print(f"  Service account: {settings.google_service_account_file or 'Not set'}")
    print(f"  Chunked uploads from: {settings.drive_resumable_threshold_mb} MB")
    print(f"\nLedger:")
    print(f"  Backend: {settings.ledger_backend}")
    if settings.ledger_backend == "sqlite":
        print(f"  Path: {settings.ledger_path}")
    else:
        print(f"  Database URL: {'set' if settings.database_url else 'Not set'}")


def init_db():
    """Create ledger tables (idempotent)."""
    ledger = create_ledger()
    ledger.init_schema()
    print(f"Ledger schema ready ({ledger.backend_name})")


def forget(recording_id: str):
    """Remove a recording and its file records so the next run picks it up again."""
    ledger = create_ledger()
    if ledger.delete_recording(recording_id):
        print(f"Removed {recording_id} from the ledger")
    else:
        print(f"{recording_id} is not in the ledger")


def run_sync(dry_run: bool = False):
    """Run the sync process."""
    settings = get_settings()

    print("\n" + "=" * 60)
    print("Recording Sync")
    print("=" * 60)
    print(f"Mode: {'DRY RUN' if dry_run else 'FULL SYNC'}")
    print(f"Look-back: {settings.lookback_days} days")
    print()

    job = TransferJob()
    summary = job.run(dry_run=dry_run, progress_callback=progress_callback)

    print("\n\n" + "=" * 60)
    print("SYNC COMPLETE" if summary.status != "failed" else "SYNC FAILED")
    print("=" * 60)
    print(summary)

    if summary.last_error:
        print(f"\nLast error: {summary.last_error}")
    if not dry_run and not summary.persisted:
        print("\nWarning: run summary could not be written to the ledger")
    if dry_run:
        print("\n[DRY RUN] No changes were made")

    if summary.status == "failed":
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description="Copy new Zoom cloud recordings to Google Drive",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/sync_recordings.py                 # Full sync
  python scripts/sync_recordings.py --dry-run       # Preview changes
  python scripts/sync_recordings.py --status        # Show current status
  python scripts/sync_recordings.py --runs 20       # Show last 20 runs
        """,
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview what would happen without making changes",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show ledger statistics and exit",
    )
    parser.add_argument(
        "--runs",
        type=int,
        metavar="N",
        help="Show the last N run summaries and exit",
    )
    parser.add_argument(
        "--config",
        action="store_true",
        help="Show current configuration and exit",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create ledger tables and exit",
    )
    parser.add_argument(
        "--forget",
        metavar="RECORDING_ID",
        help="Remove a recording from the ledger so it is synced again",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        if args.status:
            show_status()
        elif args.runs:
            show_runs(args.runs)
        elif args.config:
            show_config()
        elif args.init_db:
            init_db()
        elif args.forget:
            forget(args.forget)
        else:
            run_sync(dry_run=args.dry_run)

    except ConfigurationError as e:
        print(f"\nConfiguration error: {e}")
        print("\nMake sure required environment variables are set:")
        print("  - ZOOM_ACCOUNT_ID, ZOOM_CLIENT_ID, ZOOM_CLIENT_SECRET")
        print("  - GOOGLE_DRIVE_FOLDER_ID and Google credentials")
        print("  - DATABASE_URL (when LEDGER_BACKEND=postgres)")
        sys.exit(1)


if __name__ == "__main__":
    main()
