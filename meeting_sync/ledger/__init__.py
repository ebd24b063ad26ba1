"""
Sync ledger package.

Persists which recordings have been synced, the files produced from them and
one summary row per run. SQLite for local use, Postgres for production.
"""

from typing import Optional

from meeting_sync.config import Settings, get_settings
from meeting_sync.ledger.base import SyncLedger
from meeting_sync.ledger.sqlite_ledger import SQLiteLedger


def create_ledger(settings: Optional[Settings] = None) -> SyncLedger:
    """Build the ledger backend selected by LEDGER_BACKEND."""
    settings = settings or get_settings()
    if settings.ledger_backend == "postgres":
        from meeting_sync.ledger.postgres_ledger import PostgresLedger

        return PostgresLedger(db_url=settings.database_url)
    return SQLiteLedger(db_path=settings.ledger_path)


__all__ = [
    "SyncLedger",
    "SQLiteLedger",
    "create_ledger",
]
