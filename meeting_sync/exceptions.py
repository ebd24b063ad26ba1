"""
Exception hierarchy for the sync pipeline.

Each class maps to one failure domain so the transfer job can decide whether
an error is fatal for the run or only for a single item.
"""


class SyncError(Exception):
    """Base class for all sync errors."""


class SourceFetchError(SyncError):
    """Listing recordings or downloading a media file failed."""


class SinkTransferError(SyncError):
    """Uploading to (or configuring a file in) the object store failed."""


class LedgerError(SyncError):
    """Reading from or writing to the sync ledger failed."""


class ConfigurationError(SyncError, ValueError):
    """A required setting is missing or invalid."""
