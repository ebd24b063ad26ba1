"""
Local staging files for downloads.

Each media item is downloaded to its own temporary file, uploaded from
there, and deleted on every exit path.
"""

import logging
import shutil
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from meeting_sync.exceptions import SourceFetchError

logger = logging.getLogger(__name__)

STAGING_PREFIX = "staged-"


@contextmanager
def staged_file(
    staging_dir: Path,
    suffix: str = "",
    expected_size: Optional[int] = None,
) -> Iterator[Path]:
    """
    Reserve a temporary file in the staging directory.

    Args:
        staging_dir: Directory for staging files (created if missing)
        suffix: File suffix, e.g. ".mp4"
        expected_size: Declared byte size, used to check free space first

    Yields:
        Path to an empty file that is removed when the block exits
    """
    staging_dir = Path(staging_dir)
    staging_dir.mkdir(parents=True, exist_ok=True)

    if expected_size:
        free = shutil.disk_usage(staging_dir).free
        if free < expected_size:
            raise SourceFetchError(
                f"Not enough space in {staging_dir}: need {expected_size} bytes, have {free}"
            )

    handle = tempfile.NamedTemporaryFile(
        dir=staging_dir, prefix=STAGING_PREFIX, suffix=suffix, delete=False
    )
    handle.close()
    path = Path(handle.name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)
        logger.debug(f"Released staging file {path.name}")


def cleanup_stale(staging_dir: Path, max_age_hours: float) -> int:
    """
    Remove staging files left behind by interrupted runs.

    Args:
        staging_dir: Directory to clean
        max_age_hours: Files older than this are deleted

    Returns:
        Number of files removed
    """
    staging_dir = Path(staging_dir)
    if not staging_dir.exists():
        return 0

    cutoff = time.time() - max_age_hours * 3600
    removed = 0
    for path in staging_dir.glob(f"{STAGING_PREFIX}*"):
        if path.is_file() and path.stat().st_mtime < cutoff:
            path.unlink(missing_ok=True)
            removed += 1

    if removed:
        logger.info(f"Removed {removed} stale staging files from {staging_dir}")
    return removed
