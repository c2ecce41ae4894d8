"""
Browser profile cache maintenance.

Clears cache folders that grow without bound inside the persistent
profile. Cookie and local-storage folders are never touched, so the
session stays logged in.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

CACHE_SUBDIRS = (
    "Default/Cache",
    "Default/Code Cache",
    "GraphiteDawnCache",
    "Default/Service Worker/CacheStorage",
    "Default/Application Cache",
    "BrowserMetrics",
)

MB = 1024 * 1024


@dataclass
class CleanupStats:
    """Result of a cache cleanup pass."""
    bytes_freed: int = 0
    files_deleted: int = 0
    directories_processed: int = 0

    def to_dict(self) -> dict:
        return {
            "bytesFreed": self.bytes_freed,
            "filesDeleted": self.files_deleted,
            "directoriesProcessed": self.directories_processed,
        }


def directory_size(path: Path) -> int:
    """Total size in bytes of all files below ``path`` (0 if missing)."""
    path = Path(path)
    if not path.exists():
        return 0
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += (Path(root) / name).stat().st_size
            except OSError:
                # File vanished while walking (browser still writing)
                continue
    return total


def _delete_contents(path: Path, stats: CleanupStats):
    for child in path.iterdir():
        try:
            if child.is_dir() and not child.is_symlink():
                _delete_contents(child, stats)
                child.rmdir()
                stats.directories_processed += 1
            else:
                child.unlink()
                stats.files_deleted += 1
        except OSError as e:
            logger.warning(f"[Cache Cleanup] Could not delete {child}: {e}")


def cleanup_cache(session_dir: Path) -> CleanupStats:
    """
    Delete the contents of known cache folders under the profile.

    Args:
        session_dir: Persistent browser profile directory

    Returns:
        CleanupStats, with ``bytes_freed`` measured as size before minus size after
    """
    session_dir = Path(session_dir)
    stats = CleanupStats()

    if not session_dir.exists():
        logger.info("[Cache Cleanup] Session directory does not exist, nothing to clean")
        return stats

    size_before = directory_size(session_dir)
    logger.info(f"[Cache Cleanup] Session directory size: {size_before / MB:.2f} MB")

    for subdir in CACHE_SUBDIRS:
        target = session_dir / subdir
        if target.is_dir():
            logger.debug(f"[Cache Cleanup] Cleaning {subdir} ({directory_size(target) / MB:.2f} MB)")
            _delete_contents(target, stats)

    size_after = directory_size(session_dir)
    stats.bytes_freed = max(size_before - size_after, 0)

    logger.info(
        f"[Cache Cleanup] Freed {stats.bytes_freed / MB:.2f} MB, deleted {stats.files_deleted} files "
        f"from {stats.directories_processed} directories"
    )
    return stats


def should_cleanup(session_dir: Path, threshold_mb: float = 50.0) -> bool:
    """True when the profile has grown past ``threshold_mb``."""
    session_dir = Path(session_dir)
    if not session_dir.exists():
        return False
    return directory_size(session_dir) / MB > threshold_mb
