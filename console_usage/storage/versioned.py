"""
Versioned snapshot storage with retention.

Layout of the history directory:
- ``YYYY-MM-DDTHH-mm-ss-{8hex}.json``: one immutable file per saved snapshot
- ``_metadata.json``: counters and timestamps (StorageMetadata)

A sibling "latest" file mirrors the most recent version for simple readers.

Writes go through a temp file + rename so a crash never leaves a
half-written version behind. Transient OS errors are retried on a short
fixed ladder; permanent ones abort immediately.
"""
import errno as errno_codes
import json
import logging
import os
import re
import secrets
import shutil
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from console_usage.config import StorageSettings
from console_usage.exceptions import StorageError, StorageHealthError
from console_usage.scraper.models import UsageSnapshot

logger = logging.getLogger(__name__)

METADATA_FILE = "_metadata.json"
PROBE_FILE = ".write-test"
TEMP_SUFFIX = ".tmp"

# Below this, writes are refused before they can fill the disk
MIN_FREE_BYTES = 1024 * 1024

_VERSION_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2})-[a-f0-9]{8}\.json$")
_FILENAME_TS_FORMAT = "%Y-%m-%dT%H-%M-%S"

TRANSIENT_ERRNOS = frozenset({errno_codes.EBUSY, errno_codes.EAGAIN, errno_codes.EINTR})
PERMANENT_ERRNOS = {
    errno_codes.ENOSPC: "disk full",
    errno_codes.EACCES: "permission denied",
    errno_codes.EPERM: "operation not permitted",
    errno_codes.EROFS: "read-only file system",
    errno_codes.ENOENT: "directory missing",
}


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_version_filename(now: Optional[datetime] = None) -> str:
    """Sortable UTC timestamp plus 8 random hex chars (collision avoidance only)."""
    now = now or datetime.now(timezone.utc)
    return f"{now.astimezone(timezone.utc).strftime(_FILENAME_TS_FORMAT)}-{secrets.token_hex(4)}.json"


def parse_timestamp_from_filename(filename: str) -> Optional[datetime]:
    """Recover the UTC timestamp from a version filename, or None if it is not one."""
    match = _VERSION_PATTERN.match(filename)
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), _FILENAME_TS_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def is_transient_error(error: OSError) -> bool:
    return error.errno in TRANSIENT_ERRNOS


@dataclass
class StorageMetadata:
    version_count: int = 0
    oldest_timestamp: Optional[str] = None
    newest_timestamp: Optional[str] = None
    last_cleanup: Optional[str] = None
    total_versions_created: int = 0
    total_versions_deleted: int = 0

    def to_dict(self) -> dict:
        return {
            "versionCount": self.version_count,
            "oldestTimestamp": self.oldest_timestamp,
            "newestTimestamp": self.newest_timestamp,
            "lastCleanup": self.last_cleanup,
            "totalVersionsCreated": self.total_versions_created,
            "totalVersionsDeleted": self.total_versions_deleted,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StorageMetadata":
        return cls(
            version_count=int(data.get("versionCount", 0)),
            oldest_timestamp=data.get("oldestTimestamp"),
            newest_timestamp=data.get("newestTimestamp"),
            last_cleanup=data.get("lastCleanup"),
            total_versions_created=int(data.get("totalVersionsCreated", 0)),
            total_versions_deleted=int(data.get("totalVersionsDeleted", 0)),
        )


@dataclass
class StorageHealth:
    """Result of a write-readiness probe."""
    healthy: bool
    reason: Optional[str] = None
    issue: Optional[str] = None  # missing | permission | read-only | disk-space | io
    free_bytes: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VersionFile:
    filename: str
    filepath: Path
    timestamp: datetime


class VersionedStorage:
    """
    Filesystem-backed version history for usage snapshots.

    Single-writer: the metadata file is read-modify-written without locking.

    Example:
        storage = VersionedStorage(settings.storage)
        storage.initialize()
        path = storage.save_version(snapshot)
        storage.cleanup_old_versions()
    """

    def __init__(
        self,
        config: Optional[StorageSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.config = config or StorageSettings()
        self.history_dir = Path(self.config.history_dir)
        self.latest_file = Path(self.config.latest_file)
        self._sleep = sleep
        self._clock = clock

    @property
    def metadata_path(self) -> Path:
        return self.history_dir / METADATA_FILE

    # ------------------------------------------------------------------
    # Setup and metadata
    # ------------------------------------------------------------------

    def initialize(self):
        """Create the history directory, verify it is writable, seed metadata."""
        self.history_dir.mkdir(parents=True, exist_ok=True)

        probe = self.history_dir / PROBE_FILE
        try:
            probe.write_text("test", encoding="utf-8")
            probe.unlink()
        except OSError as e:
            raise StorageError(
                f"Storage directory not writable: {self.history_dir}", errno=e.errno
            ) from e

        if not self.metadata_path.exists():
            self._save_metadata(StorageMetadata())
            logger.info(f"[Console Storage] Initialized history at {self.history_dir}")

    def get_metadata(self) -> StorageMetadata:
        """Read metadata; defaults when the file is missing or unreadable."""
        if not self.metadata_path.exists():
            return StorageMetadata()
        try:
            return StorageMetadata.from_dict(json.loads(self.metadata_path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as e:
            logger.error(f"[Console Storage] Failed to read metadata: {e}")
            return StorageMetadata()

    def _save_metadata(self, metadata: StorageMetadata):
        self._atomic_write(self.metadata_path, json.dumps(metadata.to_dict(), indent=2))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _atomic_write(self, path: Path, content: str):
        """Write to a temp file beside ``path`` then rename over it."""
        temp_path = path.with_name(f".{path.name}{TEMP_SUFFIX}")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise

    def can_write_to_storage(self) -> StorageHealth:
        """
        Probe the history directory: write, read back, delete a small file.

        Disk space, permission and read-only problems are reported with
        distinct ``issue`` values so operators know what to fix.
        """
        if not self.history_dir.exists():
            return StorageHealth(
                healthy=False,
                reason=f"History directory does not exist: {self.history_dir}",
                issue="missing",
            )

        free_bytes = None
        try:
            free_bytes = shutil.disk_usage(self.history_dir).free
        except OSError as e:
            logger.debug(f"[Console Storage] disk_usage unavailable: {e}")

        if free_bytes is not None and free_bytes < MIN_FREE_BYTES:
            return StorageHealth(
                healthy=False,
                reason=f"Insufficient disk space: {free_bytes} bytes free",
                issue="disk-space",
                free_bytes=free_bytes,
            )

        probe = self.history_dir / PROBE_FILE
        try:
            probe.write_text("probe", encoding="utf-8")
            if probe.read_text(encoding="utf-8") != "probe":
                return StorageHealth(
                    healthy=False,
                    reason="Probe file read back different content",
                    issue="io",
                    free_bytes=free_bytes,
                )
            probe.unlink()
        except OSError as e:
            if e.errno == errno_codes.EROFS:
                issue = "read-only"
            elif e.errno in (errno_codes.EACCES, errno_codes.EPERM):
                issue = "permission"
            elif e.errno == errno_codes.ENOSPC:
                issue = "disk-space"
            else:
                issue = "io"
            return StorageHealth(
                healthy=False,
                reason=f"Storage probe failed ({issue}): {e}",
                issue=issue,
                free_bytes=free_bytes,
            )

        return StorageHealth(healthy=True, free_bytes=free_bytes)

    def save_version(self, snapshot: UsageSnapshot) -> Path:
        """
        Persist a snapshot as a new version file.

        Only the version file write is retried; the latest file and metadata
        are updated once it exists, so a retry never leaves a second version.

        Returns:
            Path of the new version file

        Raises:
            StorageHealthError: Pre-write probe failed; nothing was attempted
            StorageError: Permanent failure, or transient failures outlasted the retries
        """
        health = self.can_write_to_storage()
        if not health.healthy:
            raise StorageHealthError(f"Storage health check failed: {health.reason}")

        content = json.dumps(snapshot.to_dict(), indent=2)
        filepath = self._retry_transient(lambda: self._write_version(content), "save version")

        try:
            self.latest_file.parent.mkdir(parents=True, exist_ok=True)
            self._atomic_write(self.latest_file, content)
        except OSError as e:
            # Non-fatal: the version itself is saved
            logger.error(f"[Console Storage] Failed to update latest file: {e}")

        self._retry_transient(self._record_new_version, "update metadata")

        logger.info(f"[Console Storage] Saved version {filepath.name}")
        return filepath

    def _retry_transient(self, operation: Callable, action: str):
        """Run ``operation``, retrying transient OS errors on the write delay ladder."""
        delays_ms = list(self.config.write_retry_delays_ms)
        max_attempts = len(delays_ms)

        for attempt in range(1, max_attempts + 1):
            try:
                return operation()
            except OSError as e:
                if not is_transient_error(e):
                    label = PERMANENT_ERRNOS.get(e.errno, "unexpected error")
                    logger.error(f"[Console Storage] Failed to {action} ({label}): {e}")
                    raise StorageError(
                        f"Failed to {action}: {label}: {e} (non-retryable)", errno=e.errno
                    ) from e

                if attempt >= max_attempts:
                    logger.error(f"[Console Storage] Failed to {action} after {attempt} attempts: {e}")
                    raise StorageError(
                        f"Failed to {action}: {e} (retries exhausted after {attempt} attempts)",
                        transient=True,
                        errno=e.errno,
                    ) from e

                delay_ms = delays_ms[attempt - 1]
                logger.warning(
                    f"[Console Storage] Transient error during {action} ({e}), retrying in {delay_ms}ms "
                    f"(attempt {attempt}/{max_attempts})"
                )
                self._sleep(delay_ms / 1000.0)

        raise StorageError(f"Failed to {action}: no write attempts configured")

    def _write_version(self, content: str) -> Path:
        filepath = self.history_dir / generate_version_filename(self._clock())
        self._atomic_write(filepath, content)
        return filepath

    def _record_new_version(self):
        metadata = self.get_metadata()
        metadata.version_count += 1
        metadata.total_versions_created += 1
        metadata.newest_timestamp = _iso(self._clock())
        if not metadata.oldest_timestamp:
            metadata.oldest_timestamp = metadata.newest_timestamp
        self._save_metadata(metadata)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _version_files(self, newest_first: bool) -> List[VersionFile]:
        if not self.history_dir.exists():
            return []
        items = []
        for entry in self.history_dir.iterdir():
            timestamp = parse_timestamp_from_filename(entry.name)
            if timestamp is None:
                continue
            items.append(VersionFile(filename=entry.name, filepath=entry, timestamp=timestamp))
        items.sort(key=lambda item: (item.timestamp, item.filename), reverse=newest_first)
        return items

    def list_versions(self, limit: Optional[int] = None) -> List[Path]:
        """Version file paths, newest first. Unparsable filenames are skipped."""
        try:
            paths = [item.filepath for item in self._version_files(newest_first=True)]
        except OSError as e:
            logger.error(f"[Console Storage] Failed to list versions: {e}")
            return []
        return paths[:limit] if limit else paths

    def load_version(self, path: Path) -> UsageSnapshot:
        with open(path, "r", encoding="utf-8") as f:
            return UsageSnapshot.from_dict(json.load(f))

    def load_latest(self) -> Optional[UsageSnapshot]:
        """Most recent snapshot: the latest file if readable, else the newest version."""
        try:
            if self.latest_file.exists():
                return self.load_version(self.latest_file)
        except (OSError, ValueError) as e:
            logger.warning(f"[Console Storage] Latest file unreadable, falling back to history: {e}")

        versions = self.list_versions(limit=1)
        if not versions:
            return None
        return self.load_version(versions[0])

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def _retention_plan(self, files: List[VersionFile]) -> Tuple[int, int]:
        """Return (files_to_keep, files_in_retention_window) for oldest-first ``files``."""
        cutoff = self._clock() - timedelta(days=self.config.retention_days)
        in_window = sum(1 for item in files if item.timestamp >= cutoff)
        files_to_keep = max(in_window, min(self.config.max_versions, len(files)))
        return files_to_keep, in_window

    def cleanup_old_versions(self) -> int:
        """
        Delete the oldest versions beyond the retention policy.

        Keeps every version newer than ``retention_days`` and at least the
        newest ``max_versions``, whichever is more. Individual delete
        failures are logged and skipped.

        Returns:
            Number of files deleted
        """
        files = self._version_files(newest_first=False)
        if not files:
            return 0

        files_to_keep, _ = self._retention_plan(files)
        to_delete = files[: len(files) - files_to_keep]
        if not to_delete:
            return 0

        doomed = {item.filename for item in to_delete}
        deleted = 0
        remaining = []
        for item in files:
            if item.filename in doomed:
                try:
                    item.filepath.unlink()
                    deleted += 1
                    continue
                except OSError as e:
                    logger.error(f"[Console Storage] Failed to delete {item.filename}: {e}")
            remaining.append(item)

        metadata = self.get_metadata()
        metadata.version_count = max(metadata.version_count - deleted, 0)
        metadata.total_versions_deleted += deleted
        metadata.last_cleanup = _iso(self._clock())
        metadata.oldest_timestamp = _iso(remaining[0].timestamp) if remaining else None
        self._save_metadata(metadata)

        logger.info(
            f"[Console Storage] Cleanup completed: deleted {deleted} versions, "
            f"retained {len(remaining)} versions"
        )
        return deleted
