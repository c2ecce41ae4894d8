"""
Unit tests for browser profile cache maintenance.
"""
from console_usage.scraper.cache_cleanup import (
    CACHE_SUBDIRS,
    MB,
    cleanup_cache,
    directory_size,
    should_cleanup,
)


def fill(path, size):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)


class TestDirectorySize:

    def test_missing_is_zero(self, tmp_path):
        assert directory_size(tmp_path / "nope") == 0

    def test_sums_nested_files(self, tmp_path):
        fill(tmp_path / "a.bin", 100)
        fill(tmp_path / "nested" / "deeper" / "b.bin", 250)
        assert directory_size(tmp_path) == 350


class TestCleanupCache:
    """Tests for clearing cache folders while keeping the login."""

    def test_clears_caches_keeps_cookies(self, session_dir):
        fill(session_dir / "Default" / "Cache" / "data_0", 4096)
        fill(session_dir / "Default" / "Code Cache" / "js" / "index", 2048)
        fill(session_dir / "GraphiteDawnCache" / "data_1", 1024)
        fill(session_dir / "Default" / "Local Storage" / "leveldb" / "000003.log", 512)

        stats = cleanup_cache(session_dir)

        assert stats.bytes_freed == 4096 + 2048 + 1024
        assert stats.files_deleted == 3
        assert stats.directories_processed == 1
        assert (session_dir / "Default" / "Cookies").exists()
        assert (session_dir / "Default" / "Local Storage" / "leveldb" / "000003.log").exists()
        # The cache folders themselves stay, emptied
        assert (session_dir / "Default" / "Cache").is_dir()
        assert list((session_dir / "Default" / "Cache").iterdir()) == []

    def test_missing_session_dir(self, tmp_path):
        stats = cleanup_cache(tmp_path / "none")
        assert stats.bytes_freed == 0
        assert stats.files_deleted == 0

    def test_no_cache_folders(self, session_dir):
        stats = cleanup_cache(session_dir)
        assert stats.to_dict() == {"bytesFreed": 0, "filesDeleted": 0, "directoriesProcessed": 0}

    def test_known_cache_paths(self):
        assert "Default/Cache" in CACHE_SUBDIRS
        assert "Default/Service Worker/CacheStorage" in CACHE_SUBDIRS
        assert not any("Cookies" in subdir or "Local Storage" in subdir for subdir in CACHE_SUBDIRS)


class TestShouldCleanup:

    def test_below_threshold(self, session_dir):
        assert not should_cleanup(session_dir, threshold_mb=1)

    def test_above_threshold(self, session_dir):
        fill(session_dir / "Default" / "Cache" / "big", 2 * MB)
        assert should_cleanup(session_dir, threshold_mb=1)

    def test_missing_dir(self, tmp_path):
        assert not should_cleanup(tmp_path / "nope")
