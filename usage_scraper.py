#!/usr/bin/env python
"""
Console Usage Scraper - Unified CLI with Observability
"""
import sys
import argparse
import json
import signal
import threading
import time
import uuid

from console_usage.config import settings
from console_usage.exceptions import ConsoleUsageError, FatalScrapeError, SyncError
from console_usage.utils.logging import setup_logging
from console_usage.utils.observability import initialize_observability, Logger, ObservabilityConfig, CORRELATION_ID

# Initialize observability
OBSERVABILITY = ObservabilityConfig(settings.observability)
initialize_observability(OBSERVABILITY)
setup_logging("console_usage", level=OBSERVABILITY.log_level, log_format=OBSERVABILITY.log_format)

logger = Logger(__name__)


def _launcher():
    from console_usage.scraper.browser import PlaywrightBrowserLauncher
    return PlaywrightBrowserLauncher(navigation_timeout_s=settings.scraper.navigation_timeout_s)


def _storage():
    from console_usage.storage.versioned import VersionedStorage
    storage = VersionedStorage(settings.storage)
    storage.initialize()
    return storage


def _scraper():
    from console_usage.scraper.usage_scraper import UsageScraper
    return UsageScraper(_launcher(), settings.scraper)


def cmd_login(args):
    """Open a visible browser so the operator can log in; the profile persists the session."""
    launcher = _launcher()
    session_dir = settings.scraper.session_dir
    session_dir.mkdir(parents=True, exist_ok=True)

    print("Opening browser for Console login...")
    print(f"Session will be saved to: {session_dir}")

    browser = launcher.launch(
        session_dir,
        headless=False,
        viewport=(settings.scraper.viewport_width, settings.scraper.viewport_height),
    )
    try:
        try:
            browser.navigate(settings.scraper.usage_url, timeout_s=settings.scraper.navigation_timeout_s)
        except ConsoleUsageError as e:
            # The login page may never reach network idle; the operator can still log in
            logger.log_warning("login_navigation_incomplete", error=str(e))

        print("\n===========================================")
        print("Please log in in the browser window.")
        print("Once you see the Usage page, press Enter here.")
        print("===========================================\n")
        input()

        content = browser.page_content()
        if settings.scraper.auth_marker_text in content or "Resets in" in content:
            print("[OK] Login successful! Session saved.")
            logger.log_event("login_verified")
            code = 0
        else:
            print("WARN: Could not verify login. Check the browser.")
            logger.log_warning("login_unverified")
            code = 1
    finally:
        browser.close()

    print("You can now run the scraper: python usage_scraper.py scrape")
    return code


def cmd_validate(args):
    """Check whether the saved session is still authenticated."""
    from console_usage.scraper.session_validator import SessionValidator

    validator = SessionValidator(_launcher(), settings.scraper)
    result = validator.validate(attempt_recovery=args.recover)

    if result.valid:
        print("[OK] Session is valid")
        if result.recovery_attempted:
            print(f"   Recovery: {result.recovery_result.action}")
        return 0

    category = result.category.value if result.category else "UNKNOWN"
    print(f"ERROR: Session invalid ({category}): {result.reason}")
    if result.recovery_attempted:
        print(f"   Recovery: {result.recovery_result.action}")
    return 1


def cmd_scrape(args):
    """One-shot scrape: extract, persist, apply retention and sync."""
    from console_usage.sync.client import SyncClient

    logger.log_event('scrape_command_started')
    snapshot = _scraper().scrape()

    storage = _storage()
    path = storage.save_version(snapshot)
    storage.cleanup_old_versions()
    print(f"[OK] Saved to: {path}")

    if args.json:
        print(json.dumps(snapshot.to_dict(), indent=2))

    if args.no_sync:
        return 0

    with SyncClient(settings.sync) as client:
        try:
            response = client.sync_with_retry(snapshot)
        except SyncError as e:
            print(f"WARN: Sync failed ({e.category.value}): {e}")
            return 0
    print(f"Sync: {'OK' if response.success else 'SKIPPED'} - {response.message}")
    return 0


def cmd_run(args):
    """Run the auto-scraper loop until SIGINT/SIGTERM."""
    from console_usage.orchestrator.auto_scraper import AutoScraper
    from console_usage.scraper.retry_strategy import RetryStrategy
    from console_usage.sync.client import SyncClient

    stop_event = threading.Event()

    def _shutdown(signum, frame):
        print("\n[Auto-Scraper] Shutting down gracefully...")
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    print("[Auto-Scraper] Starting Console usage auto-scraper...")
    print(f"[Auto-Scraper] Will scrape every {settings.orchestrator.interval_s / 60:.0f} minutes")

    with SyncClient(settings.sync) as client:
        auto = AutoScraper(
            scraper=_scraper(),
            storage=_storage(),
            sync_client=client,
            retry_strategy=RetryStrategy(settings.retry),
            config=settings.orchestrator,
            scraper_config=settings.scraper,
        )
        try:
            auto.run_forever(stop_event)
        except FatalScrapeError as e:
            print(f"\n[Auto-Scraper] FATAL ({e.category.value}): {e}")
            print(f"[Auto-Scraper] Remediation: {e.remediation}")
            return 1
    return 0


def cmd_sync(args):
    """Push the latest stored snapshot to the sync endpoint."""
    from console_usage.sync.client import SyncClient

    snapshot = _storage().load_latest()
    if snapshot is None:
        print("WARN: No stored snapshot. Run 'scrape' first.")
        return 1

    with SyncClient(settings.sync) as client:
        try:
            response = client.sync_with_retry(snapshot) if args.retry else client.sync_to_remote(snapshot)
        except SyncError as e:
            print(f"ERROR: Sync failed ({e.category.value}): {e}")
            return 1
    print(f"Sync: {'OK' if response.success else 'SKIPPED'} - {response.message}")
    return 0 if response.success else 1


def cmd_cleanup_cache(args):
    """Clear browser cache folders in the session profile."""
    from console_usage.scraper.cache_cleanup import cleanup_cache, should_cleanup

    session_dir = settings.scraper.session_dir
    if args.if_needed and not should_cleanup(session_dir, settings.orchestrator.cache_threshold_mb):
        print(f"Profile under {settings.orchestrator.cache_threshold_mb:.0f} MB, nothing to do")
        return 0

    stats = cleanup_cache(session_dir)
    print(f"Freed {stats.bytes_freed / 1024 / 1024:.2f} MB")
    print(f"Deleted {stats.files_deleted} files from {stats.directories_processed} directories")
    return 0


def cmd_history(args):
    """List stored versions, newest first."""
    from console_usage.storage.versioned import parse_timestamp_from_filename

    storage = _storage()
    versions = storage.list_versions(limit=args.limit)
    metadata = storage.get_metadata()

    print(f"\nVersion history: {storage.history_dir}")
    print("=" * 70)
    print(f"{'Timestamp (UTC)':<22} | {'Partial':<7} | {'Session':>7} | {'All':>5} | {'Sonnet':>6}")
    print("-" * 70)
    for path in versions:
        snapshot = storage.load_version(path)
        ts = parse_timestamp_from_filename(path.name)
        session = f"{snapshot.current_session.percentage_used}%" if snapshot.current_session else "-"
        weekly = snapshot.weekly_limits
        all_models = f"{weekly.all_models.percentage_used}%" if weekly else "-"
        sonnet = f"{weekly.sonnet_only.percentage_used}%" if weekly else "-"
        print(f"{ts:%Y-%m-%d %H:%M:%S}    | {str(snapshot.is_partial):<7} | {session:>7} | {all_models:>5} | {sonnet:>6}")
    print("=" * 70)
    print(f"Stored: {metadata.version_count} | Created: {metadata.total_versions_created} | "
          f"Deleted: {metadata.total_versions_deleted} | Last cleanup: {metadata.last_cleanup or 'never'}")
    return 0


def cmd_cleanup_history(args):
    """Apply the retention policy now."""
    deleted = _storage().cleanup_old_versions()
    print(f"Deleted {deleted} versions")
    return 0


def cmd_storage_health(args):
    """Probe the history directory for write readiness."""
    from console_usage.storage.versioned import VersionedStorage

    health = VersionedStorage(settings.storage).can_write_to_storage()
    if health.healthy:
        free = f"{health.free_bytes / 1024 / 1024:.0f} MB free" if health.free_bytes is not None else "free space unknown"
        print(f"[OK] Storage writable ({free})")
        return 0
    print(f"ERROR: Storage not writable [{health.issue}]: {health.reason}")
    return 1


def cmd_serve(args):
    """Run the receiving endpoint."""
    import uvicorn
    from console_usage.api.main import create_app

    logger.log_event('serve_command_started', host=args.host, port=args.port)
    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description="Console Usage Scraper")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Log in interactively and save the session")
    login.set_defaults(func=cmd_login)

    validate = subparsers.add_parser("validate", help="Check the saved session")
    validate.add_argument("--recover", action="store_true", help="Attempt recovery if expired")
    validate.set_defaults(func=cmd_validate)

    scrape = subparsers.add_parser("scrape", help="Scrape once, store and sync")
    scrape.add_argument("--no-sync", action="store_true")
    scrape.add_argument("--json", action="store_true", help="Print the snapshot")
    scrape.set_defaults(func=cmd_scrape)

    run = subparsers.add_parser("run", help="Run the auto-scraper loop")
    run.set_defaults(func=cmd_run)

    sync = subparsers.add_parser("sync", help="Sync the latest stored snapshot")
    sync.add_argument("--retry", action="store_true", help="Use the retry ladder")
    sync.set_defaults(func=cmd_sync)

    cache = subparsers.add_parser("cleanup-cache", help="Clear browser profile caches")
    cache.add_argument("--if-needed", action="store_true", help="Only above the size threshold")
    cache.set_defaults(func=cmd_cleanup_cache)

    history = subparsers.add_parser("history", help="List stored versions")
    history.add_argument("--limit", type=int, default=20)
    history.set_defaults(func=cmd_history)

    cleanup_history = subparsers.add_parser("cleanup-history", help="Apply version retention")
    cleanup_history.set_defaults(func=cmd_cleanup_history)

    storage_health = subparsers.add_parser("storage-health", help="Check storage write readiness")
    storage_health.set_defaults(func=cmd_storage_health)

    serve = subparsers.add_parser("serve", help="Run the receiving endpoint")
    serve.add_argument("--host", default=settings.receiver.host)
    serve.add_argument("--port", type=int, default=settings.receiver.port)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Initialize correlation ID for this run
    correlation_id = str(uuid.uuid4())
    CORRELATION_ID.set(correlation_id)

    start_time = time.time()
    try:
        code = args.func(args) or 0
    except ConsoleUsageError as e:
        logger.log_error("command_failed", command=args.command, error=str(e))
        print(f"ERROR: {e}")
        code = 1
    except Exception as e:
        logger.log_error("command_failed", command=args.command, error=str(e), exc_info=True)
        code = 1
    finally:
        duration = time.time() - start_time
        logger.log_event('command_completed', command=args.command, duration_seconds=duration)
    return code


if __name__ == "__main__":
    sys.exit(main())
