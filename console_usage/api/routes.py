from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from typing import Optional
import secrets

from console_usage.api.schema import HistoryResponse, SyncAck, UsagePayload, VersionEntry
from console_usage.exceptions import StorageError
from console_usage.scraper.models import utc_now_iso
from console_usage.storage.versioned import VersionedStorage, parse_timestamp_from_filename
from console_usage.utils.observability import Logger, get_metrics
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()
logger = Logger(__name__)

USAGE_PATH = "/api/claude/console-usage"


class InvalidApiKey(Exception):
    """Raised by the API key dependency; rendered as 401 by the app."""
    pass


def get_storage(request: Request) -> VersionedStorage:
    return request.app.state.storage


def verify_api_key(request: Request, x_api_key: Optional[str] = Header(default=None)):
    """
    Reject the request unless X-API-Key matches the configured receiver key.
    With no key configured every post is rejected.
    """
    expected = request.app.state.receiver_settings.api_key
    if not expected or not x_api_key or not secrets.compare_digest(x_api_key, expected):
        logger.log_warning("sync_rejected_invalid_api_key", client=request.client.host if request.client else None)
        raise InvalidApiKey()


@router.get("/health")
def health_check(request: Request):
    """
    Storage write-readiness plus version metadata.
    """
    storage = get_storage(request)
    health = storage.can_write_to_storage()
    return {
        "status": "healthy" if health.healthy else "degraded",
        "timestamp": utc_now_iso(),
        "storage": health.to_dict(),
        "metadata": storage.get_metadata().to_dict(),
    }


@router.get("/metrics")
def metrics_endpoint(request: Request):
    """
    Expose Prometheus metrics.
    """
    if not request.app.state.metrics_enabled:
        return JSONResponse(status_code=404, content={"error": "Metrics disabled"})
    return Response(generate_latest(get_metrics().registry), media_type=CONTENT_TYPE_LATEST)


@router.post(USAGE_PATH, response_model=SyncAck, dependencies=[Depends(verify_api_key)])
def receive_usage(payload: UsagePayload, request: Request):
    """
    Persist a synced usage snapshot as a new version.
    """
    storage = get_storage(request)
    snapshot = payload.to_snapshot()
    metrics = get_metrics()

    try:
        path = storage.save_version(snapshot)
    except StorageError as e:
        metrics.storage_writes.labels(outcome="transient" if e.transient else "permanent").inc()
        logger.log_error("sync_receive_storage_failed", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": f"Failed to store usage data: {e}", "timestamp": utc_now_iso()},
        )
    metrics.storage_writes.labels(outcome="success").inc()

    try:
        storage.cleanup_old_versions()
    except OSError as e:
        logger.log_warning("sync_receive_cleanup_failed", error=str(e))
    metrics.storage_versions.set(len(storage.list_versions()))

    logger.log_event("sync_received", version=path.name, is_partial=snapshot.is_partial)
    return SyncAck(success=True, message="Usage data synced successfully", timestamp=utc_now_iso())


@router.get(USAGE_PATH)
def latest_usage(request: Request):
    """
    Most recently stored snapshot.
    """
    snapshot = get_storage(request).load_latest()
    if snapshot is None:
        return JSONResponse(status_code=404, content={"error": "No usage data available"})
    return snapshot.to_dict()


@router.get(f"{USAGE_PATH}/history", response_model=HistoryResponse)
def usage_history(request: Request, limit: int = Query(default=20, ge=1, le=1000)):
    """
    Stored versions, newest first.
    """
    versions = []
    for path in get_storage(request).list_versions(limit=limit):
        timestamp = parse_timestamp_from_filename(path.name)
        versions.append(VersionEntry(
            filename=path.name,
            timestamp=timestamp.isoformat().replace("+00:00", "Z"),
        ))
    return HistoryResponse(count=len(versions), versions=versions)
