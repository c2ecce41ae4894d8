"""
Sync client: pushes usage snapshots to the remote receiving endpoint.

Retries use a fixed delay ladder (10s, 20s, 40s by default), unlike the
scrape path's exponential backoff: sync failures are usually short
server or network blips, not session decay.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from console_usage.config import SyncSettings
from console_usage.errors import SyncErrorCategory, classify_sync_error
from console_usage.exceptions import SyncError
from console_usage.scraper.models import UsageSnapshot, utc_now_iso

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


@dataclass
class SyncResponse:
    """Body returned by the endpoint on 2xx (or the local skip result)."""
    success: bool
    message: str
    timestamp: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, data: dict) -> "SyncResponse":
        return cls(
            success=bool(data.get("success", False)),
            message=str(data.get("message", "")),
            timestamp=str(data.get("timestamp") or utc_now_iso()),
        )

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message, "timestamp": self.timestamp}


class SyncClient:
    """
    HTTP client for the usage receiving endpoint.

    Example:
        client = SyncClient(settings.sync)
        response = client.sync_with_retry(snapshot)
    """

    def __init__(
        self,
        config: Optional[SyncSettings] = None,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or SyncSettings()
        self._client = client or httpx.Client(timeout=self.config.timeout_s)
        self._sleep = sleep

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def configured(self) -> bool:
        return bool(self.config.api_key)

    def sync_to_remote(self, snapshot: UsageSnapshot) -> SyncResponse:
        """
        Single POST attempt.

        Returns:
            SyncResponse from the endpoint, or a non-success response when
            no API key is configured (nothing is sent)

        Raises:
            SyncError: categorized failure
        """
        if not self.configured:
            logger.warning("[Sync Client] CLAUDE_SYNC_API_KEY not set. Skipping sync.")
            return SyncResponse(success=False, message="API key not configured")

        try:
            response = self._client.post(
                self.config.url,
                json=snapshot.to_sync_payload(),
                headers={API_KEY_HEADER: self.config.api_key},
                timeout=self.config.timeout_s,
            )
        except httpx.TimeoutException as e:
            raise SyncError(
                SyncErrorCategory.NETWORK,
                f"Sync network error: Request timeout after {self.config.timeout_s:.0f}s",
            ) from e
        except httpx.TransportError as e:
            raise SyncError(SyncErrorCategory.NETWORK, f"Sync network error: {e}") from e

        if response.is_success:
            try:
                return SyncResponse.from_dict(response.json())
            except ValueError:
                # 2xx with a non-JSON body still means the data was accepted
                return SyncResponse(success=True, message=response.text[:200])

        status = response.status_code
        category = classify_sync_error(status)

        if category is SyncErrorCategory.AUTH:
            message = "Sync authentication failed: Invalid API key"
        elif category is SyncErrorCategory.VALIDATION:
            detail = "Invalid data format"
            try:
                body = response.json()
                detail = body.get("message") or body.get("error") or detail
            except (ValueError, AttributeError):
                pass
            message = f"Sync validation failed: {detail}"
        else:
            message = f"Sync failed with status {status}: {response.reason_phrase}"

        raise SyncError(category, message, status_code=status)

    def sync_with_retry(self, snapshot: UsageSnapshot) -> SyncResponse:
        """
        POST with the fixed retry ladder.

        AUTH and VALIDATION failures abort on first occurrence; NETWORK,
        SERVER and UNKNOWN are retried until the ladder is exhausted.

        Raises:
            SyncError: the last failure
        """
        delays = list(self.config.retry_delays_s)
        max_attempts = len(delays)

        for attempt in range(1, max_attempts + 1):
            try:
                response = self.sync_to_remote(snapshot)
                if attempt > 1:
                    logger.info(f"[Sync Client] Sync succeeded on attempt {attempt}")
                return response
            except SyncError as e:
                if not e.retryable:
                    logger.error(f"[Sync Client] {e.category.value} error, not retrying: {e}")
                    raise

                if attempt >= max_attempts:
                    logger.error(f"[Sync Client] Sync failed after {attempt} attempts: {e}")
                    raise

                delay = delays[attempt - 1]
                logger.warning(
                    f"[Sync Client] {e.category.value} error (attempt {attempt}/{max_attempts}): {e}. "
                    f"Retrying in {delay:.0f}s"
                )
                self._sleep(delay)

        raise SyncError(SyncErrorCategory.UNKNOWN, "Sync not attempted: empty retry ladder")
