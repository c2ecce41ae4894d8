"""
Unit tests for the receiving endpoint.
"""
import errno
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from console_usage.api.main import create_app
from console_usage.api.routes import USAGE_PATH
from console_usage.config import ReceiverSettings
from console_usage.exceptions import StorageError
from console_usage.storage.versioned import VersionedStorage

HEADERS = {"X-API-Key": "receiver-key"}


@pytest.fixture
def storage(storage_settings):
    store = VersionedStorage(storage_settings, sleep=lambda s: None)
    store.initialize()
    return store


@pytest.fixture
def client(storage, receiver_settings):
    return TestClient(create_app(storage=storage, receiver_settings=receiver_settings))


class TestReceiveUsage:
    """Tests for POST /api/claude/console-usage."""

    def test_accepts_valid_payload(self, client, storage, sample_snapshot):
        response = client.post(USAGE_PATH, json=sample_snapshot.to_sync_payload(), headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Usage data synced successfully"
        assert storage.load_latest() == sample_snapshot
        assert len(storage.list_versions()) == 1

    def test_accepts_partial_payload(self, client, storage, partial_snapshot):
        response = client.post(USAGE_PATH, json=partial_snapshot.to_dict(), headers=HEADERS)

        assert response.status_code == 200
        assert storage.load_latest().is_partial

    @pytest.mark.parametrize("headers", [{}, {"X-API-Key": "wrong"}])
    def test_rejects_bad_key(self, client, storage, sample_snapshot, headers):
        response = client.post(USAGE_PATH, json=sample_snapshot.to_sync_payload(), headers=headers)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid API key"}
        assert storage.list_versions() == []

    def test_rejects_everything_without_configured_key(self, storage, sample_snapshot):
        client = TestClient(create_app(storage=storage, receiver_settings=ReceiverSettings(api_key=None)))
        response = client.post(USAGE_PATH, json=sample_snapshot.to_sync_payload(), headers=HEADERS)
        assert response.status_code == 401

    @pytest.mark.parametrize("payload", [
        {"isPartial": False},
        {"lastUpdated": "", "isPartial": False},
        {"lastUpdated": "2026-01-15T10:30:00.000Z", "currentSession": {"resetsIn": "1 hr", "percentageUsed": 150}},
        {"lastUpdated": "2026-01-15T10:30:00.000Z", "currentSession": {"percentageUsed": 5}},
    ])
    def test_invalid_payload_is_400(self, client, storage, payload):
        response = client.post(USAGE_PATH, json=payload, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid usage data")
        assert storage.list_versions() == []

    @pytest.mark.parametrize("payload, problem", [
        ({"lastUpdated": "2026-01-01T00:00:00Z", "isPartial": False}, "no usage sections"),
        ({"lastUpdated": "2026-01-01T00:00:00Z", "isPartial": True}, "no usage sections"),
        (
            {"lastUpdated": "2026-01-01T00:00:00Z", "isPartial": False,
             "currentSession": {"resetsIn": "1 hr", "percentageUsed": 5}},
            "requires currentSession and weeklyLimits",
        ),
    ])
    def test_inconsistent_snapshot_not_stored(self, client, storage, payload, problem):
        response = client.post(USAGE_PATH, json=payload, headers=HEADERS)

        assert response.status_code == 400
        assert problem in response.json()["message"]
        assert storage.list_versions() == []

    def test_complete_snapshot_with_errors_rejected(self, client, storage, sample_snapshot):
        payload = sample_snapshot.to_sync_payload()
        payload["extractionErrors"] = {"allModels": "timeout"}

        response = client.post(USAGE_PATH, json=payload, headers=HEADERS)

        assert response.status_code == 400
        assert storage.list_versions() == []

    def test_partial_with_session_only_accepted(self, client, storage):
        payload = {
            "lastUpdated": "2026-01-01T00:00:00Z",
            "isPartial": True,
            "currentSession": {"resetsIn": "1 hr", "percentageUsed": 5},
        }
        response = client.post(USAGE_PATH, json=payload, headers=HEADERS)

        assert response.status_code == 200
        assert storage.load_latest().weekly_limits is None

    def test_storage_failure_is_500(self, client, storage, sample_snapshot):
        with patch.object(storage, "save_version", side_effect=StorageError("disk full", errno=errno.ENOSPC)):
            response = client.post(USAGE_PATH, json=sample_snapshot.to_sync_payload(), headers=HEADERS)

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert "disk full" in body["message"]


class TestReadEndpoints:

    def test_latest_empty_is_404(self, client):
        response = client.get(USAGE_PATH)
        assert response.status_code == 404
        assert response.json() == {"error": "No usage data available"}

    def test_latest_after_post(self, client, sample_snapshot):
        client.post(USAGE_PATH, json=sample_snapshot.to_sync_payload(), headers=HEADERS)
        response = client.get(USAGE_PATH)

        assert response.status_code == 200
        assert response.json() == sample_snapshot.to_dict()

    def test_history(self, client, sample_snapshot, partial_snapshot):
        client.post(USAGE_PATH, json=sample_snapshot.to_sync_payload(), headers=HEADERS)
        client.post(USAGE_PATH, json=partial_snapshot.to_dict(), headers=HEADERS)

        response = client.get(f"{USAGE_PATH}/history", params={"limit": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["versions"][0]["filename"].endswith(".json")
        assert body["versions"][0]["timestamp"].endswith("Z")

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["storage"]["healthy"] is True
        assert body["metadata"]["versionCount"] == 0

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "circuit_state" in response.text

    def test_bad_query_is_not_reported_as_usage_data(self, client):
        response = client.get(f"{USAGE_PATH}/history", params={"limit": 0})

        assert response.status_code == 400
        message = response.json()["message"]
        assert message.startswith("Invalid request")
        assert "limit" in message

    def test_metrics_disabled(self, storage, receiver_settings):
        client = TestClient(create_app(storage=storage, receiver_settings=receiver_settings, enable_metrics=False))
        response = client.get("/metrics")
        assert response.status_code == 404
