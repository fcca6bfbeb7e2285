"""
Tests for the reminders HTTP API
================================

Routes, error mapping and API-key protection through FastAPI's TestClient.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from healthpath.core.config import settings as core_settings
from healthpath.reminders.api import get_coordinator, get_notification_service, get_session_factory
from healthpath.reminders.exceptions import PersistenceFailure, ReminderConflictError
from healthpath.reminders.scheduler import CeleryNotificationService
from healthpath.reminders.service import app

BASE = "/api/v1/reminders"


def parse(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


@pytest.fixture
def client(coordinator, monkeypatch):
    monkeypatch.setattr(core_settings, "REQUIRE_API_KEY", False)
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def created(client, daily_pill):
    response = client.post(f"{BASE}/", params={"user_id": "user-1"}, json=daily_pill)
    assert response.status_code == 201
    return response.json()


class TestCrudRoutes:
    def test_health(self, client):
        assert client.get(f"{BASE}/health").json() == {"status": "healthy", "service": "reminders"}

    def test_create_returns_reminder_and_notification(self, created, notifier):
        assert created["reminder"]["user_id"] == "user-1"
        assert parse(created["reminder"]["next_due"]) == parse("2024-01-15T08:00:00Z")
        assert created["notification"]["status"] == "scheduled"
        assert created["notification"]["handle"] in notifier.live

    def test_create_validates_body(self, client, daily_pill):
        response = client.post(f"{BASE}/", params={"user_id": "user-1"}, json={**daily_pill, "time": "25:00"})
        assert response.status_code == 422

    def test_create_requires_user(self, client, daily_pill):
        assert client.post(f"{BASE}/", json=daily_pill).status_code == 422

    def test_get_and_list(self, client, created):
        reminder_id = created["reminder"]["id"]
        assert client.get(f"{BASE}/{reminder_id}").json()["title"] == "Take pill"
        listed = client.get(f"{BASE}/", params={"user_id": "user-1"}).json()
        assert [r["id"] for r in listed] == [reminder_id]

    def test_unknown_reminder_is_404(self, client):
        response = client.get(f"{BASE}/missing-id")
        assert response.status_code == 404
        assert response.json()["context"] == {"reminder_id": "missing-id"}

    def test_patch_disable(self, client, created, notifier):
        response = client.patch(f"{BASE}/{created['reminder']['id']}", json={"enabled": False})

        assert response.status_code == 200
        body = response.json()
        assert body["reminder"]["enabled"] is False
        assert body["reminder"]["notification_id"] is None
        assert body["notification"] == {"status": "skipped", "handle": None, "reason": "disabled"}
        assert notifier.live == {}

    def test_patch_clearing_title_is_400(self, client, created):
        response = client.patch(f"{BASE}/{created['reminder']['id']}", json={"title": None})
        assert response.status_code == 400
        assert response.json()["context"]["field"] == "title"

    def test_delete(self, client, created, notifier):
        reminder_id = created["reminder"]["id"]

        response = client.delete(f"{BASE}/{reminder_id}")

        assert response.json()["reason"] == "deleted"
        assert notifier.live == {}
        assert client.get(f"{BASE}/{reminder_id}").status_code == 404


class TestLifecycleRoutes:
    def test_complete_without_body(self, client, created):
        response = client.post(f"{BASE}/{created['reminder']['id']}/complete")

        assert response.status_code == 200
        assert parse(response.json()["reminder"]["next_due"]) == parse("2024-01-16T08:00:00Z")

    def test_skip_is_logged(self, client, created):
        reminder_id = created["reminder"]["id"]
        client.post(f"{BASE}/{reminder_id}/complete", json={"completed": False, "notes": "travelling"})

        logs = client.get(f"{BASE}/{reminder_id}/completions").json()
        assert len(logs) == 1
        assert logs[0]["completed"] is False
        assert logs[0]["notes"] == "travelling"

    def test_share(self, client, created):
        response = client.post(f"{BASE}/{created['reminder']['id']}/share", json={"target_user_id": "user-2"})

        assert response.status_code == 201
        copy = response.json()["reminder"]
        assert copy["user_id"] == "user-2"
        assert copy["shared_from_reminder_id"] == created["reminder"]["id"]

    def test_share_with_owner_is_400(self, client, created):
        response = client.post(f"{BASE}/{created['reminder']['id']}/share", json={"target_user_id": "user-1"})
        assert response.status_code == 400

    def test_upcoming(self, client, created):
        upcoming = client.get(f"{BASE}/upcoming", params={"user_id": "user-1"}).json()
        assert [r["id"] for r in upcoming] == [created["reminder"]["id"]]
        assert upcoming[0]["status"] == "due_today"
        assert upcoming[0]["frequency_label"] == "Every day"

    def test_resync(self, client, created):
        response = client.post(f"{BASE}/resync", params={"user_id": "user-1"})
        assert response.json() == {"user_id": "user-1", "reminders": 1, "rescheduled": 0, "degraded": 0}


class BrokenCoordinator:
    def __init__(self, error):
        self.error = error

    async def get(self, reminder_id):
        raise self.error


class TestErrorMapping:
    @pytest.mark.parametrize(
        "error, status",
        [
            (PersistenceFailure(operation="get"), 503),
            (ReminderConflictError("rem-1", 3, 4), 409),
        ],
    )
    def test_store_errors(self, client, error, status):
        app.dependency_overrides[get_coordinator] = lambda: BrokenCoordinator(error)
        response = client.get(f"{BASE}/rem-1")
        assert response.status_code == status
        assert response.json()["error"] is True


class TestApiKey:
    @pytest.fixture
    def secured(self, client, monkeypatch):
        monkeypatch.setattr(core_settings, "REQUIRE_API_KEY", True)
        monkeypatch.setattr(core_settings, "VALID_API_KEYS", '["k-test"]')
        return client

    def test_missing_key_is_401(self, secured):
        assert secured.get(f"{BASE}/health").status_code == 401

    def test_header_key(self, secured):
        assert secured.get(f"{BASE}/health", headers={"X-API-Key": "k-test"}).status_code == 200

    def test_bearer_key(self, secured):
        assert secured.get(f"{BASE}/health", headers={"Authorization": "Bearer k-test"}).status_code == 200

    def test_wrong_key(self, secured):
        assert secured.get(f"{BASE}/health", headers={"X-API-Key": "nope"}).status_code == 401


def test_default_wiring_uses_database_and_celery():
    assert callable(get_session_factory())
    assert isinstance(get_notification_service(), CeleryNotificationService)
