"""
Tests for the FastAPI app (src/api/).

Uses a real PostStore on tmp_path; the scheduler pass is patched for the
trigger tests.
"""

from __future__ import annotations

import datetime as dt
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.content.models import Platform, PostStatus
from src.publish.scheduler import PostOutcome, SchedulerRun

_RUN = "src.publish.driver.run_scheduler"


@pytest.fixture
def client(store) -> TestClient:
    return TestClient(create_app(store, cron_secret="s3cret"))


@pytest.fixture
def account(store, make_account):
    return store.upsert_account(make_account())


def _future() -> str:
    return (dt.datetime.now(dt.timezone.utc) + dt.timedelta(hours=1)).isoformat()


# ---------------------------------------------------------------------------
# Trigger
# ---------------------------------------------------------------------------


class TestScheduleTrigger:
    def test_missing_secret_rejected(self, client) -> None:
        with patch(_RUN, new=AsyncMock()) as run:
            resp = client.post("/api/schedule")
        assert resp.status_code == 401
        run.assert_not_awaited()

    def test_wrong_secret_rejected(self, client) -> None:
        with patch(_RUN, new=AsyncMock()) as run:
            resp = client.post("/api/schedule", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        run.assert_not_awaited()

    def test_valid_secret_runs_scheduler(self, client) -> None:
        result = SchedulerRun(
            processed=2,
            results=[
                PostOutcome("p1", True, platform_post_id="tweet-123"),
                PostOutcome("p2", False, error="Twitter API error"),
            ],
        )
        with patch(_RUN, new=AsyncMock(return_value=result)):
            resp = client.post("/api/schedule", headers={"Authorization": "Bearer s3cret"})

        assert resp.status_code == 200
        assert resp.json() == {
            "processed": 2,
            "results": [
                {"post_id": "p1", "success": True, "platform_post_id": "tweet-123", "error": None},
                {"post_id": "p2", "success": False, "platform_post_id": None, "error": "Twitter API error"},
            ],
        }

    def test_open_when_no_secret_configured(self, store) -> None:
        open_client = TestClient(create_app(store, cron_secret=""))
        with patch(_RUN, new=AsyncMock(return_value=SchedulerRun())):
            resp = open_client.post("/api/schedule")
        assert resp.status_code == 200
        assert resp.json() == {"processed": 0, "results": []}


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


class TestPosts:
    def _create(self, client, account, **extra) -> dict:
        body = {"user_id": "user-1", "social_account_id": account.id, "content": "Hello"}
        body.update(extra)
        resp = client.post("/api/posts", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()

    def test_create_draft_and_scheduled(self, client, account) -> None:
        assert self._create(client, account)["status"] == "DRAFT"
        assert self._create(client, account, scheduled_at=_future())["status"] == "SCHEDULED"

    def test_create_rejects_over_limit(self, client, account) -> None:
        resp = client.post(
            "/api/posts",
            json={"user_id": "user-1", "social_account_id": account.id, "content": "x" * 281},
        )
        assert resp.status_code == 400
        assert "280" in resp.json()["detail"]

    def test_create_rejects_foreign_account(self, client, account) -> None:
        resp = client.post(
            "/api/posts",
            json={"user_id": "intruder", "social_account_id": account.id, "content": "hi"},
        )
        assert resp.status_code == 404

    def test_list_and_get_are_owner_scoped(self, client, account) -> None:
        post = self._create(client, account)
        assert [p["id"] for p in client.get("/api/posts", params={"user_id": "user-1"}).json()] == [
            post["id"]
        ]
        assert client.get("/api/posts", params={"user_id": "other"}).json() == []
        assert client.get(f"/api/posts/{post['id']}", params={"user_id": "other"}).status_code == 404

    def test_patch_sets_and_clears_schedule(self, client, account) -> None:
        post = self._create(client, account)

        resp = client.patch(
            f"/api/posts/{post['id']}", json={"user_id": "user-1", "scheduled_at": _future()}
        )
        assert resp.json()["status"] == "SCHEDULED"

        resp = client.patch(
            f"/api/posts/{post['id']}", json={"user_id": "user-1", "scheduled_at": None}
        )
        assert resp.json()["status"] == "DRAFT"
        assert resp.json()["scheduled_at"] is None

    def test_patch_content_keeps_schedule(self, client, account) -> None:
        post = self._create(client, account, scheduled_at=_future())
        resp = client.patch(f"/api/posts/{post['id']}", json={"user_id": "user-1", "content": "Edited"})
        assert resp.json()["content"] == "Edited"
        assert resp.json()["status"] == "SCHEDULED"

    def test_patch_published_rejected(self, client, store, account) -> None:
        post = self._create(client, account, scheduled_at=_future())
        store.update_post(post["id"], {"status": PostStatus.PUBLISHED})

        resp = client.patch(f"/api/posts/{post['id']}", json={"user_id": "user-1", "content": "x"})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot edit a published post"

    def test_retry_failed_keeps_time(self, client, store, account) -> None:
        past = dt.datetime(2026, 1, 1, 9, 0, tzinfo=dt.timezone.utc)
        post = self._create(client, account, scheduled_at=past.isoformat())
        store.update_post(post["id"], {"status": PostStatus.FAILED, "error_message": "boom"})

        resp = client.post(f"/api/posts/{post['id']}/retry", json={"user_id": "user-1"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "SCHEDULED"
        assert data["error_message"] is None
        stored = store.get_post(post["id"])
        assert stored.status == PostStatus.SCHEDULED
        assert stored.scheduled_at == past
        assert stored.error_message is None

    def test_retry_non_failed_rejected(self, client, account) -> None:
        post = self._create(client, account)
        resp = client.post(f"/api/posts/{post['id']}/retry", json={"user_id": "user-1"})
        assert resp.status_code == 400

    def test_delete(self, client, store, account) -> None:
        post = self._create(client, account)
        assert client.delete(f"/api/posts/{post['id']}", params={"user_id": "other"}).status_code == 404
        assert client.delete(f"/api/posts/{post['id']}", params={"user_id": "user-1"}).status_code == 200
        assert store.get_post(post["id"]) is None


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class TestAccounts:
    def test_connect_and_list_without_tokens(self, client) -> None:
        resp = client.post(
            "/api/accounts",
            json={
                "user_id": "user-1",
                "platform": "INSTAGRAM",
                "platform_id": "IG1",
                "username": "brand",
                "access_token": "secret",
            },
        )
        assert resp.status_code == 200
        assert "access_token" not in resp.json()

        listed = client.get("/api/accounts", params={"user_id": "user-1"}).json()
        assert [a["platform"] for a in listed] == [Platform.INSTAGRAM.value]
        assert all("access_token" not in a and "refresh_token" not in a for a in listed)

    def test_disconnect_checks_ownership(self, client, store, account) -> None:
        resp = client.delete(f"/api/accounts/{account.id}", params={"user_id": "intruder"})
        assert resp.status_code == 404
        assert store.get_account(account.id) is not None

        resp = client.delete(f"/api/accounts/{account.id}", params={"user_id": "user-1"})
        assert resp.status_code == 200
        assert store.get_account(account.id) is None
