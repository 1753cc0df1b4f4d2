"""
Serve Tracker Backend — HTTP Route Tests
==========================================

What we test:
    ✅ POST /api/serve-attempts: 201 stored, 202 queued locally, 400 no client
    ✅ Reads: paging header, cached/pending lists, count, 404 mapping
    ✅ PATCH / DELETE round through the service
    ✅ POST /api/notifications: 400 on missing fields, 502 when every
       transport fails
    ✅ POST /api/sync, GET /api/tasks/{id}, GET /health
"""

import httpx
import pytest

from tests.conftest import make_image_b64

SUBMISSION = {
    "clientId": "client-1",
    "caseNumber": "CV-7",
    "caseName": "State v. Smith",
    "status": "failed",
    "notes": "Nobody home",
    "coordinates": "40.7,-74.0",
}


class TestSubmitRoute:

    @pytest.mark.asyncio
    async def test_stored_submission_returns_201(self, test_client, client_record, document_store, test_settings):
        response = await test_client.post(
            "/api/serve-attempts", json={**SUBMISSION, "imageData": make_image_b64()}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["persisted_remotely"] is True
        assert body["record"]["client_name"] == "Jane Doe"
        assert body["record"]["image_url"].startswith("https://appwrite.test/")
        assert body["background_task_id"]
        assert body["record"]["id"] in document_store.collections[test_settings.serve_attempts_collection_id]
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_remote_outage_returns_202(self, test_client, document_store):
        document_store.fail_on.add("create")

        response = await test_client.post("/api/serve-attempts", json=SUBMISSION)

        assert response.status_code == 202
        body = response.json()
        assert body["persisted_remotely"] is False
        assert body["queued_locally"] is True

        pending = await test_client.get("/api/serve-attempts/pending")
        assert [r["id"] for r in pending.json()] == [body["record"]["id"]]
        assert pending.json()[0]["imageUrl"] is None

    @pytest.mark.asyncio
    async def test_missing_client_returns_400(self, test_client, object_store):
        response = await test_client.post(
            "/api/serve-attempts", json={"caseNumber": "CV-7", "imageData": make_image_b64()}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert response.json()["details"] == {"field": "client_id"}
        assert object_store.objects == {}

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, test_client):
        response = await test_client.post(
            "/api/serve-attempts", json={}, headers={"X-Request-ID": "abc123"}
        )
        assert response.headers["X-Request-ID"] == "abc123"
        assert response.json()["request_id"] == "abc123"


class TestReadRoutes:

    @pytest.fixture(autouse=True)
    def _seed(self, document_store, test_settings):
        self.store = document_store
        collection = test_settings.serve_attempts_collection_id
        for i in range(3):
            document_store.seed(collection, f"serve-{i}", {
                "client_id": "client-1" if i < 2 else "client-2",
                "status": "completed",
                "timestamp": f"2024-06-0{i + 1}T12:00:00+00:00",
            })

    @pytest.mark.asyncio
    async def test_page_with_total_header(self, test_client):
        response = await test_client.get("/api/serve-attempts", params={"limit": 2})

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "3"
        body = response.json()
        assert [s["id"] for s in body["serves"]] == ["serve-2", "serve-1"]
        assert body["limit"] == 2

    @pytest.mark.asyncio
    async def test_limit_is_bounded(self, test_client):
        response = await test_client.get("/api/serve-attempts", params={"limit": 500})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_count(self, test_client):
        response = await test_client.get("/api/serve-attempts/count")
        assert response.json() == {"total": 3}

    @pytest.mark.asyncio
    async def test_get_one_and_not_found(self, test_client):
        found = await test_client.get("/api/serve-attempts/serve-1")
        missing = await test_client.get("/api/serve-attempts/nope")

        assert found.status_code == 200
        assert found.json()["status"] == "completed"
        assert found.json()["coordinates"] == "0,0"
        assert missing.status_code == 404
        assert missing.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_client_listing(self, test_client):
        response = await test_client.get("/api/clients/client-1/serve-attempts")
        assert [s["id"] for s in response.json()] == ["serve-1", "serve-0"]

    @pytest.mark.asyncio
    async def test_cached_list_after_sync(self, test_client):
        assert (await test_client.get("/api/serve-attempts/cached")).json() == []

        await test_client.post("/api/sync")

        cached = (await test_client.get("/api/serve-attempts/cached")).json()
        assert [r["id"] for r in cached] == ["serve-2", "serve-1", "serve-0"]
        assert cached[0]["clientId"] == "client-2"

    @pytest.mark.asyncio
    async def test_store_outage_maps_to_503(self, test_client):
        self.store.fail_on.add("list")

        response = await test_client.get("/api/serve-attempts")

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"


class TestEditRoutes:

    @pytest.fixture(autouse=True)
    def _seed(self, document_store, test_settings, client_record):
        self.store = document_store
        self.collection = test_settings.serve_attempts_collection_id
        document_store.seed(self.collection, "serve-1", {
            "client_id": "client-1",
            "case_name": "State v. Smith",
            "status": "failed",
            "notes": "Nobody home",
        })

    @pytest.mark.asyncio
    async def test_patch_changes_only_differing_fields(self, test_client, container, mail_executor):
        response = await test_client.patch(
            "/api/serve-attempts/serve-1",
            json={"status": "completed", "notes": "Nobody home", "caseNumber": "CV-9"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["changed_fields"] == ["case_number", "status"]
        assert body["record"]["case_number"] == "CV-9"

        await container.background.drain()
        _, payload = mail_executor.calls[0]
        assert payload["subject"] == "Serve Attempt Updated - State v. Smith"

    @pytest.mark.asyncio
    async def test_patch_rejects_unknown_status(self, test_client):
        response = await test_client.patch("/api/serve-attempts/serve-1", json={"status": "maybe"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_delete(self, test_client):
        response = await test_client.delete("/api/serve-attempts/serve-1")

        assert response.status_code == 200
        assert response.json() == {"success": True, "id": "serve-1"}
        assert "serve-1" not in self.store.collections[self.collection]

    @pytest.mark.asyncio
    async def test_delete_missing_is_404(self, test_client):
        response = await test_client.delete("/api/serve-attempts/nope")
        assert response.status_code == 404


class TestNotificationRoute:

    @pytest.mark.asyncio
    async def test_sends_through_function(self, test_client, mail_executor):
        response = await test_client.post("/api/notifications", json={
            "to": "a@x.com, b@x.com",
            "subject": "Serve Attempt",
            "html": "<p>details</p>",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["transport"] == "function"
        assert body["recipients"] == ["a@x.com", "b@x.com", "info@justlegalsolutions.org"]
        assert len(mail_executor.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_body_is_400(self, test_client, mail_executor):
        response = await test_client.post(
            "/api/notifications", json={"to": ["a@x.com"], "subject": "Serve Attempt"}
        )

        assert response.status_code == 400
        assert mail_executor.calls == []

    @pytest.mark.asyncio
    async def test_all_transports_failing_is_502(self, test_client, mail_executor, http_routes):
        mail_executor.fail = True
        http_routes[
            "https://appwrite.test/v1/messaging/topics/serve-notifications/subscribers"
        ] = lambda request: httpx.Response(503, json={"message": "unavailable"})

        response = await test_client.post("/api/notifications", json={
            "to": ["a@x.com"], "subject": "Serve Attempt", "text": "details",
        })

        assert response.status_code == 502
        assert response.json()["success"] is False


class TestSyncAndTaskRoutes:

    @pytest.mark.asyncio
    async def test_sync_replays_queued_then_refreshes_cache(self, test_client, document_store):
        document_store.fail_on.add("create")
        queued = (await test_client.post("/api/serve-attempts", json=SUBMISSION)).json()
        document_store.fail_on.clear()

        response = await test_client.post("/api/sync")

        assert response.status_code == 200
        body = response.json()
        assert body["replay"]["replayed"] == [queued["record"]["id"]]
        assert body["sync"]["success"] is True
        assert body["sync"]["count"] == 1
        assert (await test_client.get("/api/serve-attempts/pending")).json() == []

    @pytest.mark.asyncio
    async def test_task_outcome(self, test_client, container):
        created = (await test_client.post("/api/serve-attempts", json=SUBMISSION)).json()
        task_id = created["background_task_id"]

        await container.background.wait(task_id)
        response = await test_client.get(f"/api/tasks/{task_id}")

        assert response.status_code == 200
        assert response.json()["state"] == "succeeded"
        assert response.json()["name"] == "serve-attempt-created"

    @pytest.mark.asyncio
    async def test_unknown_task_is_404(self, test_client):
        response = await test_client.get("/api/tasks/does-not-exist")
        assert response.status_code == 404


class TestHealthRoute:

    @pytest.mark.asyncio
    async def test_healthy(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["local_cache"] == "connected"
        assert body["remote_config"] == "configured"

    @pytest.mark.asyncio
    async def test_missing_credentials_is_degraded(self, test_client, test_settings):
        test_settings.appwrite_api_key = ""

        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["remote_config"] == "incomplete"
