"""
Integration tests for the HTTP API.

Tests cover:
- Capture, preview, restore over HTTP
- Error body and status mapping
- Actor header and body validation
- Scheduler trigger authentication
- CORS headers
"""

import pytest
from aiohttp.test_utils import TestClient, TestServer

from recovery.safeback_server.api.http_server import create_http_app
from recovery.safeback_server.config import HttpConfig
from recovery.safeback_server.scheduler import BackupScheduler
from recovery.safeback_server.store import BackupSettings
from tests.helpers import ADMIN, MEMBER, OWNER, execute, seed_workboard


def actor(user):
    return {"X-Actor": user}


class TestHttpApi:
    """Tests for the aiohttp application."""

    @pytest.fixture
    def scheduler(self, service, clock):
        return BackupScheduler(service.control_store, service.capture_engine, clock=clock)

    @pytest.fixture
    async def client(self, service, scheduler):
        app = create_http_app(
            service,
            scheduler,
            HttpConfig(maintenance_key="secret", cors_origins=("https://admin.example",)),
        )
        async with TestClient(TestServer(app)) as client:
            yield client

    async def _capture(self, client, workspace_id, user=OWNER):
        resp = await client.post(
            "/v1/capture", json={"workspace_id": workspace_id}, headers=actor(user)
        )
        assert resp.status == 200
        return (await resp.json())["snapshot_id"]

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/v1/health")

        assert resp.status == 200
        body = await resp.json()
        assert body["healthy"] is True
        assert [p["name"] for p in body["providers"]][0] == "workboard"

    @pytest.mark.asyncio
    async def test_capture_preview_restore(self, client, service, workspace_id):
        seed_workboard(service, workspace_id, tasks=4, goals=2)
        snapshot_id = await self._capture(client, workspace_id)
        execute(service, workspace_id, "DELETE FROM tasks")

        resp = await client.post(
            "/v1/preview", json={"snapshot_id": snapshot_id}, headers=actor(ADMIN)
        )
        assert resp.status == 200
        preview = await resp.json()
        assert preview["summary"]["will_replace"]["tasks"] == 0
        assert preview["summary"]["will_restore"]["tasks"] == 4
        assert preview["snapshot_type"] == "manual"
        assert preview["expires_in_seconds"] == 600

        resp = await client.post(
            "/v1/restore",
            json={"snapshot_id": snapshot_id, "confirmation_token": preview["confirmation_token"]},
            headers=actor(ADMIN),
        )
        assert resp.status == 200
        result = await resp.json()
        assert result["success"] is True
        assert result["pre_restore_snapshot_id"]

        counts = await service.workspace_store.count_entities(workspace_id)
        assert counts["tasks"] == 4

    @pytest.mark.asyncio
    async def test_reused_token_conflicts(self, client, workspace_id):
        snapshot_id = await self._capture(client, workspace_id)
        resp = await client.post(
            "/v1/preview", json={"snapshot_id": snapshot_id}, headers=actor(OWNER)
        )
        token = (await resp.json())["confirmation_token"]
        body = {"snapshot_id": snapshot_id, "confirmation_token": token}

        first = await client.post("/v1/restore", json=body, headers=actor(OWNER))
        second = await client.post("/v1/restore", json=body, headers=actor(OWNER))

        assert first.status == 200
        assert second.status == 409
        assert await second.json() == {
            "error": "Invalid or expired confirmation token",
            "error_code": "INVALID_CONFIRMATION",
        }

    @pytest.mark.asyncio
    async def test_lock_contention_conflicts(self, client, service, workspace_id):
        async with service.capture_engine.locks.hold(workspace_id):
            resp = await client.post(
                "/v1/capture", json={"workspace_id": workspace_id}, headers=actor(OWNER)
            )

        assert resp.status == 409
        assert (await resp.json())["error_code"] == "LOCK_CONTENTION"

    @pytest.mark.asyncio
    async def test_forbidden(self, client, workspace_id):
        resp = await client.post(
            "/v1/capture", json={"workspace_id": workspace_id}, headers=actor(MEMBER)
        )

        assert resp.status == 403
        assert (await resp.json())["error_code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_not_found(self, client, workspace_id):
        resp = await client.post("/v1/preview", json={"snapshot_id": "missing"}, headers=actor(OWNER))

        assert resp.status == 404
        assert (await resp.json())["error_code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_tampered_blob_is_bad_gateway(self, client, service, workspace_id, data_dir):
        await service.control_store.upsert_backup_settings(
            BackupSettings(workspace_id=workspace_id, store_in_storage=True)
        )
        snapshot_id = await self._capture(client, workspace_id)
        snapshot = await service.control_store.get_snapshot(snapshot_id)
        path = f"{data_dir}/blobs/{snapshot.storage_path}"
        with open(path, "ab") as f:
            f.write(b" ")

        resp = await client.get(f"/v1/export?snapshot_id={snapshot_id}", headers=actor(OWNER))

        assert resp.status == 502
        assert (await resp.json())["error_code"] == "STORAGE_FAILURE"

    @pytest.mark.asyncio
    async def test_missing_actor(self, client, workspace_id):
        resp = await client.post("/v1/capture", json={"workspace_id": workspace_id})

        assert resp.status == 401
        assert (await resp.json())["error_code"] == "UNAUTHENTICATED"

    @pytest.mark.asyncio
    async def test_invalid_bodies(self, client, workspace_id):
        resp = await client.post("/v1/capture", data="{not json", headers=actor(OWNER))
        assert resp.status == 400
        assert (await resp.json())["error_code"] == "BAD_REQUEST"

        resp = await client.post("/v1/restore", json={"snapshot_id": "s1"}, headers=actor(OWNER))
        assert resp.status == 400
        assert "confirmation_token" in (await resp.json())["error"]

        resp = await client.get("/v1/snapshots", headers=actor(OWNER))
        assert resp.status == 400

        resp = await client.get(
            f"/v1/snapshots?workspace_id={workspace_id}&limit=abc", headers=actor(OWNER)
        )
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_listings(self, client, workspace_id):
        snapshot_id = await self._capture(client, workspace_id)

        resp = await client.get(f"/v1/snapshots?workspace_id={workspace_id}", headers=actor(OWNER))
        snapshots = (await resp.json())["snapshots"]
        assert [s["id"] for s in snapshots] == [snapshot_id]
        assert snapshots[0]["manifest"]["engine_version"] == 2

        resp = await client.get(f"/v1/providers?workspace_id={workspace_id}", headers=actor(OWNER))
        providers = (await resp.json())["providers"]
        assert providers[-1]["name"] == "team_chat"
        assert providers[-1]["critical"] is False

        resp = await client.get(f"/v1/audit?workspace_id={workspace_id}", headers=actor(OWNER))
        entries = (await resp.json())["entries"]
        assert entries[0]["action"] == "snapshot.captured"
        assert entries[0]["entity_id"] == snapshot_id

        resp = await client.get(f"/v1/export?snapshot_id={snapshot_id}", headers=actor(OWNER))
        assert (await resp.json())["snapshot"]["snapshot_id"] == snapshot_id

    @pytest.mark.asyncio
    async def test_scheduler_trigger_requires_key(self, client):
        resp = await client.post("/v1/maintenance/backup-scheduler")
        assert resp.status == 401

        resp = await client.post(
            "/v1/maintenance/backup-scheduler", headers={"X-Maintenance-Key": "wrong"}
        )
        assert resp.status == 401

        # X-Actor is not a substitute for the maintenance key
        resp = await client.post("/v1/maintenance/backup-scheduler", headers=actor(OWNER))
        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_scheduler_trigger(self, client, service, workspace_id):
        await service.control_store.upsert_backup_settings(
            BackupSettings(workspace_id=workspace_id, is_enabled=True)
        )

        resp = await client.post(
            "/v1/maintenance/backup-scheduler",
            headers={"Authorization": "Bearer secret", "X-Request-ID": "req-42"},
        )
        assert resp.status == 200
        body = await resp.json()
        assert body["ok"] is True
        assert body["request_id"] == "req-42"
        assert body["results"][0]["workspace_id"] == workspace_id
        assert body["results"][0]["snapshot_id"]

        resp = await client.post(
            "/v1/maintenance/backup-scheduler", headers={"X-Maintenance-Key": "secret"}
        )
        assert (await resp.json())["results"] == [{"workspace_id": workspace_id, "skipped": True}]

        resp = await client.post(
            "/v1/maintenance/backup-scheduler",
            json={"force": True},
            headers={"X-Maintenance-Key": "secret"},
        )
        assert (await resp.json())["results"][0]["snapshot_id"]

    @pytest.mark.asyncio
    async def test_scheduler_trigger_without_scheduler(self, service):
        app = create_http_app(service, None, HttpConfig(maintenance_key="secret"))
        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/v1/maintenance/backup-scheduler", headers={"X-Maintenance-Key": "secret"}
            )
            assert resp.status == 503

    @pytest.mark.asyncio
    async def test_trigger_disabled_without_configured_key(self, service, scheduler):
        app = create_http_app(service, scheduler, HttpConfig())
        async with TestClient(TestServer(app)) as client:
            resp = await client.post(
                "/v1/maintenance/backup-scheduler", headers={"X-Maintenance-Key": ""}
            )
            assert resp.status == 401

    @pytest.mark.asyncio
    async def test_cors(self, client):
        resp = await client.options(
            "/v1/capture", headers={"Origin": "https://admin.example"}
        )
        assert resp.headers["Access-Control-Allow-Origin"] == "https://admin.example"
        assert "X-Actor" in resp.headers["Access-Control-Allow-Headers"]

        resp = await client.get("/v1/health", headers={"Origin": "https://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers
