"""
Tests for the vault API endpoints.

Uses FastAPI TestClient against a real VaultLifecycle on a temp store.
Auth bypassed via dependency_overrides except in TestSessionToken.
"""

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from offgrid_vault.api import security
from offgrid_vault.api.main import app
from offgrid_vault.api.security import verify_session_token
from offgrid_vault.api.vault_routes import set_lifecycle
from offgrid_vault.core.audit_log import get_audit_logger
from offgrid_vault.core.config import AppConfig, set_config
from offgrid_vault.vault.health import HealthResult
from offgrid_vault.vault.lifecycle import VaultLifecycle
from offgrid_vault.vault.models import HealthStatus

PASSWORD = "correct-horse-battery"


@pytest.fixture
def lifecycle(tmp_path):
    lifecycle = VaultLifecycle(tmp_path / "api.db")
    set_lifecycle(lifecycle)
    return lifecycle


@pytest.fixture
def client(lifecycle):
    """TestClient with auth bypass."""
    app.dependency_overrides[verify_session_token] = lambda: "test-token"
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def unlocked_client(client):
    resp = client.post("/api/vault/create", json={"master_password": PASSWORD})
    assert resp.status_code == 200
    return client


def _add_server(client, **data):
    data.setdefault("name", "db-1")
    resp = client.post("/api/vault/servers", json={"data": data})
    assert resp.status_code == 200
    return resp.json()["server_id"]


class TestSessionToken:
    def test_missing_token(self, lifecycle, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", "test-session-token")
        resp = TestClient(app).get("/api/vault/status")
        assert resp.status_code == 401

    def test_wrong_token(self, lifecycle, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", "test-session-token")
        resp = TestClient(app).get("/api/vault/status", headers={"X-Session-Token": "nope"})
        assert resp.status_code == 401

    def test_valid_token(self, lifecycle, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", "test-session-token")
        resp = TestClient(app).get(
            "/api/vault/status", headers={"X-Session-Token": "test-session-token"}
        )
        assert resp.status_code == 200
        assert resp.json()["state"] == "uninitialized"

    def test_token_not_initialized(self, lifecycle, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", None)
        resp = TestClient(app).get("/api/vault/status", headers={"X-Session-Token": "x"})
        assert resp.status_code == 503

    def test_rejection_is_audited(self, lifecycle, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", "test-session-token")
        TestClient(app).get("/api/vault/status", headers={"X-Session-Token": "nope"})

        log_file = get_audit_logger().log_file
        events = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
        rejected = [e for e in events if e.get("event_type") == "api.auth.failed"]
        assert rejected[-1]["details"] == {"method": "GET", "path": "/api/vault/status"}
        assert "nope" not in log_file.read_text(encoding="utf-8")

    def test_random_token_by_default(self, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", None)
        first = security.initialize_session_token()
        assert len(first) >= security.MIN_TOKEN_LENGTH
        assert security.initialize_session_token() != first
        assert security.is_initialized()

    def test_token_pinned_by_config(self, tmp_path, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", None)
        pinned = "p" * 40
        set_config(AppConfig(data_dir=tmp_path, session_token=pinned))
        assert security.initialize_session_token() == pinned

    def test_short_pinned_token_rejected(self, monkeypatch):
        monkeypatch.setattr(security, "_SESSION_TOKEN", None)
        with pytest.raises(ValueError):
            security.initialize_session_token("too-short")
        assert not security.is_initialized()

    def test_health_needs_no_token(self):
        resp = TestClient(app).get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestLifecycleRoutes:
    def test_create_unlock_lock(self, client):
        assert client.post("/api/vault/create", json={"master_password": PASSWORD}).status_code == 200
        assert client.get("/api/vault/status").json()["is_unlocked"] is True

        assert client.post("/api/vault/lock").status_code == 200
        status = client.get("/api/vault/status").json()
        assert status["state"] == "locked"
        assert status["vault_exists"] is True

        assert client.post("/api/vault/unlock", json={"master_password": PASSWORD}).status_code == 200

    def test_short_password_rejected(self, client):
        resp = client.post("/api/vault/create", json={"master_password": "short"})
        assert resp.status_code == 422

    def test_create_twice_conflicts(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/create", json={"master_password": PASSWORD})
        assert resp.status_code == 409

    def test_wrong_password(self, unlocked_client):
        unlocked_client.post("/api/vault/lock")
        resp = unlocked_client.post("/api/vault/unlock", json={"master_password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.json()["detail"]["failed_attempts"] == 1

    def test_locked_vault_forbidden(self, unlocked_client):
        unlocked_client.post("/api/vault/lock")
        assert unlocked_client.get("/api/vault/servers").status_code == 403
        assert unlocked_client.post("/api/vault/activity").status_code == 403

    def test_migrate_to_file(self, unlocked_client, lifecycle, vault_file):
        _add_server(unlocked_client)
        resp = unlocked_client.post(
            "/api/vault/migrate", json={"target": "file", "file_path": str(vault_file)}
        )
        assert resp.status_code == 200
        assert resp.json()["storage_kind"] == "file"
        assert unlocked_client.get("/api/vault/status").json()["file_path"] == str(vault_file)

        save = unlocked_client.post("/api/vault/save")
        assert save.status_code == 200
        assert vault_file.exists()

    def test_migrate_without_path(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/migrate", json={"target": "file"})
        assert resp.status_code == 400

    def test_delete_vault(self, unlocked_client):
        assert unlocked_client.delete("/api/vault").status_code == 200
        assert unlocked_client.get("/api/vault/status").json()["state"] == "uninitialized"
        assert unlocked_client.delete("/api/vault").status_code == 409


class TestServerRoutes:
    def test_crud(self, unlocked_client):
        server_id = _add_server(unlocked_client, hostname="10.0.0.5")

        listed = unlocked_client.get("/api/vault/servers").json()["servers"]
        assert [(s["id"], s["name"], s["hostname"]) for s in listed] == [(server_id, "db-1", "10.0.0.5")]

        resp = unlocked_client.put(f"/api/vault/servers/{server_id}", json={"data": {"name": "db-2"}})
        assert resp.status_code == 200
        assert unlocked_client.get(f"/api/vault/servers/{server_id}").json()["data"]["name"] == "db-2"

        assert unlocked_client.delete(f"/api/vault/servers/{server_id}").status_code == 200
        assert unlocked_client.get(f"/api/vault/servers/{server_id}").status_code == 404

    def test_update_missing_server(self, unlocked_client):
        resp = unlocked_client.put("/api/vault/servers/missing", json={"data": {"name": "x"}})
        assert resp.status_code == 404

    def test_move_to_folder(self, unlocked_client):
        server_id = _add_server(unlocked_client)
        folder_id = unlocked_client.post("/api/vault/folders", json={"name": "Prod"}).json()["folder_id"]
        resp = unlocked_client.post(f"/api/vault/servers/{server_id}/move", json={"folder_id": folder_id})
        assert resp.status_code == 200
        assert unlocked_client.get(f"/api/vault/servers/{server_id}").json()["folderId"] == folder_id

    @patch("offgrid_vault.vault.lifecycle.check_health")
    def test_health_check(self, mock_check, unlocked_client):
        mock_check.return_value = HealthResult(HealthStatus.HEALTHY, response_time_ms=12, status_code=200)
        server_id = _add_server(unlocked_client, healthCheckUrl="http://db.local/health")

        resp = unlocked_client.post(f"/api/vault/servers/{server_id}/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
        assert unlocked_client.get(f"/api/vault/servers/{server_id}").json()["healthStatus"] == "healthy"


class TestCredentialRoutes:
    def test_kinds(self, client):
        kinds = client.get("/api/vault/credential-kinds").json()["kinds"]
        assert len(kinds) == 14
        postgres = next(k for k in kinds if k["type"] == "postgresql")
        assert postgres["defaults"]["port"] == 5432
        assert any(f["secret"] for f in postgres["fields"])

    def test_crud_and_connection_strings(self, unlocked_client):
        server_id = _add_server(unlocked_client)
        resp = unlocked_client.post(f"/api/vault/servers/{server_id}/credentials", json={
            "type": "postgresql", "name": "app",
            "data": {"host": "db", "port": 5432, "database": "app", "username": "u", "password": "p"},
        })
        assert resp.status_code == 200
        cred_id = resp.json()["credential_id"]

        creds = unlocked_client.get(f"/api/vault/servers/{server_id}/credentials").json()["credentials"]
        assert [c["id"] for c in creds] == [cred_id]

        strings = unlocked_client.get(
            f"/api/vault/servers/{server_id}/credentials/{cred_id}/connection-strings"
        ).json()["connection_strings"]
        assert strings["URI"] == "postgresql://u:p@db:5432/app"

        assert unlocked_client.delete(f"/api/vault/servers/{server_id}/credentials/{cred_id}").status_code == 200
        assert unlocked_client.delete(f"/api/vault/servers/{server_id}/credentials/{cred_id}").status_code == 404

    def test_unknown_kind_rejected(self, unlocked_client):
        server_id = _add_server(unlocked_client)
        resp = unlocked_client.post(f"/api/vault/servers/{server_id}/credentials", json={"type": "telnet"})
        assert resp.status_code == 422


class TestFolderRoutes:
    def test_crud(self, unlocked_client):
        parent = unlocked_client.post("/api/vault/folders", json={"name": "Prod"}).json()["folder_id"]
        child = unlocked_client.post(
            "/api/vault/folders", json={"name": "DBs", "parent_id": parent}
        ).json()["folder_id"]

        top = unlocked_client.get("/api/vault/folders").json()["folders"]
        assert [(f["id"], f["name"]) for f in top] == [(parent, "Prod")]
        nested = unlocked_client.get("/api/vault/folders", params={"parent_id": parent}).json()["folders"]
        assert [f["id"] for f in nested] == [child]

        assert unlocked_client.put(f"/api/vault/folders/{parent}", json={"name": "Production"}).status_code == 200
        assert unlocked_client.get("/api/vault/folders").json()["folders"][0]["name"] == "Production"

        cycle = unlocked_client.post(f"/api/vault/folders/{parent}/move", json={"parent_id": child})
        assert cycle.status_code == 409

        assert unlocked_client.delete(f"/api/vault/folders/{parent}").status_code == 200
        assert [f["id"] for f in unlocked_client.get("/api/vault/folders").json()["folders"]] == [child]


class TestStatsAndSettings:
    def test_stats(self, unlocked_client):
        _add_server(unlocked_client)
        assert unlocked_client.get("/api/vault/stats").json() == {
            "serverCount": 1, "credentialCount": 0, "folderCount": 0,
        }

    def test_settings_roundtrip(self, unlocked_client):
        assert unlocked_client.get("/api/vault/settings").json()["autoLockTimeout"] == 15
        resp = unlocked_client.put("/api/vault/settings", json={"auto_lock_timeout": 5})
        assert resp.status_code == 200
        assert resp.json()["autoLockTimeout"] == 5
        assert resp.json()["autoSaveDelay"] == 500

    def test_negative_setting_rejected(self, unlocked_client):
        assert unlocked_client.put("/api/vault/settings", json={"auto_save_delay": -1}).status_code == 422

    def test_save_status(self, unlocked_client):
        resp = unlocked_client.get("/api/vault/save-status")
        assert resp.json()["status"] == "saved"


class TestShareRoutes:
    def test_create_and_open(self, unlocked_client):
        server_id = _add_server(unlocked_client, password="server-root-pw")
        cred_id = unlocked_client.post(f"/api/vault/servers/{server_id}/credentials", json={
            "type": "generic", "name": "ops", "data": {"username": "ops", "password": "pw"},
        }).json()["credential_id"]

        created = unlocked_client.post("/api/vault/share", json={
            "server_id": server_id, "credential_ids": [cred_id],
            "base_url": "http://127.0.0.1:5173/",
        }).json()
        assert created["password"]
        assert created["url"].startswith("http://127.0.0.1:5173/#/vault?share=")

        opened = unlocked_client.post("/api/vault/share/open", json={
            "url": created["url"], "password": created["password"],
        })
        assert opened.status_code == 200
        data = opened.json()["data"]
        assert data["credentials"][0]["username"] == "ops"
        assert "password" not in data["server"]
        assert opened.json()["expiresAt"] is not None

    def test_wrong_share_password(self, unlocked_client):
        server_id = _add_server(unlocked_client)
        created = unlocked_client.post("/api/vault/share", json={
            "server_id": server_id, "password": "share-pass",
        }).json()
        resp = unlocked_client.post("/api/vault/share/open", json={
            "payload": created["payload"], "password": "nope",
        })
        assert resp.status_code == 401

    def test_garbage_share(self, client):
        resp = client.post("/api/vault/share/open", json={"payload": "garbage!!", "password": "x"})
        assert resp.status_code == 422

    def test_open_needs_payload_or_url(self, client):
        assert client.post("/api/vault/share/open", json={"password": "x"}).status_code == 400

    def test_import_opened_share(self, unlocked_client):
        server_id = _add_server(unlocked_client, hostname="10.0.0.5")
        cred_id = unlocked_client.post(f"/api/vault/servers/{server_id}/credentials", json={
            "type": "redis", "name": "cache", "data": {"host": "10.0.0.5", "password": "r"},
        }).json()["credential_id"]
        created = unlocked_client.post("/api/vault/share", json={
            "server_id": server_id, "credential_ids": [cred_id], "password": "share-pass",
        }).json()
        data = unlocked_client.post("/api/vault/share/open", json={
            "payload": created["payload"], "password": "share-pass",
        }).json()["data"]

        resp = unlocked_client.post("/api/vault/share/import", json={"data": data})

        assert resp.status_code == 200
        imported_id = resp.json()["server_id"]
        assert imported_id != server_id
        imported = unlocked_client.get(f"/api/vault/servers/{imported_id}").json()
        assert imported["folderId"] is None
        assert imported["data"]["hostname"] == "10.0.0.5"
        credential = imported["data"]["credentials"][0]
        assert credential["type"] == "redis"
        assert credential["data"]["password"] == "r"
        assert credential["id"] != cred_id

    def test_import_credentials_without_server(self, unlocked_client):
        data = {"server": None, "credentials": [{"type": "generic", "name": "x", "username": "u"}]}
        resp = unlocked_client.post("/api/vault/share/import", json={"data": data})
        assert resp.status_code == 422
        assert "add them to a server" in resp.json()["detail"]

    def test_import_needs_unlocked_vault(self, client):
        resp = client.post("/api/vault/share/import", json={"data": {"server": {"name": "x"}}})
        assert resp.status_code == 403


class TestGenerators:
    def test_password(self, client):
        resp = client.post("/api/vault/generate/password", json={"length": 24, "symbols": False})
        body = resp.json()
        assert len(body["password"]) == 24
        assert body["entropy"] > 0

    def test_passphrase(self, client):
        body = client.post("/api/vault/generate/passphrase", json={"word_count": 5, "separator": "."}).json()
        assert len(body["passphrase"].split(".")) == 5

    def test_length_bounds(self, client):
        assert client.post("/api/vault/generate/password", json={"length": 2}).status_code == 422


class TestBackupRoutes:
    def test_export_and_import(self, unlocked_client):
        server_id = _add_server(unlocked_client)
        backup = unlocked_client.get("/api/vault/backup").json()
        unlocked_client.delete(f"/api/vault/servers/{server_id}")

        resp = unlocked_client.post("/api/vault/backup/import", json={"backup": backup, "mode": "skip"})
        assert resp.status_code == 200
        assert resp.json()["serversImported"] == 1
        assert unlocked_client.get(f"/api/vault/servers/{server_id}").status_code == 200

    def test_import_garbage(self, unlocked_client):
        resp = unlocked_client.post("/api/vault/backup/import", json={"backup": {"version": 7}})
        assert resp.status_code == 422
