"""认证路由测试。"""

import pytest
from fastapi.testclient import TestClient

import groupguard.main as main
from groupguard.auth.session_store import SessionStoreProvider
from groupguard.pipeline import PipelineNotifier

from conftest import TOTP_CODE, build_service


@pytest.fixture
def client(config, location, fake_api, monkeypatch):
    pipeline = PipelineNotifier()
    state = main.AppState(
        config=config,
        storage_location=location,
        session_stores=SessionStoreProvider(location),
        pipeline=pipeline,
        auth_service=build_service(config, location, fake_api.transport, pipeline=pipeline),
    )
    monkeypatch.setattr(main, "app_state", state)
    return TestClient(main.app)


def test_login_and_check_session(client):
    response = client.post("/api/auth/login", json={"username": "alice", "password": "hunter2"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["user"]["id"] == "usr_alice"
    assert body["user"]["displayName"] == "Alice"
    assert "auth_cookie" not in body

    session = client.get("/api/auth/session").json()
    assert session["is_logged_in"] is True
    assert session["user"]["id"] == "usr_alice"


def test_two_factor_over_http(client):
    body = client.post("/api/auth/login", json={"username": "bob", "password": "s3cret", "remember_me": True}).json()
    assert body["requires_2fa"] is True

    body = client.post("/api/auth/verify-2fa", json={"code": TOTP_CODE}).json()
    assert body["success"] is True
    assert client.get("/api/auth/saved-credentials").json() == {"has_saved_credentials": True}


def test_verify_code_length_is_validated(client):
    response = client.post("/api/auth/verify-2fa", json={"code": "123"})
    assert response.status_code == 422


def test_verify_without_pending(client):
    body = client.post("/api/auth/verify-2fa", json={"code": TOTP_CODE}).json()
    assert body["success"] is False
    assert body["error_code"] == "no_pending_session"


def test_auto_login_without_credentials(client):
    body = client.post("/api/auth/auto-login").json()
    assert body["success"] is False
    assert body["no_credentials"] is True


def test_logout(client):
    client.post("/api/auth/login", json={"username": "alice", "password": "hunter2", "remember_me": True})

    body = client.post("/api/auth/logout", json={"clear_saved": True}).json()
    assert body["success"] is True
    assert client.get("/api/auth/session").json()["is_logged_in"] is False
    assert client.get("/api/auth/saved-credentials").json() == {"has_saved_credentials": False}


def test_storage_location(client, tmp_path):
    body = client.get("/api/auth/storage").json()
    assert body["configured"] is False

    body = client.post("/api/auth/storage", json={"path": str(tmp_path / "chosen")}).json()
    assert body == {"configured": True, "data_dir": str(tmp_path / "chosen")}


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok", "is_logged_in": False}
