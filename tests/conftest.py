"""测试公共夹具：模拟平台 API 与临时数据目录。"""

from __future__ import annotations

import base64
import json
import itertools
from urllib.parse import unquote

import httpx
import pytest

from groupguard.auth.client import ClientFactory
from groupguard.auth.credentials import CredentialStore
from groupguard.auth.login import LoginFlow, SessionRestorer
from groupguard.auth.service import AuthService
from groupguard.auth.session_store import SessionStoreProvider
from groupguard.config import AppConfig, StorageLocation

API_BASE = "https://api.vrchat.cloud/api/1"
TOTP_CODE = "123456"


class FakeVRChatApi:
    """内存中的平台 API：Basic 登录、TOTP 校验、Cookie 会话"""

    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.sessions: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.credential_calls = 0
        self._tokens = itertools.count(1)

    def add_account(self, username: str, password: str, user_id: str, display_name: str, two_factor: bool = False):
        self.accounts[username] = {
            "password": password,
            "two_factor": two_factor,
            "user": {"id": user_id, "displayName": display_name, "username": username},
        }

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/1")
        self.calls.append((request.method, path))
        cookies = _parse_cookies(request.headers.get("cookie", ""))

        if request.method == "GET" and path == "/auth/user":
            auth = request.headers.get("authorization")
            if auth:
                return self._basic_login(auth, cookies.get("auth"))
            return self._current_user(cookies.get("auth"))

        if request.method == "POST" and path == "/auth/twofactorauth/totp/verify":
            session = self.sessions.get(cookies.get("auth", ""))
            if session is None:
                return _error(401, "Missing Credentials")
            code = json.loads(request.content).get("code")
            if code != TOTP_CODE:
                return _error(400, '"Invalid 2FA code"')
            session["verified"] = True
            return httpx.Response(200, json={"verified": True})

        return _error(404, "Not found")

    def _basic_login(self, auth: str, token: str | None) -> httpx.Response:
        self.credential_calls += 1
        decoded = base64.b64decode(auth.split(" ", 1)[1]).decode("utf-8")
        username, password = (unquote(part) for part in decoded.split(":", 1))
        account = self.accounts.get(username)
        if account is None or account["password"] != password:
            return _error(401, "Invalid Username/Email or Password")

        session = self.sessions.get(token or "")
        if session is None or session["username"] != username:
            token = f"authcookie_{next(self._tokens)}"
            session = {"username": username, "verified": not account["two_factor"]}
            self.sessions[token] = session

        headers = {"set-cookie": f"auth={token}; Path=/"}
        if not session["verified"]:
            return httpx.Response(200, json={"requiresTwoFactorAuth": ["totp", "otp"]}, headers=headers)
        return httpx.Response(200, json=account["user"], headers=headers)

    def _current_user(self, token: str | None) -> httpx.Response:
        session = self.sessions.get(token or "")
        if session is None or not session["verified"]:
            return _error(401, "Missing Credentials")
        return httpx.Response(200, json=self.accounts[session["username"]]["user"])


def _parse_cookies(header: str) -> dict[str, str]:
    cookies = {}
    for part in header.split(";"):
        if "=" in part:
            name, value = part.strip().split("=", 1)
            cookies[name] = value
    return cookies


def _error(status_code: int, message: str) -> httpx.Response:
    return httpx.Response(status_code, json={"error": {"message": message, "status_code": status_code}})


@pytest.fixture
def fake_api():
    api = FakeVRChatApi()
    api.add_account("alice", "hunter2", "usr_alice ", " Alice ")
    api.add_account("bob", "s3cret", "usr_bob", "Bob", two_factor=True)
    return api


@pytest.fixture
def config():
    return AppConfig(api_base_url=API_BASE, request_timeout_seconds=5, restore_timeout_seconds=5)


@pytest.fixture
def location(tmp_path):
    loc = StorageLocation(config_path=str(tmp_path / "storage-config.json"), default_dir=str(tmp_path / "data"))
    loc.initialize()
    return loc


def build_service(config: AppConfig, location: StorageLocation, transport: httpx.AsyncBaseTransport, pipeline=None):
    """组装一个完整的 AuthService；同一数据目录上多次调用相当于重启进程"""
    stores = SessionStoreProvider(location)
    factory = ClientFactory(config, transport=transport)
    return AuthService(
        login_flow=LoginFlow(factory, stores),
        restorer=SessionRestorer(factory, stores, timeout=config.restore_timeout_seconds),
        credentials=CredentialStore(location),
        pipeline=pipeline,
    )


@pytest.fixture
async def auth_service(config, location, fake_api):
    service = build_service(config, location, fake_api.transport)
    yield service
    await service.close()
