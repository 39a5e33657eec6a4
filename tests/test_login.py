"""登录状态机与会话恢复单元测试。"""

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest

from groupguard.auth.client import ClientFactory
from groupguard.auth.errors import AuthenticationFailedError
from groupguard.auth.login import LoginFlow, LoginState, SessionRestorer, normalize_user
from groupguard.auth.session_store import SessionStore, SessionStoreProvider

from conftest import TOTP_CODE


@pytest.fixture
def stores(location):
    return SessionStoreProvider(location)


@pytest.fixture
def flow(config, stores, fake_api):
    return LoginFlow(ClientFactory(config, transport=fake_api.transport), stores)


def test_normalize_user_trims_identifier():
    user = normalize_user({"id": "  usr_1 \n", "displayName": " Name ", "bio": "hi"})
    assert user.id == "usr_1"
    assert user.display_name == "Name"
    assert user.model_extra["bio"] == "hi"


def test_normalize_user_unwraps_data_envelope():
    user = normalize_user({"data": {"id": "usr_2", "displayName": "Wrapped"}})
    assert user.id == "usr_2"


def test_normalize_user_rejects_error_payload():
    with pytest.raises(AuthenticationFailedError, match="Account locked"):
        normalize_user({"error": {"message": "Account locked"}})


@pytest.mark.parametrize("payload", [{"displayName": "No id"}, {"id": "   "}, "not a user", None])
def test_normalize_user_requires_identifier(payload):
    with pytest.raises(AuthenticationFailedError):
        normalize_user(payload)


async def test_login_success(flow, fake_api):
    attempt = await flow.login("alice", "hunter2")

    assert attempt.state == LoginState.AUTHENTICATED
    assert flow.state == LoginState.AUTHENTICATED
    assert attempt.user.id == "usr_alice"
    assert attempt.user.display_name == "Alice"
    assert attempt.auth_cookie == "auth=authcookie_1"
    await attempt.client.aclose()


async def test_login_wrong_password_fails(flow):
    attempt = await flow.login("alice", "wrong")

    assert attempt.state == LoginState.FAILED
    assert attempt.error == "Invalid Username/Email or Password"
    assert attempt.error_code == "authentication_failed"
    assert attempt.client is None


async def test_login_two_factor_then_continue_with_same_client(flow, fake_api):
    first = await flow.login("bob", "s3cret")
    assert first.state == LoginState.TWO_FACTOR_REQUIRED
    assert first.two_factor_methods == ["totp", "otp"]
    assert first.client is not None

    second = await flow.login("bob", "s3cret", two_factor_code=TOTP_CODE, client=first.client)
    assert second.state == LoginState.AUTHENTICATED
    assert second.client is first.client
    assert second.user.id == "usr_bob"
    # 续登沿用了第一次拿到的 auth Cookie
    assert len(fake_api.sessions) == 1
    await second.client.aclose()


async def test_fresh_client_when_no_code(flow):
    first = await flow.login("bob", "s3cret")
    second = await flow.login("bob", "s3cret", client=first.client)
    assert second.client is not first.client
    await first.client.aclose()
    await second.client.aclose()


async def test_known_defect_is_treated_as_two_factor(config, stores):
    class DefectClient:
        async def login(self, username, password, two_factor_code=None):
            return "twoFactorAuth" in None

        async def aclose(self):
            pass

    factory = ClientFactory(config)
    factory.create = lambda store: DefectClient()
    attempt = await LoginFlow(factory, stores).login("bob", "s3cret")

    assert attempt.state == LoginState.TWO_FACTOR_REQUIRED
    assert attempt.two_factor_methods == []


async def test_unexpected_error_includes_trace(config, stores):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    flow = LoginFlow(ClientFactory(config, transport=httpx.MockTransport(handler)), stores)
    attempt = await flow.login("alice", "hunter2")

    assert attempt.state == LoginState.FAILED
    assert attempt.error.startswith("connection refused")
    assert "Stack:" in attempt.error


async def test_restore_without_session_is_not_restorable(config, stores, fake_api):
    restorer = SessionRestorer(ClientFactory(config, transport=fake_api.transport), stores, timeout=5)
    assert await restorer.restore() is None
    assert fake_api.credential_calls == 0


async def test_restore_after_login_uses_persisted_cookie(config, location, fake_api):
    flow = LoginFlow(ClientFactory(config, transport=fake_api.transport), SessionStoreProvider(location))
    attempt = await flow.login("alice", "hunter2")
    await attempt.client.aclose()

    # 新的 provider 相当于进程重启
    restorer = SessionRestorer(
        ClientFactory(config, transport=fake_api.transport), SessionStoreProvider(location), timeout=5
    )
    handle = await restorer.restore()

    assert handle is not None
    assert handle.user.id == "usr_alice"
    assert fake_api.credential_calls == 1
    await handle.client.aclose()


async def test_restore_times_out(config, stores):
    async def handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json={"id": "usr_late"})

    restorer = SessionRestorer(ClientFactory(config, transport=httpx.MockTransport(handler)), stores)
    assert await restorer.restore(timeout=0.05) is None


async def test_restore_server_error_is_not_restorable(config, stores):
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"error": {"message": "oops"}}))
    restorer = SessionRestorer(ClientFactory(config, transport=transport), stores, timeout=5)
    assert await restorer.restore() is None


async def test_restore_with_unavailable_store_is_not_restorable(config, fake_api):
    stores = MagicMock()
    stores.get.side_effect = OSError("data dir unavailable")
    restorer = SessionRestorer(ClientFactory(config, transport=fake_api.transport), stores, timeout=5)

    assert await restorer.restore() is None


async def test_restore_with_failing_store_reads_is_not_restorable(config, fake_api):
    class FailingBackend:
        url = "file://"

        async def get(self, key):
            raise OSError("disk unavailable")

        async def set(self, key, value):
            raise OSError("disk unavailable")

    errors = []
    store = SessionStore(FailingBackend())
    store.on_error(errors.append)
    stores = MagicMock()
    stores.get.return_value = store
    restorer = SessionRestorer(ClientFactory(config, transport=fake_api.transport), stores, timeout=5)

    assert await restorer.restore() is None
    assert errors
    assert fake_api.credential_calls == 0
