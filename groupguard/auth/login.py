"""登录状态机与会话恢复

LoginFlow 驱动完整的登录协议：
    IDLE -> AUTHENTICATING -> AUTHENTICATED | TWO_FACTOR_REQUIRED | FAILED
    TWO_FACTOR_REQUIRED -> AUTHENTICATING(带验证码) -> AUTHENTICATED | FAILED

SessionRestorer 只用持久化会话存储中的 Cookie 获取当前用户，不提交凭据。
两者都只产出结果，不修改全局会话状态；会话的安装与清除由 AuthService 负责。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from groupguard.auth.classifier import (
    classify,
    failure_code,
    failure_message,
    normalize_error,
)
from groupguard.auth.client import ClientFactory, VRChatClient
from groupguard.auth.cookies import extract_auth_cookie
from groupguard.auth.errors import ApiError, AuthError, AuthenticationFailedError
from groupguard.auth.models import CurrentUser, SessionHandle
from groupguard.auth.session_store import SessionStoreProvider

logger = logging.getLogger(__name__)

INVALID_USER_MESSAGE = "Login failed: Invalid user object received"


class LoginState(str, Enum):
    """登录状态"""

    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    FAILED = "failed"


@dataclass
class LoginAttempt:
    """一次登录调用的结果"""

    state: LoginState
    client: VRChatClient | None = None
    user: CurrentUser | None = None
    two_factor_methods: list[str] = field(default_factory=list)
    error: str | None = None
    error_code: str | None = None
    auth_cookie: str | None = None


def normalize_user(payload: Any) -> CurrentUser:
    """校验并规整平台返回的用户对象

    - 兼容 {"data": {...}} 包装
    - 带 error 字段的响应视为失败
    - 必须有非空 id，id 与显示名去除首尾空白
    """
    data = payload
    if isinstance(data, dict) and not data.get("id") and isinstance(data.get("data"), dict):
        if data["data"].get("id"):
            data = data["data"]

    if not isinstance(data, dict):
        raise AuthenticationFailedError(INVALID_USER_MESSAGE)

    error = data.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise AuthenticationFailedError(message or "Login returned an error")

    user_id = data.get("id")
    if not isinstance(user_id, str) or not user_id.strip():
        logger.error(f"[LoginFlow] 登录响应缺少用户ID: {sorted(data.keys())}")
        raise AuthenticationFailedError(INVALID_USER_MESSAGE)

    return CurrentUser.model_validate(data)


class LoginFlow:
    """登录状态机"""

    def __init__(self, factory: ClientFactory, stores: SessionStoreProvider):
        self.factory = factory
        self.stores = stores
        self.state = LoginState.IDLE

    async def login(
        self,
        username: str,
        password: str,
        two_factor_code: str | None = None,
        client: VRChatClient | None = None,
    ) -> LoginAttempt:
        """提交凭据（和验证码），返回分类后的结果

        只有在提交验证码时才复用传入的客户端，保留握手过程中积累的 Cookie；
        否则总是新建客户端。
        """
        created = client is None or not two_factor_code
        if created:
            client = self.factory.create(self.stores.get())
            logger.info("[LoginFlow] 已创建绑定持久化会话存储的客户端")
        else:
            logger.info("[LoginFlow] 复用二次验证前的客户端")

        self.state = LoginState.AUTHENTICATING
        attempt = await self._authenticate(client, username, password, two_factor_code)
        self.state = attempt.state

        if attempt.state == LoginState.FAILED and created:
            await client.aclose()
        return attempt

    async def _authenticate(
        self,
        client: VRChatClient,
        username: str,
        password: str,
        two_factor_code: str | None,
    ) -> LoginAttempt:
        try:
            try:
                payload = await client.login(username, password, two_factor_code)
            except Exception as e:
                info = normalize_error(e)
                logger.info(
                    f"[LoginFlow] 登录异常: message={info.message!r} "
                    f"methods={info.methods} status={info.status_code}"
                )
                result = classify(info)
                if result.requires_2fa:
                    if result.rule == "known_defect":
                        logger.warning("[LoginFlow] 捕获到客户端库 2FA 响应缺陷，按需要二次验证处理")
                        logger.debug(f"[LoginFlow] 堆栈: {info.trace}")
                    else:
                        logger.info(f"[LoginFlow] 需要二次验证 ({result.rule}): {result.methods}")
                    return LoginAttempt(
                        state=LoginState.TWO_FACTOR_REQUIRED,
                        client=client,
                        two_factor_methods=result.methods,
                    )
                raise

            user = normalize_user(payload)
            auth_cookie = extract_auth_cookie(client)
            logger.info(f"[LoginFlow] 登录成功: {user.display_name} ({user.id})")
            return LoginAttempt(
                state=LoginState.AUTHENTICATED,
                client=client,
                user=user,
                auth_cookie=auth_cookie,
            )
        except Exception as e:
            info = normalize_error(e)
            unclassified = not isinstance(e, (ApiError, AuthError))
            if unclassified:
                logger.exception(f"[LoginFlow] 登录失败: {info.message}")
            else:
                logger.error(f"[LoginFlow] 登录失败: {info.api_message or info.message}")
            return LoginAttempt(
                state=LoginState.FAILED,
                error=failure_message(info, include_trace=unclassified),
                error_code=failure_code(info, e),
            )


class SessionRestorer:
    """从持久化会话恢复身份"""

    def __init__(self, factory: ClientFactory, stores: SessionStoreProvider, timeout: float | None = None):
        self.factory = factory
        self.stores = stores
        self.timeout = timeout

    async def restore(self, timeout: float | None = None) -> SessionHandle | None:
        """成功返回新的 SessionHandle，无法恢复返回 None；不会抛出"""
        deadline = timeout if timeout is not None else self.timeout
        logger.info("[SessionRestorer] 尝试从持久化会话恢复登录...")

        client: VRChatClient | None = None
        try:
            client = self.factory.create(self.stores.get())
            payload = await asyncio.wait_for(client.get_current_user(), timeout=deadline)
            user = normalize_user(payload)
        except ApiError as e:
            if e.status_code == 401:
                logger.info("[SessionRestorer] 没有有效会话 (401)，需要重新登录")
            else:
                logger.warning(f"[SessionRestorer] 会话检查失败: HTTP {e.status_code} {e}")
            await _discard(client)
            return None
        except asyncio.TimeoutError:
            logger.warning(f"[SessionRestorer] 会话检查超时 ({deadline}s)")
            await _discard(client)
            return None
        except AuthenticationFailedError as e:
            logger.info(f"[SessionRestorer] 未返回有效用户数据: {e}")
            await _discard(client)
            return None
        except Exception as e:
            logger.error(f"[SessionRestorer] 会话恢复出错: {e}")
            await _discard(client)
            return None

        logger.info(f"[SessionRestorer] 会话恢复成功: {user.display_name}")
        return SessionHandle(client=client, user=user)


async def _discard(client: VRChatClient | None) -> None:
    if client is None:
        return
    try:
        await client.aclose()
    except Exception as e:
        logger.debug(f"[SessionRestorer] 关闭客户端失败: {e}")
