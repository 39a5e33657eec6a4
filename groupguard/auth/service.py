"""认证服务核心类

AuthService 是当前会话（SessionHandle）和待验证登录（PendingTwoFactor）的唯一持有者：
- 所有修改会话状态的操作（登录、二次验证、自动登录、登出）通过同一把锁串行执行
- 状态查询直接读取不可变的 SessionHandle 引用，不加锁
- 每个对外操作都把异常转换为 AuthResult，不向调用方抛出
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from groupguard.auth.client import VRChatClient
from groupguard.auth.cookies import extract_auth_cookie
from groupguard.auth.credentials import CredentialStore
from groupguard.auth.errors import (
    InvalidTwoFactorCodeError,
    NoCredentialsError,
    NoPendingSessionError,
    StoreFaultError,
)
from groupguard.auth.login import LoginAttempt, LoginFlow, LoginState, SessionRestorer
from groupguard.auth.models import (
    AuthResult,
    CurrentUser,
    PendingTwoFactor,
    SessionHandle,
    SessionStatus,
)

logger = logging.getLogger(__name__)

NO_PENDING_MESSAGE = "No pending login session. Please try logging in again."
NO_CREDENTIALS_MESSAGE = "No saved credentials"
INVALID_CODE_MESSAGE = "Invalid 2FA code. Please try again."


class LoginListener(Protocol):
    """登录状态变化的下游订阅者"""

    async def on_logged_in(self, user: CurrentUser) -> None: ...

    async def on_logged_out(self) -> None: ...


class AuthService:
    """认证服务类，负责登录、二次验证、会话恢复、自动登录与登出"""

    def __init__(
        self,
        login_flow: LoginFlow,
        restorer: SessionRestorer,
        credentials: CredentialStore,
        pipeline: LoginListener | None = None,
    ):
        """初始化认证服务

        Args:
            login_flow: 登录状态机
            restorer: 会话恢复器
            credentials: 保存的凭据
            pipeline: 登录 / 登出事件的订阅者
        """
        self.login_flow = login_flow
        self.restorer = restorer
        self.credentials = credentials
        self.pipeline = pipeline
        self._session: SessionHandle | None = None
        self._pending: PendingTwoFactor | None = None
        self._lock = asyncio.Lock()

    # ── 状态查询（无锁快照） ──

    def check_session(self) -> SessionStatus:
        """返回当前登录状态；不做任何 I/O"""
        session = self._session
        if session is None:
            return SessionStatus(is_logged_in=False)
        return SessionStatus(is_logged_in=True, user=session.user)

    def is_authenticated(self) -> bool:
        return self._session is not None

    def get_client(self) -> VRChatClient | None:
        """供其他模块（群组、审计等）共享当前客户端"""
        session = self._session
        return session.client if session else None

    def get_current_user(self) -> CurrentUser | None:
        session = self._session
        return session.user if session else None

    def get_current_user_id(self) -> str | None:
        session = self._session
        return session.user.id if session else None

    def has_pending_two_factor(self) -> bool:
        return self._pending is not None

    def has_saved_credentials(self) -> bool:
        return self.credentials.has_saved()

    def get_auth_cookie(self) -> str | None:
        """当前会话 Cookie；客户端上取不到时退回保存的凭据中的 Cookie"""
        session = self._session
        cookie = extract_auth_cookie(session.client) if session else None
        if not cookie:
            saved = self.credentials.load()
            if saved and saved.auth_cookie:
                logger.debug("[AuthService] 使用保存凭据中的 Cookie（兜底）")
                cookie = saved.auth_cookie
        return cookie

    # ── 会话变更操作（串行） ──

    async def login(self, username: str, password: str, remember_me: bool = False) -> AuthResult:
        """手动登录

        若用户名与保存的凭据一致，先尝试恢复持久化会话，避免重复的二次验证。
        """
        async with self._lock:
            try:
                saved = self.credentials.load()
                if saved and saved.username == username:
                    logger.info("[AuthService] 与保存的用户一致，先尝试恢复会话以跳过二次验证...")
                    handle = await self.restorer.restore()
                    if handle:
                        await self._install_session(handle)
                        logger.info("[AuthService] 手动登录时会话恢复成功")
                        return AuthResult(success=True, user=handle.user)

                attempt = await self.login_flow.login(username, password)
                return await self._apply_attempt(
                    attempt,
                    username=username,
                    password=password,
                    remember_me=remember_me,
                )
            except Exception as e:
                logger.exception(f"[AuthService] 登录出错: {e}")
                return AuthResult(success=False, error=str(e) or "Login failed", error_code="authentication_failed")

    async def verify_2fa(self, code: str) -> AuthResult:
        """提交二次验证码，完成挂起的登录"""
        async with self._lock:
            pending = self._pending
            if pending is None:
                error = NoPendingSessionError(NO_PENDING_MESSAGE)
                return AuthResult(success=False, error=error.message, error_code=error.code)

            code = (code or "").strip()
            if not 6 <= len(code) <= 8:
                return _invalid_code_result()

            try:
                logger.info("[AuthService] 正在验证二次验证码...")
                attempt = await self.login_flow.login(
                    pending.username, pending.password, two_factor_code=code, client=pending.client
                )

                if attempt.state == LoginState.AUTHENTICATED:
                    self._pending = None
                    await self._install_session(SessionHandle(client=attempt.client, user=attempt.user))
                    if pending.remember_me:
                        self._save_credentials(
                            pending.username, pending.password, attempt.auth_cookie or pending.auth_cookie
                        )
                        logger.info("[AuthService] 二次验证后已保存凭据")
                    return AuthResult(success=True, user=attempt.user)

                if attempt.state == LoginState.TWO_FACTOR_REQUIRED:
                    # 带验证码仍被要求二次验证，说明验证码未通过
                    logger.warning("[AuthService] 二次验证码未通过")
                    return _invalid_code_result()

                message = attempt.error or "2FA verification failed"
                lowered = message.lower()
                if "invalid" in lowered or "incorrect" in lowered:
                    return _invalid_code_result()
                return AuthResult(success=False, error=message, error_code=attempt.error_code)
            except Exception as e:
                logger.exception(f"[AuthService] 二次验证出错: {e}")
                return AuthResult(
                    success=False, error=str(e) or "2FA verification failed", error_code="authentication_failed"
                )

    async def auto_login(self) -> AuthResult:
        """启动时自动登录：先恢复会话，失败再用保存的凭据登录"""
        async with self._lock:
            try:
                logger.info("[AuthService] 检查保存的凭据以自动登录...")
                credentials = self.credentials.load()
                if credentials is None:
                    logger.info("[AuthService] 没有保存的凭据")
                    error = NoCredentialsError(NO_CREDENTIALS_MESSAGE)
                    return AuthResult(
                        success=False, no_credentials=True, error=error.message, error_code=error.code
                    )

                handle = await self.restorer.restore()
                if handle:
                    await self._install_session(handle)
                    logger.info("[AuthService] 已从持久化会话恢复，无需重新认证")
                    return AuthResult(success=True, user=handle.user)

                logger.info(f"[AuthService] 会话恢复失败，使用保存的凭据登录: {credentials.username}")
                attempt = await self.login_flow.login(credentials.username, credentials.password)

                if attempt.state == LoginState.AUTHENTICATED:
                    await self._install_session(SessionHandle(client=attempt.client, user=attempt.user))
                    if attempt.auth_cookie and attempt.auth_cookie != credentials.auth_cookie:
                        self._save_credentials(credentials.username, credentials.password, attempt.auth_cookie)
                        logger.debug("[AuthService] 自动登录后已更新保存的 Cookie")
                    return AuthResult(success=True, user=attempt.user, auth_cookie=attempt.auth_cookie)

                if attempt.state == LoginState.TWO_FACTOR_REQUIRED:
                    await self._set_pending(
                        PendingTwoFactor(
                            username=credentials.username,
                            password=credentials.password,
                            client=attempt.client,
                            remember_me=True,
                            auth_cookie=credentials.auth_cookie,
                        )
                    )
                    return AuthResult(
                        success=False, requires_2fa=True, two_factor_methods=attempt.two_factor_methods
                    )

                return AuthResult(success=False, error=attempt.error, error_code=attempt.error_code)
            except Exception as e:
                logger.exception(f"[AuthService] 自动登录出错: {e}")
                return AuthResult(
                    success=False, error=str(e) or "Auto-login failed", error_code="authentication_failed"
                )

    async def logout(self, clear_saved: bool = False) -> AuthResult:
        """登出：总是清除当前会话与待验证登录，可选清除保存的凭据"""
        async with self._lock:
            logger.info("[AuthService] 正在登出...")
            if clear_saved:
                try:
                    self.credentials.clear()
                except StoreFaultError as e:
                    logger.warning(f"[AuthService] 清除保存的凭据失败: {e}")

            session, pending = self._session, self._pending
            self._session = None
            self._pending = None

            await _close_clients(
                session.client if session else None,
                pending.client if pending else None,
            )

            if self.pipeline is not None:
                try:
                    await self.pipeline.on_logged_out()
                except Exception as e:
                    logger.warning(f"[AuthService] 登出通知失败: {e}")

            return AuthResult(success=True)

    async def close(self) -> None:
        """应用关闭时释放客户端"""
        async with self._lock:
            await _close_clients(
                self._session.client if self._session else None,
                self._pending.client if self._pending else None,
            )

    # ── 内部方法 ──

    async def _apply_attempt(
        self,
        attempt: LoginAttempt,
        username: str,
        password: str,
        remember_me: bool,
    ) -> AuthResult:
        if attempt.state == LoginState.AUTHENTICATED:
            await self._install_session(SessionHandle(client=attempt.client, user=attempt.user))
            if remember_me:
                self._save_credentials(username, password, attempt.auth_cookie)
                logger.info("[AuthService] 已保存凭据用于自动登录")
            return AuthResult(success=True, user=attempt.user, auth_cookie=attempt.auth_cookie)

        if attempt.state == LoginState.TWO_FACTOR_REQUIRED:
            # 凭据只保存在内存中，二次验证成功后才按 remember_me 决定是否落盘
            await self._set_pending(
                PendingTwoFactor(
                    username=username,
                    password=password,
                    client=attempt.client,
                    remember_me=remember_me,
                )
            )
            return AuthResult(success=False, requires_2fa=True, two_factor_methods=attempt.two_factor_methods)

        return AuthResult(success=False, error=attempt.error, error_code=attempt.error_code)

    async def _install_session(self, handle: SessionHandle) -> None:
        """安装新会话；之前挂起的二次验证随之作废"""
        previous = self._session
        self._session = handle
        await self._set_pending(None)
        if previous is not None and previous.client is not handle.client:
            await _close_clients(previous.client)

        logger.info(f"[AuthService] 当前用户: {handle.user.display_name} ({handle.user.id})")
        if self.pipeline is not None:
            try:
                await self.pipeline.on_logged_in(handle.user)
            except Exception as e:
                logger.warning(f"[AuthService] 登录通知失败: {e}")

    async def _set_pending(self, pending: PendingTwoFactor | None) -> None:
        previous = self._pending
        self._pending = pending
        if previous is None:
            return
        in_use = {id(pending.client) if pending else None, id(self._session.client) if self._session else None}
        if id(previous.client) not in in_use:
            await _close_clients(previous.client)

    def _save_credentials(self, username: str, password: str, auth_cookie: str | None) -> None:
        try:
            self.credentials.save(username, password, auth_cookie)
        except StoreFaultError as e:
            logger.error(f"[AuthService] 保存凭据失败: {e}")


def _invalid_code_result() -> AuthResult:
    error = InvalidTwoFactorCodeError(INVALID_CODE_MESSAGE)
    return AuthResult(success=False, requires_2fa=True, error=error.message, error_code=error.code)


async def _close_clients(*clients: VRChatClient | None) -> None:
    seen: set[int] = set()
    for client in clients:
        if client is None or id(client) in seen:
            continue
        seen.add(id(client))
        try:
            await client.aclose()
        except Exception as e:
            logger.debug(f"[AuthService] 关闭客户端失败: {e}")
