"""认证模块 - 平台 API 的登录与会话生命周期

主要功能：
- 用户名密码登录与二次验证（TOTP / 恢复码 / 邮件验证码）
- 基于持久化 Cookie 的会话恢复
- 启动时自动登录与凭据保存
- 认证状态查询与登出
"""

from groupguard.auth.client import ClientFactory, VRChatClient
from groupguard.auth.credentials import CredentialStore
from groupguard.auth.login import LoginFlow, LoginState, SessionRestorer
from groupguard.auth.models import (
    AppInfo,
    AuthResult,
    CurrentUser,
    LoginRequest,
    LogoutRequest,
    PendingTwoFactor,
    SessionHandle,
    SessionStatus,
    StoredCredentials,
    VerifyTwoFactorRequest,
)
from groupguard.auth.service import AuthService
from groupguard.auth.session_store import SessionStore, SessionStoreProvider

__all__ = [
    "AuthService",
    "LoginFlow",
    "LoginState",
    "SessionRestorer",
    "ClientFactory",
    "VRChatClient",
    "CredentialStore",
    "SessionStore",
    "SessionStoreProvider",
    "AppInfo",
    "AuthResult",
    "CurrentUser",
    "LoginRequest",
    "LogoutRequest",
    "PendingTwoFactor",
    "SessionHandle",
    "SessionStatus",
    "StoredCredentials",
    "VerifyTwoFactorRequest",
]
