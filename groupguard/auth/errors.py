"""认证模块异常定义

每个异常带一个稳定的 code，服务层据此生成 AuthResult.error_code。
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """认证相关异常基类"""

    code = "auth_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NoValidSessionError(AuthError):
    """持久化会话不可用（首次启动或会话过期），属于预期结果"""

    code = "no_valid_session"


class TwoFactorRequiredError(AuthError):
    """服务端要求二次验证；这是流程分支而不是失败"""

    code = "two_factor_required"

    def __init__(self, methods: list[str] | None = None, message: str = "Two-factor authentication required"):
        super().__init__(message)
        self.methods = list(methods or [])


class InvalidTwoFactorCodeError(AuthError):
    """二次验证码错误，用户可重试"""

    code = "invalid_two_factor_code"


class AuthenticationFailedError(AuthError):
    """凭据被拒绝或服务端返回的用户数据不合法"""

    code = "authentication_failed"


class NoPendingSessionError(AuthError):
    """调用 verify_2fa 时没有待验证的登录"""

    code = "no_pending_session"


class NoCredentialsError(AuthError):
    """自动登录时没有保存的凭据"""

    code = "no_credentials"


class StoreFaultError(AuthError):
    """持久化状态读写失败；只降级功能，不中断进程"""

    code = "store_fault"


class ApiError(Exception):
    """平台 API 返回非 2xx 响应"""

    def __init__(self, status_code: int, payload: Any = None, message: str | None = None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message or self.payload_message() or f"HTTP {status_code}")

    def payload_message(self) -> str | None:
        """提取 {"error": {"message": ...}} 形式的嵌套错误信息"""
        if not isinstance(self.payload, dict):
            return None
        error = self.payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        return None
