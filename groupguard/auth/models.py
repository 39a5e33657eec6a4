"""认证模块数据模型定义"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from groupguard.auth.client import VRChatClient


class AppInfo(BaseModel):
    """应用标识，平台 API 的使用条款要求 User-Agent 中带上名称、版本和联系方式"""

    name: str = Field(..., description="应用名称")
    version: str = Field(..., description="应用版本")
    contact: str = Field(..., description="联系方式")

    def user_agent(self) -> str:
        return f"{self.name}/{self.version} {self.contact}"


class CurrentUser(BaseModel):
    """当前登录用户；平台返回的其余字段原样保留"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., description="用户ID")
    display_name: str = Field("", alias="displayName", description="显示名称")
    username: str | None = Field(None, description="登录名")

    @field_validator("id", "display_name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value


class StoredCredentials(BaseModel):
    """保存的登录凭据，仅在用户勾选记住我且登录成功后写入"""

    username: str = Field(..., description="用户名")
    password: str = Field(..., description="密码")
    auth_cookie: str | None = Field(None, description="最近一次会话 Cookie，仅作兜底")


@dataclass(frozen=True)
class SessionHandle:
    """当前已认证连接：客户端与用户总是成对出现"""

    client: VRChatClient
    user: CurrentUser


@dataclass(frozen=True)
class PendingTwoFactor:
    """等待二次验证码的登录上下文，只存在于内存中"""

    username: str
    password: str
    client: VRChatClient
    remember_me: bool = False
    auth_cookie: str | None = None


class AuthResult(BaseModel):
    """对外操作的统一结果"""

    success: bool = Field(..., description="是否成功")
    user: CurrentUser | None = Field(None, description="用户信息")
    requires_2fa: bool = Field(False, description="是否需要二次验证")
    two_factor_methods: list[str] = Field(default_factory=list, description="可用的二次验证方式")
    error: str | None = Field(None, description="错误信息")
    error_code: str | None = Field(None, description="错误类型")
    no_credentials: bool = Field(False, description="没有保存的凭据")
    auth_cookie: str | None = Field(None, exclude=True, description="登录后提取的 Cookie（不对外输出）")


class SessionStatus(BaseModel):
    """会话状态查询结果"""

    is_logged_in: bool
    user: CurrentUser | None = None


class LoginRequest(BaseModel):
    """登录请求"""

    username: str = Field(..., min_length=1, description="用户名")
    password: str = Field(..., min_length=1, description="密码")
    remember_me: bool = Field(False, description="登录成功后保存凭据")


class VerifyTwoFactorRequest(BaseModel):
    """二次验证请求"""

    code: str = Field(..., min_length=6, max_length=8, description="验证码")


class LogoutRequest(BaseModel):
    """登出请求"""

    clear_saved: bool = Field(False, description="同时清除保存的凭据")


class StorageLocationRequest(BaseModel):
    """设置数据目录请求"""

    path: str = Field(..., min_length=1, description="数据目录")


class StorageLocationResponse(BaseModel):
    """数据目录状态"""

    configured: bool
    data_dir: str


def user_payload(user: CurrentUser) -> dict[str, Any]:
    """以平台字段名导出用户信息，供推送事件使用"""
    return user.model_dump(by_alias=True)
