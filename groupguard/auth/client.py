"""平台 API 客户端与客户端工厂

客户端基于 httpx.AsyncClient，Cookie 在每次响应后写回持久化会话存储，
首次请求前从存储中加载，从而跨进程重启保留登录状态。
"""

from __future__ import annotations

import base64
import logging
from typing import Any
from urllib.parse import quote

import httpx

from groupguard.auth.errors import ApiError, TwoFactorRequiredError
from groupguard.auth.models import AppInfo
from groupguard.auth.session_store import SessionStore
from groupguard.config import AppConfig

logger = logging.getLogger(__name__)

COOKIES_KEY = "cookies"

# 二次验证方式 -> 校验接口
TWO_FACTOR_ENDPOINTS = {
    "totp": "/auth/twofactorauth/totp/verify",
    "otp": "/auth/twofactorauth/otp/verify",
    "emailotp": "/auth/twofactorauth/emailotp/verify",
}


class VRChatClient:
    """平台 API 客户端，持有会话 Cookie"""

    def __init__(
        self,
        base_url: str,
        application: AppInfo,
        store: SessionStore | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.application = application
        # 客户端内部再包一层存储，保留原有命名空间与故障监听
        self.store = SessionStore(store, namespace=store.namespace) if store is not None else None
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"User-Agent": application.user_agent()},
            timeout=timeout,
            transport=transport,
        )
        self._cookies_loaded = False
        self.two_factor_methods: list[str] = []

    @property
    def jar(self) -> httpx.Cookies:
        return self._http.cookies

    async def aclose(self) -> None:
        await self._http.aclose()

    async def login(self, username: str, password: str, two_factor_code: str | None = None) -> dict[str, Any]:
        """用户名密码登录；需要二次验证且未提供验证码时抛 TwoFactorRequiredError"""
        data = await self._get_user(auth=_basic_auth(username, password))

        methods = data.get("requiresTwoFactorAuth") if isinstance(data, dict) else None
        if methods:
            self.two_factor_methods = [str(m) for m in methods]
            if not two_factor_code:
                raise TwoFactorRequiredError(self.two_factor_methods)

            await self.verify_two_factor(two_factor_code)
            data = await self._get_user()

        return data

    async def verify_two_factor(self, code: str) -> dict[str, Any]:
        """提交二次验证码；按服务端声明的方式选择接口，默认 TOTP"""
        method = _pick_method(self.two_factor_methods, code)
        data = await self._request("POST", TWO_FACTOR_ENDPOINTS[method], json={"code": code})
        if isinstance(data, dict) and data.get("verified") is False:
            raise ApiError(400, data, "Invalid 2FA code")
        return data

    async def get_current_user(self) -> dict[str, Any]:
        """用现有 Cookie 获取当前用户；会话无效时抛 401 ApiError"""
        data = await self._get_user()
        if isinstance(data, dict) and data.get("requiresTwoFactorAuth"):
            raise ApiError(401, data, "Session requires two-factor authentication")
        return data

    async def _get_user(self, auth: str | None = None) -> dict[str, Any]:
        headers = {"Authorization": auth} if auth else None
        return await self._request("GET", "/auth/user", headers=headers)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        await self._load_cookies()

        response = await self._http.request(method, path, **kwargs)
        await self._save_cookies()

        payload = _decode(response)
        if response.is_error:
            raise ApiError(response.status_code, payload)
        return payload

    async def _load_cookies(self) -> None:
        if self._cookies_loaded:
            return
        self._cookies_loaded = True
        if self.store is None:
            return

        saved = await self.store.get(COOKIES_KEY)
        if not saved:
            return
        for item in saved:
            try:
                self._http.cookies.set(
                    item["name"], item["value"], domain=item.get("domain", ""), path=item.get("path", "/")
                )
            except (KeyError, TypeError) as e:
                logger.warning(f"[VRChatClient] 跳过损坏的 Cookie 记录: {e}")
        logger.debug(f"[VRChatClient] 从会话存储加载 {len(saved)} 个 Cookie")

    async def _save_cookies(self) -> None:
        if self.store is None:
            return
        cookies = [
            {"name": c.name, "value": c.value, "domain": c.domain, "path": c.path}
            for c in self._http.cookies.jar
        ]
        await self.store.set(COOKIES_KEY, cookies)


class ClientFactory:
    """构造绑定应用标识与会话存储的客户端"""

    def __init__(self, config: AppConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.transport = transport
        self.application = AppInfo(
            name=config.app_name,
            version=config.app_version,
            contact=config.app_contact,
        )

    def create(self, store: SessionStore) -> VRChatClient:
        return VRChatClient(
            base_url=self.config.api_base_url,
            application=self.application,
            store=store,
            timeout=self.config.request_timeout_seconds,
            transport=self.transport,
        )


def _basic_auth(username: str, password: str) -> str:
    token = f"{quote(username, safe='')}:{quote(password, safe='')}"
    return "Basic " + base64.b64encode(token.encode("utf-8")).decode("ascii")


def _pick_method(methods: list[str], code: str) -> str:
    lowered = [m.lower() for m in methods]
    # 恢复码是 8 位，普通 TOTP 是 6 位
    if "otp" in lowered and len(code) == 8:
        return "otp"
    if "totp" in lowered or not lowered:
        return "totp"
    if "emailotp" in lowered:
        return "emailotp"
    return "otp" if "otp" in lowered else "totp"


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
