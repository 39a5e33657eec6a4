"""从客户端实例中提取当前会话 Cookie。

客户端内部 Cookie 容器的位置和类型都不固定，这里用两组有序策略：
- 定位策略：依次尝试 jar / cookie_jar / cookies / 内部 HTTP 客户端的 cookies，取第一个存在的
- 查询策略：对找到的容器按平台的多个域名逐一查询 Cookie

找不到容器或容器为空都返回 None，这是正常结果而不是错误。
"""

from __future__ import annotations

import logging
from http.cookiejar import CookieJar
from typing import Any, Callable, Iterable
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

# 会话 Cookie 可能挂在任一域名下：API 地址、API 子域、主域、旧官网域名
COOKIE_URLS = (
    "https://api.vrchat.cloud/api/1",
    "https://api.vrchat.cloud",
    "https://vrchat.cloud",
    "https://www.vrchat.com",
    "https://vrchat.com",
)

JarLocator = Callable[[Any], Any]


def _jar_attr(client: Any) -> Any:
    return getattr(client, "jar", None)


def _cookie_jar_attr(client: Any) -> Any:
    return getattr(client, "cookie_jar", None)


def _cookies_attr(client: Any) -> Any:
    return getattr(client, "cookies", None)


def _inner_http_cookies(client: Any) -> Any:
    """内部 HTTP 客户端（_http / http / session）上的 cookies"""
    for name in ("_http", "http", "session"):
        inner = getattr(client, name, None)
        cookies = getattr(inner, "cookies", None) if inner is not None else None
        if cookies is not None:
            return cookies
    return None


JAR_LOCATORS: tuple[JarLocator, ...] = (
    _jar_attr,
    _cookie_jar_attr,
    _cookies_attr,
    _inner_http_cookies,
)


def locate_jar(client: Any) -> Any:
    """按顺序尝试定位策略，返回第一个非空的 Cookie 容器"""
    for locator in JAR_LOCATORS:
        try:
            jar = locator(client)
        except Exception:
            continue
        if jar is not None:
            return jar
    return None


def _cookie_name(cookie: Any) -> str | None:
    if isinstance(cookie, dict):
        return cookie.get("key") or cookie.get("name")
    return getattr(cookie, "key", None) or getattr(cookie, "name", None)


def _cookie_value(cookie: Any) -> str | None:
    if isinstance(cookie, dict):
        return cookie.get("value")
    return getattr(cookie, "value", None)


def _domain_matches(host: str, domain: str | None) -> bool:
    if not domain:
        return False
    domain = domain.lstrip(".").lower()
    return host == domain or host.endswith("." + domain)


def _cookies_from_cookiejar(jar: CookieJar, url: str) -> list[Any]:
    host = (urlparse(url).hostname or "").lower()
    return [c for c in jar if _domain_matches(host, c.domain)]


def query_jar(jar: Any, url: str) -> list[Any]:
    """按 URL 查询容器中的 Cookie；不认识的容器类型返回空列表"""
    getter = getattr(jar, "get_cookies_for_url", None)
    if callable(getter):
        return list(getter(url) or [])
    if isinstance(jar, httpx.Cookies):
        return _cookies_from_cookiejar(jar.jar, url)
    if isinstance(jar, CookieJar):
        return _cookies_from_cookiejar(jar, url)
    inner = getattr(jar, "_jar", None)
    if isinstance(inner, CookieJar):
        return _cookies_from_cookiejar(inner, url)
    return []


def _collect(cookies: Iterable[Any], into: dict[str, str]) -> None:
    for cookie in cookies:
        name = _cookie_name(cookie)
        value = _cookie_value(cookie)
        if name and value:
            into[name] = value


def extract_auth_cookie(client: Any, urls: Iterable[str] = COOKIE_URLS) -> str | None:
    """提取客户端当前的 Cookie 串（name=value; ...）；没有时返回 None"""
    try:
        jar = locate_jar(client)
        if jar is None:
            logger.debug("[CookieExtractor] 客户端上没有找到 Cookie 容器")
            return None

        unique: dict[str, str] = {}
        if isinstance(jar, (list, tuple)):
            # 容器本身就是 Cookie 记录列表
            _collect(jar, unique)
        else:
            for url in urls:
                try:
                    _collect(query_jar(jar, url), unique)
                except Exception as e:
                    logger.debug(f"[CookieExtractor] 查询 {url} 失败: {e}")

        if not unique:
            return None

        logger.debug(f"[CookieExtractor] 提取到 {len(unique)} 个 Cookie")
        return "; ".join(f"{name}={value}" for name, value in unique.items())
    except Exception as e:
        logger.warning(f"[CookieExtractor] 提取 Cookie 失败: {e}")
        return None
