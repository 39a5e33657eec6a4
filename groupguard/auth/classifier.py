"""登录失败分类。

平台 API 和客户端库在需要二次验证时给出的信号并不统一，这里把异常先归一化为
LoginErrorInfo，再按固定顺序依次匹配分类规则：

1. 结构化信号：异常带有非空的二次验证方式列表
2. 已知缺陷信号：客户端库处理 2FA 挑战响应时的空引用错误
3. 关键字信号：错误信息中包含 2FA 相关关键字（不区分大小写）

都不匹配时视为登录失败。
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from typing import Callable

from groupguard.auth.errors import ApiError, AuthError

# 客户端库在 2FA 挑战响应缺少 Cookie 头时会对 None 做成员判断而崩溃，
# 仅凭这条信息无法区分真实原因，按需要二次验证处理。依赖修复后删除该规则即可。
KNOWN_TWO_FACTOR_DEFECT_MESSAGES = (
    "argument of type 'NoneType' is not iterable",
    "argument of type 'NoneType' is not a container or iterable",
    "Cannot read properties of undefined (reading 'includes')",
)

TWO_FACTOR_KEYWORDS = ("two-factor", "2fa", "totp", "emailotp", "otp")

GENERIC_LOGIN_ERROR = "Unknown login error"


@dataclass
class LoginErrorInfo:
    """归一化后的登录异常"""

    message: str
    lowered: str
    methods: list[str] = field(default_factory=list)
    status_code: int | None = None
    api_message: str | None = None
    trace: str = ""


@dataclass
class Classification:
    requires_2fa: bool
    methods: list[str] = field(default_factory=list)
    rule: str = ""


Classifier = Callable[[LoginErrorInfo], Classification | None]


def normalize_error(error: BaseException) -> LoginErrorInfo:
    message = getattr(error, "message", None) or str(error) or GENERIC_LOGIN_ERROR
    if not isinstance(message, str):
        message = str(message)

    methods = getattr(error, "methods", None) or getattr(error, "two_factor_methods", None)
    if not isinstance(methods, (list, tuple)):
        methods = []

    status_code = None
    api_message = None
    if isinstance(error, ApiError):
        status_code = error.status_code
        api_message = error.payload_message()

    return LoginErrorInfo(
        message=message,
        lowered=message.lower(),
        methods=[str(m) for m in methods],
        status_code=status_code,
        api_message=api_message,
        trace="".join(traceback.format_exception(type(error), error, error.__traceback__)),
    )


def structured_methods(info: LoginErrorInfo) -> Classification | None:
    if info.methods:
        return Classification(requires_2fa=True, methods=info.methods, rule="structured")
    return None


def known_defect(info: LoginErrorInfo) -> Classification | None:
    if any(text in info.message for text in KNOWN_TWO_FACTOR_DEFECT_MESSAGES):
        return Classification(requires_2fa=True, rule="known_defect")
    return None


def keyword_heuristic(info: LoginErrorInfo) -> Classification | None:
    if any(keyword in info.lowered for keyword in TWO_FACTOR_KEYWORDS):
        return Classification(requires_2fa=True, rule="keyword")
    return None


CLASSIFIERS: tuple[Classifier, ...] = (
    structured_methods,
    known_defect,
    keyword_heuristic,
)


def classify(info: LoginErrorInfo) -> Classification:
    for classifier in CLASSIFIERS:
        result = classifier(info)
        if result is not None:
            return result
    return Classification(requires_2fa=False, rule="failed")


def failure_message(info: LoginErrorInfo, include_trace: bool = True) -> str:
    """用户可见的失败信息：优先取 API 嵌套错误，其次异常信息；未归类的失败附带堆栈"""
    message = info.api_message or info.message or GENERIC_LOGIN_ERROR
    if include_trace and info.trace:
        message += f"\n\nStack:\n{info.trace}"
    return message


def failure_code(info: LoginErrorInfo, error: BaseException) -> str:
    """按 HTTP 状态粗分失败类型"""
    if info.status_code == 429:
        return "rate_limited"
    if isinstance(error, AuthError):
        return error.code
    return "authentication_failed"
