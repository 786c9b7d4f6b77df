"""
Run 失败错误类型化（RunErrorKind / RunError）。

说明：
- executor 在 turn loop 之外捕获的异常，统一经 `classify_run_exception` 映射为稳定分类；
- 分类结果写入 `RunResult.error_kind` 与 ERROR 活动事件，不做自动重试。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from agent_runtime.core.errors import FrameworkError, LlmError
from agent_runtime.llm.errors import TransportError

MAX_MESSAGE_CHARS = 800


class RunErrorKind(str, Enum):
    """ERROR 终态的稳定错误分类（机器可消费）。"""

    TRANSPORT_ERROR = "transport_error"
    AUTH_ERROR = "auth_error"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CONFIG_ERROR = "config_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RunError:
    """
    RunError：结构化运行错误。

    字段：
    - error_kind：稳定分类
    - message：可读错误消息
    - retryable：是否建议上层重试
    - retry_after_ms：可选；建议的重试等待毫秒数（429 + Retry-After）
    - details：可选；结构化上下文
    """

    error_kind: RunErrorKind
    message: str
    retryable: bool = False
    retry_after_ms: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """转换为 ERROR 活动事件的附加字段（稳定字段名）。"""

        out: Dict[str, Any] = {
            "error_kind": self.error_kind.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.retry_after_ms is not None:
            out["retry_after_ms"] = int(self.retry_after_ms)
        if self.details:
            out["details"] = dict(self.details)
        return out


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    """解析 Retry-After（秒）为毫秒；非法或非正数返回 None。"""

    if not value:
        return None
    try:
        sec = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return sec * 1000 if sec > 0 else None


def _classify_status(exc: httpx.HTTPStatusError) -> RunError:
    """HTTP 状态错误分类（401/403 → auth，429 → rate_limited，5xx → server）。"""

    code = int(exc.response.status_code)
    kind = RunErrorKind.TRANSPORT_ERROR
    retryable = False
    retry_after_ms: Optional[int] = None
    if code in (401, 403):
        kind = RunErrorKind.AUTH_ERROR
    elif code == 429:
        kind = RunErrorKind.RATE_LIMITED
        retryable = True
        retry_after_ms = _parse_retry_after(exc.response.headers.get("Retry-After"))
    elif 500 <= code <= 599:
        kind = RunErrorKind.SERVER_ERROR
        retryable = True

    msg = f"HTTP {code}"
    try:
        data = exc.response.json()
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            em = data["error"].get("message")
            if isinstance(em, str) and em.strip():
                msg = f"HTTP {code}: {em.strip()}"
    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
        pass
    if len(msg) > MAX_MESSAGE_CHARS:
        msg = msg[:MAX_MESSAGE_CHARS] + "...<truncated>"
    return RunError(error_kind=kind, message=msg, retryable=retryable, retry_after_ms=retry_after_ms, details={"status_code": code})


def classify_run_exception(exc: BaseException) -> RunError:
    """
    将运行时异常映射为结构化 RunError。

    约束：
    - message 必须尽量简洁可读
    """

    if isinstance(exc, FrameworkError):
        return RunError(
            error_kind=RunErrorKind.CONFIG_ERROR,
            message=str(exc),
            details={"framework_code": exc.code, "framework_details": dict(exc.details)},
        )

    if isinstance(exc, httpx.HTTPStatusError):
        return _classify_status(exc)
    if isinstance(exc, httpx.TimeoutException):
        return RunError(error_kind=RunErrorKind.TRANSPORT_ERROR, message=str(exc), retryable=True, details={"kind": "timeout"})
    if isinstance(exc, httpx.RequestError):
        return RunError(error_kind=RunErrorKind.TRANSPORT_ERROR, message=str(exc), retryable=True, details={"kind": "request_error"})

    if isinstance(exc, TransportError):
        status = exc.status_code
        if status in (401, 403):
            return RunError(error_kind=RunErrorKind.AUTH_ERROR, message=str(exc), details={"status_code": status})
        if status == 429:
            return RunError(error_kind=RunErrorKind.RATE_LIMITED, message=str(exc), retryable=True, details={"status_code": status})
        if status is not None and 500 <= status <= 599:
            return RunError(error_kind=RunErrorKind.SERVER_ERROR, message=str(exc), retryable=True, details={"status_code": status})
        return RunError(error_kind=RunErrorKind.TRANSPORT_ERROR, message=str(exc), retryable=True)

    if isinstance(exc, LlmError):
        return RunError(error_kind=RunErrorKind.TRANSPORT_ERROR, message=str(exc), retryable=True)

    if isinstance(exc, ValueError):
        # 常见：协议不匹配、配置加载问题
        return RunError(error_kind=RunErrorKind.CONFIG_ERROR, message=str(exc))

    return RunError(error_kind=RunErrorKind.UNKNOWN, message=str(exc) or type(exc).__name__)
