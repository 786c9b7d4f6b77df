"""
运行时错误分类（异常类型）。

说明：
- 异常只用于模块间传递“错误层级”语义与测试断言；
- 工具层错误不会以异常形式穿透 turn loop：它们会被转换为 `ToolResult.error` 回注模型；
- 预算耗尽（MAX_TURNS/MAX_TIME）与外部取消（ABORTED）是终态，不是异常。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class AgentRuntimeError(Exception):
    """运行时错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """框架结构化问题对象（可序列化，便于日志与报告）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(AgentRuntimeError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UserError(FrameworkError):
    """用户输入/配置导致的错误。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        """创建 `UserError`。

        参数：
        - `message`：可读错误信息
        - `code`：错误码（默认 `USER_ERROR`）
        - `details`：结构化补充信息
        """

        super().__init__(code=code, message=message, details=details or {})


class AgentValidationError(UserError):
    """agent definition 或 inputs 不合法（run 开始前 fail-fast）。"""

    def __init__(self, message: str, *, code: str = "AGENT_VALIDATION_ERROR", details: Dict[str, Any] | None = None) -> None:
        """创建校验错误（默认错误码 `AGENT_VALIDATION_ERROR`）。"""

        super().__init__(message, code=code, details=details)


class AgentInitError(AgentValidationError):
    """executor 初始化失败（例如 definition 引用了未注册的 tool）。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        """创建初始化错误（错误码固定为 `AGENT_INIT_ERROR`）。"""

        super().__init__(message, code="AGENT_INIT_ERROR", details=details)


class ToolValidationError(UserError):
    """构造 tool invocation 时参数校验失败（此时尚未产生任何副作用）。"""

    def __init__(self, message: str, *, tool: str, details: Dict[str, Any] | None = None) -> None:
        """
        创建参数校验错误。

        参数：
        - message：可读错误信息
        - tool：工具名
        - details：结构化补充信息（例如 pydantic errors）
        """

        merged = {"tool": tool}
        merged.update(details or {})
        super().__init__(message, code="TOOL_VALIDATION_ERROR", details=merged)
        self.tool = tool


class PermissionDeniedError(AgentRuntimeError):
    """操作被拒绝（工具体自行拒绝时抛出；executor 会将其转换为 PERMISSION_DENIED 的 ToolResult.error）。"""


class ExecutionFailedError(AgentRuntimeError):
    """工具执行失败（工具主动抛出；executor 会将其转换为 ToolResult.error）。"""


class StateError(AgentRuntimeError):
    """状态持久化/恢复错误（checkpoint、approval 规则读写等）。"""


class LlmError(AgentRuntimeError):
    """模型通信/协议错误（网络、限流、流解析等）。"""
