"""
模型通信错误类型（可分类、可回归）。

说明：
- 这些异常用于模块间传递“可程序化处理”的失败原因；
- executor 将其映射为 `RunResult(terminate_reason=ERROR)` 与稳定的 error_kind。
"""

from __future__ import annotations

from typing import Optional

from agent_runtime.core.errors import LlmError


class TransportError(LlmError):
    """
    传输层失败（连接中断、流解析失败、上游返回错误）。

    参数：
    - message：可读错误消息
    - status_code：可选；上游 HTTP 状态码
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        """创建传输错误。"""

        super().__init__(message)
        self.status_code = status_code
