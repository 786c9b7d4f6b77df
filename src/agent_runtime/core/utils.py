"""共享工具函数（消除跨模块重复）。"""
from __future__ import annotations

import time
from datetime import datetime, timezone


def now_rfc3339() -> str:
    """返回当前 UTC 时间的 RFC3339 字符串（以 Z 结尾）。"""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def now_ms() -> int:
    """返回当前 epoch 毫秒时间戳（用于持久化的 created_at/last_used）。"""
    return int(time.time() * 1000)


def truncate_text(text: str, *, max_chars: int, suffix: str = "...") -> str:
    """
    将文本截断到不超过 max_chars（超长时以 suffix 结尾）。

    参数：
    - text：原始文本
    - max_chars：最大字符数（包含 suffix）
    - suffix：截断标记
    """

    s = str(text or "")
    if len(s) <= int(max_chars):
        return s
    if max_chars <= len(suffix):
        return s[:max_chars]
    return s[: max_chars - len(suffix)] + suffix
