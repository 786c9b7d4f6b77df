"""
History / Checkpoint 管理：按 tag 保存与恢复对话历史，以及手动裁剪。

约定：
- history 为有序的 content 列表：`{"role": "user" | "model", "parts": [...]}`；
- executor 只把 history 当作有序输入/输出，不直接读写 checkpoint 存储；
- 裁剪保留最近的窗口，并把窗口内过大的工具输出替换为占位文本（记录原始字节数）。
"""

from __future__ import annotations

import copy
import json
import logging
import math
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from agent_runtime.core.errors import StateError
from agent_runtime.core.utils import now_rfc3339

logger = logging.getLogger(__name__)

CHECKPOINT_SUFFIX = ".json"
CHARS_PER_TOKEN = 4

_TAG_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")

History = List[Dict[str, Any]]


def sanitize_tag(tag: str) -> str:
    """
    将 tag 规范化为安全文件名片段（非 `[A-Za-z0-9._-]` 字符替换为 `_`）。

    异常：
    - StateError：规范化后为空
    """

    safe = _TAG_UNSAFE_RE.sub("_", str(tag or "").strip()).strip("._")
    if not safe:
        raise StateError(f"invalid checkpoint tag: {tag!r}")
    return safe


def estimate_tokens(history: History) -> int:
    """粗估 token 数（按 JSON 字符数 / 4 向上取整）。"""

    total = sum(len(json.dumps(item, ensure_ascii=False)) for item in history)
    return math.ceil(total / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class TrimReport:
    """
    裁剪报告。

    字段：
    - items_before / items_after：裁剪前后的条目数
    - outputs_cleaned：被替换为占位文本的工具输出数
    - tokens_before / tokens_after：粗估 token 数
    """

    items_before: int
    items_after: int
    outputs_cleaned: int
    tokens_before: int
    tokens_after: int

    @property
    def removed_items(self) -> int:
        """被丢弃的条目数。"""

        return self.items_before - self.items_after

    @property
    def tokens_saved(self) -> int:
        """节省的粗估 token 数。"""

        return self.tokens_before - self.tokens_after


def _clean_part(part: Dict[str, Any], max_output_chars: int) -> Tuple[Dict[str, Any], bool]:
    """替换单个 function_response part 中的过大输出；返回 (part, 是否替换)。"""

    fr = part.get("function_response")
    if not isinstance(fr, dict):
        return part, False
    response = fr.get("response")
    output = response.get("output") if isinstance(response, dict) else None
    if not isinstance(output, str) or len(output) < max_output_chars:
        return part, False
    tool = fr.get("name") or "unknown_tool"
    size = len(output.encode("utf-8"))
    cleaned = dict(fr)
    cleaned["response"] = {"output": f"[Cleaned up: {tool} output ({size} bytes)]"}
    return {**part, "function_response": cleaned}, True


def trim_history(history: History, *, keep_last: int = 6, max_output_chars: int = 500) -> Tuple[History, TrimReport]:
    """
    裁剪对话历史（保留尾部窗口，并清理窗口内的过大工具输出）。

    参数：
    - history：原始 history（不会被修改）
    - keep_last：保留的最近条目数
    - max_output_chars：工具输出字符数达到该阈值即替换为占位文本

    返回：
    - (trimmed, report)
    """

    if keep_last < 0 or max_output_chars < 1:
        raise ValueError("keep_last must be >= 0 and max_output_chars must be >= 1")

    kept = copy.deepcopy(history[-keep_last:]) if keep_last > 0 else []
    cleaned_count = 0
    out: History = []
    for content in kept:
        parts = content.get("parts")
        if content.get("role") != "user" or not isinstance(parts, list):
            out.append(content)
            continue
        new_parts = []
        for part in parts:
            if isinstance(part, dict):
                part, changed = _clean_part(part, max_output_chars)
                cleaned_count += int(changed)
            new_parts.append(part)
        out.append({**content, "parts": new_parts})

    report = TrimReport(
        items_before=len(history),
        items_after=len(out),
        outputs_cleaned=cleaned_count,
        tokens_before=estimate_tokens(history),
        tokens_after=estimate_tokens(out),
    )
    return out, report


class CheckpointManager:
    """
    基于目录的 checkpoint 存储（每个 tag 一个 JSON 文件）。

    参数：
    - checkpoint_dir：存放目录（首次保存时创建）
    """

    def __init__(self, checkpoint_dir: Path) -> None:
        """绑定目录。"""

        self.dir = Path(checkpoint_dir)

    def _path_for(self, tag: str) -> Path:
        """tag 对应的文件路径。"""

        return self.dir / f"checkpoint-{sanitize_tag(tag)}{CHECKPOINT_SUFFIX}"

    def save_checkpoint(self, history: History, tag: str) -> Path:
        """保存 history（同 tag 覆盖）；返回文件路径。"""

        path = self._path_for(tag)
        self.dir.mkdir(parents=True, exist_ok=True)
        payload = {"tag": tag, "saved_at": now_rfc3339(), "history": list(history)}
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, path)
        logger.debug("Saved checkpoint %r (%d items) to %s", tag, len(history), path)
        return path

    def load_checkpoint(self, tag: str) -> Optional[History]:
        """
        读取 history；tag 不存在返回 None。

        异常：
        - StateError：文件损坏
        """

        path = self._path_for(tag)
        if not path.exists():
            return None
        try:
            obj = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StateError(f"checkpoint is not valid JSON: {path}") from e
        history = obj.get("history") if isinstance(obj, dict) else None
        if not isinstance(history, list):
            raise StateError(f"checkpoint has no history list: {path}")
        return history

    def delete_checkpoint(self, tag: str) -> bool:
        """删除 checkpoint；返回是否存在并已删除。"""

        path = self._path_for(tag)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_checkpoints(self) -> List[str]:
        """返回已保存的（规范化后的）tag 列表（按名称排序）。"""

        if not self.dir.is_dir():
            return []
        prefix = "checkpoint-"
        tags = []
        for p in self.dir.iterdir():
            if p.is_file() and p.name.startswith(prefix) and p.name.endswith(CHECKPOINT_SUFFIX):
                tags.append(p.name[len(prefix) : -len(CHECKPOINT_SUFFIX)])
        return sorted(tags)
