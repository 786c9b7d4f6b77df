from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from agent_runtime.core.errors import StateError
from agent_runtime.state.checkpoints import CheckpointManager, estimate_tokens, sanitize_tag, trim_history


def _tool_output(name: str, output: str) -> Dict[str, Any]:
    return {
        "role": "user",
        "parts": [{"function_response": {"id": f"call_{name}", "name": name, "response": {"output": output}}}],
    }


def _history() -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = [{"role": "user", "parts": [{"text": "start"}]}]
    for i in range(4):
        items.append({"role": "model", "parts": [{"function_call": {"id": f"call_{i}", "name": "read_file", "args": {}}}]})
        items.append(_tool_output("read_file", "x" * (600 if i >= 2 else 10)))
    items.append({"role": "model", "parts": [{"text": "x" * 700}]})
    return items


def test_trim_keeps_last_window_and_cleans_large_outputs() -> None:
    history = _history()
    original = copy.deepcopy(history)
    assert len(history) == 10

    trimmed, report = trim_history(history, keep_last=6, max_output_chars=500)

    assert history == original
    assert len(trimmed) == 6
    assert [h["role"] for h in trimmed] == [h["role"] for h in history[-6:]]
    outputs = [
        p["function_response"]["response"]["output"]
        for h in trimmed
        if h["role"] == "user"
        for p in h["parts"]
    ]
    assert outputs == ["x" * 10, "[Cleaned up: read_file output (600 bytes)]", "[Cleaned up: read_file output (600 bytes)]"]
    assert trimmed[-1]["parts"][0]["text"] == "x" * 700
    assert report.items_before == 10
    assert report.removed_items == 4
    assert report.outputs_cleaned == 2
    assert report.tokens_saved > 0
    assert report.tokens_after == estimate_tokens(trimmed)


def test_trim_reports_utf8_byte_size() -> None:
    trimmed, _ = trim_history([_tool_output("fetch", "é" * 500)], keep_last=6, max_output_chars=500)
    assert trimmed[0]["parts"][0]["function_response"]["response"]["output"] == "[Cleaned up: fetch output (1000 bytes)]"


def test_trim_threshold_is_inclusive_and_keep_last_zero() -> None:
    under, report = trim_history([_tool_output("t", "a" * 499)], max_output_chars=500)
    assert report.outputs_cleaned == 0
    assert under[0]["parts"][0]["function_response"]["response"]["output"] == "a" * 499

    empty, report = trim_history(_history(), keep_last=0)
    assert empty == []
    assert report.items_after == 0

    with pytest.raises(ValueError):
        trim_history([], keep_last=-1)


def test_sanitize_tag() -> None:
    assert sanitize_tag("before refactor/v2") == "before_refactor_v2"
    with pytest.raises(StateError):
        sanitize_tag("///")


def test_checkpoint_save_load_list_delete(tmp_path: Path) -> None:
    manager = CheckpointManager(tmp_path / "checkpoints")
    history = _history()
    assert manager.list_checkpoints() == []

    path = manager.save_checkpoint(history, "before refactor")
    assert path.name == "checkpoint-before_refactor.json"
    assert json.loads(path.read_text(encoding="utf-8"))["tag"] == "before refactor"
    manager.save_checkpoint(history[:2], "alpha")

    assert manager.load_checkpoint("before refactor") == history
    assert manager.load_checkpoint("missing") is None
    assert manager.list_checkpoints() == ["alpha", "before_refactor"]

    manager.save_checkpoint(history[:1], "alpha")
    assert manager.load_checkpoint("alpha") == history[:1]

    assert manager.delete_checkpoint("alpha") is True
    assert manager.delete_checkpoint("alpha") is False
    assert manager.list_checkpoints() == ["before_refactor"]


def test_corrupt_checkpoint_raises_state_error(tmp_path: Path) -> None:
    manager = CheckpointManager(tmp_path)
    (tmp_path / "checkpoint-bad.json").write_text("{oops", encoding="utf-8")
    with pytest.raises(StateError):
        manager.load_checkpoint("bad")
