"""持久化：key-value 存储与 checkpoint。"""

from agent_runtime.state.checkpoints import CheckpointManager, TrimReport, trim_history
from agent_runtime.state.storage import InMemoryStorage, JsonFileStorage, KeyValueStorage

__all__ = ["CheckpointManager", "InMemoryStorage", "JsonFileStorage", "KeyValueStorage", "TrimReport", "trim_history"]
