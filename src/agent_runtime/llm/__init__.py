"""模型流式服务协议与离线 fake。"""

from agent_runtime.llm.errors import TransportError
from agent_runtime.llm.fake import FakeModelService, FakeTurn, tool_call
from agent_runtime.llm.protocol import (
    ModelServiceFactory,
    ModelStreamService,
    StreamEvent,
    StreamEventType,
    validate_model_service,
)

__all__ = [
    "FakeModelService",
    "FakeTurn",
    "ModelServiceFactory",
    "ModelStreamService",
    "StreamEvent",
    "StreamEventType",
    "TransportError",
    "tool_call",
    "validate_model_service",
]
