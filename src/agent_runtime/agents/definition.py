"""
AgentDefinition：agent 的不可变配置（模型、工具、预算、提示词、输入、输出字段）。

约定：
- 注册后不可变（pydantic frozen）；
- `run.*` 中为 None 的字段在运行时回落到配置文件的 `run.*` 默认值；
- `tools.tools` 为 None 表示“使用注册表中的全部工具”。
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

InputType = Literal["string", "number", "integer", "boolean", "string[]", "number[]"]

DEFAULT_QUERY = "Get Started!"


class InputParameter(BaseModel):
    """单个输入参数声明。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    description: str = ""
    type: InputType = "string"
    required: bool = False


class ModelSettings(BaseModel):
    """模型设置（由 ModelServiceFactory 解释）。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    provider: str = "default"
    model: str = "default"
    temperature: float = Field(default=0.2, ge=0.0)
    top_p: float = Field(default=0.95, ge=0.0, le=1.0)
    thinking_budget: int = -1


class ToolSettings(BaseModel):
    """工具白名单（None：全部已注册工具）。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    tools: Optional[List[str]] = None


class RunSettings(BaseModel):
    """
    运行预算与行为开关。

    字段：
    - max_turns / max_time_minutes / concurrent_tool_calls：None 表示使用配置默认值
    - require_complete_task：True 时必须调用 complete_task 才算完成
    - denial_is_fatal：True 时确认被拒绝即以 ABORTED 结束 run
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_turns: Optional[int] = Field(default=None, ge=1)
    max_time_minutes: Optional[float] = Field(default=None, gt=0)
    concurrent_tool_calls: Optional[bool] = None
    require_complete_task: bool = False
    denial_is_fatal: bool = False


class PromptSettings(BaseModel):
    """提示词模板（`${input}` 占位符由 inputs 替换）。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    system_prompt: str = ""
    query: str = ""


class AgentDefinition(BaseModel):
    """
    Agent 定义。

    字段：
    - name：唯一 key（也是 subagent 工具名）
    - display_name：显示名（默认同 name）
    - description：说明（写入 subagent 工具声明）
    - model / tools / run / prompt：见各 Settings
    - inputs：输入参数声明
    - output_name / output_description：complete_task 的结果字段
    - source：可选；从文件加载时的来源路径
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = ""
    display_name: Optional[str] = None
    description: str = ""
    model: ModelSettings = Field(default_factory=ModelSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    run: RunSettings = Field(default_factory=RunSettings)
    prompt: PromptSettings = Field(default_factory=PromptSettings)
    inputs: Dict[str, InputParameter] = Field(default_factory=dict)
    output_name: str = "result"
    output_description: str = "The result of the agent's work"
    source: Optional[str] = None

    @property
    def label(self) -> str:
        """显示名（缺省回落到 name）。"""

        return self.display_name or self.name
