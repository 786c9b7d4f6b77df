"""YAML 配置加载与默认值。"""

from agent_runtime.config.defaults import load_default_config_dict
from agent_runtime.config.loader import RuntimeConfig, load_config, load_config_dicts

__all__ = ["RuntimeConfig", "load_config", "load_config_dicts", "load_default_config_dict"]
