"""配置（YAML overlays + pydantic 校验）。"""

from __future__ import annotations

from tool_runtime.config.defaults import load_default_config_dict
from tool_runtime.config.loader import ToolRuntimeConfig, load_config, load_config_dicts

__all__ = ["ToolRuntimeConfig", "load_config", "load_config_dicts", "load_default_config_dict"]
