"""
Tool Runtime SDK（Python）。

说明：
- 本包实现 Agent 与“有副作用/敏感操作”之间的工具调用与访问策略引擎。
- 当前包含：
  - 工具描述符（ToolDescriptor）与注册表（ToolRegistry，启动后 seal）
  - 路径解析（多 workspace root、`..`/symlink 归一化后再判定边界）
  - 策略评估（ToolPolicy × 动态事实 → 有效策略，决策表即数据）
  - 工具调用生命周期（状态机 + 集合查询）
  - 调用编排（预处理 → 策略 → 审批 → 执行 → 完成）
"""

from __future__ import annotations

from tool_runtime.bootstrap import ToolRuntime, build_runtime
from tool_runtime.core.orchestrator import RawToolCall, ToolCallOrchestrator
from tool_runtime.core.tool_calls import ToolCallStatus, ToolCallTracker
from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.tools.registry import ToolRegistry

__all__ = [
    "RawToolCall",
    "ToolCallOrchestrator",
    "ToolCallStatus",
    "ToolCallTracker",
    "ToolPolicy",
    "ToolRegistry",
    "ToolRuntime",
    "__version__",
    "build_runtime",
]

__version__ = "0.3.0"
