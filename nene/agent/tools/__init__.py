"""工具子包导出入口。

统一暴露最常用的 Tool 抽象与 ToolRegistry，方便外部模块直接导入。
"""

from nene.agent.tools.base import Approval, ContextualTool, Tool, ToolResult
from nene.agent.tools.registry import ToolRegistry

__all__ = ["Approval", "ContextualTool", "Tool", "ToolRegistry", "ToolResult"]
