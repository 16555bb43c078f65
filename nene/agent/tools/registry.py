"""工具注册与调度模块。

ToolRegistry 把“工具定义管理”和“工具执行入口”集中在一处，
让 AgentSession 只关心调用，不关心每个工具的具体实现。

注册只应在启动阶段完成，之后注册表视为只读；运行期间并发注册不受支持。
"""

import json
from typing import Any

from loguru import logger

from nene.agent.tools.base import Approval, ContextualTool, Tool, ToolResult


class ToolRegistry:
    """工具容器与执行分发器。"""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """注册工具；同名工具会被后注册者覆盖。"""
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """注销工具；不存在时静默忽略。"""
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        """按名称获取工具实例。"""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        """判断工具是否已注册。"""
        return name in self._tools

    def get_definitions(self) -> list[dict[str, Any]]:
        """导出 OpenAI function calling 格式的工具定义列表。"""
        return [tool.to_schema() for tool in self._tools.values()]

    def make_approval(self, name: str, params: dict[str, Any]) -> Approval | None:
        """未知工具或不需要确认时返回 None。"""
        tool = self._tools.get(name)
        if not tool:
            return None
        return tool.make_approval(params)

    async def execute(
        self,
        name: str,
        params: dict[str, Any] | str | None,
        channel: str | None = None,
        chat_id: str | None = None,
    ) -> ToolResult:
        """执行指定工具。

        未知工具、参数解析失败、参数校验失败以及工具内部异常都会转换成
        is_error=True 的结果返回，由模型在下一轮自行纠正。
        """
        tool = self._tools.get(name)
        if not tool:
            return ToolResult.error(f"unknown tool: {name}")

        if isinstance(params, str):
            try:
                params = json.loads(params) if params.strip() else {}
            except json.JSONDecodeError as e:
                return ToolResult.error(f"invalid arguments: {e}")
        params = params or {}
        if not isinstance(params, dict):
            return ToolResult.error("invalid arguments: expected a JSON object")

        if isinstance(tool, ContextualTool) and channel and chat_id:
            tool.set_context(channel, chat_id)

        try:
            errors = tool.validate_params(params)
            if errors:
                return ToolResult.error(f"Invalid parameters for tool '{name}': " + "; ".join(errors))
            return await tool.execute(**params)
        except Exception as e:
            logger.warning(f"Tool {name} raised: {e}")
            return ToolResult.error(f"Error executing {name}: {str(e)}")

    @property
    def tool_names(self) -> list[str]:
        """返回已注册工具名列表（用于调试与展示）。"""
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
