"""think 工具：记录模型的中间推理，不对用户展示。"""

from typing import Any

from nene.agent.tools.base import Tool, ToolResult


class ThinkTool(Tool):

    @property
    def name(self) -> str:
        return "think"

    @property
    def description(self) -> str:
        return (
            "Use this tool to think through complex problems step by step. Your thought process will be "
            "recorded but not shown to the user. This helps you organize your reasoning before taking action."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "thought": {"type": "string", "description": "Your internal reasoning and thought process"},
            },
            "required": ["thought"],
        }

    async def execute(self, thought: str, **kwargs: Any) -> ToolResult:
        return ToolResult.ok(f"Thought recorded: {thought}")
