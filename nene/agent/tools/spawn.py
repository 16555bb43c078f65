"""spawn 工具：把多个独立任务交给子代理并行处理。"""

import asyncio
from typing import TYPE_CHECKING, Any

from nene.agent.tools.base import Approval, ContextualTool, ToolResult

if TYPE_CHECKING:
    from nene.agent.subagent import SubagentManager


class SpawnTool(ContextualTool):
    """类说明：SpawnTool。"""

    def __init__(self, manager: "SubagentManager | None" = None):
        super().__init__()
        self._manager = manager

    @property
    def name(self) -> str:
        return "spawn"

    @property
    def description(self) -> str:
        return (
            "Spawn multiple subagents in parallel to handle independent tasks.\n"
            "Each subagent runs concurrently and results are returned after all complete.\n"
            '- Use "tasks" array to spawn multiple subagents at once\n'
            '- Each task can have a "label" for identification\n'
            "- All subagents run in parallel\n"
            "- Perfect for: parallel searches, multiple file operations, dividing complex tasks"
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "tasks": {
                    "type": "array",
                    "description": "Array of tasks to spawn in parallel. Each task runs independently.",
                    "items": {
                        "type": "object",
                        "properties": {
                            "task": {"type": "string", "description": "The task for subagent to complete"},
                            "label": {"type": "string", "description": "Unique label to identify this task result"},
                        },
                        "required": ["task"],
                    },
                },
            },
            "required": ["tasks"],
        }

    def make_approval(self, params: dict[str, Any]) -> Approval | None:
        count = len(params.get("tasks") or [])
        return Approval("Agent wants to spawn subagents", f"Spawn {count} parallel task(s)")

    async def execute(self, tasks: list[dict[str, Any]], **kwargs: Any) -> ToolResult:
        from nene.agent.subagent import SubagentTask

        if not tasks:
            return ToolResult.error("tasks array is required and must not be empty")
        if self._manager is None:
            return ToolResult.error("Subagent manager not configured")

        units = [SubagentTask(task=t["task"], label=t.get("label", "")) for t in tasks]
        try:
            results = await self._manager.spawn(units, self._channel or None, self._chat_id or None)
        except asyncio.TimeoutError:
            return ToolResult.error(f"subagents timed out after {self._manager.timeout} seconds")
        return ToolResult.ok(self._manager.format_report(results))
