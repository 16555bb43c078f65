"""长期记忆工具：memory_store / memory_recall / memory_forget。"""

from typing import Any

from loguru import logger

from nene.agent.memory import MemoryCategory, MemoryStore
from nene.agent.tools.base import ContextualTool, Tool, ToolResult


class MemoryStoreTool(ContextualTool):
    """写入记忆时记录来源会话（channel:chat_id）。"""

    def __init__(self, memory: MemoryStore):
        super().__init__()
        self.memory = memory

    @property
    def name(self) -> str:
        return "memory_store"

    @property
    def description(self) -> str:
        return (
            "Store information in long-term memory. Use this to remember important facts, "
            "user preferences, or context for future conversations."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "key": {"type": "string", "description": "Unique identifier for this memory entry"},
                "content": {"type": "string", "description": "The information to store in long-term memory"},
                "category": {
                    "type": "string",
                    "enum": [c.value for c in MemoryCategory],
                    "description": (
                        "Category of the memory: core (permanent), daily (temporary), "
                        "or conversation (session-specific)"
                    ),
                },
            },
            "required": ["key", "content"],
        }

    async def execute(self, key: str, content: str, category: str = "", **kwargs: Any) -> ToolResult:
        if not key or not content:
            return ToolResult.error("key and content are required")
        session_id = f"{self._channel}:{self._chat_id}" if self._channel else None
        try:
            entry = await self.memory.store(key, content, category, session_id=session_id)
        except Exception as e:
            logger.error(f"memory_store failed: {e}")
            return ToolResult.error(f"failed to store memory: {e}")
        return ToolResult.ok(f"Stored memory: {entry.key}")


class MemoryRecallTool(Tool):

    def __init__(self, memory: MemoryStore):
        self.memory = memory

    @property
    def name(self) -> str:
        return "memory_recall"

    @property
    def description(self) -> str:
        return (
            "Search long-term memory for relevant information. Use this to recall facts, "
            "preferences, or context from previous conversations."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query to find relevant memories"},
                "limit": {"type": "integer", "description": "Maximum number of memories to return (default 5)"},
            },
            "required": ["query"],
        }

    async def execute(self, query: str, limit: int = 5, **kwargs: Any) -> ToolResult:
        if not query:
            return ToolResult.error("query is required")
        try:
            entries = await self.memory.recall(query, limit=limit)
        except Exception as e:
            logger.error(f"memory_recall failed: {e}")
            return ToolResult.error(f"failed to recall memories: {e}")

        logger.debug(f"memory_recall: query={query}, found={len(entries)} entries")
        if not entries:
            return ToolResult.ok("No relevant memories found.")

        lines = [f"Found {len(entries)} relevant memories:\n"]
        for i, entry in enumerate(entries, 1):
            lines.append(f"{i}. [{entry.category.value}] {entry.key}")
            lines.append(f"   {entry.content}\n")
        return ToolResult.ok("\n".join(lines))


class MemoryForgetTool(Tool):

    def __init__(self, memory: MemoryStore):
        self.memory = memory

    @property
    def name(self) -> str:
        return "memory_forget"

    @property
    def description(self) -> str:
        return "Delete a memory entry from long-term storage. Use this to remove outdated or incorrect information."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "key": {"type": "string", "description": "The key of the memory to delete"},
            },
            "required": ["key"],
        }

    async def execute(self, key: str, **kwargs: Any) -> ToolResult:
        if not key:
            return ToolResult.error("key is required")
        try:
            deleted = await self.memory.forget(key)
        except Exception as e:
            logger.error(f"memory_forget failed: {e}")
            return ToolResult.error(f"failed to forget memory: {e}")

        if deleted:
            return ToolResult.ok(f"Memory '{key}' has been forgotten.")
        return ToolResult.ok(f"Memory '{key}' was not found.")
