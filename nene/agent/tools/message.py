"""message 工具：在回合进行中主动向当前会话推送消息。"""

from typing import Any, Awaitable, Callable

from nene.agent.tools.base import ContextualTool, ToolResult
from nene.bus.events import OutboundMessage


class MessageTool(ContextualTool):
    """通过 send_callback（通常是 bus.publish_outbound）发送消息。"""

    def __init__(self, send_callback: Callable[[OutboundMessage], Awaitable[None]] | None = None):
        super().__init__()
        self._send_callback = send_callback

    @property
    def name(self) -> str:
        return "message"

    @property
    def description(self) -> str:
        return (
            "Send a message to the user. Use this to communicate information, ask questions, or provide updates. "
            "The message will be sent immediately to the current chat."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "The message content to send to the user"},
            },
            "required": ["content"],
        }

    async def execute(self, content: str, **kwargs: Any) -> ToolResult:
        if not content:
            return ToolResult.error("content is required")
        if not self._send_callback or not self._channel or not self._chat_id:
            return ToolResult.error("message tool not properly configured with channel context")

        await self._send_callback(OutboundMessage(
            channel=self._channel,
            chat_id=self._chat_id,
            content=content,
        ))
        return ToolResult.ok("Message sent to user")
