"""Test helpers: scripted model providers, recording tools and message builders."""

import asyncio
from typing import Any, Callable

from nene.agent.tools.base import Tool, ToolResult
from nene.bus.events import InboundMessage
from nene.errors import ProviderError
from nene.providers.base import FinishReason, LLMProvider, LLMResponse, ToolCallRequest

Script = Callable[[list[dict[str, Any]]], LLMResponse]


class ScriptedProvider(LLMProvider):
    """Replays canned responses; a callable script decides from the conversation."""

    def __init__(self, responses: list[LLMResponse] | Script, delay: float = 0.0):
        super().__init__()
        self._responses = responses
        self.delay = delay
        self.calls: list[list[dict[str, Any]]] = []

    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7) -> LLMResponse:
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if callable(self._responses):
            return self._responses(messages)
        if not self._responses:
            raise ProviderError("script exhausted")
        return self._responses.pop(0)

    def get_default_model(self) -> str:
        return "scripted/test"


class FailingProvider(LLMProvider):
    """Always fails like an unreachable backend."""

    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7) -> LLMResponse:
        raise ProviderError("connection refused")

    def get_default_model(self) -> str:
        return "failing/test"


class EchoTool(Tool):
    """Returns its input; fails when asked to."""

    def __init__(self, name: str = "echo", delay: float = 0.0):
        self._name = name
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "Echo the given text"

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "text": {"type": "string"},
                "fail": {"type": "boolean"},
            },
            "required": ["text"],
        }

    async def execute(self, text: str, fail: bool = False, **kwargs: Any) -> ToolResult:
        self.calls.append({"text": text, "fail": fail})
        if self.delay:
            await asyncio.sleep(self.delay)
        if fail:
            return ToolResult.error(f"echo failed: {text}")
        return ToolResult.ok(text)


def text_response(content: str) -> LLMResponse:
    return LLMResponse(content=content, finish_reason=FinishReason.STOP)


def tool_response(name: str, arguments: dict[str, Any], call_id: str = "call_1", content: str = "") -> LLMResponse:
    return LLMResponse(
        content=content,
        tool_calls=[ToolCallRequest(id=call_id, name=name, arguments=arguments)],
        finish_reason=FinishReason.TOOL_CALLS,
    )


def inbound(content: str = "hello", chat_id: str = "42", channel: str = "telegram", stream_mode: bool = True) -> InboundMessage:
    return InboundMessage(channel=channel, sender_id="user", chat_id=chat_id, content=content, stream_mode=stream_mode)
