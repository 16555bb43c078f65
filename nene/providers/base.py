"""模型后端抽象。

LLMProvider 提供两种调用方式：
- chat(): 一次性返回完整响应。
- chat_stream(): 逐条产出 StreamChunk（文本增量 / 工具调用 / 结束原因）。

只实现了 chat() 的后端可以直接使用默认的 chat_stream()，
它把完整响应拆成一次性的事件突发。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator


class FinishReason:
    """结束原因常量。"""
    STOP = "stop"
    TOOL_CALLS = "tool_calls"


@dataclass
class ToolCallRequest:
    """类说明：ToolCallRequest。"""
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class LLMResponse:
    """类说明：LLMResponse。"""
    content: str | None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str = FinishReason.STOP
    usage: dict[str, int] = field(default_factory=dict)


@dataclass
class StreamChunk:
    """流式响应中的一个事件，三个字段通常只有一个有值。"""
    delta: str = ""
    tool_call: ToolCallRequest | None = None
    finish_reason: str = ""


class LLMProvider(ABC):
    """类说明：LLMProvider。"""

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """异步函数说明：chat。失败时抛出 ProviderError。"""
        pass

    async def chat_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[StreamChunk]:
        """默认实现：调用 chat() 后把完整响应作为一次突发输出。"""
        response = await self.chat(
            messages=messages,
            tools=tools,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if response.content:
            yield StreamChunk(delta=response.content)
        for tool_call in response.tool_calls:
            yield StreamChunk(tool_call=tool_call)
        yield StreamChunk(finish_reason=response.finish_reason or FinishReason.STOP)

    @abstractmethod
    def get_default_model(self) -> str:
        """函数说明：get_default_model。"""
        pass
