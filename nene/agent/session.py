"""单会话 Agent 执行模块。

AgentSession 持有一个会话的消息历史，并驱动
“请求模型 -> 流式输出 -> 执行工具 -> 再次请求”的迭代循环，
同时把进度以 StreamEvent 的形式发布到消息总线。
"""

import asyncio
import json
from enum import Enum
from typing import Any

from loguru import logger

from nene.agent.tools.registry import ToolRegistry
from nene.bus.events import InboundMessage, StreamEvent
from nene.bus.queue import MessageBus
from nene.errors import MaxIterationsExceeded, ProviderError
from nene.providers.base import FinishReason, LLMProvider, ToolCallRequest
from nene.stream.state import MAIN_PART_ID

DEFAULT_MAX_ITERATIONS = 20


class SessionState(str, Enum):
    """会话状态机。"""

    IDLE = "idle"
    REQUESTING_COMPLETION = "requesting_completion"
    TEXT_STREAMING = "text_streaming"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ERRORED = "errored"


class AgentSession:
    """一个会话的对话历史与执行循环。

    turn_lock 保证同一会话的 process 调用串行执行；
    _history_lock 只保护单次历史读写。
    """

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        bus: MessageBus | None = None,
        model: str | None = None,
        system_prompt: str = "",
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        key: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.provider = provider
        self.tools = tools
        self.bus = bus
        self.model = model or provider.get_default_model()
        self.system_prompt = system_prompt
        self.max_iterations = max_iterations
        self.key = key
        self.max_tokens = max_tokens
        self.temperature = temperature

        self.messages: list[dict[str, Any]] = []
        self.state = SessionState.IDLE
        self.iteration = 0
        self.turn_lock = asyncio.Lock()
        self._history_lock = asyncio.Lock()

    async def _append(self, message: dict[str, Any]) -> None:
        async with self._history_lock:
            self.messages.append(message)

    async def _snapshot(self) -> list[dict[str, Any]]:
        async with self._history_lock:
            return list(self.messages)

    async def history(self) -> list[dict[str, Any]]:
        """返回历史消息的副本。"""
        return await self._snapshot()

    async def clear(self) -> None:
        """清空历史，下一轮会重新注入系统提示。"""
        async with self._history_lock:
            self.messages = []
        self.state = SessionState.IDLE
        self.iteration = 0

    async def process(self, msg: InboundMessage) -> str:
        """处理一条入站消息并返回最终回复文本。

        成功时发布 finish 事件；模型调用失败时发布 error 事件并抛出 ProviderError；
        超过迭代上限时发布 error 事件并抛出 MaxIterationsExceeded。
        """
        async with self.turn_lock:
            emitter = _Emitter(self.bus if msg.stream_mode else None, msg, self.key or msg.session_key)
            self.iteration = 0

            await emitter.emit(StreamEvent.start(emitter.channel, emitter.chat_id, emitter.session_key))

            async with self._history_lock:
                if not self.messages and self.system_prompt:
                    self.messages.append({"role": "system", "content": self.system_prompt})
                self.messages.append({"role": "user", "content": msg.content})

            try:
                final_text = await self._run_loop(msg, emitter)
            except asyncio.CancelledError:
                self.state = SessionState.ERRORED
                raise
            except (ProviderError, MaxIterationsExceeded) as e:
                self.state = SessionState.ERRORED
                logger.error(f"Session {msg.session_key} aborted: {e}")
                await emitter.emit(StreamEvent.failure(
                    emitter.channel, emitter.chat_id, emitter.session_key, str(e), self.iteration,
                ))
                raise

            self.state = SessionState.DONE
            await emitter.emit(StreamEvent.finish(
                emitter.channel, emitter.chat_id, emitter.session_key, self.iteration,
            ))
            logger.info(f"Session {msg.session_key} finished after {self.iteration} iteration(s)")
            return final_text

    async def _run_loop(self, msg: InboundMessage, emitter: "_Emitter") -> str:
        while True:
            if self.iteration >= self.max_iterations:
                raise MaxIterationsExceeded(self.max_iterations)
            self.iteration += 1
            iteration = self.iteration

            await emitter.emit(StreamEvent.start(emitter.channel, emitter.chat_id, emitter.session_key, iteration))
            text, tool_calls, finish_reason = await self._stream_completion(emitter, iteration)

            assistant: dict[str, Any] = {"role": "assistant", "content": text}
            if tool_calls:
                assistant["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in tool_calls
                ]
            await self._append(assistant)

            if finish_reason != FinishReason.TOOL_CALLS or not tool_calls:
                return text

            self.state = SessionState.TOOL_CALLS_PENDING
            await self._execute_tools(msg, emitter, tool_calls, iteration)

    async def _stream_completion(
        self,
        emitter: "_Emitter",
        iteration: int,
    ) -> tuple[str, list[ToolCallRequest], str]:
        """打开一次流式请求，累积文本与工具调用。

        每轮都会发布一对 text-start / text-end，
        这样没有文本的一轮也会覆盖上一轮的 main 片段。
        """
        self.state = SessionState.REQUESTING_COMPLETION
        request = await self._snapshot()
        definitions = self.tools.get_definitions()

        text_parts: list[str] = []
        tool_calls: list[ToolCallRequest] = []
        finish_reason = ""
        text_started = False

        try:
            async for chunk in self.provider.chat_stream(
                messages=request,
                tools=definitions or None,
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            ):
                if not text_started:
                    text_started = True
                    await self._start_text(emitter, iteration)
                if chunk.delta:
                    self.state = SessionState.TEXT_STREAMING
                    text_parts.append(chunk.delta)
                    await emitter.emit(StreamEvent.text_delta(
                        emitter.channel, emitter.chat_id, emitter.session_key, MAIN_PART_ID, chunk.delta, iteration,
                    ))
                if chunk.tool_call:
                    tool_calls.append(chunk.tool_call)
                if chunk.finish_reason:
                    finish_reason = chunk.finish_reason
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"model stream failed: {e}") from e

        if not text_started:
            await self._start_text(emitter, iteration)
        await emitter.emit(StreamEvent.text_end(
            emitter.channel, emitter.chat_id, emitter.session_key, MAIN_PART_ID, iteration,
        ))
        return "".join(text_parts), tool_calls, finish_reason

    async def _start_text(self, emitter: "_Emitter", iteration: int) -> None:
        await emitter.emit(StreamEvent.text_start(
            emitter.channel, emitter.chat_id, emitter.session_key, MAIN_PART_ID, iteration,
        ))

    async def _execute_tools(
        self,
        msg: InboundMessage,
        emitter: "_Emitter",
        tool_calls: list[ToolCallRequest],
        iteration: int,
    ) -> None:
        """按顺序执行工具，结果以 tool 消息写回历史。"""
        self.state = SessionState.EXECUTING_TOOLS
        for tc in tool_calls:
            await emitter.emit(StreamEvent.tool_call(
                emitter.channel, emitter.chat_id, emitter.session_key, tc.id, tc.name, tc.arguments, iteration,
            ))
            logger.debug(f"Executing tool: {tc.name} with arguments: {json.dumps(tc.arguments)}")
            result = await self.tools.execute(tc.name, tc.arguments, msg.channel, msg.chat_id)

            if result.is_error:
                content = f"Error: {result.content}"
                await emitter.emit(StreamEvent.tool_error(
                    emitter.channel, emitter.chat_id, emitter.session_key, tc.id, result.content, iteration,
                ))
            else:
                content = result.content
                await emitter.emit(StreamEvent.tool_result(
                    emitter.channel, emitter.chat_id, emitter.session_key, tc.id, tc.name, result.content, iteration,
                ))

            await self._append({
                "role": "tool",
                "tool_call_id": tc.id,
                "name": tc.name,
                "content": content,
            })


class _Emitter:
    """把事件发布到总线；非流式消息或无总线时静默丢弃。"""

    def __init__(self, bus: MessageBus | None, msg: InboundMessage, session_key: str):
        self.bus = bus
        self.channel = msg.channel
        self.chat_id = msg.chat_id
        self.session_key = session_key

    async def emit(self, event: StreamEvent) -> None:
        if self.bus is not None:
            await self.bus.publish_stream(event)
