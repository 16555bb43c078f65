"""流式事件消费者。

从总线的全局 stream 队列读取事件，丢弃不属于本渠道的事件，
把其余事件交给 StreamStateStore 聚合，并按节流策略调用渲染器。
"""

import asyncio
import time
from typing import Protocol

from loguru import logger

from nene.bus.events import StreamEvent, StreamEventType
from nene.bus.queue import MessageBus
from nene.stream.state import StreamState, StreamStateStore

DEFAULT_RENDER_INTERVAL_S = 0.5
DEFAULT_STATE_TTL_S = 15 * 60
DEFAULT_SWEEP_INTERVAL_S = 60

# 这些事件到达后立即渲染，不受节流限制。
_IMMEDIATE = {
    StreamEventType.TEXT_END,
    StreamEventType.TOOL_CALL,
    StreamEventType.TOOL_RESULT,
    StreamEventType.TOOL_ERROR,
}


class StreamRenderer(Protocol):
    """渲染目标需要实现的接口。"""

    async def render(self, chat_id: str, state: StreamState, final: bool) -> None:
        ...

    async def render_error(self, chat_id: str, message: str) -> None:
        ...


class StreamConsumer:
    """单个渠道的流式事件消费循环。"""

    def __init__(
        self,
        bus: MessageBus,
        channel: str,
        renderer: StreamRenderer,
        store: StreamStateStore | None = None,
        render_interval: float = DEFAULT_RENDER_INTERVAL_S,
        state_ttl: float = DEFAULT_STATE_TTL_S,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_S,
    ):
        self.bus = bus
        self.channel = channel
        self.renderer = renderer
        self.store = store or StreamStateStore()
        self.render_interval = render_interval
        self.state_ttl = state_ttl
        self.sweep_interval = sweep_interval
        self._last_sweep = time.monotonic()

    async def run(self, cancel: asyncio.Event) -> None:
        """持续消费直到 cancel 被设置或总线关闭。"""
        logger.info(f"Stream consumer for {self.channel} started")
        while not cancel.is_set():
            event = await self.bus.consume_stream(cancel, timeout=self.sweep_interval)
            if event is None:
                if self.bus.closed:
                    break
            else:
                await self.handle(event)
            self._maybe_sweep()
        logger.info(f"Stream consumer for {self.channel} stopped")

    async def handle(self, event: StreamEvent) -> None:
        """处理一条事件；渲染失败只记录日志。"""
        if event.channel != self.channel:
            logger.debug(f"Stream consumer {self.channel} skipping event for {event.channel}")
            return

        state = self.store.load_or_create(event.chat_id)
        terminal = state.on_event(event)

        try:
            if event.type == StreamEventType.FINISH:
                # 终态渲染总是同步执行，保证最后的内容不会被节流丢掉。
                await self.renderer.render(event.chat_id, state, True)
            elif event.type == StreamEventType.ERROR:
                await self.renderer.render_error(event.chat_id, event.error)
            elif event.type in _IMMEDIATE:
                await self._render(event.chat_id, state)
            elif event.type == StreamEventType.TEXT_DELTA:
                if state.should_render(self.render_interval):
                    await self._render(event.chat_id, state)
        except Exception as e:
            logger.error(f"Error rendering stream event {event.type.value} for {event.chat_id}: {e}")
        finally:
            if terminal:
                self.store.remove(event.chat_id)

    async def _render(self, chat_id: str, state: StreamState) -> None:
        state.mark_rendered()
        await self.renderer.render(chat_id, state, False)

    def evict(self, chat_id: str) -> None:
        """显式丢弃某个会话的状态（例如该会话的处理被取消）。"""
        if self.store.remove(chat_id) is not None:
            logger.debug(f"Evicted stream state for {self.channel}:{chat_id}")

    def _maybe_sweep(self) -> None:
        now = time.monotonic()
        if now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now
        for key in self.store.evict_stale(self.state_ttl, now):
            logger.warning(f"Evicted stale stream state for {self.channel}:{key}")
