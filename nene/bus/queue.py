"""消息总线。

三条相互独立的有界 FIFO 队列：inbound（用户消息）、outbound（渠道消息）、
stream（流式进度事件）。队列写满时发布方会被阻塞，这是有意的背压。
"""

import asyncio
import threading
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from nene.bus.events import InboundMessage, OutboundMessage, StreamEvent
from nene.errors import BusClosedError

T = TypeVar("T")

DEFAULT_CAPACITY = 100

InboundHandler = Callable[[InboundMessage], Awaitable[None]]


class MessageBus:
    """多生产者/多消费者的消息总线。"""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=capacity)
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize=capacity)
        self.stream: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=capacity)
        self._outbound_subscribers: dict[str, list[Callable[[OutboundMessage], Awaitable[None]]]] = {}
        self._handlers: dict[str, InboundHandler] = {}
        self._handlers_lock = threading.Lock()
        self._closed = asyncio.Event()

    # ------------------------------------------------------------------
    # 发布
    # ------------------------------------------------------------------

    async def publish_inbound(self, msg: InboundMessage) -> None:
        """发布入站消息；队列满时阻塞。"""
        await self._publish(self.inbound, msg)

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        """发布出站消息；队列满时阻塞。"""
        await self._publish(self.outbound, msg)

    async def publish_stream(self, event: StreamEvent) -> None:
        """发布流式事件；未带时间戳时在此补齐。"""
        if event.timestamp is None:
            event.timestamp = datetime.now()
        await self._publish(self.stream, event)

    async def _publish(self, queue: asyncio.Queue, item: Any) -> None:
        if self._closed.is_set():
            raise BusClosedError("publish on closed message bus")

        try:
            queue.put_nowait(item)
            return
        except asyncio.QueueFull:
            pass

        # 队列已满：等待空位，或在等待期间总线被关闭。
        put_task = asyncio.ensure_future(queue.put(item))
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait([put_task, closed_task], return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed_task.cancel()
            if not put_task.done():
                put_task.cancel()

        if not (put_task.done() and not put_task.cancelled()):
            raise BusClosedError("message bus closed while publishing")

    # ------------------------------------------------------------------
    # 消费
    # ------------------------------------------------------------------

    async def consume_inbound(
        self, cancel: asyncio.Event | None = None, timeout: float | None = None
    ) -> InboundMessage | None:
        """取出一条入站消息；取消、超时或总线关闭且已排空时返回 None。"""
        return await self._consume(self.inbound, cancel, timeout)

    async def consume_outbound(
        self, cancel: asyncio.Event | None = None, timeout: float | None = None
    ) -> OutboundMessage | None:
        """取出一条出站消息。"""
        return await self._consume(self.outbound, cancel, timeout)

    async def consume_stream(
        self, cancel: asyncio.Event | None = None, timeout: float | None = None
    ) -> StreamEvent | None:
        """取出一条流式事件。"""
        return await self._consume(self.stream, cancel, timeout)

    async def _consume(
        self, queue: asyncio.Queue[T], cancel: asyncio.Event | None, timeout: float | None
    ) -> T | None:
        if cancel is not None and cancel.is_set():
            return None
        if not queue.empty():
            return queue.get_nowait()
        if self._closed.is_set():
            return None

        get_task = asyncio.ensure_future(queue.get())
        stop_tasks = [asyncio.ensure_future(self._closed.wait())]
        if cancel is not None:
            stop_tasks.append(asyncio.ensure_future(cancel.wait()))

        try:
            await asyncio.wait([get_task, *stop_tasks], timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # 调用方任务被取消，但消息可能已经出队：放回队列，避免丢失。
            if get_task.done() and not get_task.cancelled():
                self._requeue(queue, get_task.result())
            raise
        finally:
            for task in stop_tasks:
                task.cancel()
            if not get_task.done():
                get_task.cancel()

        if get_task.done() and not get_task.cancelled():
            return get_task.result()
        return None

    @staticmethod
    def _requeue(queue: asyncio.Queue, item: Any) -> None:
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.error(f"Dropped message while requeueing after cancellation: {item!r}")

    # ------------------------------------------------------------------
    # 渠道处理器与出站分发
    # ------------------------------------------------------------------

    def register_handler(self, channel: str, handler: InboundHandler) -> None:
        """登记某个渠道的入站处理函数（与队列无关的旁路映射）。"""
        with self._handlers_lock:
            self._handlers[channel] = handler

    def unregister_handler(self, channel: str) -> None:
        with self._handlers_lock:
            self._handlers.pop(channel, None)

    def get_handler(self, channel: str) -> InboundHandler | None:
        with self._handlers_lock:
            return self._handlers.get(channel)

    def subscribe_outbound(
        self,
        channel: str,
        callback: Callable[[OutboundMessage], Awaitable[None]]
    ) -> None:
        """函数说明：subscribe_outbound。"""
        if channel not in self._outbound_subscribers:
            self._outbound_subscribers[channel] = []
        self._outbound_subscribers[channel].append(callback)

    async def dispatch_outbound(self, cancel: asyncio.Event | None = None) -> None:
        """把出站消息分发给订阅了对应渠道的回调，直到取消或总线关闭。"""
        while True:
            msg = await self.consume_outbound(cancel)
            if msg is None:
                break
            subscribers = self._outbound_subscribers.get(msg.channel, [])
            if not subscribers:
                logger.debug(f"No subscriber for outbound message on {msg.channel}")
            for callback in subscribers:
                try:
                    await callback(msg)
                except Exception as e:
                    logger.error(f"Error dispatching to {msg.channel}: {e}")

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    def close(self) -> None:
        """关闭总线并唤醒所有阻塞的消费者；重复调用无副作用。"""
        if self._closed.is_set():
            logger.debug("Message bus already closed")
            return
        self._closed.set()
        logger.info("Message bus closed")

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def inbound_size(self) -> int:
        """函数说明：inbound_size。"""
        return self.inbound.qsize()

    @property
    def outbound_size(self) -> int:
        """函数说明：outbound_size。"""
        return self.outbound.qsize()

    @property
    def stream_size(self) -> int:
        return self.stream.qsize()
