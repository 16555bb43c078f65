"""渠道管理。

根据配置创建启用的渠道，把出站消息分发到对应渠道，
并为流式模式的渠道各启动一个 StreamConsumer。
"""

import asyncio
from typing import Any

from loguru import logger

from nene.bus.queue import MessageBus
from nene.channels.base import BaseChannel
from nene.config.schema import Config
from nene.stream.consumer import StreamConsumer


class ChannelManager:
    """类说明：ChannelManager。"""

    def __init__(self, config: Config, bus: MessageBus):
        self.config = config
        self.bus = bus
        self.channels: dict[str, BaseChannel] = {}
        self.consumers: dict[str, StreamConsumer] = {}
        self._cancel = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

        self._init_channels()

    def _init_channels(self) -> None:
        """按配置初始化渠道。"""
        telegram_cfg = self.config.channels.telegram
        if telegram_cfg.enabled:
            from nene.channels.telegram import TelegramChannel
            self.add_channel(TelegramChannel(telegram_cfg, self.bus))
            logger.info("Telegram channel enabled")

    def add_channel(self, channel: BaseChannel) -> None:
        """登记渠道；流式渠道需要同时实现 render/render_error。"""
        self.channels[channel.name] = channel
        self.bus.subscribe_outbound(channel.name, channel.send)
        if channel.stream_mode:
            stream_cfg = self.config.stream
            self.consumers[channel.name] = StreamConsumer(
                bus=self.bus,
                channel=channel.name,
                renderer=channel,
                render_interval=stream_cfg.render_interval_ms / 1000,
                state_ttl=stream_cfg.state_ttl_s,
                sweep_interval=stream_cfg.sweep_interval_s,
            )

    async def start_all(self) -> None:
        """启动出站分发、流式消费者和所有渠道，直到 stop_all()。"""
        if not self.channels:
            logger.warning("No channels enabled")
            return

        self._cancel.clear()
        self._tasks = [asyncio.create_task(self.bus.dispatch_outbound(self._cancel))]
        for consumer in self.consumers.values():
            self._tasks.append(asyncio.create_task(consumer.run(self._cancel)))
        for name, channel in self.channels.items():
            logger.info(f"Starting {name} channel...")
            self._tasks.append(asyncio.create_task(channel.start()))

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Channel task failed: {result}")

    async def stop_all(self) -> None:
        """停止所有渠道与后台任务。"""
        logger.info("Stopping all channels...")
        self._cancel.set()

        for name, channel in self.channels.items():
            try:
                await channel.stop()
                logger.info(f"Stopped {name} channel")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")

    def get_channel(self, name: str) -> BaseChannel | None:
        """函数说明：get_channel。"""
        return self.channels.get(name)

    def get_status(self) -> dict[str, Any]:
        """函数说明：get_status。"""
        return {
            name: {
                "enabled": True,
                "running": channel.is_running,
                "stream_mode": channel.stream_mode,
            }
            for name, channel in self.channels.items()
        }

    @property
    def enabled_channels(self) -> list[str]:
        """函数说明：enabled_channels。"""
        return list(self.channels.keys())
