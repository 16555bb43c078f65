"""模块说明：base。"""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from nene.bus.events import InboundMessage, OutboundMessage
from nene.bus.queue import MessageBus


def _split_identity(value: str) -> tuple[str, str]:
    """把 "id|username" 拆成 (id, username)。"""
    if "|" in value and not value.startswith("|"):
        ident, user = value.split("|", 1)
        return ident, user
    return value, ""


class BaseChannel(ABC):
    """渠道适配器基类。"""

    name: str = "base"

    def __init__(self, config: Any, bus: MessageBus):
        """函数说明：__init__。"""
        self.config = config
        self.bus = bus
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """异步函数说明：start。"""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """异步函数说明：stop。"""
        pass

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """异步函数说明：send。"""
        pass

    @property
    def stream_mode(self) -> bool:
        """是否以流式事件展示回复。"""
        return bool(getattr(self.config, "stream_mode", False))

    def is_allowed(self, sender_id: str) -> bool:
        """按 allow_from 名单判断发送者是否被允许。

        sender_id 形如 "123" 或 "123|alice"；名单项可以是 id、用户名、
        "@用户名" 或 "id|用户名"。名单为空表示不限制。
        """
        allow_list = getattr(self.config, "allow_from", [])
        if not allow_list:
            return True

        sender = str(sender_id)
        id_part, user_part = _split_identity(sender)

        for allowed in allow_list:
            trimmed = allowed.removeprefix("@")
            allowed_id, allowed_user = _split_identity(trimmed)
            if sender in (allowed, trimmed) or id_part in (allowed, trimmed, allowed_id):
                return True
            if allowed_user and sender == allowed_user:
                return True
            if user_part and user_part in (allowed, trimmed, allowed_user):
                return True
        return False

    async def _handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        media: list[str] | None = None,
        metadata: dict[str, Any] | None = None
    ) -> None:
        """异步函数说明：_handle_message。"""
        if not self.is_allowed(sender_id):
            logger.warning(
                f"Access denied for sender {sender_id} on channel {self.name}. "
                f"Add them to allowFrom list in config to grant access."
            )
            return

        msg = InboundMessage(
            channel=self.name,
            sender_id=str(sender_id),
            chat_id=str(chat_id),
            content=content,
            media=media or [],
            metadata=metadata or {},
            stream_mode=self.stream_mode,
        )

        await self.bus.publish_inbound(msg)

    @property
    def is_running(self) -> bool:
        """函数说明：is_running。"""
        return self._running
