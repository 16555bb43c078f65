"""总线事件类型。

InboundMessage 从渠道流向 Agent，OutboundMessage 从 Agent 流回渠道，
StreamEvent 描述一次回复生成过程中的增量进度。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass
class InboundMessage:
    """类说明：InboundMessage。"""

    channel: str  # 渠道类型：telegram、cli、system
    sender_id: str  # 用户标识
    chat_id: str  # 会话/频道标识
    content: str  # 消息文本
    timestamp: datetime = field(default_factory=datetime.now)
    media: list[str] = field(default_factory=list)  # 媒体路径列表
    metadata: dict[str, Any] = field(default_factory=dict)  # 渠道特定数据
    stream_mode: bool = False  # 是否以流式事件呈现回复
    session_key_override: str | None = None

    @property
    def session_key(self) -> str:
        """会话键，默认 channel:chat_id。"""
        return self.session_key_override or f"{self.channel}:{self.chat_id}"


@dataclass
class OutboundMessage:
    """类说明：OutboundMessage。"""

    channel: str
    chat_id: str
    content: str
    reply_to: str | None = None
    media: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class StreamEventType(str, Enum):
    """流式事件种类。"""

    START = "start"
    TEXT_START = "text-start"
    TEXT_DELTA = "text-delta"
    TEXT_END = "text-end"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    TOOL_ERROR = "tool-error"
    FINISH = "finish"
    ERROR = "error"


@dataclass
class StreamEvent:
    """一条流式进度事件。

    公共字段描述路由（channel/chat_id/session_key）与时序（iteration/timestamp），
    其余字段只由对应种类使用，建议通过下方的构造方法创建。
    """

    type: StreamEventType
    channel: str
    chat_id: str
    session_key: str = ""
    iteration: int = 0
    timestamp: datetime | None = None  # 发布时由总线补齐
    part_id: str = ""
    delta: str = ""
    tool_name: str = ""
    tool_call_id: str = ""
    tool_args: dict[str, Any] = field(default_factory=dict)
    tool_result: str = ""
    error: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.type in (StreamEventType.FINISH, StreamEventType.ERROR)

    @classmethod
    def start(cls, channel: str, chat_id: str, session_key: str = "", iteration: int = 0) -> "StreamEvent":
        return cls(StreamEventType.START, channel, chat_id, session_key, iteration=iteration)

    @classmethod
    def text_start(cls, channel: str, chat_id: str, session_key: str, part_id: str,
                   iteration: int = 0) -> "StreamEvent":
        return cls(StreamEventType.TEXT_START, channel, chat_id, session_key,
                   iteration=iteration, part_id=part_id)

    @classmethod
    def text_delta(cls, channel: str, chat_id: str, session_key: str, part_id: str, delta: str,
                   iteration: int = 0) -> "StreamEvent":
        return cls(StreamEventType.TEXT_DELTA, channel, chat_id, session_key,
                   iteration=iteration, part_id=part_id, delta=delta)

    @classmethod
    def text_end(cls, channel: str, chat_id: str, session_key: str, part_id: str,
                 iteration: int = 0) -> "StreamEvent":
        return cls(StreamEventType.TEXT_END, channel, chat_id, session_key,
                   iteration=iteration, part_id=part_id)

    @classmethod
    def tool_call(cls, channel: str, chat_id: str, session_key: str, tool_call_id: str,
                  tool_name: str, tool_args: dict[str, Any], iteration: int = 0) -> "StreamEvent":
        return cls(StreamEventType.TOOL_CALL, channel, chat_id, session_key, iteration=iteration,
                   tool_call_id=tool_call_id, tool_name=tool_name, tool_args=dict(tool_args))

    @classmethod
    def tool_result(cls, channel: str, chat_id: str, session_key: str, tool_call_id: str,
                    tool_name: str, result: str, iteration: int = 0) -> "StreamEvent":
        return cls(StreamEventType.TOOL_RESULT, channel, chat_id, session_key, iteration=iteration,
                   tool_call_id=tool_call_id, tool_name=tool_name, tool_result=result)

    @classmethod
    def tool_error(cls, channel: str, chat_id: str, session_key: str, tool_call_id: str,
                   error: str, iteration: int = 0) -> "StreamEvent":
        return cls(StreamEventType.TOOL_ERROR, channel, chat_id, session_key, iteration=iteration,
                   tool_call_id=tool_call_id, error=error)

    @classmethod
    def finish(cls, channel: str, chat_id: str, session_key: str = "", iteration: int = 0) -> "StreamEvent":
        return cls(StreamEventType.FINISH, channel, chat_id, session_key, iteration=iteration)

    @classmethod
    def failure(cls, channel: str, chat_id: str, session_key: str, error: str,
                iteration: int = 0) -> "StreamEvent":
        return cls(StreamEventType.ERROR, channel, chat_id, session_key, iteration=iteration, error=error)
