"""模块说明：__init__。"""

from nene.bus.events import InboundMessage, OutboundMessage, StreamEvent, StreamEventType
from nene.bus.queue import MessageBus

__all__ = ["MessageBus", "InboundMessage", "OutboundMessage", "StreamEvent", "StreamEventType"]
