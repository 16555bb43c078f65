"""模块说明：__init__。"""

from nene.channels.base import BaseChannel
from nene.channels.manager import ChannelManager

__all__ = ["BaseChannel", "ChannelManager"]
