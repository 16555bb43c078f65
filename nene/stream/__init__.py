"""流式聚合与渲染调度。"""

from nene.stream.consumer import StreamConsumer, StreamRenderer
from nene.stream.state import Part, StreamState, StreamStateStore

__all__ = ["Part", "StreamState", "StreamStateStore", "StreamConsumer", "StreamRenderer"]
