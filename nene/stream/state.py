"""流式状态聚合。

StreamState 把同一个会话的有序事件序列合并成一份可渲染的快照，
与具体的渲染目标（Telegram、CLI 等）无关。StreamStateStore 按会话键
维护这些状态，提供原子的 load-or-create 与过期清理。
"""

import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from nene.bus.events import StreamEvent, StreamEventType

MAIN_PART_ID = "main"
MAX_VISIBLE_TOOLS = 3
MAX_INPUT_PREVIEW = 200
MAX_OUTPUT_PREVIEW = 150

STATUS_GLYPHS = {
    "pending": "⏳",
    "running": "🔄",
    "completed": "✅",
    "error": "❌",
}


@dataclass
class Part:
    """回复中的一个可寻址片段：文本或一次工具调用。"""

    id: str
    type: str  # "text" | "tool"
    text: str = ""
    tool_name: str = ""
    tool_call_id: str = ""
    state: dict[str, Any] = field(default_factory=dict)


def _clip(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class StreamState:
    """单个会话的流式聚合状态。

    所有读写都在同一把锁内完成：事件写入与定时渲染可能并发发生。
    """

    def __init__(self, key: str = ""):
        self.key = key
        self.parts: dict[str, Part] = {}
        self.tool_call_ids: list[str] = []
        self.current_text: Part | None = None
        self.iteration = 0
        self.created_at = time.monotonic()
        self.last_update = self.created_at
        self.last_render: float | None = None
        self.finished = False
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # 事件写入
    # ------------------------------------------------------------------

    def on_event(self, event: StreamEvent) -> bool:
        """按事件类型更新状态；终止事件（finish/error）返回 True。"""
        with self._lock:
            self.last_update = time.monotonic()
            kind = event.type

            if kind == StreamEventType.START:
                if event.iteration > 0:
                    self.iteration = event.iteration

            elif kind == StreamEventType.TEXT_START:
                part = Part(id=event.part_id, type="text")
                self.parts[part.id] = part
                self.current_text = part

            elif kind == StreamEventType.TEXT_DELTA:
                self._append_delta(event.part_id, event.delta)

            elif kind == StreamEventType.TOOL_CALL:
                part = Part(
                    id=event.tool_call_id,
                    type="tool",
                    tool_name=event.tool_name,
                    tool_call_id=event.tool_call_id,
                    state={"status": "running", "input": dict(event.tool_args)},
                )
                self.parts[part.id] = part
                self.tool_call_ids.append(part.id)

            elif kind == StreamEventType.TOOL_RESULT:
                part = self._tool_part(event.tool_call_id)
                if part is not None:
                    part.state["status"] = "completed"
                    part.state["output"] = event.tool_result

            elif kind == StreamEventType.TOOL_ERROR:
                part = self._tool_part(event.tool_call_id)
                if part is not None:
                    part.state["status"] = "error"
                    part.state["error"] = event.error

            elif event.is_terminal:
                self.finished = True
                return True

            return False

    def _append_delta(self, part_id: str, delta: str) -> None:
        part = self.parts.get(part_id)
        if part is None:
            # 某些 provider 不发 text-start，统一落到 main 片段上。
            part = self.parts.get(MAIN_PART_ID)
            if part is None:
                part = Part(id=MAIN_PART_ID, type="text")
                self.parts[MAIN_PART_ID] = part
        part.text += delta

    def _tool_part(self, tool_call_id: str) -> Part | None:
        part = self.parts.get(tool_call_id)
        if part is None or part.type != "tool":
            return None
        return part

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    def _best_text(self) -> str:
        if self.current_text is not None and self.current_text.text.strip():
            return self.current_text.text
        best = ""
        for part in self.parts.values():
            if part.type == "text" and len(part.text) > len(best):
                best = part.text
        return best

    def final_text(self) -> str:
        """终态消息使用的文本，不含工具调用摘要。"""
        with self._lock:
            return self._best_text()

    def render_snapshot(self) -> str:
        """生成实时展示用的快照文本。"""
        with self._lock:
            blocks: list[str] = []

            if self.iteration > 0:
                blocks.append(f"🔄 Step {self.iteration}")

            for tool_id in self.tool_call_ids[-MAX_VISIBLE_TOOLS:]:
                part = self.parts.get(tool_id)
                if part is None or not part.tool_name:
                    continue
                blocks.append(self._render_tool(part))

            hidden = len(self.tool_call_ids) - MAX_VISIBLE_TOOLS
            if hidden > 0:
                blocks.append(f"📋 ... and {hidden} more")

            text = self._best_text()
            if text:
                if blocks:
                    blocks.append("")
                blocks.append(text)

            return "\n".join(blocks)

    @staticmethod
    def _render_tool(part: Part) -> str:
        header = f"🔧 {part.tool_name}"
        glyph = STATUS_GLYPHS.get(part.state.get("status", ""))
        if glyph:
            header += f" {glyph}"
        lines = [header]

        tool_input = part.state.get("input")
        if tool_input:
            preview = _clip(json.dumps(tool_input, indent=2, ensure_ascii=False), MAX_INPUT_PREVIEW)
            lines.append(f"```\nInput:\n{preview}\n```")

        output = part.state.get("output")
        if output:
            lines.append(f"```\nOutput:\n{_clip(output, MAX_OUTPUT_PREVIEW)}\n```")

        error = part.state.get("error")
        if error:
            lines.append(f"```\nError:\n{_clip(error, MAX_OUTPUT_PREVIEW)}\n```")

        return "\n".join(lines)

    def tool_summaries(self) -> list[dict[str, Any]]:
        """所有工具调用的完整信息，供“查看详情”类界面使用。"""
        with self._lock:
            summaries = []
            for tool_id in self.tool_call_ids:
                part = self.parts.get(tool_id)
                if part is None:
                    continue
                summaries.append({
                    "name": part.tool_name,
                    "id": part.tool_call_id,
                    "status": part.state.get("status", ""),
                    "input": part.state.get("input", {}),
                    "output": part.state.get("output", ""),
                    "error": part.state.get("error", ""),
                })
            return summaries

    @property
    def tool_call_count(self) -> int:
        with self._lock:
            return len(self.tool_call_ids)

    # ------------------------------------------------------------------
    # 渲染节流
    # ------------------------------------------------------------------

    def should_render(self, interval: float, now: float | None = None) -> bool:
        """距上次渲染超过 interval 秒时返回 True；首次渲染总是允许。"""
        now = time.monotonic() if now is None else now
        with self._lock:
            return self.last_render is None or now - self.last_render >= interval

    def mark_rendered(self, now: float | None = None) -> None:
        with self._lock:
            self.last_render = time.monotonic() if now is None else now


class StreamStateStore:
    """按会话键索引的 StreamState 并发容器。"""

    def __init__(self):
        self._states: dict[str, StreamState] = {}
        self._lock = threading.Lock()

    def load_or_create(self, key: str) -> StreamState:
        """原子地取出或新建状态，不会出现并发重复创建。"""
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = StreamState(key)
                self._states[key] = state
            return state

    def get(self, key: str) -> StreamState | None:
        with self._lock:
            return self._states.get(key)

    def remove(self, key: str) -> StreamState | None:
        with self._lock:
            return self._states.pop(key, None)

    def evict_stale(self, max_age_s: float, now: float | None = None) -> list[str]:
        """清理超过 max_age_s 秒没有新事件的状态，返回被清理的键。"""
        now = time.monotonic() if now is None else now
        with self._lock:
            stale = [k for k, s in self._states.items() if now - s.last_update > max_age_s]
            for key in stale:
                del self._states[key]
        return stale

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._states
