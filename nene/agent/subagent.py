"""子代理管理。

一次 spawn 会并发运行多个相互独立的小型 Agent 循环：
每个任务有自己的消息历史和迭代上限，结束后按输入顺序汇总结果。
某个任务失败只影响自己的结果；超时或调用方取消会传递给所有在途任务。
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any

from loguru import logger

from nene.agent.tools.registry import ToolRegistry
from nene.providers.base import FinishReason, LLMProvider, ToolCallRequest

SUBAGENT_SYSTEM_PROMPT = """You are a subagent tasked with completing a specific task.
Complete the task independently and report a clear, concise result.
You have access to tools - use them as needed.
After completing the task, provide a summary of what was done."""

# 子代理不能再派生子代理，也不直接给用户发消息
EXCLUDED_TOOLS = frozenset({"spawn", "message"})

PREVIEW_CHARS = 300


@dataclass(frozen=True)
class SubagentResult:
    """单个子任务的最终结果，创建后不可变。"""

    label: str
    content: str
    is_error: bool = False
    iterations: int = 0


@dataclass
class SubagentTask:
    """类说明：SubagentTask。"""

    task: str
    label: str = ""


class SubagentManager:
    """并发运行子任务并汇总结果。"""

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        model: str | None = None,
        max_iterations: int = 10,
        timeout: float | None = None,
    ):
        self.provider = provider
        self.tools = tools
        self.model = model or provider.get_default_model()
        self.max_iterations = max_iterations
        self.timeout = timeout

    def _tool_definitions(self) -> list[dict[str, Any]]:
        return [
            d for d in self.tools.get_definitions()
            if d["function"]["name"] not in EXCLUDED_TOOLS
        ]

    async def run_sync(
        self,
        task: str,
        label: str,
        channel: str | None = None,
        chat_id: str | None = None,
    ) -> SubagentResult:
        """运行单个子任务直到模型给出最终回答或达到迭代上限。

        模型调用失败以及其他异常都会转换为 is_error=True 的结果。
        执行过程中任一工具返回错误时，结果同样标记为 is_error=True：
        内容为模型的最终回答，没有回答时为最后一次工具错误。
        达到上限本身不算错误，返回最后一轮的文本。
        """
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": SUBAGENT_SYSTEM_PROMPT},
            {"role": "user", "content": task},
        ]
        definitions = self._tool_definitions()
        iteration = 0
        final_content = ""
        tool_error = ""

        logger.info(f"Subagent [{label}] starting")
        try:
            while iteration < self.max_iterations:
                iteration += 1

                text_parts: list[str] = []
                tool_calls: list[ToolCallRequest] = []
                finish_reason = ""
                async for chunk in self.provider.chat_stream(
                    messages=messages,
                    tools=definitions or None,
                    model=self.model,
                ):
                    if chunk.delta:
                        text_parts.append(chunk.delta)
                    if chunk.tool_call:
                        tool_calls.append(chunk.tool_call)
                    if chunk.finish_reason:
                        finish_reason = chunk.finish_reason

                text = "".join(text_parts)
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
                messages.append(assistant)
                final_content = text

                if finish_reason != FinishReason.TOOL_CALLS or not tool_calls:
                    break

                for tc in tool_calls:
                    if tc.name in EXCLUDED_TOOLS:
                        content = f"Error: tool {tc.name} is not available to subagents"
                    else:
                        logger.debug(f"Subagent [{label}] executing: {tc.name} with arguments: {json.dumps(tc.arguments)}")
                        result = await self.tools.execute(tc.name, tc.arguments, channel, chat_id)
                        if result.is_error:
                            content = f"Error: {result.content}"
                            tool_error = content
                            logger.warning(f"Subagent [{label}] tool {tc.name} failed: {result.content}")
                        else:
                            content = result.content
                    messages.append({
                        "role": "tool",
                        "tool_call_id": tc.id,
                        "name": tc.name,
                        "content": content,
                    })
        except Exception as e:
            logger.error(f"Subagent [{label}] failed: {e}")
            return SubagentResult(label=label, content=f"Error: {e}", is_error=True, iterations=iteration)

        if tool_error:
            return SubagentResult(
                label=label,
                content=final_content or tool_error,
                is_error=True,
                iterations=iteration,
            )

        logger.info(f"Subagent [{label}] completed after {iteration} iteration(s)")
        return SubagentResult(label=label, content=final_content, is_error=False, iterations=iteration)

    async def spawn(
        self,
        tasks: list[SubagentTask],
        channel: str | None = None,
        chat_id: str | None = None,
    ) -> list[SubagentResult]:
        """并发执行全部任务，全部结束后按输入顺序返回。

        超时会取消所有在途任务，此时抛出 asyncio.TimeoutError。
        """
        labelled = [
            SubagentTask(task=t.task, label=t.label or f"task-{i}")
            for i, t in enumerate(tasks, 1)
        ]
        logger.info(f"Spawning {len(labelled)} subagent(s)")

        gathered = asyncio.gather(*(
            self.run_sync(t.task, t.label, channel, chat_id) for t in labelled
        ))
        if self.timeout is None:
            return list(await gathered)
        return list(await asyncio.wait_for(gathered, timeout=self.timeout))

    @staticmethod
    def format_report(results: list[SubagentResult]) -> str:
        """把结果汇总成返回给父代理的文本报告。"""
        lines = [f"Spawned {len(results)} subagent(s) in parallel:\n\n"]
        for r in results:
            if r.is_error:
                lines.append(f"❌ {r.label}: {r.content}\n")
            else:
                preview = r.content
                if len(preview) > PREVIEW_CHARS:
                    preview = preview[:PREVIEW_CHARS] + "..."
                lines.append(f"✅ {r.label} (iterations: {r.iterations}):\n{preview}\n\n")
        return "".join(lines)
