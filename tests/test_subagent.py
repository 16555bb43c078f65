"""Tests for parallel subagents and the spawn tool."""

import asyncio

import pytest

from helpers import EchoTool, text_response, tool_response
from nene.agent.subagent import (
    EXCLUDED_TOOLS,
    SUBAGENT_SYSTEM_PROMPT,
    SubagentManager,
    SubagentResult,
    SubagentTask,
)
from nene.agent.tools.message import MessageTool
from nene.agent.tools.registry import ToolRegistry
from nene.agent.tools.spawn import SpawnTool
from nene.errors import ProviderError


def task_script(messages):
    """Echo once, then answer; the task named 'broken' fails at the model."""
    task = messages[1]["content"]
    if task == "broken":
        raise ProviderError("model overloaded")
    if messages[-1]["role"] == "tool":
        return text_response(f"done: {messages[-1]['content']}")
    return tool_response("echo", {"text": task})


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.register(EchoTool())
    reg.register(MessageTool())
    return reg


class TestRunSync:

    @pytest.mark.asyncio
    async def test_single_task_runs_tool_loop(self, scripted_provider, registry):
        provider = scripted_provider(task_script)
        manager = SubagentManager(provider, registry)

        result = await manager.run_sync("look up weather", "weather")

        assert result == SubagentResult(label="weather", content="done: look up weather", iterations=2)
        assert provider.calls[0][0] == {"role": "system", "content": SUBAGENT_SYSTEM_PROMPT}

    @pytest.mark.asyncio
    async def test_provider_error_becomes_error_result(self, failing_provider, registry):
        result = await SubagentManager(failing_provider, registry).run_sync("anything", "t")

        assert result.is_error
        assert "connection refused" in result.content

    @pytest.mark.asyncio
    async def test_tool_error_marks_result_as_error(self, scripted_provider, registry):
        provider = scripted_provider([
            tool_response("echo", {"text": "x", "fail": True}),
            text_response("could not finish"),
        ])

        result = await SubagentManager(provider, registry).run_sync("echo badly", "bad")

        assert result == SubagentResult(label="bad", content="could not finish", is_error=True, iterations=2)
        assert provider.calls[1][-1]["content"] == "Error: echo failed: x"

    @pytest.mark.asyncio
    async def test_tool_error_without_answer_reports_the_error(self, scripted_provider, registry):
        provider = scripted_provider([
            tool_response("echo", {"text": "x", "fail": True}),
            text_response(""),
        ])

        result = await SubagentManager(provider, registry).run_sync("echo badly", "bad")

        assert result.is_error
        assert result.content == "Error: echo failed: x"

    @pytest.mark.asyncio
    async def test_iteration_cap_returns_last_text_without_error(self, scripted_provider, registry):
        provider = scripted_provider(lambda messages: tool_response("echo", {"text": "loop"}, content="still going"))
        manager = SubagentManager(provider, registry, max_iterations=3)

        result = await manager.run_sync("never ends", "loop")

        assert not result.is_error
        assert result.content == "still going"
        assert result.iterations == 3
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_excluded_tools_are_hidden_and_refused(self, scripted_provider, registry):
        registry.register(SpawnTool())
        manager = SubagentManager(scripted_provider([
            tool_response("message", {"content": "hi"}),
            text_response("ok"),
        ]), registry)

        names = {d["function"]["name"] for d in manager._tool_definitions()}
        result = await manager.run_sync("try to message", "m")

        assert names.isdisjoint(EXCLUDED_TOOLS)
        assert "echo" in names
        assert result.content == "ok"
        assert manager.provider.calls[1][-1]["content"] == "Error: tool message is not available to subagents"

    @pytest.mark.asyncio
    async def test_results_are_immutable(self):
        result = SubagentResult(label="a", content="b")
        with pytest.raises(AttributeError):
            result.content = "changed"


class TestSpawn:

    @pytest.mark.asyncio
    async def test_failure_is_isolated_and_order_preserved(self, scripted_provider, registry):
        manager = SubagentManager(scripted_provider(task_script), registry)
        tasks = [SubagentTask(f"job {i}", f"label-{i}") for i in range(4)]
        tasks.insert(2, SubagentTask("broken", "bad"))

        results = await manager.spawn(tasks)

        assert [r.label for r in results] == ["label-0", "label-1", "bad", "label-2", "label-3"]
        assert [r.is_error for r in results] == [False, False, True, False, False]
        assert results[0].content == "done: job 0"

    @pytest.mark.asyncio
    async def test_one_failing_tool_marks_exactly_one_result(self, scripted_provider, registry):
        def script(messages):
            task = messages[1]["content"]
            if messages[-1]["role"] == "tool":
                return text_response(f"done: {messages[-1]['content']}")
            return tool_response("echo", {"text": task, "fail": task == "job 2"})

        manager = SubagentManager(scripted_provider(script), registry)

        results = await manager.spawn([SubagentTask(f"job {i}") for i in range(5)])
        report = SubagentManager.format_report(results)

        assert [r.is_error for r in results] == [False, False, True, False, False]
        assert results[2].content == "done: Error: echo failed: job 2"
        assert "❌ task-3: done: Error: echo failed: job 2\n" in report
        assert report.count("✅") == 4

    @pytest.mark.asyncio
    async def test_tasks_run_concurrently(self, scripted_provider, registry):
        manager = SubagentManager(scripted_provider(task_script, delay=0.1), registry)
        tasks = [SubagentTask(f"job {i}") for i in range(5)]

        loop = asyncio.get_running_loop()
        started = loop.time()
        results = await manager.spawn(tasks)
        elapsed = loop.time() - started

        assert all(not r.is_error for r in results)
        # 每个任务两次模型调用，串行需要 1 秒
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_missing_labels_fall_back_to_position(self, scripted_provider, registry):
        manager = SubagentManager(scripted_provider(task_script), registry)

        results = await manager.spawn([SubagentTask("a"), SubagentTask("b", "named"), SubagentTask("c")])

        assert [r.label for r in results] == ["task-1", "named", "task-3"]

    @pytest.mark.asyncio
    async def test_timeout_cancels_all(self, scripted_provider, registry):
        manager = SubagentManager(scripted_provider(task_script, delay=1.0), registry, timeout=0.05)

        with pytest.raises(asyncio.TimeoutError):
            await manager.spawn([SubagentTask("slow 1"), SubagentTask("slow 2")])


class TestFormatReport:

    def test_report_layout(self):
        report = SubagentManager.format_report([
            SubagentResult("search", "found 3 links", iterations=2),
            SubagentResult("fetch", "Error: timeout", is_error=True, iterations=1),
        ])

        assert report == (
            "Spawned 2 subagent(s) in parallel:\n\n"
            "✅ search (iterations: 2):\nfound 3 links\n\n"
            "❌ fetch: Error: timeout\n"
        )

    def test_long_content_is_previewed(self):
        report = SubagentManager.format_report([SubagentResult("big", "z" * 400, iterations=1)])

        assert "z" * 300 + "..." in report
        assert "z" * 301 not in report


class TestSpawnTool:

    @pytest.mark.asyncio
    async def test_execute_returns_report(self, scripted_provider, registry):
        tool = SpawnTool(SubagentManager(scripted_provider(task_script), registry))
        tool.set_context("telegram", "42")

        result = await tool.execute(tasks=[{"task": "one", "label": "first"}, {"task": "broken"}])

        assert not result.is_error
        assert result.content.startswith("Spawned 2 subagent(s) in parallel:")
        assert "✅ first (iterations: 2):\ndone: one" in result.content
        assert "❌ task-2: Error: model overloaded" in result.content

    @pytest.mark.asyncio
    async def test_empty_tasks_rejected(self, scripted_provider, registry):
        tool = SpawnTool(SubagentManager(scripted_provider([]), registry))
        result = await tool.execute(tasks=[])
        assert result.is_error

    @pytest.mark.asyncio
    async def test_unconfigured_manager(self):
        result = await SpawnTool().execute(tasks=[{"task": "x"}])
        assert result.is_error
        assert result.content == "Subagent manager not configured"

    @pytest.mark.asyncio
    async def test_timeout_becomes_error_result(self, scripted_provider, registry):
        manager = SubagentManager(scripted_provider(task_script, delay=1.0), registry, timeout=0.05)
        result = await SpawnTool(manager).execute(tasks=[{"task": "slow"}])

        assert result.is_error
        assert "timed out" in result.content

    def test_approval_counts_tasks(self):
        approval = SpawnTool().make_approval({"tasks": [{"task": "a"}, {"task": "b"}]})
        assert approval.what == "Spawn 2 parallel task(s)"
