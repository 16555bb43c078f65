"""Tests for the agent loop, session manager and system prompt."""

import asyncio

import pytest

from helpers import inbound, text_response
from nene.agent.context import ContextBuilder
from nene.agent.loop import ERROR_TAG, EMPTY_RESPONSE, AgentLoop
from nene.agent.memory import MemoryStore
from nene.bus.events import StreamEventType as T
from nene.bus.queue import MessageBus
from nene.session.manager import SessionManager


async def drain_stream(bus: MessageBus) -> list:
    events = []
    while (event := await bus.consume_stream(timeout=0.01)) is not None:
        events.append(event)
    return events


def make_loop(provider, tmp_path, **kwargs) -> tuple[AgentLoop, MessageBus]:
    bus = MessageBus()
    return AgentLoop(bus, provider, tmp_path, **kwargs), bus


class TestToolSet:

    def test_default_tools(self, scripted_provider, tmp_path):
        loop, _ = make_loop(scripted_provider([]), tmp_path)

        assert set(loop.tools.tool_names) == {
            "read_file", "write_file", "list_files", "shell",
            "websearch", "webfetch", "think", "message", "spawn",
        }

    def test_memory_tools_registered_with_store(self, scripted_provider, tmp_path):
        loop, _ = make_loop(scripted_provider([]), tmp_path, memory=MemoryStore(tmp_path / "m.db"))

        assert {"memory_store", "memory_recall", "memory_forget"} <= set(loop.tools.tool_names)


class TestProcessDirect:

    @pytest.mark.asyncio
    async def test_returns_reply_and_keeps_session(self, scripted_provider, tmp_path):
        provider = scripted_provider([text_response("hello back")])
        loop, bus = make_loop(provider, tmp_path)

        reply = await loop.process_direct("hello", session_key="cli:test")

        assert reply == "hello back"
        session = loop.sessions.get("cli:test")
        system = (await session.history())[0]
        assert system["role"] == "system"
        assert "You are Nene" in system["content"]
        assert "Channel: cli\nChat ID: test" in system["content"]
        assert await drain_stream(bus) == []

    @pytest.mark.asyncio
    async def test_empty_reply_uses_placeholder(self, scripted_provider, tmp_path):
        loop, _ = make_loop(scripted_provider([text_response("")]), tmp_path)

        assert await loop.process_direct("anything") == EMPTY_RESPONSE


class TestRun:

    @pytest.mark.asyncio
    async def test_non_stream_reply_published_outbound(self, scripted_provider, tmp_path):
        loop, bus = make_loop(scripted_provider([text_response("pong")]), tmp_path)
        runner = asyncio.create_task(loop.run())

        await bus.publish_inbound(inbound("ping", stream_mode=False))
        reply = await bus.consume_outbound(timeout=1)

        loop.stop()
        await asyncio.wait_for(runner, timeout=1)
        assert (reply.channel, reply.chat_id, reply.content) == ("telegram", "42", "pong")

    @pytest.mark.asyncio
    async def test_failure_publishes_error_notice(self, failing_provider, tmp_path):
        loop, bus = make_loop(failing_provider, tmp_path)
        runner = asyncio.create_task(loop.run())

        await bus.publish_inbound(inbound(stream_mode=False))
        notice = await bus.consume_outbound(timeout=1)

        loop.stop()
        await asyncio.wait_for(runner, timeout=1)
        assert notice.content.startswith(ERROR_TAG)
        assert "connection refused" in notice.content

    @pytest.mark.asyncio
    async def test_stream_failure_emits_single_error_event(self, failing_provider, tmp_path):
        loop, bus = make_loop(failing_provider, tmp_path)
        runner = asyncio.create_task(loop.run())

        await bus.publish_inbound(inbound(stream_mode=True))
        await asyncio.sleep(0.05)
        loop.stop()
        await asyncio.wait_for(runner, timeout=1)

        events = await drain_stream(bus)
        assert [e.type for e in events].count(T.ERROR) == 1
        assert await bus.consume_outbound(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_turns(self, scripted_provider, tmp_path):
        loop, bus = make_loop(scripted_provider([text_response("too late")], delay=5), tmp_path)
        runner = asyncio.create_task(loop.run())

        await bus.publish_inbound(inbound())
        await asyncio.sleep(0.05)
        assert loop.active_turns == 1

        loop.stop()
        await asyncio.wait_for(runner, timeout=1)

        events = await drain_stream(bus)
        assert events[-1].type == T.ERROR
        assert events[-1].error == "request cancelled"
        assert loop.active_turns == 0

    @pytest.mark.asyncio
    async def test_chats_are_handled_concurrently(self, scripted_provider, tmp_path):
        provider = scripted_provider(lambda messages: text_response(messages[-1]["content"].upper()), delay=0.1)
        loop, bus = make_loop(provider, tmp_path)
        runner = asyncio.create_task(loop.run())

        for chat in ("1", "2", "3"):
            await bus.publish_inbound(inbound(f"chat {chat}", chat_id=chat, stream_mode=False))
        replies = [await bus.consume_outbound(timeout=0.25) for _ in range(3)]

        loop.stop()
        await asyncio.wait_for(runner, timeout=1)
        assert sorted(r.content for r in replies) == ["CHAT 1", "CHAT 2", "CHAT 3"]
        assert len(loop.sessions) == 3


class TestSessionManager:

    def test_get_or_create_is_idempotent(self):
        created = []
        manager = SessionManager(lambda key: created.append(key) or object())

        first = manager.get_or_create("telegram:1")
        second = manager.get_or_create("telegram:1")

        assert first is second
        assert created == ["telegram:1"]

    @pytest.mark.asyncio
    async def test_clear_and_delete(self, scripted_provider, tmp_path):
        loop, _ = make_loop(scripted_provider([text_response("hi")]), tmp_path)
        await loop.process_direct("hello", session_key="cli:x")

        assert await loop.sessions.clear("cli:x") is True
        assert await loop.sessions.get("cli:x").history() == []
        assert await loop.sessions.clear("cli:missing") is False

        listed = loop.sessions.list_sessions()
        assert listed[0]["key"] == "cli:x"
        assert listed[0]["state"] == "idle"

        assert loop.sessions.delete("cli:x") is True
        assert loop.sessions.delete("cli:x") is False


class TestContextBuilder:

    def test_custom_prompt_and_bootstrap_files(self, tmp_path):
        (tmp_path / "USER.md").write_text("Name: Mika", encoding="utf-8")
        builder = ContextBuilder(tmp_path, system_prompt="You are a pirate.")

        prompt = builder.build_system_prompt("telegram", "7")

        assert prompt.startswith("You are a pirate.")
        assert "## USER.md\n\nName: Mika" in prompt
        assert prompt.endswith("## Current Session\nChannel: telegram\nChat ID: 7")

    def test_default_identity_mentions_workspace(self, tmp_path):
        prompt = ContextBuilder(tmp_path).build_system_prompt()

        assert "You are Nene" in prompt
        assert str(tmp_path.resolve()) in prompt
        assert "Current Session" not in prompt
