"""Tests for the SQLite memory store and the memory tools."""

import asyncio

import pytest
import pytest_asyncio

from nene.agent.memory import MemoryCategory, MemoryStore, build_fts_query, parse_category
from nene.agent.tools.memory import MemoryForgetTool, MemoryRecallTool, MemoryStoreTool


@pytest_asyncio.fixture
async def memory(tmp_path):
    store = MemoryStore(tmp_path / "memory" / "brain.db")
    yield store
    await store.close()


class TestHelpers:

    @pytest.mark.parametrize("value,expected", [
        ("core", MemoryCategory.CORE),
        ("daily", MemoryCategory.DAILY),
        ("conversation", MemoryCategory.CONVERSATION),
        ("", MemoryCategory.CORE),
        (None, MemoryCategory.CORE),
        ("weekly", MemoryCategory.CORE),
    ])
    def test_parse_category(self, value, expected):
        assert parse_category(value) is expected

    def test_fts_query_quotes_each_word(self):
        assert build_fts_query('favourite "color" blue') == '"favourite" OR """color""" OR "blue"'


class TestMemoryStore:

    @pytest.mark.asyncio
    async def test_store_and_get(self, memory, tmp_path):
        entry = await memory.store("user_name", "The user is called Mika", "core", session_id="telegram:42")

        assert (tmp_path / "memory" / "brain.db").exists()
        fetched = await memory.get("user_name")
        assert fetched == entry
        assert fetched.session_id == "telegram:42"
        assert fetched.category is MemoryCategory.CORE

    @pytest.mark.asyncio
    async def test_store_same_key_overwrites_and_keeps_identity(self, memory):
        first = await memory.store("drink", "likes tea")
        second = await memory.store("drink", "likes coffee", MemoryCategory.DAILY)

        assert await memory.count() == 1
        assert second.id == first.id
        assert second.created_at == first.created_at
        assert second.content == "likes coffee"
        assert second.category is MemoryCategory.DAILY

    @pytest.mark.asyncio
    async def test_recall_full_text(self, memory):
        await memory.store("drink", "The user likes green tea")
        await memory.store("city", "The user lives in Osaka")

        results = await memory.recall("tea")

        assert [e.key for e in results] == ["drink"]

    @pytest.mark.asyncio
    async def test_recall_partial_word_falls_back_to_keywords(self, memory):
        await memory.store("city", "The user lives in Osaka")

        results = await memory.recall("Osa")

        assert [e.key for e in results] == ["city"]

    @pytest.mark.asyncio
    async def test_recall_filters_by_session_and_limit(self, memory):
        for i in range(4):
            await memory.store(f"note-{i}", f"project note {i}", session_id="telegram:1")
        await memory.store("other", "project note elsewhere", session_id="telegram:2")

        scoped = await memory.recall("project", session_id="telegram:2")
        limited = await memory.recall("project", limit=2)

        assert [e.key for e in scoped] == ["other"]
        assert len(limited) == 2

    @pytest.mark.asyncio
    async def test_recall_blank_query(self, memory):
        await memory.store("a", "b")
        assert await memory.recall("   ") == []

    @pytest.mark.asyncio
    async def test_list_by_category(self, memory):
        await memory.store("a", "one", MemoryCategory.CORE)
        await memory.store("b", "two", MemoryCategory.DAILY)
        await memory.store("c", "three", "daily")

        daily = await memory.list(category="daily")

        assert sorted(e.key for e in daily) == ["b", "c"]
        assert len(await memory.list()) == 3

    @pytest.mark.asyncio
    async def test_forget(self, memory):
        await memory.store("temp", "short lived")

        assert await memory.forget("temp") is True
        assert await memory.forget("temp") is False
        assert await memory.get("temp") is None
        assert await memory.recall("short") == []

    @pytest.mark.asyncio
    async def test_reopen_after_close(self, memory):
        await memory.store("persist", "survives restarts")
        await memory.close()

        assert (await memory.get("persist")).content == "survives restarts"

    @pytest.mark.asyncio
    async def test_concurrent_first_use_opens_one_connection(self, memory, monkeypatch):
        opened = []
        open_connection = memory._open

        async def counting_open():
            conn = await open_connection()
            opened.append(conn)
            return conn

        monkeypatch.setattr(memory, "_open", counting_open)

        await asyncio.gather(*(memory.store(f"k{i}", f"value {i}") for i in range(5)))

        assert len(opened) == 1
        assert await memory.count() == 5


class TestMemoryTools:

    @pytest.mark.asyncio
    async def test_store_tool_records_session(self, memory):
        tool = MemoryStoreTool(memory)
        tool.set_context("telegram", "42")

        result = await tool.execute(key="pet", content="Has a cat named Tama", category="core")

        assert result.content == "Stored memory: pet"
        assert (await memory.get("pet")).session_id == "telegram:42"

    @pytest.mark.asyncio
    async def test_recall_tool_formats_results(self, memory):
        await memory.store("pet", "Has a cat named Tama")

        result = await MemoryRecallTool(memory).execute(query="cat")
        empty = await MemoryRecallTool(memory).execute(query="dog")

        assert result.content.startswith("Found 1 relevant memories:")
        assert "1. [core] pet\n   Has a cat named Tama" in result.content
        assert empty.content == "No relevant memories found."

    @pytest.mark.asyncio
    async def test_forget_tool(self, memory):
        await memory.store("pet", "Has a cat")
        tool = MemoryForgetTool(memory)

        assert (await tool.execute(key="pet")).content == "Memory 'pet' has been forgotten."
        assert (await tool.execute(key="pet")).content == "Memory 'pet' was not found."

    @pytest.mark.asyncio
    async def test_store_tool_requires_content(self, memory):
        result = await MemoryStoreTool(memory).execute(key="x", content="")
        assert result.is_error
