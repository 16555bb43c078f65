"""Tests for the per-chat stream aggregator."""

import threading

import pytest

from nene.bus.events import StreamEvent
from nene.stream.state import MAIN_PART_ID, Part, StreamState, StreamStateStore

CH, CHAT, KEY = "telegram", "42", "telegram:42"


def _tool_call(call_id: str, name: str = "shell", args: dict | None = None) -> StreamEvent:
    return StreamEvent.tool_call(CH, CHAT, KEY, call_id, name, args or {"cmdline": "ls"})


class TestTextAggregation:

    @pytest.mark.parametrize("deltas", [
        ["Hello", ", ", "world", "!"],
        ["a"],
        ["multi\nline ", "text ", "with ", "unicode ✓"],
    ])
    def test_final_text_is_concatenation_of_deltas(self, deltas):
        state = StreamState(CHAT)
        state.on_event(StreamEvent.text_start(CH, CHAT, KEY, MAIN_PART_ID))
        for delta in deltas:
            state.on_event(StreamEvent.text_delta(CH, CHAT, KEY, MAIN_PART_ID, delta))
        terminal = state.on_event(StreamEvent.finish(CH, CHAT, KEY))

        assert terminal is True
        assert state.final_text() == "".join(deltas)

    def test_delta_without_start_falls_back_to_main_part(self):
        state = StreamState(CHAT)
        state.on_event(StreamEvent.text_delta(CH, CHAT, KEY, "unknown-part", "foo"))
        state.on_event(StreamEvent.text_delta(CH, CHAT, KEY, "", "bar"))

        assert state.parts[MAIN_PART_ID].text == "foobar"
        assert state.final_text() == "foobar"

    def test_longest_text_part_used_when_current_is_blank(self):
        state = StreamState(CHAT)
        state.on_event(StreamEvent.text_start(CH, CHAT, KEY, "a"))
        state.on_event(StreamEvent.text_delta(CH, CHAT, KEY, "a", "short"))
        state.on_event(StreamEvent.text_start(CH, CHAT, KEY, "b"))
        state.on_event(StreamEvent.text_delta(CH, CHAT, KEY, "b", "the longest answer"))
        state.on_event(StreamEvent.text_start(CH, CHAT, KEY, "c"))
        state.on_event(StreamEvent.text_delta(CH, CHAT, KEY, "c", "   "))

        assert state.final_text() == "the longest answer"

    def test_longest_text_tie_break_keeps_first(self):
        state = StreamState(CHAT)
        state.on_event(StreamEvent.text_delta(CH, CHAT, KEY, "x", "first"))
        state.parts["other"] = Part(id="other", type="text", text="later")

        assert state.final_text() == "first"

    def test_non_terminal_events_return_false(self):
        state = StreamState(CHAT)
        assert state.on_event(StreamEvent.start(CH, CHAT, KEY)) is False
        assert state.on_event(StreamEvent.text_delta(CH, CHAT, KEY, MAIN_PART_ID, "x")) is False
        assert state.on_event(StreamEvent.failure(CH, CHAT, KEY, "boom")) is True


class TestToolLifecycle:

    def test_tool_result_and_error_update_status(self):
        state = StreamState(CHAT)
        state.on_event(_tool_call("c1"))
        state.on_event(_tool_call("c2", name="read_file"))
        state.on_event(StreamEvent.tool_result(CH, CHAT, KEY, "c1", "shell", "file.txt"))
        state.on_event(StreamEvent.tool_error(CH, CHAT, KEY, "c2", "not found"))

        assert state.parts["c1"].state["status"] == "completed"
        assert state.parts["c1"].state["output"] == "file.txt"
        assert state.parts["c2"].state["status"] == "error"
        assert state.parts["c2"].state["error"] == "not found"

    def test_result_for_unknown_tool_is_ignored(self):
        state = StreamState(CHAT)
        state.on_event(StreamEvent.tool_result(CH, CHAT, KEY, "missing", "shell", "x"))
        state.on_event(StreamEvent.tool_error(CH, CHAT, KEY, "missing", "y"))

        assert state.parts == {}
        assert state.tool_call_count == 0

    def test_tool_summaries_include_every_call(self):
        state = StreamState(CHAT)
        for i in range(5):
            state.on_event(_tool_call(f"c{i}"))

        summaries = state.tool_summaries()
        assert [s["id"] for s in summaries] == [f"c{i}" for i in range(5)]
        assert summaries[0]["input"] == {"cmdline": "ls"}


class TestRenderSnapshot:

    def test_shows_last_three_tools_and_more_counter(self):
        state = StreamState(CHAT)
        for i in range(4):
            state.on_event(_tool_call(f"c{i}", name=f"tool{i}"))

        snapshot = state.render_snapshot()

        assert "tool0" not in snapshot
        for i in (1, 2, 3):
            assert f"🔧 tool{i} 🔄" in snapshot
        assert "📋 ... and 1 more" in snapshot

    def test_three_tools_have_no_more_counter(self):
        state = StreamState(CHAT)
        for i in range(3):
            state.on_event(_tool_call(f"c{i}"))

        assert "more" not in state.render_snapshot()

    def test_step_marker_status_glyphs_and_text(self):
        state = StreamState(CHAT)
        state.on_event(StreamEvent.start(CH, CHAT, KEY, iteration=2))
        state.on_event(_tool_call("ok"))
        state.on_event(_tool_call("bad"))
        state.on_event(StreamEvent.tool_result(CH, CHAT, KEY, "ok", "shell", "done"))
        state.on_event(StreamEvent.tool_error(CH, CHAT, KEY, "bad", "exit status 1"))
        state.on_event(StreamEvent.text_start(CH, CHAT, KEY, MAIN_PART_ID))
        state.on_event(StreamEvent.text_delta(CH, CHAT, KEY, MAIN_PART_ID, "Here you go"))

        snapshot = state.render_snapshot()

        assert snapshot.startswith("🔄 Step 2")
        assert "🔧 shell ✅" in snapshot
        assert "🔧 shell ❌" in snapshot
        assert "Output:\ndone" in snapshot
        assert "Error:\nexit status 1" in snapshot
        assert snapshot.endswith("\n\nHere you go")

    def test_previews_are_truncated(self):
        state = StreamState(CHAT)
        state.on_event(_tool_call("c1", args={"content": "x" * 500}))
        state.on_event(StreamEvent.tool_result(CH, CHAT, KEY, "c1", "shell", "y" * 500))

        snapshot = state.render_snapshot()

        assert "y" * 150 + "..." in snapshot
        assert "y" * 151 not in snapshot
        assert "x" * 500 not in snapshot

    def test_empty_state_renders_empty_string(self):
        assert StreamState(CHAT).render_snapshot() == ""


class TestThrottle:

    def test_first_render_always_allowed(self):
        state = StreamState(CHAT)
        assert state.should_render(0.5, now=100.0)

    def test_render_throttled_within_interval(self):
        state = StreamState(CHAT)
        state.mark_rendered(now=100.0)

        assert not state.should_render(0.5, now=100.2)
        assert state.should_render(0.5, now=100.5)


class TestStateStore:

    def test_load_or_create_returns_same_instance(self):
        store = StreamStateStore()
        assert store.load_or_create("a") is store.load_or_create("a")
        assert len(store) == 1

    def test_concurrent_load_or_create_has_no_lost_create(self):
        store = StreamStateStore()
        seen = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            seen.append(store.load_or_create("chat"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({id(s) for s in seen}) == 1

    def test_evict_stale_removes_only_old_states(self):
        store = StreamStateStore()
        old = store.load_or_create("old")
        fresh = store.load_or_create("fresh")
        old.last_update = 0.0
        fresh.last_update = 1000.0

        evicted = store.evict_stale(max_age_s=100, now=1050.0)

        assert evicted == ["old"]
        assert "old" not in store
        assert "fresh" in store

    def test_remove_returns_state(self):
        store = StreamStateStore()
        state = store.load_or_create("a")
        assert store.remove("a") is state
        assert store.remove("a") is None
