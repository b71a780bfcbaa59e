"""Unit tests for ConversationHistory."""

from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from contextkeeper.compaction import (
    CompactConfig,
    CompactionStrategy,
    CompactThresholds,
    ConversationHistory,
    RetainStrategy,
    ToolCallRecord,
)


def assert_token_invariant(history: ConversationHistory) -> None:
    frame_tokens = history.summary_frame.token_count if history.summary_frame else 0
    assert history.token_count == frame_tokens + sum(t.estimated_tokens for t in history.turns)


def fill(history: ConversationHistory, count: int, *, with_tools: bool = True) -> None:
    """Append ``count`` turns, each reading and writing a file."""
    for i in range(count):
        calls = (
            [
                ToolCallRecord(tool_name="read_file", args_summary=f"src/mod{i}.py", result_summary="x" * 120, tool_id=f"r{i}"),
                ToolCallRecord(tool_name="write_file", args_summary=f"src/out{i}.py", result_summary="ok", tool_id=f"w{i}"),
            ]
            if with_tools
            else []
        )
        history.add_turn(f"Request number {i}: " + "please " * 20, f"Response number {i}: " + "done " * 30, calls)


class RaisingStrategy(CompactionStrategy):
    """Strategy that fails mid-compaction."""

    def raw_end(self, total: int, retention_window: int) -> int:
        raise RuntimeError("strategy failed")


class TestAddTurn:
    """Tests for recording turns."""

    def test_add_turn_counts(self):
        """Test counters and token totals after adding turns."""
        history = ConversationHistory(CompactConfig.manual())
        fill(history, 3)

        assert history.turn_count == 3
        assert history.user_turn_count == 3
        assert history.message_count == 6
        assert not history.is_empty()
        assert_token_invariant(history)

    def test_add_turn_returns_turn(self):
        """Test the appended turn is returned with its droppability."""
        history = ConversationHistory()
        turn = history.add_turn("read it", "ok", [ToolCallRecord(tool_name="read_file", args_summary="a.py")])
        assert turn.droppable is True
        assert history.turns == [turn]

    def test_turns_is_a_copy(self):
        """Test mutating the turns accessor does not change the history."""
        history = ConversationHistory()
        fill(history, 2)
        history.turns.clear()
        assert history.turn_count == 2

    def test_on_turn_end_hook(self):
        """Test the turn-end hook sees the updated history."""
        seen: list[int] = []
        config = CompactConfig(thresholds=CompactThresholds(on_turn_end=lambda h: seen.append(h.turn_count)))
        history = ConversationHistory(config)
        fill(history, 2)
        assert seen == [1, 2]


class TestTriggers:
    """Tests for needs_compaction and compaction_reason."""

    def test_turn_threshold(self):
        """Test the turn threshold trips strictly above its value."""
        config = CompactConfig(thresholds=CompactThresholds(token_threshold=None, turn_threshold=2, message_threshold=None))
        history = ConversationHistory(config)
        fill(history, 2)
        assert not history.needs_compaction()
        assert history.compaction_reason() is None

        fill(history, 1)
        assert history.needs_compaction()
        assert history.compaction_reason() == "turn count (3) > threshold (2)"

    def test_never_while_turn_in_progress(self):
        """Test compaction is not requested while a reply is pending."""
        config = CompactConfig(thresholds=CompactThresholds(token_threshold=1, turn_threshold=None, message_threshold=None))
        history = ConversationHistory(config)
        fill(history, 2)
        assert history.needs_compaction()

        history.begin_turn()
        assert history.turn_in_progress
        assert not history.needs_compaction()

        history.add_turn("next", "reply")
        assert not history.turn_in_progress
        assert history.needs_compaction()

    def test_disabled_thresholds(self):
        """Test manual config never requests compaction."""
        history = ConversationHistory(CompactConfig.manual())
        fill(history, 30)
        assert not history.needs_compaction()


class TestCompact:
    """Tests for compact and emergency_compact."""

    def test_fewer_than_two_turns_is_noop(self):
        """Test compacting a single turn changes nothing."""
        history = ConversationHistory(CompactConfig.aggressive())
        fill(history, 1)
        before = (history.turns, history.token_count, history.user_turn_count)

        assert history.compact() is None
        assert (history.turns, history.token_count, history.user_turn_count) == before
        assert history.summary_frame is None

    def test_compact_evicts_oldest_turns(self):
        """Test compaction evicts the oldest turns into the summary."""
        history = ConversationHistory(CompactConfig.aggressive())
        fill(history, 12)
        kept = history.turns[7:]

        report = history.compact()

        assert report is not None
        assert report.startswith("Compacted 7 turns (0 droppable) (~")
        assert history.turns == kept
        assert history.user_turn_count == 5
        assert history.summary_frame is not None
        assert history.context_summary.turns_compacted == 7
        assert_token_invariant(history)

    def test_report_estimate(self):
        """Test the report's before figure adds a fixed cost per evicted turn."""
        history = ConversationHistory(CompactConfig.aggressive())
        fill(history, 12)
        report = history.compact()
        after = history.token_count
        assert report.endswith(f"(~{after + 7 * 500} → ~{after} tokens)")

    def test_default_config_keeps_retention_window(self):
        """Test the default config only evicts beyond the retention window."""
        history = ConversationHistory()
        fill(history, 12)
        assert history.compact() is not None
        assert history.turn_count == 10

    def test_pairs_stay_together(self):
        """Test no turn is split between evicted and retained messages."""
        history = ConversationHistory(CompactConfig.aggressive())
        fill(history, 9)
        history.compact()

        messages = history.to_messages()
        assert len(messages) == 2 + 2 * history.turn_count
        for user, assistant in zip(messages[2::2], messages[3::2]):
            assert isinstance(user, HumanMessage)
            assert isinstance(assistant, AIMessage)
            number = user.content.split(":")[0].removeprefix("Request number ")
            assert assistant.content.startswith(f"read_file(src/mod{number}.py)")

    def test_summary_tracks_files(self):
        """Test files touched by evicted turns are remembered."""
        history = ConversationHistory(CompactConfig.aggressive())
        fill(history, 12)
        history.compact()

        assert list(history.files_read()) == sorted(f"src/mod{i}.py" for i in range(7))
        assert list(history.files_written()) == sorted(f"src/out{i}.py" for i in range(7))

    def test_droppable_turns_reported(self):
        """Test droppable evicted turns are counted in the report."""
        history = ConversationHistory(CompactConfig.aggressive())
        for i in range(12):
            history.add_turn(f"show {i}", "here", [ToolCallRecord(tool_name="read_file", args_summary=f"{i}.py")])
        assert "(7 droppable)" in history.compact()

    def test_droppable_follows_tool_call_records(self):
        """Test droppability comes from each record's flag when it is set explicitly."""
        history = ConversationHistory(CompactConfig.aggressive())
        for i in range(12):
            history.add_turn(
                f"check {i}",
                "checked",
                [ToolCallRecord(tool_name="shell", args_summary=f"kubectl get pod-{i}", droppable=i % 2 == 0)],
            )
        # Turns 0..6 are evicted, and 0, 2, 4 and 6 were marked droppable
        assert "Compacted 7 turns (4 droppable)" in history.compact()

    def test_summary_condenses_turn_text(self):
        """Test evicted turns are summarized by request and first sentence."""
        history = ConversationHistory(CompactConfig.aggressive())
        for i in range(12):
            history.add_turn(f"please update chart {i}", f"Updated chart {i}. Bumped the version too.")
        history.compact()

        content = history.summary_frame.content
        assert "Turn 1: update chart 0 → Updated chart 0\n" in content
        assert "please update chart" not in content
        assert "Bumped the version" not in content

    def test_repeated_compaction_grows_frame(self):
        """Test a second compaction appends to the existing frame."""
        history = ConversationHistory(CompactConfig.aggressive())
        fill(history, 12)
        history.compact()
        first_frame = history.summary_frame

        fill(history, 8)
        assert history.compact() is not None
        assert history.summary_frame.content.startswith(first_frame.content)
        assert history.summary_frame.token_count > first_frame.token_count
        assert history.context_summary.turns_compacted == 15
        assert_token_invariant(history)

    def test_no_safe_range(self):
        """Test compaction returns None when the retention window covers everything."""
        history = ConversationHistory()
        fill(history, 4)
        assert history.compact() is None
        assert history.turn_count == 4

    def test_emergency_compact_restores_config(self):
        """Test the original config is restored after emergency compaction."""
        config = CompactConfig.relaxed()
        history = ConversationHistory(config)
        fill(history, 8)

        report = history.emergency_compact()

        assert report is not None
        assert history.config is config
        assert history.turn_count < 8
        assert_token_invariant(history)

    def test_emergency_compact_restores_config_when_nothing_evicted(self):
        """Test the config is restored even when nothing could be evicted."""
        config = CompactConfig.relaxed()
        history = ConversationHistory(config)
        fill(history, 1)
        assert history.emergency_compact() is None
        assert history.config is config

    def test_emergency_compact_restores_config_on_error(self):
        """Test the config is restored when compaction raises."""
        config = CompactConfig.relaxed()
        history = ConversationHistory(config, strategy=RaisingStrategy())
        fill(history, 8)

        with pytest.raises(RuntimeError):
            history.emergency_compact()
        assert history.config is config


class TestClear:
    """Tests for clear and clear_turns_preserve_context."""

    def test_clear(self):
        """Test clear resets everything."""
        history = ConversationHistory(CompactConfig.aggressive())
        fill(history, 12)
        history.compact()

        history.clear()
        assert history.is_empty()
        assert history.token_count == 0
        assert history.user_turn_count == 0
        assert history.context_summary.is_empty

    def test_preserve_context_folds_remaining_turns(self):
        """Test remaining turns are summarized before the ledger is cleared."""
        history = ConversationHistory(CompactConfig.manual())
        fill(history, 3)

        history.clear_turns_preserve_context()

        assert history.turn_count == 0
        assert history.summary_frame is not None
        assert history.context_summary.turns_compacted == 3
        assert history.token_count == history.summary_frame.token_count

    def test_preserve_context_keeps_existing_frame(self):
        """Test an existing frame survives when a single turn is dropped."""
        config = CompactConfig(retention_window=1, thresholds=CompactThresholds.disabled())
        history = ConversationHistory(config, strategy=RetainStrategy(2))
        fill(history, 3)
        history.compact()
        assert history.turn_count == 1
        frame = history.summary_frame

        history.clear_turns_preserve_context()

        assert history.turn_count == 0
        assert history.summary_frame is frame
        assert history.token_count == frame.token_count

    def test_preserve_context_on_empty_history(self):
        """Test nothing happens to an empty history."""
        history = ConversationHistory()
        history.clear_turns_preserve_context()
        assert history.is_empty()
        assert history.token_count == 0


class TestToMessages:
    """Tests for rendering the history as model messages."""

    def test_without_summary(self):
        """Test retained turns render as user/assistant pairs."""
        history = ConversationHistory()
        history.add_turn("hello", "hi there")
        messages = history.to_messages()
        assert [type(m) for m in messages] == [HumanMessage, AIMessage]
        assert messages[0].content == "hello"
        assert messages[1].content == "hi there"

    def test_tool_activity_flattened(self):
        """Test tool calls are rendered as lines ahead of the response."""
        history = ConversationHistory()
        history.add_turn(
            "build it",
            "Build passed.",
            [ToolCallRecord(tool_name="shell", args_summary="make", result_summary="x" * 300)],
        )
        content = history.to_messages()[1].content
        assert content.startswith("shell(make) → " + "x" * 197 + "...")
        assert content.endswith("\n\nBuild passed.")

    def test_summary_leads(self):
        """Test the summary frame is injected as a synthetic leading exchange."""
        history = ConversationHistory(CompactConfig.aggressive())
        fill(history, 12)
        history.compact()

        messages = history.to_messages()
        assert messages[0].content.startswith("[Previous conversation context]\n<conversation_summary")
        assert messages[1].content == "I understand the previous context. How can I help you continue?"
        assert len(messages) == 2 + 2 * 5

    def test_status(self):
        """Test the one-line status mentions compressed history."""
        history = ConversationHistory(CompactConfig.aggressive())
        fill(history, 12)
        assert history.status() == f"12 turns, ~{history.token_count} tokens"
        history.compact()
        assert history.status().endswith("(with compressed history)")
