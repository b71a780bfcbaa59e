"""Unit tests for turn models, context summaries and summary frames."""

from __future__ import annotations

from contextkeeper.compaction import (
    ContextSummary,
    SummaryFrame,
    ToolCallRecord,
    ToolCallSummary,
    Turn,
    TurnSummary,
    estimate_tokens,
)
from contextkeeper.compaction.summary import extract_assistant_action, extract_user_intent, truncate


class TestTurn:
    """Tests for Turn and ToolCallRecord."""

    def test_read_only_turn_is_droppable(self):
        """Test a turn whose only tool call is read_file is droppable."""
        turn = Turn.create("show me main.py", "Here it is.", [ToolCallRecord(tool_name="read_file", args_summary="main.py")])
        assert turn.droppable is True

    def test_write_turn_is_not_droppable(self):
        """Test a turn with a write_file call is not droppable."""
        turn = Turn.create(
            "fix it",
            "Fixed.",
            [
                ToolCallRecord(tool_name="read_file", args_summary="main.py"),
                ToolCallRecord(tool_name="write_file", args_summary="main.py"),
            ],
        )
        assert turn.droppable is False

    def test_turn_without_tools_is_not_droppable(self):
        """Test a plain exchange is never droppable by default."""
        assert Turn.create("hi", "hello").droppable is False

    def test_explicit_droppable_override(self):
        """Test an explicit droppable flag wins."""
        assert Turn.create("hi", "hello", droppable=True).droppable is True

    def test_record_droppable_flag_decides(self):
        """Test a turn follows its records' droppable flags, not their tool names."""
        pinned = ToolCallRecord(tool_name="read_file", args_summary="secrets.yaml", droppable=False)
        assert Turn.create("show secrets", "Here.", [pinned]).droppable is False

        scratch = ToolCallRecord(tool_name="shell", args_summary="ls", droppable=True)
        assert Turn.create("list files", "Done.", [scratch]).droppable is True

    def test_tool_call_droppable_default(self):
        """Test tool call droppability defaults from the read-only allow-list."""
        assert ToolCallRecord(tool_name="list_directory").droppable is True
        assert ToolCallRecord(tool_name="shell").droppable is False
        assert ToolCallRecord(tool_name="shell", droppable=True).droppable is True

    def test_estimated_tokens(self):
        """Test the turn estimate covers messages and tool calls."""
        call = ToolCallRecord(tool_name="read_file", args_summary="a" * 40, result_summary="b" * 80)
        turn = Turn.create("u" * 400, "a" * 200, [call])
        assert turn.estimated_tokens == 100 + 50 + estimate_tokens("read_file") + 10 + 20

    def test_first_tool_id(self):
        """Test the first tool ID is exposed for pairing."""
        turn = Turn.create("q", "a", [ToolCallRecord(tool_name="shell", tool_id="call_1")])
        assert turn.first_tool_id == "call_1"
        assert Turn.create("q", "a").first_tool_id is None


class TestContextSummary:
    """Tests for ContextSummary."""

    def _turn_summary(self, number: int, *calls: ToolCallSummary) -> TurnSummary:
        return TurnSummary(turn_number=number, user_intent="do it", assistant_action="done", tool_calls=list(calls))

    def test_add_turn_tracks_files_and_errors(self):
        """Test file operations, tool usage and errors are extracted."""
        summary = ContextSummary()
        summary.add_turn(
            self._turn_summary(
                1,
                ToolCallSummary(tool_name="read_file", args_summary="a.py", result_summary="ok"),
                ToolCallSummary(tool_name="write_file", args_summary="b.py", result_summary="ok"),
                ToolCallSummary(tool_name="list_directory", args_summary="src", result_summary="ok"),
                ToolCallSummary(tool_name="shell", args_summary="make", result_summary="error: boom", success=False),
            )
        )

        assert summary.turns_compacted == 1
        assert summary.files_read == {"a.py"}
        assert summary.files_written == {"b.py"}
        assert summary.directories_listed == {"src"}
        assert summary.tool_usage == {"read_file": 1, "write_file": 1, "list_directory": 1, "shell": 1}
        assert summary.errors_encountered == ["shell: error: boom"]

    def test_merge(self):
        """Test merging accumulates every field."""
        first = ContextSummary()
        first.add_turn(self._turn_summary(1, ToolCallSummary(tool_name="read_file", args_summary="a.py", result_summary="")))
        second = ContextSummary()
        second.add_turn(self._turn_summary(2, ToolCallSummary(tool_name="read_file", args_summary="b.py", result_summary="")))

        first.merge(second)
        assert first.turns_compacted == 2
        assert [t.turn_number for t in first.turn_summaries] == [1, 2]
        assert first.files_read == {"a.py", "b.py"}
        assert first.tool_usage == {"read_file": 2}

    def test_is_empty(self):
        """Test an untouched summary is empty."""
        assert ContextSummary().is_empty
        summary = ContextSummary()
        summary.add_turn(self._turn_summary(1))
        assert not summary.is_empty


class TestSummaryFrame:
    """Tests for SummaryFrame rendering."""

    def test_truncate(self):
        """Test truncation strips whitespace and marks the cut."""
        assert truncate("  hello  ", 10) == "hello"
        assert truncate("abcdefghij", 5) == "ab..."
        assert truncate("abcde", 5) == "abcde"

    def test_extract_user_intent(self):
        """Test polite request prefixes are dropped before truncating."""
        assert extract_user_intent("please fix the build", 80) == "fix the build"
        assert extract_user_intent("  Can you add a Dockerfile?", 80) == "add a Dockerfile?"
        assert extract_user_intent("could you " + "x" * 100, 10) == "xxxxxxx..."
        assert extract_user_intent("Deploy to staging", 80) == "Deploy to staging"

    def test_extract_assistant_action(self):
        """Test only the first sentence or line is kept."""
        assert extract_assistant_action("Fixed it. Then more", 100) == "Fixed it"
        assert extract_assistant_action("Wrote main.py\nand tests", 100) == "Wrote main"
        assert extract_assistant_action("Updated the deployment\nRan tests.", 100) == "Updated the deployment"
        assert extract_assistant_action("a" * 50, 10) == "aaaaaaa..."

    def test_from_summary_sections(self):
        """Test the rendered frame has overview, turns and files sections."""
        summary = ContextSummary()
        summary.add_turn(
            TurnSummary(
                turn_number=1,
                user_intent="Create the deployment",
                assistant_action="Wrote deployment.yaml",
                tool_calls=[
                    ToolCallSummary(tool_name="write_file", args_summary="deployment.yaml", result_summary="ok"),
                    ToolCallSummary(tool_name="read_file", args_summary="values.yaml", result_summary="ok"),
                ],
                key_decisions=["Use a Deployment, not a StatefulSet"],
            )
        )

        frame = SummaryFrame.from_summary(summary)
        assert frame.content.startswith('<conversation_summary turns="1">')
        assert frame.content.endswith("</conversation_summary>")
        assert "This summary covers 1 conversation turn." in frame.content
        assert "Turn 1: Create the deployment → Wrote deployment.yaml" in frame.content
        assert "✓ write_file(deployment.yaml)" in frame.content
        # Reads are not important enough to list per turn
        assert "read_file(values.yaml)" not in frame.content
        assert "  - values.yaml" in frame.content
        assert "- Use a Deployment, not a StatefulSet" in frame.content
        assert frame.token_count == estimate_tokens(frame.content)

    def test_failed_calls_listed_and_capped(self):
        """Test failed calls are marked and at most three are listed per turn."""
        calls = [
            ToolCallSummary(tool_name="shell", args_summary=f"cmd{i}", result_summary="error", success=False)
            for i in range(5)
        ]
        summary = ContextSummary()
        summary.add_turn(TurnSummary(turn_number=1, user_intent="run", assistant_action="failed", tool_calls=calls))

        content = SummaryFrame.from_summary(summary).content
        assert content.count("✗ shell(") == 3
        assert "... +2 more tool calls" in content
        assert "<errors_encountered>" in content

    def test_file_listing_bounded(self):
        """Test long file listings are capped with a count."""
        summary = ContextSummary(files_read={f"f{i:02}.py" for i in range(20)})
        content = SummaryFrame.from_summary(summary).content
        assert "  - f14.py" in content
        assert "  - f15.py" not in content
        assert "... +5 more files" in content

    def test_combine_grows(self):
        """Test combining appends content and sums token counts."""
        older = SummaryFrame.from_text("a" * 40)
        newer = SummaryFrame.from_text("b" * 80)
        combined = older.combine(newer)
        assert combined.content == "a" * 40 + "\n\n" + "b" * 80
        assert combined.token_count == 30

    def test_minimal(self):
        """Test the minimal frame lists written files only."""
        frame = SummaryFrame.minimal(4, ["a.py", "b.py"])
        assert 'turns="4" minimal="true"' in frame.content
        assert "Files created: a.py, b.py" in frame.content
