"""Data models for conversation history compaction.

All models use Pydantic for validation and serialization.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from contextkeeper.compaction.config import estimate_tokens
from contextkeeper.compaction.summary import truncate

# Read-only tools whose results can simply be re-fetched
READ_ONLY_TOOLS: frozenset[str] = frozenset({"read_file", "list_directory", "analyze_project"})

# Tool names that feed the files context of a summary
FILE_READ_TOOLS: frozenset[str] = frozenset({"read_file"})
FILE_WRITE_TOOLS: frozenset[str] = frozenset({"write_file", "write_files"})
DIRECTORY_TOOLS: frozenset[str] = frozenset({"list_directory"})


def is_read_only_tool(tool_name: str) -> bool:
    """Check if a tool only reads state and is safe to drop from history."""
    return tool_name in READ_ONLY_TOOLS


class ToolCallRecord(BaseModel):
    """Record of a tool call made while producing one turn."""

    tool_name: str = Field(..., description="Name of the tool that was called")
    args_summary: str = Field("", description="Short rendering of the call arguments")
    result_summary: str = Field("", description="Short rendering of the call result")
    tool_id: str | None = Field(None, description="Tool call ID used to pair call and result")
    droppable: bool = Field(False, description="Whether the result can be re-fetched")

    @model_validator(mode="before")
    @classmethod
    def _default_droppable(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("droppable") is None:
            data = {**data, "droppable": is_read_only_tool(str(data.get("tool_name", "")))}
        return data

    def estimate_tokens(self) -> int:
        """Estimate the tokens this record contributes to its turn."""
        return (
            estimate_tokens(self.tool_name)
            + estimate_tokens(self.args_summary)
            + estimate_tokens(self.result_summary)
        )


class Turn(BaseModel):
    """One user/assistant exchange plus the tool calls made while producing it."""

    user_message: str = Field(..., description="The user's message")
    assistant_response: str = Field(..., description="The assistant's final text response")
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    estimated_tokens: int = Field(0, description="Estimated token cost of the whole turn")
    droppable: bool = Field(False, description="Whether the whole turn can be discarded")

    @classmethod
    def create(
        cls,
        user_message: str,
        assistant_response: str,
        tool_calls: list[ToolCallRecord] | None = None,
        droppable: bool | None = None,
    ) -> Turn:
        """Build a turn, computing its token estimate and droppability.

        Args:
            user_message: The user's message.
            assistant_response: The assistant's response.
            tool_calls: Tool calls made during the turn.
            droppable: Explicit override. When None, the turn is droppable only
                if it made at least one tool call and every call is droppable.
        """
        calls = list(tool_calls or [])
        tokens = (
            estimate_tokens(user_message)
            + estimate_tokens(assistant_response)
            + sum(tc.estimate_tokens() for tc in calls)
        )
        if droppable is None:
            droppable = bool(calls) and all(tc.droppable for tc in calls)
        return cls(
            user_message=user_message,
            assistant_response=assistant_response,
            tool_calls=calls,
            estimated_tokens=tokens,
            droppable=droppable,
        )

    @property
    def first_tool_id(self) -> str | None:
        """Tool ID of the first tool call, if any."""
        return self.tool_calls[0].tool_id if self.tool_calls else None


class ToolCallSummary(BaseModel):
    """A tool call condensed for inclusion in a context summary."""

    tool_name: str
    args_summary: str
    result_summary: str
    success: bool = True


class TurnSummary(BaseModel):
    """Condensed record of one evicted turn."""

    turn_number: int
    user_intent: str
    assistant_action: str
    tool_calls: list[ToolCallSummary] = Field(default_factory=list)
    key_decisions: list[str] = Field(default_factory=list)


class ContextSummary(BaseModel):
    """Structured, mergeable accumulation of everything evicted so far."""

    turns_compacted: int = Field(0, description="Number of turns folded into this summary")
    turn_summaries: list[TurnSummary] = Field(default_factory=list)
    files_read: set[str] = Field(default_factory=set)
    files_written: set[str] = Field(default_factory=set)
    directories_listed: set[str] = Field(default_factory=set)
    key_decisions: list[str] = Field(default_factory=list)
    errors_encountered: list[str] = Field(default_factory=list)
    tool_usage: dict[str, int] = Field(default_factory=dict)

    def add_turn(self, turn: TurnSummary) -> None:
        """Fold one turn summary in, extracting file operations and errors."""
        for tc in turn.tool_calls:
            self.tool_usage[tc.tool_name] = self.tool_usage.get(tc.tool_name, 0) + 1

            if tc.tool_name in FILE_READ_TOOLS:
                self.files_read.add(tc.args_summary)
            elif tc.tool_name in FILE_WRITE_TOOLS:
                self.files_written.add(tc.args_summary)
            elif tc.tool_name in DIRECTORY_TOOLS:
                self.directories_listed.add(tc.args_summary)

            if not tc.success and tc.result_summary:
                self.errors_encountered.append(f"{tc.tool_name}: {truncate(tc.result_summary, 100)}")

        self.key_decisions.extend(turn.key_decisions)
        self.turn_summaries.append(turn)
        self.turns_compacted += 1

    def merge(self, other: ContextSummary) -> None:
        """Merge another summary into this one."""
        self.turns_compacted += other.turns_compacted
        self.turn_summaries.extend(other.turn_summaries)
        self.files_read |= other.files_read
        self.files_written |= other.files_written
        self.directories_listed |= other.directories_listed
        self.key_decisions.extend(other.key_decisions)
        self.errors_encountered.extend(other.errors_encountered)
        for tool, count in other.tool_usage.items():
            self.tool_usage[tool] = self.tool_usage.get(tool, 0) + count

    @property
    def is_empty(self) -> bool:
        return self.turns_compacted == 0
