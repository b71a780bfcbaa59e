"""Conversation history with budget-driven compaction.

The agent loop appends one Turn per exchange, asks whether a threshold is
exceeded, and compacts when it is. Evicted turns are folded into a running
ContextSummary whose rendered SummaryFrame is injected back into the model's
context ahead of the retained turns.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from contextkeeper.compaction.config import CompactConfig, estimate_tokens
from contextkeeper.compaction.models import (
    ContextSummary,
    ToolCallRecord,
    ToolCallSummary,
    Turn,
    TurnSummary,
)
from contextkeeper.compaction.strategy import CompactionStrategy, EvictionRange, MessageMeta, MessageRole
from contextkeeper.compaction.summary import (
    SummaryFrame,
    extract_assistant_action,
    extract_user_intent,
    truncate,
)

logger = logging.getLogger(__name__)

# Approximate size of an evicted turn, used only for the compaction report
REPORT_TOKENS_PER_EVICTED_TURN = 500

CONTEXT_PREAMBLE = "[Previous conversation context]"
CONTEXT_ACKNOWLEDGEMENT = "I understand the previous context. How can I help you continue?"

USER_INTENT_CHARS = 80
ASSISTANT_ACTION_CHARS = 100
TOOL_RESULT_CHARS = 100
TOOL_ARGS_DISPLAY_CHARS = 100
TOOL_RESULT_DISPLAY_CHARS = 200


class ConversationHistory:
    """Conversation memory for one agent session.

    Keeps ``token_count == (summary_frame.token_count or 0) + sum of turn
    estimates`` after every mutating call. Not thread-safe; one agent loop
    owns one history.

    Args:
        config: Compaction configuration. If None, uses defaults.
        strategy: Eviction strategy. If None, one is derived from the config
            on every compaction.
    """

    def __init__(
        self,
        config: CompactConfig | None = None,
        strategy: CompactionStrategy | None = None,
    ) -> None:
        self.config = config or CompactConfig()
        self._strategy = strategy
        self._turns: list[Turn] = []
        self._summary_frame: SummaryFrame | None = None
        self._context_summary = ContextSummary()
        self._total_tokens = 0
        self._user_turn_count = 0
        self._turn_in_progress = False

    # =========================================================================
    # Turn ledger
    # =========================================================================

    def begin_turn(self) -> None:
        """Mark that a user message went out and its reply has not landed yet."""
        self._turn_in_progress = True

    def add_turn(
        self,
        user_message: str,
        assistant_response: str,
        tool_calls: list[ToolCallRecord] | None = None,
        droppable: bool | None = None,
    ) -> Turn:
        """Record a completed exchange.

        Args:
            user_message: The user's message.
            assistant_response: The assistant's final response.
            tool_calls: Tool calls made while producing the response.
            droppable: Explicit droppability override.

        Returns:
            The appended turn.
        """
        turn = Turn.create(user_message, assistant_response, tool_calls, droppable)
        self._turns.append(turn)
        self._total_tokens += turn.estimated_tokens
        self._user_turn_count += 1
        self._turn_in_progress = False
        logger.debug(
            f"Added turn {self._user_turn_count}: ~{turn.estimated_tokens} tokens, "
            f"{len(turn.tool_calls)} tool calls, droppable={turn.droppable}"
        )

        hook = self.config.thresholds.on_turn_end
        if hook is not None:
            hook(self)
        return turn

    # =========================================================================
    # Triggers
    # =========================================================================

    @property
    def message_count(self) -> int:
        """Messages the ledger expands to (user + assistant per turn)."""
        return len(self._turns) * 2

    def needs_compaction(self) -> bool:
        """Check if any configured threshold is exceeded.

        Always False while an exchange is in progress, so a user message is
        never compacted away before its reply lands.
        """
        if self._turn_in_progress:
            return False
        return self.config.should_compact(self._total_tokens, self._user_turn_count, self.message_count)

    def compaction_reason(self) -> str | None:
        """Name the threshold(s) that tripped, for diagnostics."""
        return self.config.compaction_reason(self._total_tokens, self._user_turn_count, self.message_count)

    # =========================================================================
    # Compaction
    # =========================================================================

    def compact(self) -> str | None:
        """Evict the oldest turns into the summary frame.

        Returns:
            A human-readable report, or None if nothing could be evicted
            (fewer than 2 turns, or no safe eviction range).
        """
        if len(self._turns) < 2:
            return None

        messages = self._message_metas()
        strategy = self._strategy or CompactionStrategy.default(
            self.config.eviction_window, self.config.retention_window
        )
        eviction = strategy.calculate_eviction_range(messages, self.config.message_retention)
        if eviction is None or eviction.is_empty:
            logger.debug(f"No safe eviction range across {len(messages)} messages")
            return None

        start_turn, end_turn = eviction.to_turn_range()
        if start_turn >= end_turn or end_turn > len(self._turns):
            logger.debug(f"Eviction range {eviction} maps to no turns")
            return None

        evicted = self._turns[start_turn:end_turn]
        worth_summarizing = {
            i // 2 for i in strategy.filter_droppable(messages, EvictionRange(2 * start_turn, 2 * end_turn))
        }
        droppable = len(evicted) - len(worth_summarizing)
        self._fold_turns(start_turn, end_turn)

        after = self._total_tokens
        before = after + len(evicted) * REPORT_TOKENS_PER_EVICTED_TURN
        report = f"Compacted {len(evicted)} turns ({droppable} droppable) (~{before} → ~{after} tokens)"
        logger.info(report)
        return report

    def emergency_compact(self) -> str | None:
        """Compact with an aggressive config after a context-length failure.

        The original config is restored no matter how compaction ends.
        """
        original = self.config
        self.config = CompactConfig.emergency()
        logger.warning(f"Emergency compaction of {len(self._turns)} turns (~{self._total_tokens} tokens)")
        try:
            return self.compact()
        finally:
            self.config = original

    def clear(self) -> None:
        """Wipe all history, including the summary."""
        self._turns = []
        self._summary_frame = None
        self._context_summary = ContextSummary()
        self._total_tokens = 0
        self._user_turn_count = 0
        self._turn_in_progress = False

    def clear_turns_preserve_context(self) -> None:
        """Drop the turn ledger but keep the distilled memory.

        Remaining turns (at least 2) are folded into the summary first so
        nothing is lost silently.
        """
        if len(self._turns) >= 2:
            self._fold_turns(0, len(self._turns))
        dropped = len(self._turns)
        self._turns = []
        self._user_turn_count = 0
        self._recompute_tokens()
        logger.info(f"Cleared turn ledger ({dropped} unsummarized turns dropped), kept ~{self._total_tokens} tokens of summary")

    def _message_metas(self) -> list[MessageMeta]:
        """Expand each turn into its user and assistant messages."""
        metas: list[MessageMeta] = []
        for i, turn in enumerate(self._turns):
            user_tokens = estimate_tokens(turn.user_message)
            metas.append(
                MessageMeta(
                    index=2 * i,
                    role=MessageRole.USER,
                    droppable=turn.droppable,
                    token_count=user_tokens,
                )
            )
            metas.append(
                MessageMeta(
                    index=2 * i + 1,
                    role=MessageRole.ASSISTANT,
                    droppable=turn.droppable,
                    has_tool_call=bool(turn.tool_calls),
                    tool_id=turn.first_tool_id,
                    token_count=turn.estimated_tokens - user_tokens,
                )
            )
        return metas

    def _fold_turns(self, start: int, end: int) -> None:
        """Summarize turns[start:end] into the frame and drop them."""
        fresh = ContextSummary()
        base = self._context_summary.turns_compacted
        for offset, turn in enumerate(self._turns[start:end]):
            fresh.add_turn(_summarize_turn(turn, base + offset + 1))
        self._context_summary.merge(fresh)

        frame = SummaryFrame.from_summary(self._context_summary)
        self._summary_frame = self._summary_frame.combine(frame) if self._summary_frame else frame

        self._turns = self._turns[:start] + self._turns[end:]
        self._user_turn_count = len(self._turns)
        self._recompute_tokens()

    def _recompute_tokens(self) -> None:
        frame_tokens = self._summary_frame.token_count if self._summary_frame else 0
        self._total_tokens = frame_tokens + sum(turn.estimated_tokens for turn in self._turns)

    # =========================================================================
    # Rendering
    # =========================================================================

    def to_messages(self) -> list[BaseMessage]:
        """Render the summary frame and retained turns as model messages.

        Tool activity is flattened into the assistant text so the output does
        not depend on any provider's function-calling schema.
        """
        messages: list[BaseMessage] = []
        if self._summary_frame is not None:
            messages.append(HumanMessage(content=f"{CONTEXT_PREAMBLE}\n{self._summary_frame.content}"))
            messages.append(AIMessage(content=CONTEXT_ACKNOWLEDGEMENT))

        for turn in self._turns:
            messages.append(HumanMessage(content=turn.user_message))
            messages.append(AIMessage(content=_render_assistant(turn)))
        return messages

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def token_count(self) -> int:
        return self._total_tokens

    @property
    def turn_count(self) -> int:
        return len(self._turns)

    @property
    def user_turn_count(self) -> int:
        return self._user_turn_count

    @property
    def turn_in_progress(self) -> bool:
        return self._turn_in_progress

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    @property
    def summary_frame(self) -> SummaryFrame | None:
        return self._summary_frame

    @property
    def context_summary(self) -> ContextSummary:
        return self._context_summary

    def is_empty(self) -> bool:
        return not self._turns and self._summary_frame is None

    def files_read(self) -> Iterator[str]:
        """Files read during compacted turns."""
        return iter(sorted(self._context_summary.files_read))

    def files_written(self) -> Iterator[str]:
        """Files created or modified during compacted turns."""
        return iter(sorted(self._context_summary.files_written))

    def status(self) -> str:
        """One-line status for display."""
        compressed = " (with compressed history)" if self._summary_frame is not None else ""
        return f"{len(self._turns)} turns, ~{self._total_tokens} tokens{compressed}"


def _summarize_turn(turn: Turn, turn_number: int) -> TurnSummary:
    return TurnSummary(
        turn_number=turn_number,
        user_intent=extract_user_intent(turn.user_message, USER_INTENT_CHARS),
        assistant_action=extract_assistant_action(turn.assistant_response, ASSISTANT_ACTION_CHARS),
        tool_calls=[
            ToolCallSummary(
                tool_name=tc.tool_name,
                args_summary=tc.args_summary,
                result_summary=truncate(tc.result_summary, TOOL_RESULT_CHARS),
                success="error" not in tc.result_summary.lower(),
            )
            for tc in turn.tool_calls
        ],
    )


def _render_assistant(turn: Turn) -> str:
    if not turn.tool_calls:
        return turn.assistant_response
    activity = "\n".join(
        f"{tc.tool_name}({truncate(tc.args_summary, TOOL_ARGS_DISPLAY_CHARS)}) → "
        f"{truncate(tc.result_summary, TOOL_RESULT_DISPLAY_CHARS)}"
        for tc in turn.tool_calls
    )
    return f"{activity}\n\n{turn.assistant_response}"
