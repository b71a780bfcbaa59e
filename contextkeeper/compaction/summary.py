"""Summary frame generation for compacted history.

Renders a ContextSummary into a structured text block that is injected back
into the model's context as a synthetic leading exchange.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from contextkeeper.compaction.config import estimate_tokens

if TYPE_CHECKING:
    from contextkeeper.compaction.models import ContextSummary

# Tool calls worth naming individually in the turn list
IMPORTANT_TOOLS: frozenset[str] = frozenset({"write_file", "write_files", "shell", "analyze_project"})

MAX_TOOLS_PER_TURN = 3
MAX_FILES_WRITTEN = 20
MAX_FILES_READ = 15
MAX_KEY_DECISIONS = 10
MAX_ERRORS = 5

REQUEST_PREFIXES = ("please ", "can you ", "could you ")


def truncate(text: str, max_len: int) -> str:
    """Strip and truncate text, marking the cut with an ellipsis."""
    text = text.strip()
    if len(text) <= max_len:
        return text
    return text[: max(max_len - 3, 0)] + "..."


def extract_user_intent(message: str, max_len: int) -> str:
    """Condense a user message, dropping polite request prefixes."""
    message = message.strip()
    lowered = message.lower()
    for prefix in REQUEST_PREFIXES:
        if lowered.startswith(prefix):
            message = message[len(prefix):]
            break
    return truncate(message, max_len)


def extract_assistant_action(response: str, max_len: int) -> str:
    """Condense an assistant response to its first sentence or line."""
    first_part = re.split(r"[.\n]", response.strip(), maxsplit=1)[0]
    return truncate(first_part, max_len)


@dataclass
class SummaryFrame:
    """Flattened textual form of all compacted history."""

    content: str
    token_count: int

    @classmethod
    def from_text(cls, content: str) -> SummaryFrame:
        return cls(content=content, token_count=estimate_tokens(content))

    @classmethod
    def from_summary(cls, summary: ContextSummary) -> SummaryFrame:
        """Render a context summary for model consumption.

        The output uses XML-like sections so the model can tell the overview,
        turn list, files context, decisions and errors apart.
        """
        turns = summary.turns_compacted
        lines = [f'<conversation_summary turns="{turns}">', "<overview>"]
        lines.append(f"This summary covers {turns} conversation turn{'' if turns == 1 else 's'}.")
        if summary.tool_usage:
            tools = ", ".join(f"{name}({count}x)" for name, count in summary.tool_usage.items())
            lines.append(f"Tools used: {tools}")
        lines.extend(["</overview>", "", "<turns>"])

        for turn in summary.turn_summaries:
            lines.append(
                f"Turn {turn.turn_number}: {truncate(turn.user_intent, 80)} → "
                f"{truncate(turn.assistant_action, 100)}"
            )
            important = [tc for tc in turn.tool_calls if tc.tool_name in IMPORTANT_TOOLS or not tc.success]
            for tc in important[:MAX_TOOLS_PER_TURN]:
                status = "✓" if tc.success else "✗"
                lines.append(f"  {status} {tc.tool_name}({truncate(tc.args_summary, 40)})")
            if len(important) > MAX_TOOLS_PER_TURN:
                lines.append(f"  ... +{len(important) - MAX_TOOLS_PER_TURN} more tool calls")
        lines.extend(["</turns>", ""])

        if summary.files_read or summary.files_written:
            lines.append("<files_context>")
            if summary.files_written:
                lines.append("Files created/modified:")
                lines.extend(_bounded_listing(sorted(summary.files_written), MAX_FILES_WRITTEN, "files"))
            if summary.files_read:
                lines.append("Files read (content was available):")
                lines.extend(_bounded_listing(sorted(summary.files_read), MAX_FILES_READ, "files"))
            lines.extend(["</files_context>", ""])

        if summary.key_decisions:
            lines.append("<key_decisions>")
            lines.extend(f"- {d}" for d in summary.key_decisions[:MAX_KEY_DECISIONS])
            lines.extend(["</key_decisions>", ""])

        if summary.errors_encountered:
            lines.append("<errors_encountered>")
            lines.extend(f"- {e}" for e in summary.errors_encountered[:MAX_ERRORS])
            lines.extend(["</errors_encountered>", ""])

        lines.append("</conversation_summary>")
        return cls.from_text("\n".join(lines))

    @classmethod
    def minimal(cls, turns: int, files_written: list[str]) -> SummaryFrame:
        """Create a minimal frame (for very aggressive compaction)."""
        content = f'<conversation_summary turns="{turns}" minimal="true">\n'
        if files_written:
            content += f"Files created: {', '.join(files_written)}\n"
        content += "</conversation_summary>"
        return cls.from_text(content)

    def combine(self, newer: SummaryFrame) -> SummaryFrame:
        """Append a newer frame; frames only ever grow."""
        return SummaryFrame(
            content=f"{self.content}\n\n{newer.content}",
            token_count=self.token_count + newer.token_count,
        )


def _bounded_listing(items: list[str], limit: int, noun: str) -> list[str]:
    lines = [f"  - {item}" for item in items[:limit]]
    if len(items) > limit:
        lines.append(f"  ... +{len(items) - limit} more {noun}")
    return lines
