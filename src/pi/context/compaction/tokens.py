"""Token estimation and compaction thresholds.

Estimates are a chars/4 heuristic for budgeting, not a billing figure.
Actual usage reported by the provider is preferred where it exists.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pi.context.entries import SessionEntryBase, SessionMessageEntry, message_from_entry
from pi.context.messages import (
    AssistantMessage,
    BashExecutionMessage,
    BranchSummaryMessage,
    CompactionSummaryMessage,
    CustomMessage,
    ImageContent,
    TextContent,
    ThinkingContent,
    ToolCall,
    ToolResultMessage,
    Usage,
    UserMessage,
)

if TYPE_CHECKING:
    from pi.context.settings import CompactionSettings

# ~1,200 tokens at 4 chars/token; a rough constant, not derived from image size
IMAGE_ESTIMATED_CHARS = 4800


@dataclass
class ContextUsageEstimate:
    """Token usage estimate for the current context."""

    tokens: int = 0
    usage_tokens: int = 0
    trailing_tokens: int = 0
    last_usage_index: int | None = None


def _blocks_chars(content: str | list[Any]) -> int:
    if isinstance(content, str):
        return len(content)
    chars = 0
    for block in content:
        match block:
            case TextContent():
                chars += len(block.text)
            case ThinkingContent():
                chars += len(block.thinking)
            case ToolCall():
                args = ",".join(f"{key}={value}" for key, value in block.arguments.items())
                chars += len(block.name) + len(args)
            case ImageContent():
                chars += IMAGE_ESTIMATED_CHARS
            case _:
                pass
    return chars


def estimate_tokens(message: Any) -> int:
    """Estimate token count for a single agent message (ceil of chars / 4)."""
    match message:
        case UserMessage() | AssistantMessage() | ToolResultMessage() | CustomMessage():
            chars = _blocks_chars(message.content)
        case BashExecutionMessage():
            chars = len(message.command) + len(message.output)
        case BranchSummaryMessage() | CompactionSummaryMessage():
            chars = len(message.summary)
        case _:
            chars = 0
    return math.ceil(chars / 4)


def estimate_entry_tokens(entry: SessionEntryBase) -> int:
    """Estimate tokens for a session entry; metadata entries cost nothing."""
    message = message_from_entry(entry, include_compaction=True)
    return estimate_tokens(message) if message is not None else 0


def calculate_context_tokens(usage: Usage) -> int:
    """Calculate actual context tokens from LLM usage data."""
    if usage.total_tokens:
        return usage.total_tokens
    return usage.input + usage.output + usage.cache_read + usage.cache_write


def get_last_assistant_usage(entries: list[SessionEntryBase]) -> Usage | None:
    """Usage of the last assistant message that was neither aborted nor an error."""
    for entry in reversed(entries):
        if not isinstance(entry, SessionMessageEntry):
            continue
        message = entry.message
        if isinstance(message, AssistantMessage) and message.stop_reason not in ("aborted", "error"):
            return message.usage
    return None


def estimate_context_tokens(messages: list[Any]) -> ContextUsageEstimate:
    """Estimate total context tokens, using actual usage when available.

    Takes the usage of the last successful assistant message, then adds
    estimates for the messages that came after it.
    """
    last_usage_index: int | None = None
    usage_tokens = 0

    for i in range(len(messages) - 1, -1, -1):
        message = messages[i]
        if isinstance(message, AssistantMessage) and message.stop_reason not in ("aborted", "error"):
            last_usage_index = i
            usage_tokens = calculate_context_tokens(message.usage)
            break

    if last_usage_index is None:
        total = sum(estimate_tokens(m) for m in messages)
        return ContextUsageEstimate(tokens=total, trailing_tokens=total)

    trailing = sum(estimate_tokens(m) for m in messages[last_usage_index + 1 :])
    return ContextUsageEstimate(
        tokens=usage_tokens + trailing,
        usage_tokens=usage_tokens,
        trailing_tokens=trailing,
        last_usage_index=last_usage_index,
    )


def should_compact(context_tokens: int, context_window: int, settings: CompactionSettings) -> bool:
    """Check if context tokens exceed the window minus the response reserve."""
    if not settings.enabled or context_window <= 0:
        return False
    return context_tokens > context_window - settings.reserve_tokens
