"""History compaction: planning, summary generation, and result assembly.

``prepare_compaction`` is synchronous and only reads the branch it is given.
``compact`` issues the LLM calls; the caller is responsible for appending the
resulting CompactionEntry to the session log.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pi.context.compaction.cut_point import find_cut_point
from pi.context.compaction.file_ops import (
    FileOperations,
    compute_file_lists,
    create_file_ops,
    extract_file_ops_from_message,
    file_ops_details,
    format_file_operations,
    seed_file_ops,
)
from pi.context.compaction.prompts import (
    NO_PRIOR_HISTORY,
    SPLIT_TURN_MARKER,
    SUMMARIZATION_PROMPT,
    SUMMARIZATION_SYSTEM_PROMPT,
    TURN_PREFIX_SUMMARIZATION_PROMPT,
    UPDATE_SUMMARIZATION_PROMPT,
)
from pi.context.compaction.tokens import calculate_context_tokens, get_last_assistant_usage
from pi.context.entries import CompactionEntry, message_from_entry
from pi.context.errors import CompactionCancelledError, SummarizationFailedError
from pi.context.messages import (
    AssistantMessage,
    TextContent,
    ThinkingContent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
    content_text,
    convert_to_llm,
)
from pi.context.settings import DEFAULT_COMPACTION_SETTINGS, CompactionSettings
from pi.context.transport import extract_text

if TYPE_CHECKING:
    from pi.context.entries import SessionEntryBase
    from pi.context.messages import LlmMessage
    from pi.context.transport import Model, ReasoningEffort, Transport

logger = logging.getLogger(__name__)


# --- Result types ---


@dataclass
class CompactionDetails:
    """File tracking metadata stored in CompactionEntry.details."""

    read_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return file_ops_details(self.read_files, self.modified_files)


@dataclass
class CompactionResult:
    """Result from a compaction operation."""

    summary: str
    first_kept_entry_id: str
    tokens_before: int
    details: CompactionDetails | None = None


@dataclass(frozen=True)
class CompactionPreparation:
    """Everything needed to summarize a branch, computed from a snapshot."""

    first_kept_entry_id: str
    messages_to_summarize: list[Any]
    turn_prefix_messages: list[Any]
    is_split_turn: bool
    tokens_before: int
    previous_summary: str | None = None
    file_ops: FileOperations = field(default_factory=create_file_ops)
    settings: CompactionSettings = DEFAULT_COMPACTION_SETTINGS


# --- Serialization ---


def serialize_conversation(messages: list[LlmMessage]) -> str:
    """Render LLM messages as a plain transcript for the summarizer.

    The transcript is wrapped in a single user message, so the model reads
    it as text to summarize rather than as a conversation to continue.
    """
    parts: list[str] = []

    for message in messages:
        match message:
            case UserMessage():
                text = content_text(message.content)
                if text:
                    parts.append(f"[User]: {text}")
            case AssistantMessage():
                texts: list[str] = []
                thinking: list[str] = []
                calls: list[str] = []
                for block in message.content:
                    match block:
                        case TextContent():
                            texts.append(block.text)
                        case ThinkingContent():
                            thinking.append(block.thinking)
                        case ToolCall():
                            args = ", ".join(f"{key}={value}" for key, value in block.arguments.items())
                            calls.append(f"{block.name}({args})")
                if thinking:
                    parts.append("[Assistant thinking]: " + "\n".join(thinking))
                if texts:
                    parts.append("[Assistant]: " + "\n".join(texts))
                if calls:
                    parts.append("[Assistant tool calls]: " + "; ".join(calls))
            case ToolResultMessage():
                text = content_text(message.content)
                if text:
                    parts.append(f"[Tool result]: {text}")

    return "\n\n".join(parts)


# --- Preparation ---


def prepare_compaction(
    branch_entries: list[SessionEntryBase],
    settings: CompactionSettings | None = None,
) -> CompactionPreparation | None:
    """Plan a compaction of the given branch.

    Returns None if there's nothing to compact: the branch is empty or
    already ends in a compaction entry.
    """
    if settings is None:
        settings = DEFAULT_COMPACTION_SETTINGS

    if not branch_entries or isinstance(branch_entries[-1], CompactionEntry):
        return None

    previous: CompactionEntry | None = None
    previous_index = -1
    for i in range(len(branch_entries) - 1, -1, -1):
        entry = branch_entries[i]
        if isinstance(entry, CompactionEntry):
            previous, previous_index = entry, i
            break
    boundary_start = previous_index + 1
    boundary_end = len(branch_entries)

    usage = get_last_assistant_usage(branch_entries)
    tokens_before = calculate_context_tokens(usage) if usage is not None else 0

    cut = find_cut_point(branch_entries, boundary_start, boundary_end, settings.keep_recent_tokens)
    first_kept_entry_id = branch_entries[cut.first_kept_entry_index].id
    history_end = cut.turn_start_index if cut.is_split_turn else cut.first_kept_entry_index

    def _messages(start: int, end: int) -> list[Any]:
        found = (message_from_entry(entry) for entry in branch_entries[start:end])
        return [message for message in found if message is not None]

    messages_to_summarize = _messages(boundary_start, history_end)
    turn_prefix_messages = _messages(cut.turn_start_index, cut.first_kept_entry_index) if cut.is_split_turn else []

    file_ops = create_file_ops()
    if previous is not None and not previous.from_hook:
        seed_file_ops(file_ops, previous.details)
    for message in [*messages_to_summarize, *turn_prefix_messages]:
        extract_file_ops_from_message(message, file_ops)

    logger.debug(
        "Compaction plan: boundary=%d cut=%d split=%s summarize=%d prefix=%d tokens_before=%d",
        boundary_start,
        cut.first_kept_entry_index,
        cut.is_split_turn,
        len(messages_to_summarize),
        len(turn_prefix_messages),
        tokens_before,
    )

    return CompactionPreparation(
        first_kept_entry_id=first_kept_entry_id,
        messages_to_summarize=messages_to_summarize,
        turn_prefix_messages=turn_prefix_messages,
        is_split_turn=cut.is_split_turn,
        tokens_before=tokens_before,
        previous_summary=previous.summary if previous is not None else None,
        file_ops=file_ops,
        settings=settings,
    )


# --- Summary generation ---


def _cancelled() -> CompactionCancelledError:
    return CompactionCancelledError("Compaction cancelled")


async def request_summary(
    transport: Transport,
    model: Model,
    prompt: str,
    *,
    max_tokens: int,
    api_key: str | None = None,
    signal: asyncio.Event | None = None,
    reasoning: ReasoningEffort | None = None,
) -> str:
    """Run one summarization request and return its text.

    The signal is checked before the request is issued and again after it
    resolves, so a cancellation that races a usable response still counts as
    cancelled.
    """
    if signal is not None and signal.is_set():
        raise _cancelled()

    request = UserMessage(content=[TextContent(text=prompt)])
    try:
        response = await transport.complete(
            model,
            SUMMARIZATION_SYSTEM_PROMPT,
            [request],
            max_tokens=max_tokens,
            signal=signal,
            api_key=api_key,
            reasoning=reasoning,
        )
    except Exception as e:
        if signal is not None and signal.is_set():
            raise _cancelled() from e
        raise SummarizationFailedError(f"Summarization failed: {e}", details={"model": model.id}) from e

    if (signal is not None and signal.is_set()) or response.stop_reason == "aborted":
        raise _cancelled()
    if response.stop_reason == "error":
        raise SummarizationFailedError(
            f"Summarization failed: {response.error_message or 'Unknown error'}",
            details={"stop_reason": "error"},
        )
    return extract_text(response)


async def generate_summary(
    messages: list[Any],
    model: Model,
    reserve_tokens: int,
    transport: Transport,
    *,
    api_key: str | None = None,
    signal: asyncio.Event | None = None,
    custom_instructions: str | None = None,
    previous_summary: str | None = None,
) -> str:
    """Summarize history, updating ``previous_summary`` when there is one."""
    conversation_text = serialize_conversation(convert_to_llm(messages))

    prompt = f"<conversation>\n{conversation_text}\n</conversation>\n\n"
    if previous_summary:
        prompt += f"<previous-summary>\n{previous_summary}\n</previous-summary>\n\n"
        prompt += UPDATE_SUMMARIZATION_PROMPT
    else:
        prompt += SUMMARIZATION_PROMPT
    if custom_instructions:
        prompt += f"\n\nAdditional focus: {custom_instructions}"

    return await request_summary(
        transport,
        model,
        prompt,
        max_tokens=int(reserve_tokens * 0.8),
        api_key=api_key,
        signal=signal,
        reasoning="high",
    )


async def generate_turn_prefix_summary(
    messages: list[Any],
    model: Model,
    reserve_tokens: int,
    transport: Transport,
    *,
    api_key: str | None = None,
    signal: asyncio.Event | None = None,
) -> str:
    """Summarize the prefix of a turn that the cut point split."""
    conversation_text = serialize_conversation(convert_to_llm(messages))
    prompt = f"<conversation>\n{conversation_text}\n</conversation>\n\n{TURN_PREFIX_SUMMARIZATION_PROMPT}"

    return await request_summary(
        transport,
        model,
        prompt,
        max_tokens=int(reserve_tokens * 0.5),
        api_key=api_key,
        signal=signal,
    )


# --- Main compaction ---


async def _gather_split_turn(history: Any, prefix: Any) -> tuple[str, str]:
    tasks = [asyncio.ensure_future(history), asyncio.ensure_future(prefix)]
    try:
        history_summary, prefix_summary = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return history_summary, prefix_summary


async def compact(
    preparation: CompactionPreparation,
    model: Model,
    transport: Transport,
    *,
    api_key: str | None = None,
    custom_instructions: str | None = None,
    signal: asyncio.Event | None = None,
) -> CompactionResult:
    """Generate the summary for a prepared compaction.

    On a split turn the history summary and the turn-prefix summary are
    requested concurrently and joined under a split-turn marker.
    """
    reserve_tokens = preparation.settings.reserve_tokens

    if preparation.is_split_turn and preparation.turn_prefix_messages:

        async def _history() -> str:
            if not preparation.messages_to_summarize:
                return NO_PRIOR_HISTORY
            return await generate_summary(
                preparation.messages_to_summarize,
                model,
                reserve_tokens,
                transport,
                api_key=api_key,
                signal=signal,
                custom_instructions=custom_instructions,
                previous_summary=preparation.previous_summary,
            )

        prefix = generate_turn_prefix_summary(
            preparation.turn_prefix_messages,
            model,
            reserve_tokens,
            transport,
            api_key=api_key,
            signal=signal,
        )
        history_summary, prefix_summary = await _gather_split_turn(_history(), prefix)
        summary = f"{history_summary}\n\n---\n\n{SPLIT_TURN_MARKER}\n\n{prefix_summary}"
    else:
        summary = await generate_summary(
            preparation.messages_to_summarize,
            model,
            reserve_tokens,
            transport,
            api_key=api_key,
            signal=signal,
            custom_instructions=custom_instructions,
            previous_summary=preparation.previous_summary,
        )

    read_files, modified_files = compute_file_lists(preparation.file_ops)
    summary += format_file_operations(read_files, modified_files)

    return CompactionResult(
        summary=summary,
        first_kept_entry_id=preparation.first_kept_entry_id,
        tokens_before=preparation.tokens_before,
        details=CompactionDetails(read_files=read_files, modified_files=modified_files),
    )
