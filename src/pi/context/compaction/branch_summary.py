"""Branch summarization for preserving context when navigating tree branches.

When abandoning a conversation branch, generates a summary that captures
the key context of the abandoned path for use in the new branch. Unlike
history compaction, trimming here is newest-first: an abandoned branch has
no future turns that depend on its structure, so the oldest entries are
dropped once the token budget runs out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pi.context.compaction.compact import request_summary, serialize_conversation
from pi.context.compaction.file_ops import (
    FileOperations,
    compute_file_lists,
    create_file_ops,
    extract_file_ops_from_message,
    format_file_operations,
    seed_file_ops,
)
from pi.context.compaction.prompts import BRANCH_SUMMARY_PROMPT, NO_CONVERSATION
from pi.context.compaction.tokens import estimate_tokens
from pi.context.entries import BranchSummaryEntry, SessionMessageEntry, message_from_entry
from pi.context.errors import CompactionCancelledError, SummarizationFailedError
from pi.context.messages import ToolResultMessage, convert_to_llm
from pi.context.settings import DEFAULT_RESERVE_TOKENS

if TYPE_CHECKING:
    import asyncio

    from pi.context.entries import SessionEntryBase
    from pi.context.store import EntryStore
    from pi.context.transport import Model, Transport


# --- Types ---


@dataclass
class CollectEntriesResult:
    """Entries unique to the abandoned branch, oldest first."""

    entries: list[SessionEntryBase] = field(default_factory=list)
    common_ancestor_id: str | None = None


@dataclass
class BranchPreparation:
    """Preparation result for branch summarization."""

    messages: list[Any]
    file_ops: FileOperations
    total_tokens: int = 0


@dataclass
class GenerateBranchSummaryOptions:
    model: Model
    transport: Transport
    api_key: str | None = None
    signal: asyncio.Event | None = None
    custom_instructions: str | None = None
    reserve_tokens: int | None = None


@dataclass
class BranchSummaryResult:
    """Result of generating a branch summary.

    Exactly one outcome is reported: a summary, ``aborted``, or ``error``.
    """

    summary: str | None = None
    read_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)
    aborted: bool = False
    error: str | None = None


# --- Collection ---


def collect_entries_for_branch_summary(
    store: EntryStore,
    old_leaf_id: str | None,
    target_id: str,
) -> CollectEntriesResult:
    """Collect the entries that navigating to ``target_id`` leaves behind.

    The common ancestor is the deepest entry of the target's path that is
    also on the old leaf's path. The abandoned span runs from the old leaf
    back to (but excluding) that ancestor; with no shared ancestor it is the
    old leaf's whole path.
    """
    if old_leaf_id is None:
        return CollectEntriesResult()

    old_path_ids = {entry.id for entry in store.branch_entries(old_leaf_id)}
    common_ancestor_id: str | None = None
    for entry in reversed(store.branch_entries(target_id)):
        if entry.id in old_path_ids:
            common_ancestor_id = entry.id
            break

    collected: list[SessionEntryBase] = []
    current: str | None = old_leaf_id
    while current is not None and current != common_ancestor_id:
        entry = store.get_entry(current)
        if entry is None:
            break
        collected.append(entry)
        current = entry.parent_id

    collected.reverse()
    return CollectEntriesResult(entries=collected, common_ancestor_id=common_ancestor_id)


# --- Preparation ---


def _branch_message(entry: SessionEntryBase) -> Any:
    if isinstance(entry, SessionMessageEntry) and isinstance(entry.message, ToolResultMessage):
        return None
    return message_from_entry(entry, include_compaction=True)


def prepare_branch_entries(entries: list[SessionEntryBase], token_budget: int = 0) -> BranchPreparation:
    """Select the newest messages of a branch that fit ``token_budget``.

    A budget of 0 means unlimited. File operations are extracted from every
    message, including the ones that did not fit.
    """
    file_ops = create_file_ops()
    for entry in entries:
        if isinstance(entry, BranchSummaryEntry) and not entry.from_hook:
            seed_file_ops(file_ops, entry.details)

    messages: list[Any] = []
    total_tokens = 0
    for entry in reversed(entries):
        message = _branch_message(entry)
        if message is None:
            continue
        extract_file_ops_from_message(message, file_ops)
        tokens = estimate_tokens(message)
        if token_budget > 0 and total_tokens + tokens > token_budget:
            continue
        messages.append(message)
        total_tokens += tokens

    messages.reverse()
    return BranchPreparation(messages=messages, file_ops=file_ops, total_tokens=total_tokens)


# --- Summary generation ---


async def generate_branch_summary(
    entries: list[SessionEntryBase],
    options: GenerateBranchSummaryOptions,
) -> BranchSummaryResult:
    """Generate a summary for an abandoned branch.

    Never raises for model failures; they are reported on the result.
    """
    reserve_tokens = options.reserve_tokens or DEFAULT_RESERVE_TOKENS
    preparation = prepare_branch_entries(entries, reserve_tokens)
    read_files, modified_files = compute_file_lists(preparation.file_ops)

    if not preparation.messages:
        return BranchSummaryResult(summary=NO_CONVERSATION)

    conversation_text = serialize_conversation(convert_to_llm(preparation.messages))
    instructions = BRANCH_SUMMARY_PROMPT
    if options.custom_instructions:
        instructions += f"\n\nAdditional focus: {options.custom_instructions}"
    prompt = f"<conversation>\n{conversation_text}\n</conversation>\n\n{instructions}"

    try:
        text = await request_summary(
            options.transport,
            options.model,
            prompt,
            max_tokens=int(reserve_tokens * 0.6),
            api_key=options.api_key,
            signal=options.signal,
        )
    except CompactionCancelledError:
        return BranchSummaryResult(aborted=True)
    except SummarizationFailedError as e:
        return BranchSummaryResult(error=e.message)

    return BranchSummaryResult(
        summary=text + format_file_operations(read_files, modified_files),
        read_files=read_files,
        modified_files=modified_files,
    )
