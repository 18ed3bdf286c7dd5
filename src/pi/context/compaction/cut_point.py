"""Cut point selection for compaction.

A cut point is the index of the first entry kept verbatim. Cuts never land on
a tool result, which must stay attached to the assistant message that made
the call. When the cut falls inside a turn, the turn's start is reported so
the caller can summarize the turn prefix separately.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from pi.context.compaction.tokens import estimate_entry_tokens
from pi.context.entries import (
    BranchSummaryEntry,
    CompactionEntry,
    CustomMessageEntry,
    SessionMessageEntry,
)
from pi.context.messages import BashExecutionMessage, ToolResultMessage, UserMessage

if TYPE_CHECKING:
    from pi.context.entries import SessionEntryBase


@dataclass(frozen=True)
class CutPointResult:
    """Result of finding a cut point for compaction."""

    first_kept_entry_index: int
    turn_start_index: int = -1
    is_split_turn: bool = False


def find_valid_cut_points(entries: list[SessionEntryBase], start: int, end: int) -> list[int]:
    """Indices in [start, end) where history may be cut.

    Any message except a tool result, plus branch summaries and custom
    messages.
    """
    valid: list[int] = []
    for i in range(start, min(end, len(entries))):
        match entries[i]:
            case SessionMessageEntry(message=ToolResultMessage()):
                pass
            case SessionMessageEntry() | BranchSummaryEntry() | CustomMessageEntry():
                valid.append(i)
            case _:
                pass
    return valid


def find_turn_start_index(entries: list[SessionEntryBase], index: int, start: int) -> int:
    """Walk back from ``index`` to the entry that opened its turn, or -1.

    A turn opens with a user message, a bash execution, a branch summary,
    or a custom message.
    """
    if index < 0:
        return -1
    for i in range(index, start - 1, -1):
        match entries[i]:
            case BranchSummaryEntry() | CustomMessageEntry():
                return i
            case SessionMessageEntry(message=UserMessage() | BashExecutionMessage()):
                return i
            case _:
                pass
    return -1


def find_cut_point(
    entries: list[SessionEntryBase],
    start: int,
    end: int,
    keep_recent_tokens: int,
) -> CutPointResult:
    """Find where to cut so at least ``keep_recent_tokens`` stay verbatim.

    Walks backwards from the end accumulating token estimates of context
    entries. Once the budget is reached, the nearest valid cut point at or
    after that entry wins; if none follows it (the branch ends in tool
    results), the last valid cut point before it is used. If the budget is
    never reached, the earliest valid cut point is used so everything
    feasible is kept.
    """
    cut_points = find_valid_cut_points(entries, start, end)
    if not cut_points:
        return CutPointResult(first_kept_entry_index=start)

    cut_index = cut_points[0]
    accumulated = 0
    for i in range(end - 1, start - 1, -1):
        entry = entries[i]
        if not isinstance(entry, (SessionMessageEntry, BranchSummaryEntry, CustomMessageEntry)):
            continue
        accumulated += estimate_entry_tokens(entry)
        if accumulated >= keep_recent_tokens:
            cut_index = next((cp for cp in cut_points if cp >= i), cut_points[-1])
            break

    # Pull in non-message scaffolding (model changes, labels, ...) that directly precedes the cut
    while cut_index > start:
        previous = entries[cut_index - 1]
        if isinstance(previous, (CompactionEntry, SessionMessageEntry)):
            break
        cut_index -= 1

    cut_entry = entries[cut_index]
    if isinstance(cut_entry, SessionMessageEntry) and isinstance(cut_entry.message, UserMessage):
        return CutPointResult(first_kept_entry_index=cut_index)

    # A cut on a bash execution, branch summary or custom message opens its own turn
    turn_start = find_turn_start_index(entries, cut_index, start)
    is_split = turn_start != -1 and turn_start < cut_index
    return CutPointResult(
        first_kept_entry_index=cut_index,
        turn_start_index=turn_start if is_split else -1,
        is_split_turn=is_split,
    )
