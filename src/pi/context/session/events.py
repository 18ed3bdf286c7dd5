"""Context session event types.

Events emitted by ContextSession to its subscribers, distinct from the hook
events in pi.context.hooks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from pi.context.compaction import CompactionResult


@dataclass
class ContextSessionEvent:
    """Base class for context session events."""

    type: str


@dataclass
class AutoCompactionStartEvent(ContextSessionEvent):
    """Emitted when auto-compaction begins."""

    reason: Literal["threshold", "overflow"] = "threshold"
    type: str = "auto_compaction_start"


@dataclass
class AutoCompactionEndEvent(ContextSessionEvent):
    """Emitted when auto-compaction finishes."""

    result: CompactionResult | None = None
    aborted: bool = False
    will_retry: bool = False
    error_message: str | None = None
    type: str = "auto_compaction_end"
