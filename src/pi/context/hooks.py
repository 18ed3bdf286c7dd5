"""Hook runner: lets callers intercept context reductions.

Handlers are registered per event type and may be sync or async. A handler
for a ``session_before_*`` event can return a result to veto the reduction
or supply a ready-made summary; ``session_compact`` and ``session_tree`` are
notifications whose return values are ignored.

Errors in one handler do not affect others: they are logged and forwarded
to ``on_error`` listeners, and emission continues.
"""

from __future__ import annotations

import contextlib
import inspect
import logging
import traceback
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import asyncio

    from pi.context.compaction import CompactionPreparation, CompactionResult
    from pi.context.entries import BranchSummaryEntry, CompactionEntry, SessionEntryBase

logger = logging.getLogger(__name__)

HookEventType = Literal[
    "session_before_compact",
    "session_compact",
    "session_before_tree",
    "session_tree",
]

HookHandler = Callable[[Any], Any | Awaitable[Any]]


# --- Events ---


@dataclass
class HookEvent:
    """Base event passed to hook handlers."""

    type: str


@dataclass
class SessionBeforeCompactEvent(HookEvent):
    """Fired with the compaction plan, before any model call."""

    type: str = "session_before_compact"
    preparation: CompactionPreparation | None = None
    branch_entries: list[SessionEntryBase] = field(default_factory=list)
    custom_instructions: str | None = None
    signal: asyncio.Event | None = None


@dataclass
class SessionBeforeCompactResult:
    cancel: bool = False
    compaction: CompactionResult | None = None


@dataclass
class SessionCompactEvent(HookEvent):
    type: str = "session_compact"
    compaction_entry: CompactionEntry | None = None
    from_hook: bool = False


@dataclass
class TreePreparation:
    """What a tree navigation is about to leave behind."""

    target_id: str
    old_leaf_id: str | None
    common_ancestor_id: str | None
    entries_to_summarize: list[SessionEntryBase] = field(default_factory=list)
    user_wants_summary: bool = False
    custom_instructions: str | None = None


@dataclass
class HookBranchSummary:
    summary: str
    details: dict[str, Any] | None = None


@dataclass
class SessionBeforeTreeEvent(HookEvent):
    type: str = "session_before_tree"
    preparation: TreePreparation | None = None
    signal: asyncio.Event | None = None


@dataclass
class SessionBeforeTreeResult:
    cancel: bool = False
    summary: HookBranchSummary | None = None


@dataclass
class SessionTreeEvent(HookEvent):
    type: str = "session_tree"
    new_leaf_id: str | None = None
    old_leaf_id: str | None = None
    summary_entry: BranchSummaryEntry | None = None
    from_hook: bool = False


@dataclass
class HookError:
    """Error from a hook handler."""

    event: str
    error: str
    stack: str | None = None


# --- Runner ---


class HookRunner:
    """Dispatches reduction events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[HookHandler]] = {}
        self._error_listeners: list[Callable[[HookError], Any]] = []

    def on(self, event_type: HookEventType, handler: HookHandler) -> Callable[[], None]:
        """Register a handler for an event type. Returns unsubscribe function."""
        handlers = self._handlers.setdefault(event_type, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def has_handlers(self, event_type: str) -> bool:
        """Check if any handlers are registered for an event type."""
        return bool(self._handlers.get(event_type))

    async def emit(self, event: HookEvent) -> Any:
        """Emit an event to all handlers; the last non-None result wins."""
        result: Any = None
        for handler in list(self._handlers.get(event.type, [])):
            try:
                value = handler(event)
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                logger.exception("Hook handler for %s failed", event.type)
                self._emit_error(HookError(event=event.type, error=str(e), stack=traceback.format_exc()))
                continue
            if value is not None:
                result = value
        return result

    # --- Error handling ---

    def on_error(self, listener: Callable[[HookError], Any]) -> Callable[[], None]:
        """Register an error listener. Returns unsubscribe function."""
        self._error_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

        return unsubscribe

    def _emit_error(self, error: HookError) -> None:
        for listener in self._error_listeners:
            with contextlib.suppress(Exception):
                listener(error)
