"""ContextSession orchestrator.

Wires together the session log, LLM transport, settings and hooks, and runs
context reductions (history compaction and branch summarization) against
them. Every collaborator is passed in explicitly through ContextSessionConfig.

At most one reduction runs per session at a time; a second request fails
fast with ReductionInProgressError instead of queueing.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pi.context.errors import ReductionInProgressError
from pi.context.session.compaction import SessionCompaction, is_context_overflow
from pi.context.session.events import AutoCompactionEndEvent, AutoCompactionStartEvent, ContextSessionEvent
from pi.context.session.navigation import NavigateTreeResult, SessionNavigation

if TYPE_CHECKING:
    import asyncio

    from pi.context.compaction import CompactionResult
    from pi.context.hooks import HookRunner
    from pi.context.messages import AssistantMessage
    from pi.context.settings import SettingsManager
    from pi.context.store import EntryStore
    from pi.context.transport import Model, Transport


EventListener = Callable[[ContextSessionEvent], None]
ApiKeyResolver = Callable[[str], str | None | Awaitable[str | None]]


@dataclass
class ContextSessionConfig:
    """Configuration for constructing a ContextSession."""

    store: EntryStore
    transport: Transport
    settings_manager: SettingsManager
    model: Model | None = None
    hooks: HookRunner | None = None
    get_api_key: ApiKeyResolver | None = None
    on_context_rebuilt: Callable[[list[Any]], None] | None = None


class ContextSession:
    """Context reduction orchestrator for one session log."""

    def __init__(self, config: ContextSessionConfig) -> None:
        self._store = config.store
        self._transport = config.transport
        self._settings_manager = config.settings_manager
        self._model = config.model
        self._hooks = config.hooks
        self._get_api_key_fn = config.get_api_key
        self._on_context_rebuilt = config.on_context_rebuilt

        self._event_listeners: list[EventListener] = []
        self._reduction_active = False
        self._messages: list[Any] = self._store.build_session_context().messages

        # Composition helpers
        self._compaction = SessionCompaction(self)
        self._navigation = SessionNavigation(self)

    # --- Properties ---

    @property
    def store(self) -> EntryStore:
        return self._store

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def settings_manager(self) -> SettingsManager:
        return self._settings_manager

    @property
    def hooks(self) -> HookRunner | None:
        return self._hooks

    @property
    def model(self) -> Model | None:
        return self._model

    @model.setter
    def model(self, value: Model | None) -> None:
        self._model = value

    @property
    def messages(self) -> list[Any]:
        """The context the model sees at the current leaf."""
        return list(self._messages)

    @property
    def is_compacting(self) -> bool:
        return self._compaction.is_compacting

    @property
    def is_summarizing_branch(self) -> bool:
        return self._navigation.is_summarizing_branch

    @property
    def is_reducing(self) -> bool:
        return self._reduction_active

    # --- Events ---

    def _emit_session_event(self, event: ContextSessionEvent) -> None:
        """Emit a ContextSession event to listeners."""
        for listener in list(self._event_listeners):
            listener(event)

    def subscribe(self, fn: EventListener) -> Callable[[], None]:
        """Subscribe to context session events. Returns unsubscribe function."""
        self._event_listeners.append(fn)

        def unsubscribe() -> None:
            if fn in self._event_listeners:
                self._event_listeners.remove(fn)

        return unsubscribe

    # --- Internals shared by the helpers ---

    @contextmanager
    def _reduction(self) -> Iterator[None]:
        if self._reduction_active:
            raise ReductionInProgressError("Another context reduction is already running")
        self._reduction_active = True
        try:
            yield
        finally:
            self._reduction_active = False

    def _rebuild_context(self) -> None:
        """Re-read the context view from the log after it changed."""
        self._messages = self._store.build_session_context().messages
        if self._on_context_rebuilt is not None:
            self._on_context_rebuilt(self.messages)

    async def _get_api_key(self, provider: str) -> str | None:
        """Get API key for a provider."""
        if self._get_api_key_fn is None:
            return None
        result = self._get_api_key_fn(provider)
        if inspect.isawaitable(result):
            return await result
        return result

    # --- Compaction (delegated) ---

    async def compact(self, custom_instructions: str | None = None) -> CompactionResult:
        return await self._compaction.compact(custom_instructions)

    def abort_compaction(self) -> None:
        self._compaction.abort_compaction()

    def check_compaction(self, assistant_message: AssistantMessage | None = None) -> asyncio.Task[Any] | None:
        return self._compaction.check_compaction(assistant_message)

    async def run_auto_compaction(self, reason: str, will_retry: bool = False) -> CompactionResult | None:
        return await self._compaction.run_auto_compaction(reason, will_retry)

    # --- Navigation (delegated) ---

    async def navigate_tree(
        self,
        target_id: str,
        summarize: bool = False,
        custom_instructions: str | None = None,
    ) -> NavigateTreeResult:
        return await self._navigation.navigate_tree(target_id, summarize, custom_instructions)

    def abort_branch_summary(self) -> None:
        self._navigation.abort_branch_summary()


__all__ = [
    "ApiKeyResolver",
    "AutoCompactionEndEvent",
    "AutoCompactionStartEvent",
    "ContextSession",
    "ContextSessionConfig",
    "ContextSessionEvent",
    "EventListener",
    "NavigateTreeResult",
    "is_context_overflow",
]
