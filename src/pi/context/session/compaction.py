"""Context session compaction helper.

Runs manual and automatic compaction against the session's log: plan,
consult hooks, summarize, re-validate the plan, append, rebuild the context.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any

from pi.context.compaction import (
    CompactionResult,
    compact,
    estimate_context_tokens,
    prepare_compaction,
    should_compact,
)
from pi.context.errors import (
    CompactionCancelledError,
    CompactionVetoedError,
    ContextError,
    NothingToCompactError,
    ReductionInProgressError,
    StaleCompactionError,
    is_expected_outcome,
)
from pi.context.hooks import SessionBeforeCompactEvent, SessionBeforeCompactResult, SessionCompactEvent
from pi.context.session.events import AutoCompactionEndEvent, AutoCompactionStartEvent

if TYPE_CHECKING:
    from pi.context.messages import AssistantMessage

logger = logging.getLogger(__name__)

# Provider errors that mean the prompt no longer fits the context window
_OVERFLOW_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"prompt is too long", re.IGNORECASE),
    re.compile(r"exceeds the model's maximum context", re.IGNORECASE),
    re.compile(r"maximum context length", re.IGNORECASE),
    re.compile(r"context_length_exceeded", re.IGNORECASE),
    re.compile(r"max_tokens.*exceeds.*model maximum", re.IGNORECASE),
    re.compile(r"exceeds the maximum number of tokens", re.IGNORECASE),
    re.compile(r"Request payload size exceeds the limit", re.IGNORECASE),
    re.compile(r"token limit", re.IGNORECASE),
    re.compile(r"too many tokens", re.IGNORECASE),
    re.compile(r"rate_limit_exceeded.*tokens", re.IGNORECASE),
    re.compile(r"context window", re.IGNORECASE),
    re.compile(r"input.*too long", re.IGNORECASE),
]


def is_context_overflow(message: AssistantMessage) -> bool:
    """Check if an assistant message reports a context overflow.

    Some providers drop the stream on overflow, so aborted responses that
    carry a matching error count too.
    """
    if message.stop_reason not in ("error", "aborted") or not message.error_message:
        return False
    return any(pattern.search(message.error_message) for pattern in _OVERFLOW_PATTERNS)


class SessionCompaction:
    """Compaction management for ContextSession.

    Uses composition: takes a reference to the parent session.
    """

    def __init__(self, session: Any) -> None:
        self._session = session

        # Abort signals
        self._compaction_abort: asyncio.Event | None = None
        self._auto_compaction_abort: asyncio.Event | None = None

        self._is_compacting = False

    @property
    def is_compacting(self) -> bool:
        return self._is_compacting

    async def compact(self, custom_instructions: str | None = None) -> CompactionResult:
        """Run a manual compaction.

        Raises NothingToCompactError when compaction is disabled or the branch
        was just compacted.
        """
        session = self._session
        with session._reduction():
            self._compaction_abort = asyncio.Event()
            try:
                return await self._run(custom_instructions, self._compaction_abort)
            finally:
                self._compaction_abort = None

    def abort_compaction(self) -> None:
        """Cancel an in-progress compaction."""
        if self._compaction_abort:
            self._compaction_abort.set()
        if self._auto_compaction_abort:
            self._auto_compaction_abort.set()

    def check_compaction(self, assistant_message: AssistantMessage | None = None) -> asyncio.Task[Any] | None:
        """Schedule auto-compaction if the last response calls for it.

        Two cases:
        1. Overflow: the model reported a context overflow, compact and retry
        2. Threshold: context tokens exceed the window minus the reserve

        Returns the scheduled task, or None when nothing was scheduled.
        """
        session = self._session
        model = session.model
        if model is None or not model.context_window:
            return None

        settings = session.settings_manager.get_compaction_settings()
        if not settings.enabled or session.is_reducing:
            return None

        if assistant_message is not None and is_context_overflow(assistant_message):
            return asyncio.ensure_future(self.run_auto_compaction("overflow", will_retry=True))
        if assistant_message is not None and assistant_message.stop_reason == "aborted":
            return None

        estimate = estimate_context_tokens(session.messages)
        if should_compact(estimate.tokens, model.context_window, settings):
            return asyncio.ensure_future(self.run_auto_compaction("threshold", will_retry=False))
        return None

    async def run_auto_compaction(self, reason: str, will_retry: bool) -> CompactionResult | None:
        """Execute auto-compaction, reporting the outcome through session events.

        Never raises for reduction outcomes; failures are logged and carried
        on the end event. Returns None without any events when another
        reduction already holds the session.
        """
        session = self._session
        if not session.settings_manager.get_compaction_enabled():
            return None

        try:
            with session._reduction():
                self._auto_compaction_abort = asyncio.Event()
                session._emit_session_event(AutoCompactionStartEvent(reason=reason))
                try:
                    result = await self._run(None, self._auto_compaction_abort)
                finally:
                    self._auto_compaction_abort = None
        except ReductionInProgressError:
            logger.debug("Auto-compaction skipped: another reduction is running")
            return None
        except ContextError as e:
            if isinstance(e, CompactionCancelledError):
                session._emit_session_event(AutoCompactionEndEvent(aborted=True))
            elif is_expected_outcome(e):
                logger.debug("Auto-compaction skipped: %s", e)
                session._emit_session_event(AutoCompactionEndEvent())
            else:
                logger.exception("Auto-compaction failed")
                session._emit_session_event(AutoCompactionEndEvent(error_message=str(e)))
            return None

        session._emit_session_event(AutoCompactionEndEvent(result=result, will_retry=will_retry))
        return result

    # --- Internals ---

    async def _run(self, custom_instructions: str | None, signal: asyncio.Event) -> CompactionResult:
        session = self._session
        store = session.store

        settings = session.settings_manager.get_compaction_settings()
        if not settings.enabled:
            raise NothingToCompactError("Compaction is disabled")
        model = session.model
        if model is None:
            raise ContextError("No model configured")

        self._is_compacting = True
        try:
            planned_leaf_id = store.leaf_id
            branch = store.branch_entries()
            preparation = prepare_compaction(branch, settings)
            if preparation is None:
                raise NothingToCompactError("Nothing to compact (session just compacted)")

            hook_compaction: CompactionResult | None = None
            hooks = session.hooks
            if hooks is not None and hooks.has_handlers("session_before_compact"):
                outcome = await hooks.emit(
                    SessionBeforeCompactEvent(
                        preparation=preparation,
                        branch_entries=branch,
                        custom_instructions=custom_instructions,
                        signal=signal,
                    )
                )
                if isinstance(outcome, SessionBeforeCompactResult):
                    if outcome.cancel:
                        raise CompactionVetoedError("Compaction cancelled by hook")
                    hook_compaction = outcome.compaction

            from_hook = hook_compaction is not None
            if hook_compaction is not None:
                result = hook_compaction
            else:
                api_key = await session._get_api_key(model.provider)
                result = await compact(
                    preparation,
                    model,
                    session.transport,
                    api_key=api_key,
                    custom_instructions=custom_instructions,
                    signal=signal,
                )

            if signal.is_set():
                raise CompactionCancelledError("Compaction cancelled")
            self._validate_plan(result.first_kept_entry_id, planned_leaf_id)

            entry_id = store.append_compaction(
                result.summary,
                result.first_kept_entry_id,
                result.tokens_before,
                result.details.to_dict() if result.details else None,
                from_hook,
            )
            logger.info(
                "Compacted session: first kept entry %s, %d tokens before%s",
                result.first_kept_entry_id,
                result.tokens_before,
                " (from hook)" if from_hook else "",
            )

            session._rebuild_context()

            if hooks is not None:
                await hooks.emit(SessionCompactEvent(compaction_entry=store.get_entry(entry_id), from_hook=from_hook))

            return result
        finally:
            self._is_compacting = False

    def _validate_plan(self, first_kept_entry_id: str, planned_leaf_id: str | None) -> None:
        """Refuse to append if the branch no longer contains the plan's anchors.

        New entries appended on top of the planned leaf are fine; switching to
        another branch while summarizing is not.
        """
        current_ids = {entry.id for entry in self._session.store.branch_entries()}
        if planned_leaf_id is not None and planned_leaf_id not in current_ids:
            raise StaleCompactionError(
                "Session branch changed during compaction",
                details={"planned_leaf_id": planned_leaf_id},
            )
        if first_kept_entry_id not in current_ids:
            raise StaleCompactionError(
                "First kept entry is not on the current branch",
                details={"first_kept_entry_id": first_kept_entry_id},
            )
