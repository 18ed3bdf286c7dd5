"""Context session tree navigation helper.

Moves the session leaf to another entry of the tree, optionally leaving a
summary of the abandoned branch behind.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pi.context.compaction import (
    GenerateBranchSummaryOptions,
    collect_entries_for_branch_summary,
    generate_branch_summary,
)
from pi.context.compaction.file_ops import file_ops_details
from pi.context.entries import CustomMessageEntry, SessionMessageEntry
from pi.context.errors import ContextError, SummarizationFailedError
from pi.context.hooks import (
    SessionBeforeTreeEvent,
    SessionBeforeTreeResult,
    SessionTreeEvent,
    TreePreparation,
)
from pi.context.messages import UserMessage, content_text

if TYPE_CHECKING:
    from pi.context.entries import BranchSummaryEntry, SessionEntryBase
    from pi.context.hooks import HookBranchSummary

logger = logging.getLogger(__name__)


@dataclass
class NavigateTreeResult:
    """Outcome of a tree navigation.

    ``editor_text`` carries the text of a user or custom message that was
    navigated to, so it can be edited and re-sent.
    """

    editor_text: str | None = None
    cancelled: bool = False
    aborted: bool = False
    summary_entry: BranchSummaryEntry | None = None


class SessionNavigation:
    """Tree navigation for ContextSession.

    Uses composition: takes a reference to the parent session.
    """

    def __init__(self, session: Any) -> None:
        self._session = session
        self._branch_summary_abort: asyncio.Event | None = None

    @property
    def is_summarizing_branch(self) -> bool:
        return self._branch_summary_abort is not None

    def abort_branch_summary(self) -> None:
        """Cancel an in-progress branch summarization."""
        if self._branch_summary_abort:
            self._branch_summary_abort.set()

    async def navigate_tree(
        self,
        target_id: str,
        summarize: bool = False,
        custom_instructions: str | None = None,
    ) -> NavigateTreeResult:
        """Move the session to ``target_id``.

        Navigating to a user or custom message moves the leaf to its parent
        and returns the message text as ``editor_text``; any other target
        becomes the new leaf itself.
        """
        session = self._session
        store = session.store

        old_leaf_id = store.leaf_id
        if target_id == old_leaf_id:
            return NavigateTreeResult()

        target = store.get_entry(target_id)
        if target is None:
            logger.warning("Cannot navigate to unknown entry %s", target_id)
            return NavigateTreeResult(cancelled=True)

        with session._reduction():
            self._branch_summary_abort = asyncio.Event()
            try:
                return await self._navigate(target, old_leaf_id, summarize, custom_instructions)
            finally:
                self._branch_summary_abort = None

    async def _navigate(
        self,
        target: SessionEntryBase,
        old_leaf_id: str | None,
        summarize: bool,
        custom_instructions: str | None,
    ) -> NavigateTreeResult:
        session = self._session
        store = session.store
        signal = self._branch_summary_abort

        collected = collect_entries_for_branch_summary(store, old_leaf_id, target.id)

        hook_summary: HookBranchSummary | None = None
        hooks = session.hooks
        if hooks is not None and hooks.has_handlers("session_before_tree"):
            preparation = TreePreparation(
                target_id=target.id,
                old_leaf_id=old_leaf_id,
                common_ancestor_id=collected.common_ancestor_id,
                entries_to_summarize=collected.entries,
                user_wants_summary=summarize,
                custom_instructions=custom_instructions,
            )
            outcome = await hooks.emit(SessionBeforeTreeEvent(preparation=preparation, signal=signal))
            if isinstance(outcome, SessionBeforeTreeResult):
                if outcome.cancel:
                    return NavigateTreeResult(cancelled=True)
                hook_summary = outcome.summary

        summary_text: str | None = None
        summary_details: dict[str, Any] | None = None
        from_hook = hook_summary is not None
        if hook_summary is not None:
            summary_text, summary_details = hook_summary.summary, hook_summary.details
        elif summarize and collected.entries:
            model = session.model
            if model is None:
                raise ContextError("No model configured")
            result = await generate_branch_summary(
                collected.entries,
                GenerateBranchSummaryOptions(
                    model=model,
                    transport=session.transport,
                    api_key=await session._get_api_key(model.provider),
                    signal=signal,
                    custom_instructions=custom_instructions,
                    reserve_tokens=session.settings_manager.get_branch_summary_settings().reserve_tokens,
                ),
            )
            if result.aborted:
                return NavigateTreeResult(cancelled=True, aborted=True)
            if result.error is not None:
                raise SummarizationFailedError(result.error)
            summary_text = result.summary
            summary_details = file_ops_details(result.read_files, result.modified_files)

        editor_text: str | None = None
        match target:
            case SessionMessageEntry(message=UserMessage() as user):
                new_leaf_id = target.parent_id
                editor_text = content_text(user.content)
            case CustomMessageEntry():
                new_leaf_id = target.parent_id
                editor_text = content_text(target.content)
            case _:
                new_leaf_id = target.id

        summary_entry: BranchSummaryEntry | None = None
        if summary_text is not None:
            entry_id = store.branch_with_summary(
                new_leaf_id,
                summary_text,
                details=summary_details,
                from_hook=from_hook,
            )
            summary_entry = store.get_entry(entry_id)
            logger.info("Summarized %d abandoned entries into %s", len(collected.entries), entry_id)
        elif new_leaf_id is None:
            store.reset_leaf()
        else:
            store.branch(new_leaf_id)

        session._rebuild_context()

        if hooks is not None:
            await hooks.emit(
                SessionTreeEvent(
                    new_leaf_id=store.leaf_id,
                    old_leaf_id=old_leaf_id,
                    summary_entry=summary_entry,
                    from_hook=from_hook,
                )
            )

        return NavigateTreeResult(editor_text=editor_text, summary_entry=summary_entry)
