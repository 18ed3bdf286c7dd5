"""Append-only session log with tree branching and optional JSONL persistence.

Entries are kept in an arena (a list) with an id -> index map; branches are
walked through parent ids, never through object references. Appending always
creates a child of the current leaf and moves the leaf to the new entry.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from pydantic import ValidationError

from pi.context.entries import (
    BranchSummaryEntry,
    CompactionEntry,
    CustomMessageEntry,
    LabelEntry,
    ModelChangeEntry,
    SessionEntry,
    SessionMessageEntry,
    ThinkingLevelChangeEntry,
    dump_entry,
    message_from_entry,
    parse_entry,
    timestamp_now,
)
from pi.context.messages import AssistantMessage

logger = logging.getLogger(__name__)

CURRENT_SESSION_VERSION = 3


class EntryStore(Protocol):
    """The part of a session log the reduction core depends on."""

    @property
    def leaf_id(self) -> str | None: ...

    def get_entry(self, entry_id: str) -> SessionEntry | None: ...

    def branch_entries(self, leaf_id: str | None = None) -> list[SessionEntry]: ...

    def append_compaction(
        self,
        summary: str,
        first_kept_entry_id: str,
        tokens_before: int,
        details: dict[str, Any] | None = None,
        from_hook: bool = False,
    ) -> str: ...

    def branch_with_summary(
        self,
        branch_from_id: str | None,
        summary: str,
        *,
        details: dict[str, Any] | None = None,
        from_hook: bool = False,
    ) -> str: ...

    def branch(self, branch_from_id: str) -> None: ...

    def reset_leaf(self) -> None: ...

    def build_session_context(self, leaf_id: str | None = None) -> SessionContext: ...


@dataclass
class SessionContext:
    """Resolved output from walking the session tree."""

    messages: list[Any] = field(default_factory=list)
    thinking_level: str = "off"
    model_id: str | None = None
    provider: str | None = None


def _generate_id(existing: dict[str, int]) -> str:
    """Generate a short collision-checked ID."""
    for _ in range(100):
        candidate = uuid4().hex[:8]
        if candidate not in existing:
            return candidate
    return uuid4().hex


class SessionLog:
    """Tree-structured session log.

    Use factory methods (in_memory, create, open) instead of calling the
    constructor directly.
    """

    def __init__(self, *, session_id: str, cwd: str, session_file: str | None = None) -> None:
        self._session_id = session_id
        self._cwd = cwd
        self._session_file = session_file
        self._entries: list[SessionEntry] = []
        self._index: dict[str, int] = {}
        self._labels_by_id: dict[str, str] = {}
        self._leaf_id: str | None = None

    # --- Factory methods ---

    @classmethod
    def in_memory(cls, cwd: str = "") -> SessionLog:
        """Create a session that is never written to disk."""
        return cls(session_id=uuid4().hex, cwd=cwd or os.getcwd())

    @classmethod
    def create(cls, path: str, cwd: str = "") -> SessionLog:
        """Create a new session file at ``path`` and write its header."""
        log = cls(session_id=uuid4().hex, cwd=cwd or os.getcwd(), session_file=path)
        header = {
            "type": "session",
            "version": CURRENT_SESSION_VERSION,
            "id": log.session_id,
            "timestamp": timestamp_now(),
            "cwd": log.cwd,
        }
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        Path(path).write_text(json.dumps(header, ensure_ascii=False) + "\n", encoding="utf-8")
        return log

    @classmethod
    def open(cls, path: str) -> SessionLog:
        """Load an existing session file. Malformed lines are skipped."""
        lines = Path(path).read_text(encoding="utf-8").splitlines()
        raw: list[dict[str, Any]] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                raw.append(json.loads(line))
            except json.JSONDecodeError:
                continue

        if not raw or raw[0].get("type") != "session":
            msg = f"Invalid or empty session file: {path}"
            raise ValueError(msg)

        header = raw[0]
        log = cls(session_id=header.get("id", uuid4().hex), cwd=header.get("cwd", ""), session_file=path)
        for data in raw[1:]:
            try:
                entry = parse_entry(data)
            except ValidationError:
                logger.warning("Skipping invalid entry in %s: %s", path, data.get("id"))
                continue
            log._insert(entry)
            log._leaf_id = entry.id
        return log

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def session_file(self) -> str | None:
        return self._session_file

    @property
    def cwd(self) -> str:
        return self._cwd

    @property
    def leaf_id(self) -> str | None:
        return self._leaf_id

    @property
    def entries(self) -> list[SessionEntry]:
        """All entries in append order, across every branch."""
        return list(self._entries)

    # --- Append ---

    def _insert(self, entry: SessionEntry) -> None:
        self._index[entry.id] = len(self._entries)
        self._entries.append(entry)
        if isinstance(entry, LabelEntry):
            self._labels_by_id[entry.target_id] = entry.label

    def _append(self, entry_cls: type[Any], **fields: Any) -> str:
        entry_id = _generate_id(self._index)
        entry = entry_cls(id=entry_id, parent_id=self._leaf_id, **fields)
        self._insert(entry)
        self._leaf_id = entry_id
        if self._session_file:
            with Path(self._session_file).open("a", encoding="utf-8") as f:
                f.write(json.dumps(dump_entry(entry), ensure_ascii=False) + "\n")
        return entry_id

    def append_message(self, message: Any) -> str:
        return self._append(SessionMessageEntry, message=message)

    def append_thinking_level_change(self, thinking_level: str) -> str:
        return self._append(ThinkingLevelChangeEntry, thinking_level=thinking_level)

    def append_model_change(self, model_id: str, provider: str) -> str:
        return self._append(ModelChangeEntry, model_id=model_id, provider=provider)

    def append_custom_message(
        self,
        custom_type: str,
        content: Any,
        display: bool = True,
        details: Any = None,
    ) -> str:
        return self._append(
            CustomMessageEntry,
            custom_type=custom_type,
            content=content,
            display=display,
            details=details,
        )

    def append_label(self, label: str, target_id: str) -> str:
        return self._append(LabelEntry, label=label, target_id=target_id)

    def append_compaction(
        self,
        summary: str,
        first_kept_entry_id: str,
        tokens_before: int,
        details: dict[str, Any] | None = None,
        from_hook: bool = False,
    ) -> str:
        """Append a compaction entry as a child of the current leaf."""
        return self._append(
            CompactionEntry,
            summary=summary,
            first_kept_entry_id=first_kept_entry_id,
            tokens_before=tokens_before,
            details=details,
            from_hook=from_hook,
        )

    # --- Tree operations ---

    def branch(self, branch_from_id: str) -> None:
        """Move the leaf to an existing entry; the next append branches from it."""
        if branch_from_id not in self._index:
            msg = f"Entry not found: {branch_from_id}"
            raise ValueError(msg)
        self._leaf_id = branch_from_id

    def reset_leaf(self) -> None:
        """Reset leaf to None, making the next append a new root."""
        self._leaf_id = None

    def branch_with_summary(
        self,
        branch_from_id: str | None,
        summary: str,
        *,
        details: dict[str, Any] | None = None,
        from_hook: bool = False,
    ) -> str:
        """Branch from an entry (or the root) and record what was left behind."""
        if branch_from_id is None:
            self.reset_leaf()
        else:
            self.branch(branch_from_id)
        return self._append(
            BranchSummaryEntry,
            summary=summary,
            from_id=branch_from_id or "root",
            details=details,
            from_hook=from_hook,
        )

    def get_entry(self, entry_id: str) -> SessionEntry | None:
        index = self._index.get(entry_id)
        return self._entries[index] if index is not None else None

    def get_label(self, entry_id: str) -> str | None:
        return self._labels_by_id.get(entry_id)

    def branch_entries(self, leaf_id: str | None = None) -> list[SessionEntry]:
        """Ordered path from the root to ``leaf_id`` (default: current leaf)."""
        path: list[SessionEntry] = []
        current = leaf_id if leaf_id is not None else self._leaf_id
        while current is not None:
            entry = self.get_entry(current)
            if entry is None:
                break
            path.append(entry)
            current = entry.parent_id
        path.reverse()
        return path

    # --- Context building ---

    def build_session_context(self, leaf_id: str | None = None) -> SessionContext:
        """Resolve the messages the model sees at a leaf.

        The latest compaction on the path replaces everything before its
        first kept entry with a summary message.
        """
        path = self.branch_entries(leaf_id)
        context = SessionContext()
        compaction: CompactionEntry | None = None

        for entry in path:
            match entry:
                case ThinkingLevelChangeEntry():
                    context.thinking_level = entry.thinking_level
                case ModelChangeEntry():
                    context.model_id, context.provider = entry.model_id, entry.provider
                case SessionMessageEntry(message=AssistantMessage() as assistant):
                    context.model_id, context.provider = assistant.model, assistant.provider
                case CompactionEntry():
                    compaction = entry
                case _:
                    pass

        if compaction is None:
            context.messages = [m for m in (message_from_entry(e) for e in path) if m is not None]
            return context

        context.messages.append(message_from_entry(compaction, include_compaction=True))
        compaction_index = next(i for i, e in enumerate(path) if e.id == compaction.id)
        found_first_kept = False
        for entry in path[:compaction_index]:
            if entry.id == compaction.first_kept_entry_id:
                found_first_kept = True
            if found_first_kept:
                message = message_from_entry(entry)
                if message is not None:
                    context.messages.append(message)
        for entry in path[compaction_index + 1 :]:
            message = message_from_entry(entry)
            if message is not None:
                context.messages.append(message)
        return context
