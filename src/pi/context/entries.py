"""Session log entry types.

Entries form a tree via parent_id references. Each line of a session JSONL
file is one of these entries; the ``type`` field selects the variant.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from pi.context.messages import (
    AgentMessage,
    BranchSummaryMessage,
    CompactionSummaryMessage,
    CustomMessage,
    UserContentItem,
)


def timestamp_now() -> str:
    """ISO timestamp string for entry timestamps."""
    return datetime.now(UTC).isoformat()


def parse_timestamp_ms(value: str) -> int:
    """Convert an ISO entry timestamp to unix milliseconds (now if unparseable)."""
    try:
        return int(datetime.fromisoformat(value).timestamp() * 1000)
    except ValueError:
        return int(datetime.now(UTC).timestamp() * 1000)


class SessionEntryBase(BaseModel):
    """Common fields for all session entries."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    parent_id: str | None = Field(default=None, alias="parentId")
    timestamp: str = Field(default_factory=timestamp_now)


class SessionMessageEntry(SessionEntryBase):
    """Wraps an agent message in the session."""

    type: Literal["message"] = "message"
    message: AgentMessage


class ThinkingLevelChangeEntry(SessionEntryBase):
    type: Literal["thinking_level_change"] = "thinking_level_change"
    thinking_level: str = Field(alias="thinkingLevel")


class ModelChangeEntry(SessionEntryBase):
    type: Literal["model_change"] = "model_change"
    model_id: str = Field(alias="modelId")
    provider: str


class CompactionEntry(SessionEntryBase):
    """Summary that replaces every entry before ``first_kept_entry_id``."""

    type: Literal["compaction"] = "compaction"
    summary: str
    first_kept_entry_id: str = Field(alias="firstKeptEntryId")
    tokens_before: int = Field(default=0, alias="tokensBefore")
    details: dict[str, Any] | None = None
    from_hook: bool = Field(default=False, alias="fromHook")


class BranchSummaryEntry(SessionEntryBase):
    """Summary of an abandoned branch path."""

    type: Literal["branch_summary"] = "branch_summary"
    summary: str
    from_id: str = Field(default="", alias="fromId")
    details: dict[str, Any] | None = None
    from_hook: bool = Field(default=False, alias="fromHook")


class CustomMessageEntry(SessionEntryBase):
    """Hook messages that participate in LLM context."""

    type: Literal["custom_message"] = "custom_message"
    custom_type: str = Field(default="", alias="customType")
    content: str | list[UserContentItem] = ""
    display: bool = True
    details: Any = None


class CustomEntry(SessionEntryBase):
    """Hook-specific data. NOT included in LLM context."""

    type: Literal["custom"] = "custom"
    custom_type: str = Field(default="", alias="customType")
    data: Any = None


class LabelEntry(SessionEntryBase):
    """User-defined bookmark on an entry."""

    type: Literal["label"] = "label"
    label: str
    target_id: str = Field(alias="targetId")


SessionEntry = Annotated[
    SessionMessageEntry
    | ThinkingLevelChangeEntry
    | ModelChangeEntry
    | CompactionEntry
    | BranchSummaryEntry
    | CustomMessageEntry
    | CustomEntry
    | LabelEntry,
    Field(discriminator="type"),
]

_entry_adapter: TypeAdapter[Any] = TypeAdapter(SessionEntry)


def parse_entry(data: dict[str, Any]) -> SessionEntry:
    """Validate a raw entry dict into its typed variant."""
    return _entry_adapter.validate_python(data)


def dump_entry(entry: SessionEntryBase) -> dict[str, Any]:
    """Serialize an entry with camelCase keys for JSONL."""
    return entry.model_dump(by_alias=True, exclude_none=True, mode="json")


def message_from_entry(entry: SessionEntryBase, *, include_compaction: bool = False) -> Any:
    """Return the agent message an entry contributes to context, or None.

    Compaction entries are only turned into summary messages on request;
    during compaction they mark boundaries instead of carrying content.
    """
    match entry:
        case SessionMessageEntry():
            return entry.message
        case CustomMessageEntry():
            return CustomMessage(
                custom_type=entry.custom_type,
                content=entry.content,
                display=entry.display,
                details=entry.details,
                timestamp=parse_timestamp_ms(entry.timestamp),
            )
        case BranchSummaryEntry():
            return BranchSummaryMessage(
                summary=entry.summary,
                from_id=entry.from_id,
                timestamp=parse_timestamp_ms(entry.timestamp),
            )
        case CompactionEntry() if include_compaction:
            return CompactionSummaryMessage(
                summary=entry.summary,
                tokens_before=entry.tokens_before,
                timestamp=parse_timestamp_ms(entry.timestamp),
            )
        case _:
            return None
