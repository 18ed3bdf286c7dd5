"""Conversation records seen by the context manager.

LLM records (user, assistant, tool result) plus the custom records the coding
agent injects into a conversation: bash executions, hook messages, and the
summary messages produced by compaction and branch summarization.

All types use Pydantic models with camelCase aliases for JSONL compatibility.
"""

from __future__ import annotations

import time
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

StopReason = Literal["stop", "length", "tool_use", "error", "aborted"]

COMPACTION_SUMMARY_PREFIX = (
    "The conversation history before this point was compacted into the following summary:\n\n<summary>\n"
)
COMPACTION_SUMMARY_SUFFIX = "\n</summary>"

BRANCH_SUMMARY_PREFIX = "The following is a summary of a branch that this conversation came back from:\n\n<summary>\n"
BRANCH_SUMMARY_SUFFIX = "</summary>"


def now_ms() -> int:
    """Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


# --- Content blocks ---


class TextContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["text"] = "text"
    text: str


class ThinkingContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["thinking"] = "thinking"
    thinking: str


class ImageContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["image"] = "image"
    data: str  # base64 encoded
    mime_type: str = Field(default="image/png", alias="mimeType")


class ToolCall(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class Usage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    input: int = 0
    output: int = 0
    cache_read: int = Field(default=0, alias="cacheRead")
    cache_write: int = Field(default=0, alias="cacheWrite")
    total_tokens: int = Field(default=0, alias="totalTokens")


UserContentItem = Annotated[TextContent | ImageContent, Field(discriminator="type")]
AssistantContentItem = Annotated[TextContent | ThinkingContent | ToolCall, Field(discriminator="type")]
ToolResultContentItem = Annotated[TextContent | ImageContent, Field(discriminator="type")]


# --- LLM messages ---


class UserMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Literal["user"] = "user"
    content: str | list[UserContentItem]
    timestamp: int = Field(default_factory=now_ms)


class AssistantMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Literal["assistant"] = "assistant"
    content: list[AssistantContentItem] = Field(default_factory=list)
    api: str = ""
    provider: str = ""
    model: str = ""
    usage: Usage = Field(default_factory=Usage)
    stop_reason: StopReason = Field(default="stop", alias="stopReason")
    error_message: str | None = Field(default=None, alias="errorMessage")
    timestamp: int = Field(default_factory=now_ms)


class ToolResultMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Literal["tool_result"] = "tool_result"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    content: list[ToolResultContentItem] = Field(default_factory=list)
    details: Any = None
    is_error: bool = Field(default=False, alias="isError")
    timestamp: int = Field(default_factory=now_ms)


LlmMessage = UserMessage | AssistantMessage | ToolResultMessage


# --- Custom agent messages ---


class BashExecutionMessage(BaseModel):
    """A shell command the user ran directly, outside of any tool call."""

    model_config = ConfigDict(populate_by_name=True)

    role: Literal["bash_execution"] = "bash_execution"
    command: str
    output: str = ""
    exit_code: int | None = Field(default=None, alias="exitCode")
    cancelled: bool = False
    truncated: bool = False
    full_output_path: str | None = Field(default=None, alias="fullOutputPath")
    timestamp: int = Field(default_factory=now_ms)


class CustomMessage(BaseModel):
    """Hook-injected message that participates in the LLM context."""

    model_config = ConfigDict(populate_by_name=True)

    role: Literal["custom"] = "custom"
    custom_type: str = Field(default="", alias="customType")
    content: str | list[UserContentItem] = ""
    display: bool = True
    details: Any = None
    timestamp: int = Field(default_factory=now_ms)


class BranchSummaryMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Literal["branch_summary"] = "branch_summary"
    summary: str
    from_id: str = Field(default="", alias="fromId")
    timestamp: int = Field(default_factory=now_ms)


class CompactionSummaryMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Literal["compaction_summary"] = "compaction_summary"
    summary: str
    tokens_before: int = Field(default=0, alias="tokensBefore")
    timestamp: int = Field(default_factory=now_ms)


AgentMessage = Annotated[
    UserMessage
    | AssistantMessage
    | ToolResultMessage
    | BashExecutionMessage
    | CustomMessage
    | BranchSummaryMessage
    | CompactionSummaryMessage,
    Field(discriminator="role"),
]


# --- Conversion ---


def content_text(content: str | list[Any]) -> str:
    """Concatenate the text blocks of a message content value."""
    if isinstance(content, str):
        return content
    return "".join(block.text for block in content if isinstance(block, TextContent))


def bash_execution_to_text(message: BashExecutionMessage) -> str:
    """Render a bash execution the way the model sees it."""
    text = f"Ran `{message.command}`\n"
    text += f"```\n{message.output}\n```" if message.output else "(no output)"
    if message.cancelled:
        text += "\n\n(command cancelled)"
    elif message.exit_code is not None and message.exit_code != 0:
        text += f"\n\nCommand exited with code {message.exit_code}"
    if message.truncated and message.full_output_path:
        text += f"\n\n[Output truncated. Full output: {message.full_output_path}]"
    return text


def convert_to_llm(messages: list[Any]) -> list[LlmMessage]:
    """Map agent messages onto the three roles an LLM understands."""
    output: list[LlmMessage] = []
    for message in messages:
        match message:
            case UserMessage() | AssistantMessage() | ToolResultMessage():
                output.append(message)
            case BashExecutionMessage():
                output.append(UserMessage(content=bash_execution_to_text(message), timestamp=message.timestamp))
            case CustomMessage():
                output.append(UserMessage(content=message.content, timestamp=message.timestamp))
            case BranchSummaryMessage():
                text = BRANCH_SUMMARY_PREFIX + message.summary + BRANCH_SUMMARY_SUFFIX
                output.append(UserMessage(content=text, timestamp=message.timestamp))
            case CompactionSummaryMessage():
                text = COMPACTION_SUMMARY_PREFIX + message.summary + COMPACTION_SUMMARY_SUFFIX
                output.append(UserMessage(content=text, timestamp=message.timestamp))
            case _:
                continue
    return output
