"""LLM transport boundary.

The context manager never talks to a provider directly; it is handed a
``Transport`` that turns a system prompt and a list of messages into a final
assistant message.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

from pi.context.messages import AssistantMessage, TextContent

if TYPE_CHECKING:
    import asyncio

    from pi.context.messages import LlmMessage

ReasoningEffort = Literal["minimal", "low", "medium", "high", "xhigh"]


class Model(BaseModel):
    """Model definition as far as summarization needs it."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    api: str = ""
    provider: str
    reasoning: bool = False
    context_window: int = Field(default=0, alias="contextWindow")
    max_tokens: int = Field(default=0, alias="maxTokens")


class Transport(Protocol):
    async def complete(
        self,
        model: Model,
        system_prompt: str,
        messages: list[LlmMessage],
        *,
        max_tokens: int,
        signal: asyncio.Event | None = None,
        api_key: str | None = None,
        reasoning: ReasoningEffort | None = None,
    ) -> AssistantMessage:
        """Run one completion and return the final assistant message.

        Errors reported by the provider come back as ``stop_reason="error"``
        with ``error_message`` set; a request interrupted through ``signal``
        comes back with ``stop_reason="aborted"``.
        """
        ...


def extract_text(message: AssistantMessage) -> str:
    """Join the text blocks of an assistant response."""
    return "\n".join(block.text for block in message.content if isinstance(block, TextContent))
