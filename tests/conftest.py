import asyncio
from typing import Any

import pytest
from pi.context.messages import AssistantMessage, TextContent, content_text
from pi.context.transport import Model


class FakeTransport:
    """Scripted transport that records every request."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.text = "Summary"
        self.prefix_text = "Prefix summary"
        self.stop_reason = "stop"
        self.error_message: str | None = None
        self.raise_error: Exception | None = None
        self.delay = 0.0
        self.on_call: Any = None
        self.in_flight = 0
        self.max_in_flight = 0
        self.completed = 0

    async def complete(
        self,
        model,
        system_prompt,
        messages,
        *,
        max_tokens,
        signal=None,
        api_key=None,
        reasoning=None,
    ):
        prompt = content_text(messages[0].content)
        self.calls.append(
            {
                "model": model.id,
                "system_prompt": system_prompt,
                "prompt": prompt,
                "max_tokens": max_tokens,
                "api_key": api_key,
                "reasoning": reasoning,
            }
        )
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_call is not None:
                self.on_call(prompt)
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.raise_error is not None:
                raise self.raise_error
            self.completed += 1
        finally:
            self.in_flight -= 1

        text = self.prefix_text if "PREFIX of a turn" in prompt else self.text
        return AssistantMessage(
            content=[TextContent(text=text)],
            stop_reason=self.stop_reason,
            error_message=self.error_message,
        )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def model() -> Model:
    return Model(id="test-model", name="Test Model", api="test-api", provider="test-provider", context_window=100000)
