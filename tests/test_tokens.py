"""Tests for token estimation and compaction thresholds."""

from __future__ import annotations

from pi.context.compaction.tokens import (
    IMAGE_ESTIMATED_CHARS,
    calculate_context_tokens,
    estimate_context_tokens,
    estimate_entry_tokens,
    estimate_tokens,
    get_last_assistant_usage,
    should_compact,
)
from pi.context.entries import CompactionEntry, CustomMessageEntry, ModelChangeEntry, SessionMessageEntry
from pi.context.messages import (
    AssistantMessage,
    BashExecutionMessage,
    BranchSummaryMessage,
    ImageContent,
    TextContent,
    ThinkingContent,
    ToolCall,
    ToolResultMessage,
    Usage,
    UserMessage,
)
from pi.context.settings import CompactionSettings


def _assistant_with_usage(usage: Usage, stop_reason: str = "stop") -> AssistantMessage:
    return AssistantMessage(content=[TextContent(text="ok")], usage=usage, stop_reason=stop_reason)


# --- Per-message estimates ---


def test_estimate_tokens_rounds_up():
    assert estimate_tokens(UserMessage(content="Hello, world!")) == 4  # ceil(13 / 4)
    assert estimate_tokens(UserMessage(content="abcd")) == 1


def test_estimate_tokens_empty():
    assert estimate_tokens(UserMessage(content="")) == 0
    assert estimate_tokens(AssistantMessage()) == 0


def test_estimate_tokens_text_and_thinking():
    message = AssistantMessage(
        content=[TextContent(text="This is a response."), ThinkingContent(thinking="Let me think.")],
    )
    assert estimate_tokens(message) == 8  # ceil((19 + 13) / 4)


def test_estimate_tokens_tool_call_counts_name_and_arguments():
    message = AssistantMessage(content=[ToolCall(id="t1", name="read", arguments={"path": "/a.py"})])
    # "read" + "path=/a.py"
    assert estimate_tokens(message) == 4


def test_estimate_tokens_image():
    message = UserMessage(content=[ImageContent(data="base64...")])
    assert estimate_tokens(message) == IMAGE_ESTIMATED_CHARS // 4


def test_estimate_tokens_tool_result():
    message = ToolResultMessage(tool_call_id="t1", tool_name="read", content=[TextContent(text="x" * 40)])
    assert estimate_tokens(message) == 10


def test_estimate_tokens_bash_and_summaries():
    assert estimate_tokens(BashExecutionMessage(command="ls", output="a\nb")) == 2  # ceil(5 / 4)
    assert estimate_tokens(BranchSummaryMessage(summary="x" * 9)) == 3


def test_estimate_entry_tokens():
    message_entry = SessionMessageEntry(id="u1", message=UserMessage(content="x" * 8))
    custom_entry = CustomMessageEntry(id="c1", custom_type="note", content="x" * 12)
    compaction = CompactionEntry(id="c2", summary="x" * 16, first_kept_entry_id="u1")
    assert estimate_entry_tokens(message_entry) == 2
    assert estimate_entry_tokens(custom_entry) == 3
    assert estimate_entry_tokens(compaction) == 4
    assert estimate_entry_tokens(ModelChangeEntry(id="m1", model_id="m", provider="p")) == 0


# --- Usage ---


def test_calculate_context_tokens_prefers_total():
    assert calculate_context_tokens(Usage(input=10, output=5, total_tokens=100)) == 100
    assert calculate_context_tokens(Usage(input=10, output=5, cache_read=3, cache_write=2)) == 20


def test_get_last_assistant_usage_skips_aborted_and_error():
    good = _assistant_with_usage(Usage(input=50))
    entries = [
        SessionMessageEntry(id="a1", message=good),
        SessionMessageEntry(id="a2", message=_assistant_with_usage(Usage(input=99), stop_reason="aborted")),
        SessionMessageEntry(id="a3", message=_assistant_with_usage(Usage(input=98), stop_reason="error")),
        SessionMessageEntry(id="u1", message=UserMessage(content="next")),
    ]
    assert get_last_assistant_usage(entries) == good.usage
    assert get_last_assistant_usage(entries[1:]) is None


def test_estimate_context_tokens_with_usage_and_trailing():
    messages = [
        UserMessage(content="x" * 400),
        _assistant_with_usage(Usage(total_tokens=1000)),
        UserMessage(content="x" * 40),
    ]
    estimate = estimate_context_tokens(messages)
    assert estimate.usage_tokens == 1000
    assert estimate.trailing_tokens == 10
    assert estimate.tokens == 1010
    assert estimate.last_usage_index == 1


def test_estimate_context_tokens_without_usage():
    estimate = estimate_context_tokens([UserMessage(content="x" * 40), UserMessage(content="x" * 8)])
    assert estimate.tokens == 12
    assert estimate.last_usage_index is None


# --- Threshold ---


def test_should_compact():
    settings = CompactionSettings(reserve_tokens=1000)
    assert should_compact(9001, 10000, settings) is True
    assert should_compact(9000, 10000, settings) is False


def test_should_compact_disabled_or_unknown_window():
    assert should_compact(99999, 10000, CompactionSettings(enabled=False)) is False
    assert should_compact(99999, 0, CompactionSettings()) is False
