"""Tests for conversation records and session log entries."""

from __future__ import annotations

from pi.context.entries import (
    BranchSummaryEntry,
    CompactionEntry,
    CustomMessageEntry,
    ModelChangeEntry,
    SessionMessageEntry,
    dump_entry,
    message_from_entry,
    parse_entry,
)
from pi.context.messages import (
    BRANCH_SUMMARY_PREFIX,
    COMPACTION_SUMMARY_PREFIX,
    AssistantMessage,
    BashExecutionMessage,
    BranchSummaryMessage,
    CompactionSummaryMessage,
    CustomMessage,
    ImageContent,
    TextContent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
    bash_execution_to_text,
    content_text,
    convert_to_llm,
)

# --- Parsing ---


def test_parse_compaction_entry_camel_case():
    entry = parse_entry(
        {
            "type": "compaction",
            "id": "c1",
            "parentId": "a1",
            "timestamp": "2026-01-01T00:00:00+00:00",
            "summary": "Did things",
            "firstKeptEntryId": "u2",
            "tokensBefore": 1234,
            "details": {"readFiles": ["a.py"], "modifiedFiles": []},
            "fromHook": True,
        }
    )
    assert isinstance(entry, CompactionEntry)
    assert entry.parent_id == "a1"
    assert entry.first_kept_entry_id == "u2"
    assert entry.tokens_before == 1234
    assert entry.from_hook is True


def test_parse_message_entry_dispatches_on_role():
    entry = parse_entry(
        {
            "type": "message",
            "id": "a1",
            "message": {
                "role": "assistant",
                "content": [{"type": "tool_call", "id": "t1", "name": "read", "arguments": {"path": "a.py"}}],
                "stopReason": "tool_use",
            },
        }
    )
    assert isinstance(entry, SessionMessageEntry)
    assert isinstance(entry.message, AssistantMessage)
    assert entry.message.stop_reason == "tool_use"
    assert isinstance(entry.message.content[0], ToolCall)


def test_parse_tool_result_and_bash_roles():
    tool = parse_entry(
        {
            "type": "message",
            "id": "t1",
            "message": {"role": "tool_result", "toolCallId": "c1", "toolName": "read", "content": []},
        }
    )
    bash = parse_entry({"type": "message", "id": "b1", "message": {"role": "bash_execution", "command": "ls"}})
    assert isinstance(tool.message, ToolResultMessage)
    assert tool.message.tool_call_id == "c1"
    assert isinstance(bash.message, BashExecutionMessage)


def test_dump_entry_uses_aliases_and_drops_none():
    entry = BranchSummaryEntry(id="b1", parent_id=None, summary="left behind", from_id="x")
    data = dump_entry(entry)
    assert data["type"] == "branch_summary"
    assert data["fromId"] == "x"
    assert data["fromHook"] is False
    assert "parentId" not in data
    assert "details" not in data


def test_dump_then_parse_preserves_entry():
    entry = SessionMessageEntry(id="u1", parent_id="root", message=UserMessage(content="hi"))
    restored = parse_entry(dump_entry(entry))
    assert isinstance(restored, SessionMessageEntry)
    assert dump_entry(restored) == dump_entry(entry)


# --- message_from_entry ---


def test_message_from_entry_message():
    message = UserMessage(content="hello")
    assert message_from_entry(SessionMessageEntry(id="u1", message=message)) is message


def test_message_from_entry_custom_message():
    entry = CustomMessageEntry(id="c1", custom_type="note", content="remember this", display=False)
    message = message_from_entry(entry)
    assert isinstance(message, CustomMessage)
    assert message.custom_type == "note"
    assert message.content == "remember this"
    assert message.display is False


def test_message_from_entry_branch_summary():
    message = message_from_entry(BranchSummaryEntry(id="b1", summary="tried X", from_id="a1"))
    assert isinstance(message, BranchSummaryMessage)
    assert message.summary == "tried X"
    assert message.from_id == "a1"


def test_message_from_entry_compaction_only_on_request():
    entry = CompactionEntry(id="c1", summary="S", first_kept_entry_id="u1", tokens_before=10)
    assert message_from_entry(entry) is None
    message = message_from_entry(entry, include_compaction=True)
    assert isinstance(message, CompactionSummaryMessage)
    assert message.tokens_before == 10


def test_message_from_entry_metadata_is_none():
    assert message_from_entry(ModelChangeEntry(id="m1", model_id="m", provider="p")) is None


# --- Conversion ---


def test_content_text():
    assert content_text("plain") == "plain"
    blocks = [TextContent(text="a"), ImageContent(data="xx"), TextContent(text="b")]
    assert content_text(blocks) == "ab"


def test_bash_execution_to_text():
    text = bash_execution_to_text(BashExecutionMessage(command="ls", output="a.py", exit_code=2))
    assert text.startswith("Ran `ls`\n```\na.py\n```")
    assert "Command exited with code 2" in text


def test_bash_execution_to_text_cancelled_without_output():
    text = bash_execution_to_text(BashExecutionMessage(command="sleep 10", cancelled=True))
    assert "(no output)" in text
    assert "(command cancelled)" in text


def test_convert_to_llm_maps_custom_records_to_user():
    messages = [
        UserMessage(content="q"),
        AssistantMessage(content=[TextContent(text="a")]),
        BashExecutionMessage(command="pwd", output="/tmp"),
        CustomMessage(custom_type="note", content="hook text"),
        BranchSummaryMessage(summary="branch"),
        CompactionSummaryMessage(summary="history"),
    ]
    llm = convert_to_llm(messages)
    assert [m.role for m in llm] == ["user", "assistant", "user", "user", "user", "user"]
    assert llm[2].content.startswith("Ran `pwd`")
    assert llm[3].content == "hook text"
    assert llm[4].content.startswith(BRANCH_SUMMARY_PREFIX)
    assert llm[5].content.startswith(COMPACTION_SUMMARY_PREFIX)
    assert "history" in llm[5].content
