"""Tests for file provenance tracking."""

from __future__ import annotations

from pi.context.compaction.file_ops import (
    FileOperations,
    compute_file_lists,
    create_file_ops,
    extract_file_ops_from_message,
    format_file_operations,
    seed_file_ops,
)
from pi.context.messages import AssistantMessage, TextContent, ToolCall, UserMessage


def _calls(*calls: tuple[str, dict]) -> AssistantMessage:
    return AssistantMessage(
        content=[ToolCall(id=f"t{i}", name=name, arguments=args) for i, (name, args) in enumerate(calls)],
    )


def test_extract_file_ops_by_tool_name():
    ops = create_file_ops()
    message = _calls(
        ("read", {"path": "/a.py"}),
        ("write", {"path": "/b.py", "content": "x"}),
        ("edit", {"path": "/c.py", "oldText": "a", "newText": "b"}),
        ("bash", {"command": "cat /d.py"}),
    )
    extract_file_ops_from_message(message, ops)
    assert ops.read == {"/a.py"}
    assert ops.written == {"/b.py"}
    assert ops.edited == {"/c.py"}


def test_extract_file_ops_ignores_non_assistant_and_text():
    ops = create_file_ops()
    extract_file_ops_from_message(UserMessage(content="read /a.py"), ops)
    extract_file_ops_from_message(AssistantMessage(content=[TextContent(text="edit /b.py")]), ops)
    extract_file_ops_from_message(_calls(("read", {}), ("edit", {"path": 3})), ops)
    assert ops == FileOperations()


def test_compute_file_lists_modified_wins():
    ops = FileOperations(read={"b.py", "a.py", "c.py"}, written={"c.py"}, edited={"b.py", "d.py"})
    read_only, modified = compute_file_lists(ops)
    assert read_only == ["a.py"]
    assert modified == ["b.py", "c.py", "d.py"]


def test_format_file_operations_empty():
    assert format_file_operations([], []) == ""


def test_format_file_operations_read_only():
    assert format_file_operations(["a.py"], []) == "\n\n<read-files>\na.py\n</read-files>"


def test_format_file_operations_both():
    text = format_file_operations(["a.py", "b.py"], ["c.py"])
    assert text == "\n\n<read-files>\na.py\nb.py\n</read-files>\n\n<modified-files>\nc.py\n</modified-files>"


def test_seed_file_ops_from_details():
    ops = create_file_ops()
    seed_file_ops(ops, {"readFiles": ["a.py"], "modifiedFiles": ["b.py"]})
    seed_file_ops(ops, None)
    seed_file_ops(ops, {"readFiles": None, "modifiedFiles": [7]})
    assert ops.read == {"a.py"}
    assert ops.edited == {"b.py"}
    assert compute_file_lists(ops) == (["a.py"], ["b.py"])
