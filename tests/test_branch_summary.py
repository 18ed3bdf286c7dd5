"""Tests for abandoned-branch collection and summarization."""

from __future__ import annotations

import asyncio

import pytest
from pi.context.compaction.branch_summary import (
    GenerateBranchSummaryOptions,
    collect_entries_for_branch_summary,
    generate_branch_summary,
    prepare_branch_entries,
)
from pi.context.compaction.prompts import BRANCH_SUMMARY_PROMPT
from pi.context.messages import (
    AssistantMessage,
    BranchSummaryMessage,
    TextContent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)
from pi.context.store import SessionLog


def _user(text: str = "hello") -> UserMessage:
    return UserMessage(content=text)


def _assistant(text: str = "ok") -> AssistantMessage:
    return AssistantMessage(content=[TextContent(text=text)])


def _tool_call(call_id: str, name: str, path: str) -> AssistantMessage:
    return AssistantMessage(
        content=[ToolCall(id=call_id, name=name, arguments={"path": path})],
        stop_reason="tool_use",
    )


def _tool_result(call_id: str, text: str = "file contents") -> ToolResultMessage:
    return ToolResultMessage(tool_call_id=call_id, tool_name="read", content=[TextContent(text=text)])


def _forked_log():
    """root u1 - a1, then two branches: u2 - a2 (abandoned) and u3 (target)."""
    log = SessionLog.in_memory("/tmp")
    u1 = log.append_message(_user("start"))
    a1 = log.append_message(_assistant("started"))
    u2 = log.append_message(_user("try A"))
    a2 = log.append_message(_assistant("did A"))
    log.branch(a1)
    u3 = log.append_message(_user("try B"))
    log.branch(a2)
    return log, {"u1": u1, "a1": a1, "u2": u2, "a2": a2, "u3": u3}


# --- Collection ---


def test_collect_entries_stops_at_common_ancestor():
    log, ids = _forked_log()
    result = collect_entries_for_branch_summary(log, ids["a2"], ids["u3"])
    assert result.common_ancestor_id == ids["a1"]
    assert [e.id for e in result.entries] == [ids["u2"], ids["a2"]]


def test_collect_entries_target_is_ancestor():
    log, ids = _forked_log()
    result = collect_entries_for_branch_summary(log, ids["a2"], ids["u1"])
    assert result.common_ancestor_id == ids["u1"]
    assert [e.id for e in result.entries] == [ids["a1"], ids["u2"], ids["a2"]]


def test_collect_entries_unrelated_root():
    log, ids = _forked_log()
    log.reset_leaf()
    other_root = log.append_message(_user("separate tree"))
    result = collect_entries_for_branch_summary(log, ids["a2"], other_root)
    assert result.common_ancestor_id is None
    assert [e.id for e in result.entries] == [ids["u1"], ids["a1"], ids["u2"], ids["a2"]]


def test_collect_entries_without_old_leaf():
    log, ids = _forked_log()
    result = collect_entries_for_branch_summary(log, None, ids["u3"])
    assert result.entries == []
    assert result.common_ancestor_id is None


# --- Preparation ---


def test_prepare_branch_entries_drops_tool_results_but_tracks_files():
    log = SessionLog.in_memory("/tmp")
    log.append_message(_user("read it"))
    log.append_message(_tool_call("t1", "read", "a.py"))
    log.append_message(_tool_result("t1"))
    log.append_message(_tool_call("t2", "write", "b.py"))
    log.append_message(_assistant("done"))

    preparation = prepare_branch_entries(log.branch_entries())
    assert [m.role for m in preparation.messages] == ["user", "assistant", "assistant", "assistant"]
    assert preparation.file_ops.read == {"a.py"}
    assert preparation.file_ops.written == {"b.py"}


def test_prepare_branch_entries_keeps_newest_within_budget():
    log = SessionLog.in_memory("/tmp")
    log.append_message(_tool_call("t1", "edit", "old.py"))
    for i in range(4):
        log.append_message(_user(f"{i}" * 400))

    preparation = prepare_branch_entries(log.branch_entries(), token_budget=200)
    assert [m.content[0] for m in preparation.messages] == ["2", "3"]
    assert preparation.total_tokens == 200
    # File operations come from every message, including dropped ones
    assert preparation.file_ops.edited == {"old.py"}


def test_prepare_branch_entries_includes_nested_summaries():
    log = SessionLog.in_memory("/tmp")
    root = log.append_message(_user("start"))
    log.branch_with_summary(root, "earlier branch", details={"readFiles": ["x.py"], "modifiedFiles": ["y.py"]})
    log.branch_with_summary(log.leaf_id, "hook branch", details={"readFiles": ["hook.py"]}, from_hook=True)

    preparation = prepare_branch_entries(log.branch_entries())
    assert isinstance(preparation.messages[1], BranchSummaryMessage)
    assert preparation.file_ops.read == {"x.py"}
    assert preparation.file_ops.edited == {"y.py"}


# --- Generation ---


def _options(model, transport, **kwargs) -> GenerateBranchSummaryOptions:
    return GenerateBranchSummaryOptions(model=model, transport=transport, **kwargs)


@pytest.mark.asyncio
async def test_generate_branch_summary(model, transport):
    log, ids = _forked_log()
    log.append_message(_tool_call("t1", "edit", "src/app.py"))
    entries = collect_entries_for_branch_summary(log, log.leaf_id, ids["u3"]).entries

    result = await generate_branch_summary(entries, _options(model, transport, api_key="key"))

    assert result.summary == "Summary\n\n<modified-files>\nsrc/app.py\n</modified-files>"
    assert result.modified_files == ["src/app.py"]
    assert result.read_files == []
    assert result.aborted is False
    assert result.error is None

    call = transport.calls[0]
    assert call["max_tokens"] == int(16384 * 0.6)
    assert call["api_key"] == "key"
    assert call["reasoning"] is None
    assert call["prompt"].startswith("<conversation>\n[User]: try A\n\n[Assistant]: did A")
    assert call["prompt"].endswith(BRANCH_SUMMARY_PROMPT)


@pytest.mark.asyncio
async def test_generate_branch_summary_custom_budget_and_focus(model, transport):
    log, ids = _forked_log()
    entries = collect_entries_for_branch_summary(log, ids["a2"], ids["u3"]).entries

    await generate_branch_summary(
        entries,
        _options(model, transport, reserve_tokens=1000, custom_instructions="the failing test"),
    )
    assert transport.calls[0]["max_tokens"] == 600
    assert transport.calls[0]["prompt"].endswith("\n\nAdditional focus: the failing test")


@pytest.mark.asyncio
async def test_generate_branch_summary_nothing_to_summarize(model, transport):
    log = SessionLog.in_memory("/tmp")
    log.append_model_change("m", "p")
    result = await generate_branch_summary(log.branch_entries(), _options(model, transport))
    assert result.summary == "No conversation to summarize."
    assert transport.calls == []


@pytest.mark.asyncio
async def test_generate_branch_summary_aborted(model, transport):
    log, ids = _forked_log()
    entries = collect_entries_for_branch_summary(log, ids["a2"], ids["u3"]).entries
    signal = asyncio.Event()
    transport.on_call = lambda prompt: signal.set()

    result = await generate_branch_summary(entries, _options(model, transport, signal=signal))
    assert result.aborted is True
    assert result.summary is None
    assert result.error is None


@pytest.mark.asyncio
async def test_generate_branch_summary_error(model, transport):
    log, ids = _forked_log()
    entries = collect_entries_for_branch_summary(log, ids["a2"], ids["u3"]).entries
    transport.stop_reason = "error"
    transport.error_message = "rate limited"

    result = await generate_branch_summary(entries, _options(model, transport))
    assert result.summary is None
    assert result.aborted is False
    assert result.error == "Summarization failed: rate limited"
