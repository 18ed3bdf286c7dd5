"""File provenance tracking across summarized history."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pi.context.messages import AssistantMessage, ToolCall

_TRACKED_TOOLS = {"read": "read", "write": "written", "edit": "edited"}


@dataclass
class FileOperations:
    """Paths touched by read/write/edit tool calls."""

    read: set[str] = field(default_factory=set)
    written: set[str] = field(default_factory=set)
    edited: set[str] = field(default_factory=set)


def create_file_ops() -> FileOperations:
    return FileOperations()


def extract_file_ops_from_message(message: Any, file_ops: FileOperations) -> None:
    """Record the paths of an assistant message's read/write/edit tool calls."""
    if not isinstance(message, AssistantMessage):
        return

    for block in message.content:
        if not isinstance(block, ToolCall):
            continue
        bucket = _TRACKED_TOOLS.get(block.name)
        path = block.arguments.get("path")
        if bucket is None or not isinstance(path, str) or not path:
            continue
        getattr(file_ops, bucket).add(path)


def seed_file_ops(file_ops: FileOperations, details: dict[str, Any] | None) -> None:
    """Carry provenance forward from a previous reduction's stored details."""
    if not isinstance(details, dict):
        return
    for path in details.get("readFiles") or []:
        if isinstance(path, str):
            file_ops.read.add(path)
    for path in details.get("modifiedFiles") or []:
        if isinstance(path, str):
            file_ops.edited.add(path)


def compute_file_lists(file_ops: FileOperations) -> tuple[list[str], list[str]]:
    """Compute read-only and modified file lists from operations.

    Returns (read_only_files, modified_files) both sorted alphabetically.
    """
    modified = file_ops.written | file_ops.edited
    read_only = file_ops.read - modified
    return sorted(read_only), sorted(modified)


def file_ops_details(read_files: list[str], modified_files: list[str]) -> dict[str, Any]:
    """The details payload stored on compaction and branch-summary entries."""
    return {"readFiles": list(read_files), "modifiedFiles": list(modified_files)}


def format_file_operations(read_files: list[str], modified_files: list[str]) -> str:
    """Format file lists as XML tags appended to a summary.

    Returns an empty string when there is nothing to report, otherwise the
    sections prefixed with a blank line.
    """
    sections: list[str] = []
    if read_files:
        sections.append("<read-files>\n" + "\n".join(read_files) + "\n</read-files>")
    if modified_files:
        sections.append("<modified-files>\n" + "\n".join(modified_files) + "\n</modified-files>")
    if not sections:
        return ""
    return "\n\n" + "\n\n".join(sections)
