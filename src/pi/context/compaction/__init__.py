"""Context compaction system for managing conversation history size.

Provides automatic and manual compaction of conversation history using
LLM-generated summaries, with configurable token thresholds and
file operation tracking.
"""

from pi.context.compaction.branch_summary import (
    BranchPreparation,
    BranchSummaryResult,
    CollectEntriesResult,
    GenerateBranchSummaryOptions,
    collect_entries_for_branch_summary,
    generate_branch_summary,
    prepare_branch_entries,
)
from pi.context.compaction.compact import (
    CompactionDetails,
    CompactionPreparation,
    CompactionResult,
    compact,
    generate_summary,
    generate_turn_prefix_summary,
    prepare_compaction,
    serialize_conversation,
)
from pi.context.compaction.cut_point import (
    CutPointResult,
    find_cut_point,
    find_turn_start_index,
    find_valid_cut_points,
)
from pi.context.compaction.file_ops import (
    FileOperations,
    compute_file_lists,
    create_file_ops,
    extract_file_ops_from_message,
    format_file_operations,
    seed_file_ops,
)
from pi.context.compaction.prompts import SUMMARIZATION_SYSTEM_PROMPT
from pi.context.compaction.tokens import (
    IMAGE_ESTIMATED_CHARS,
    ContextUsageEstimate,
    calculate_context_tokens,
    estimate_context_tokens,
    estimate_entry_tokens,
    estimate_tokens,
    get_last_assistant_usage,
    should_compact,
)

__all__ = [
    "IMAGE_ESTIMATED_CHARS",
    "SUMMARIZATION_SYSTEM_PROMPT",
    "BranchPreparation",
    "BranchSummaryResult",
    "CollectEntriesResult",
    "CompactionDetails",
    "CompactionPreparation",
    "CompactionResult",
    "ContextUsageEstimate",
    "CutPointResult",
    "FileOperations",
    "GenerateBranchSummaryOptions",
    "calculate_context_tokens",
    "collect_entries_for_branch_summary",
    "compact",
    "compute_file_lists",
    "create_file_ops",
    "estimate_context_tokens",
    "estimate_entry_tokens",
    "estimate_tokens",
    "extract_file_ops_from_message",
    "find_cut_point",
    "find_turn_start_index",
    "find_valid_cut_points",
    "format_file_operations",
    "generate_branch_summary",
    "generate_summary",
    "generate_turn_prefix_summary",
    "get_last_assistant_usage",
    "prepare_branch_entries",
    "prepare_compaction",
    "seed_file_ops",
    "serialize_conversation",
    "should_compact",
]
