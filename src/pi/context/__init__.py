"""pi-context: context reduction for branching agent sessions."""

from pi.context.compaction import (
    BranchSummaryResult,
    CompactionPreparation,
    CompactionResult,
    compact,
    generate_branch_summary,
    prepare_compaction,
)
from pi.context.errors import (
    CompactionCancelledError,
    CompactionVetoedError,
    ContextError,
    NothingToCompactError,
    ReductionInProgressError,
    StaleCompactionError,
    SummarizationFailedError,
    is_expected_outcome,
)
from pi.context.hooks import HookRunner
from pi.context.session import (
    AutoCompactionEndEvent,
    AutoCompactionStartEvent,
    ContextSession,
    ContextSessionConfig,
    NavigateTreeResult,
)
from pi.context.settings import BranchSummarySettings, CompactionSettings, SettingsManager
from pi.context.store import EntryStore, SessionContext, SessionLog
from pi.context.transport import Model, Transport

__all__ = [
    "AutoCompactionEndEvent",
    "AutoCompactionStartEvent",
    "BranchSummaryResult",
    "BranchSummarySettings",
    "CompactionCancelledError",
    "CompactionPreparation",
    "CompactionResult",
    "CompactionSettings",
    "CompactionVetoedError",
    "ContextError",
    "ContextSession",
    "ContextSessionConfig",
    "EntryStore",
    "HookRunner",
    "Model",
    "NavigateTreeResult",
    "NothingToCompactError",
    "ReductionInProgressError",
    "SessionContext",
    "SessionLog",
    "SettingsManager",
    "StaleCompactionError",
    "SummarizationFailedError",
    "Transport",
    "compact",
    "generate_branch_summary",
    "is_expected_outcome",
    "prepare_compaction",
]
