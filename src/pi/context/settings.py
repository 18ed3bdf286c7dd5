"""Hierarchical settings for context reduction, with JSON persistence.

Three-level precedence: CLI overrides > project settings > global settings.
Only the ``compaction`` and ``branchSummary`` sections are interpreted here;
other keys are preserved untouched.
"""

from __future__ import annotations

import json
import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

CONFIG_DIR_NAME = ".pi"

DEFAULT_RESERVE_TOKENS = 16384
DEFAULT_KEEP_RECENT_TOKENS = 20000


@dataclass(frozen=True)
class CompactionSettings:
    """Budget settings for history compaction."""

    enabled: bool = True
    reserve_tokens: int = DEFAULT_RESERVE_TOKENS
    keep_recent_tokens: int = DEFAULT_KEEP_RECENT_TOKENS


DEFAULT_COMPACTION_SETTINGS = CompactionSettings()


@dataclass(frozen=True)
class BranchSummarySettings:
    """Budget settings for branch summarization."""

    reserve_tokens: int = DEFAULT_RESERVE_TOKENS


def deep_merge_settings(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge overrides into base settings.

    Nested dicts merge; primitives and lists from overrides win. None values
    in overrides are ignored.
    """
    result = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge_settings(result[key], value)
        else:
            result[key] = value
    return result


class SettingsManager:
    """Settings provider for the context manager.

    Use factory methods (create, in_memory) instead of calling the
    constructor directly.
    """

    def __init__(
        self,
        *,
        settings_path: str | None,
        project_settings_path: str | None,
        initial_settings: dict[str, Any],
        load_error: Exception | None = None,
    ) -> None:
        self._settings_path = settings_path
        self._project_settings_path = project_settings_path
        self._global_settings = dict(initial_settings)
        self._load_error = load_error
        self._overrides: dict[str, Any] = {}
        self._settings = self._merge()

    # --- Factory methods ---

    @classmethod
    def create(cls, cwd: str, agent_dir: str | None = None) -> SettingsManager:
        """Create a settings manager backed by global and project JSON files."""
        adir = agent_dir or _default_agent_dir()
        settings_path = os.path.join(adir, "settings.json")
        settings, error = _load_from_file(settings_path)
        return cls(
            settings_path=settings_path,
            project_settings_path=os.path.join(cwd, CONFIG_DIR_NAME, "settings.json"),
            initial_settings=settings,
            load_error=error,
        )

    @classmethod
    def in_memory(cls, settings: dict[str, Any] | None = None) -> SettingsManager:
        """Create an in-memory settings manager for testing."""
        return cls(settings_path=None, project_settings_path=None, initial_settings=settings or {})

    # --- Core operations ---

    @property
    def settings(self) -> dict[str, Any]:
        """Current merged settings (read-only view)."""
        return self._settings

    @property
    def load_error(self) -> Exception | None:
        return self._load_error

    def reload(self) -> None:
        """Reload global and project settings from disk."""
        if self._settings_path:
            self._global_settings, self._load_error = _load_from_file(self._settings_path)
        self._settings = self._merge()

    def apply_overrides(self, overrides: dict[str, Any]) -> None:
        """Apply CLI-level overrides on top of merged settings."""
        self._overrides = deep_merge_settings(self._overrides, overrides)
        self._settings = self._merge()

    def _merge(self) -> dict[str, Any]:
        project: dict[str, Any] = {}
        if self._project_settings_path:
            project, _ = _load_from_file(self._project_settings_path)
        return deep_merge_settings(deep_merge_settings(self._global_settings, project), self._overrides)

    def _save_section(self, section: str, values: dict[str, Any]) -> None:
        """Write one section to the global file, preserving external changes."""
        current = self._global_settings.get(section)
        merged_section = dict(current) if isinstance(current, dict) else {}
        merged_section.update(values)
        self._global_settings[section] = merged_section

        if self._settings_path and not self._load_error:
            on_disk, _ = _load_from_file(self._settings_path)
            disk_section = on_disk.get(section)
            on_disk[section] = {**(disk_section if isinstance(disk_section, dict) else {}), **values}
            os.makedirs(os.path.dirname(self._settings_path), exist_ok=True)
            Path(self._settings_path).write_text(
                json.dumps(on_disk, indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )

        self._settings = self._merge()

    def get_global_settings(self) -> dict[str, Any]:
        return deepcopy(self._global_settings)

    # --- Compaction ---

    def get_compaction_enabled(self) -> bool:
        return self.get_compaction_settings().enabled

    def get_compaction_settings(self) -> CompactionSettings:
        """Resolved compaction settings, with defaults for unset fields."""
        compaction = self._settings.get("compaction")
        if not isinstance(compaction, dict):
            compaction = {}
        enabled = compaction.get("enabled")
        return CompactionSettings(
            enabled=enabled if enabled is not None else True,
            reserve_tokens=compaction.get("reserveTokens") or DEFAULT_RESERVE_TOKENS,
            keep_recent_tokens=_int_or_default(compaction.get("keepRecentTokens"), DEFAULT_KEEP_RECENT_TOKENS),
        )

    def set_compaction_enabled(self, enabled: bool) -> None:
        self._save_section("compaction", {"enabled": enabled})

    def set_compaction_settings(
        self,
        *,
        reserve_tokens: int | None = None,
        keep_recent_tokens: int | None = None,
    ) -> None:
        values: dict[str, Any] = {}
        if reserve_tokens is not None:
            values["reserveTokens"] = reserve_tokens
        if keep_recent_tokens is not None:
            values["keepRecentTokens"] = keep_recent_tokens
        if values:
            self._save_section("compaction", values)

    # --- Branch summary ---

    def get_branch_summary_settings(self) -> BranchSummarySettings:
        bs = self._settings.get("branchSummary")
        if not isinstance(bs, dict):
            bs = {}
        return BranchSummarySettings(reserve_tokens=bs.get("reserveTokens") or DEFAULT_RESERVE_TOKENS)


# --- File I/O helpers ---


def _int_or_default(value: Any, default: int) -> int:
    # 0 is a meaningful keepRecentTokens value, so only None falls back
    return value if isinstance(value, int) else default


def _load_from_file(path: str) -> tuple[dict[str, Any], Exception | None]:
    """Load settings from a JSON file. Returns (settings, error)."""
    if not os.path.exists(path):
        return {}, None
    try:
        settings = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        return {}, e
    if not isinstance(settings, dict):
        return {}, ValueError(f"Settings file is not a JSON object: {path}")
    return settings, None


def _default_agent_dir() -> str:
    """Default agent data directory (~/.pi)."""
    return os.path.join(os.path.expanduser("~"), CONFIG_DIR_NAME)
