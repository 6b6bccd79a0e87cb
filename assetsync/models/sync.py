"""Sync run state: statuses, operator options, outcomes and reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from assetsync.models.asset import AssetRecord


class SyncStatus(StrEnum):
    """State of a sync run. Only the orchestrator writes it."""

    READY = "ready"
    PREPARING = "preparing"
    SYNCING = "syncing"
    POST_SYNC = "post_sync"
    REWRITING_DATABASE = "rewriting_database"
    COMPLETE = "complete"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    UNAUTHORIZED = "unauthorized"
    CANCELLED = "cancelled"
    MISSING_KEY = "missing_key"

    @property
    def description(self) -> str:
        return _STATUS_DESCRIPTIONS[self]

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    @property
    def in_progress(self) -> bool:
        return self in _IN_PROGRESS_STATUSES

    @property
    def exit_code(self) -> int:
        """Process exit code for a finished run."""
        return _EXIT_CODES.get(self, 2)


_STATUS_DESCRIPTIONS: dict[SyncStatus, str] = {
    SyncStatus.READY: "Ready to Sync",
    SyncStatus.PREPARING: "Preparing Assets for Sync",
    SyncStatus.SYNCING: "Syncing Assets...",
    SyncStatus.POST_SYNC: "Cleaning up Sync Data",
    SyncStatus.REWRITING_DATABASE: "Updating game to use local assets...",
    SyncStatus.COMPLETE: "Sync Completed Successfully!",
    SyncStatus.COMPLETED_WITH_ERRORS: (
        "Sync Completed with Errors. See below for folders and files which could not be synced."
    ),
    SyncStatus.FAILED: "Failed to Sync. Check the log for more details.",
    SyncStatus.UNAUTHORIZED: "Unauthorized. Please check your API Key and try again.",
    SyncStatus.CANCELLED: "Sync process Cancelled",
    SyncStatus.MISSING_KEY: "Missing API Key. Please configure a valid key then try again.",
}

_TERMINAL_STATUSES = frozenset(
    {
        SyncStatus.COMPLETE,
        SyncStatus.COMPLETED_WITH_ERRORS,
        SyncStatus.FAILED,
        SyncStatus.UNAUTHORIZED,
        SyncStatus.CANCELLED,
        SyncStatus.MISSING_KEY,
    }
)

_IN_PROGRESS_STATUSES = frozenset(
    {
        SyncStatus.PREPARING,
        SyncStatus.SYNCING,
        SyncStatus.POST_SYNC,
        SyncStatus.REWRITING_DATABASE,
    }
)

_EXIT_CODES: dict[SyncStatus, int] = {
    SyncStatus.COMPLETE: 0,
    SyncStatus.COMPLETED_WITH_ERRORS: 1,
    SyncStatus.FAILED: 2,
    SyncStatus.UNAUTHORIZED: 2,
    SyncStatus.MISSING_KEY: 2,
    SyncStatus.CANCELLED: 3,
}


class AssetOutcome(StrEnum):
    """Result of processing one remote file."""

    SYNCED = "synced"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"
    SKIPPED = "skipped"
    BLACKLISTED = "blacklisted"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self in (AssetOutcome.SYNCED, AssetOutcome.UNCHANGED)


@dataclass(frozen=True)
class SyncOptions:
    """Operator-facing switches for a sync run."""

    force_local_rehash: bool = False
    overwrite_local_mismatches: bool = False
    update_world_db: bool = False


@dataclass(frozen=True)
class ProgressUpdate:
    """Incremental progress event. ``None`` fields are unchanged since the last event."""

    current: int | None = None
    total: int | None = None
    name: str | None = None
    step: str | None = None
    type: str | None = None


@dataclass
class SyncReport:
    """Accumulated per-run detail for display."""

    synced: list[AssetRecord] = field(default_factory=list)
    failed: list[AssetRecord] = field(default_factory=list)
    skipped: list[AssetRecord] = field(default_factory=list)
    failed_folders: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    created_dirs: int = 0
    migration_errors: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.synced) + len(self.failed) + len(self.skipped)
