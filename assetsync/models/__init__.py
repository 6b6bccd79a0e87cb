"""Data types shared across the sync engine."""

from assetsync.models.asset import AssetRecord, MappingRow
from assetsync.models.sync import (
    AssetOutcome,
    ProgressUpdate,
    SyncOptions,
    SyncReport,
    SyncStatus,
)

__all__ = [
    "AssetOutcome",
    "AssetRecord",
    "MappingRow",
    "ProgressUpdate",
    "SyncOptions",
    "SyncReport",
    "SyncStatus",
]
