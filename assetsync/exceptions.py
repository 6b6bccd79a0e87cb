"""Exception types for the asset sync engine.

Convention:
- Exceptions are reserved for conditions the caller cannot route around:
  credentials, the remote listing, the mapping file, transfers that
  exhausted their retry budget.
- Expected per-asset outcomes (conflicts, skipped files, blacklisted
  folders) are returned as ``AssetOutcome`` values and never raised.
"""

from __future__ import annotations

from enum import StrEnum


class AssetSyncError(Exception):
    """Base class for sync engine errors."""


class MissingKeyError(AssetSyncError):
    """Raised when no usable API key is configured."""


class UnauthorizedError(AssetSyncError):
    """Raised when the remote library rejects the API key."""


class RemoteInventoryError(AssetSyncError):
    """Raised when the remote asset listing cannot be retrieved."""


class MappingFileError(AssetSyncError):
    """Raised when the mapping file cannot be fetched after all retries."""


class SyncAlreadyStartedError(AssetSyncError):
    """Raised when ``sync()`` is called on an orchestrator that is not ready."""


class TransferError(AssetSyncError):
    """Raised when a download, upload or verification request fails."""


class LocalErrorKind(StrEnum):
    """Classification of local file server failures."""

    NOT_FOUND = "not_found"
    EXISTS = "exists"
    INVALID_NAME = "invalid_name"
    OTHER = "other"


class LocalProviderError(AssetSyncError):
    """Raised by local file server primitives."""

    def __init__(self, message: str, kind: LocalErrorKind = LocalErrorKind.OTHER) -> None:
        super().__init__(message)
        self.kind = kind

    @classmethod
    def from_message(cls, message: str) -> LocalProviderError:
        """Classify a server error message (``EEXIST:``, ``EINVAL:``, ``does not exist``)."""
        if "EEXIST" in message:
            kind = LocalErrorKind.EXISTS
        elif "EINVAL" in message:
            kind = LocalErrorKind.INVALID_NAME
        elif "does not exist" in message or "ENOENT" in message:
            kind = LocalErrorKind.NOT_FOUND
        else:
            kind = LocalErrorKind.OTHER
        return cls(message, kind)
