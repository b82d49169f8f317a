"""Error taxonomy for the asset warehouse."""

from __future__ import annotations


class WarehouseError(Exception):
    """Base class for every error raised by the warehouse."""


class ValidationError(WarehouseError):
    """An upload is missing required fields or slots; it was never queued."""


class QueueSaturated(WarehouseError):
    """The job queue is full; the job was not accepted."""


class ProviderError(WarehouseError):
    """The vision provider failed or returned malformed data."""


class StorageError(WarehouseError):
    """A staging, probe or relocation step on disk failed."""


class UnreadableAsset(StorageError):
    """An image could not be decoded (corrupt or truncated input)."""


class LockTimeout(WarehouseError):
    """The ledger lock could not be acquired in time."""


class AssetNotFound(WarehouseError, KeyError):
    """No status entry or ledger entry exists for an asset ID."""
