"""
Exceptions for the shopsync layer.
"""


class ShopSyncError(Exception):
    """Base exception for sync operations."""


class StorageError(ShopSyncError):
    """Raised when the local key-value store cannot persist a value."""


class StorageQuotaExceededError(StorageError):
    """Raised when a write would push the local store over its quota."""

    def __init__(self, message: str, size: int, quota: int):
        super().__init__(message)
        self.size = size
        self.quota = quota


class ConfigError(ShopSyncError):
    """Raised when sync settings are invalid."""
