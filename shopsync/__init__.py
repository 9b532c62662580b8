"""Local-first sync of the shop's content document.

This package provides:
- LocalCache: durable local copy of the content plus the last-sync marker
- FirebaseBackend / GitHubBackend: push and pull remote stores
- SyncCoordinator: debounced writes, live listener lifecycle, echo handling
- StalenessPolicy / debounce: the small policies the coordinator relies on
"""

from shopsync.backends import (
    FirebaseBackend,
    GitHubBackend,
    RemoteStore,
    SaveResult,
    create_backend,
)
from shopsync.cache import FileStorage, LocalCache, MemoryStorage
from shopsync.config import BackendKind, SyncSettings, configure_logging
from shopsync.coordinator import (
    SyncCoordinator,
    SyncState,
    SyncStatus,
    build_coordinator,
)
from shopsync.debounce import Debouncer, debounce
from shopsync.exceptions import (
    ConfigError,
    ShopSyncError,
    StorageError,
    StorageQuotaExceededError,
)
from shopsync.snapshot import Category, ContentSnapshot, Item, Order
from shopsync.staleness import StalenessPolicy

__all__ = [
    # Content model
    "ContentSnapshot",
    "Item",
    "Category",
    "Order",
    # Local cache
    "LocalCache",
    "FileStorage",
    "MemoryStorage",
    # Backends
    "RemoteStore",
    "SaveResult",
    "FirebaseBackend",
    "GitHubBackend",
    "create_backend",
    # Coordination
    "SyncCoordinator",
    "SyncState",
    "SyncStatus",
    "build_coordinator",
    "StalenessPolicy",
    "Debouncer",
    "debounce",
    # Configuration
    "BackendKind",
    "SyncSettings",
    "configure_logging",
    # Exceptions
    "ShopSyncError",
    "StorageError",
    "StorageQuotaExceededError",
    "ConfigError",
]
