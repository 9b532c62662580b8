"""Remote store backends.

- FirebaseBackend: push backend (live listener) on Firebase Realtime Database
- GitHubBackend: pull backend (one-shot fetch) on a static JSON file
"""

from shopsync.backends.base import RemoteStore, SaveResult, Subscription
from shopsync.backends.firebase import FirebaseBackend
from shopsync.backends.github import GitHubBackend
from shopsync.config import BackendKind, SyncSettings

__all__ = [
    "RemoteStore",
    "SaveResult",
    "Subscription",
    "FirebaseBackend",
    "GitHubBackend",
    "create_backend",
]


def create_backend(settings: SyncSettings) -> RemoteStore:
    """Build the backend selected by ``settings.backend``."""
    settings.validate()
    if settings.backend is BackendKind.PUSH:
        return FirebaseBackend.from_settings(settings)
    return GitHubBackend.from_settings(settings)
