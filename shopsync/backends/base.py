"""Remote store interface shared by the push and pull backends."""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from shopsync.config import BackendKind
from shopsync.snapshot import ContentSnapshot

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ContentSnapshot], None]


class SaveResult(str, Enum):
    """Outcome of pushing a snapshot to the remote store.

    Only ``SAVED`` is truthy, so callers that just need a yes/no answer can
    treat the result as a bool. ``UNSUPPORTED`` means retrying won't help.
    """

    SAVED = "saved"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"

    def __bool__(self) -> bool:
        return self is SaveResult.SAVED


class Subscription(ABC):
    """Handle for a standing change listener."""

    @property
    @abstractmethod
    def active(self) -> bool:
        """Whether the listener can still deliver changes."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivering changes. Safe to call more than once."""


class RemoteStore(ABC):
    """Abstract remote store for the content document.

    All operations are best-effort: failures are logged and reported through
    return values, never raised, so the local cache stays usable offline.
    """

    kind: BackendKind

    @abstractmethod
    async def fetch(self) -> Optional[ContentSnapshot]:
        """One-shot fetch of the remote document.

        Returns:
            The remote snapshot, or None if it couldn't be retrieved
        """

    async def load(self) -> ContentSnapshot:
        """One-shot fetch that falls back to the empty snapshot."""
        snapshot = await self.fetch()
        return snapshot if snapshot is not None else ContentSnapshot()

    @abstractmethod
    async def save(self, snapshot: ContentSnapshot) -> SaveResult:
        """Overwrite the whole remote document with *snapshot*."""

    def subscribe(self, on_change: ChangeCallback) -> Optional[Subscription]:
        """Start a standing listener; backends without live push return None."""
        return None

    def unsubscribe(self, handle: Optional[Subscription]) -> None:
        """Detach a listener returned by ``subscribe``. Idempotent."""
        if handle is None or not handle.active:
            return
        handle.close()
        logger.debug(f"{type(self).__name__}: listener detached")

    async def aclose(self) -> None:
        """Release network clients."""

    async def __aenter__(self) -> "RemoteStore":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
