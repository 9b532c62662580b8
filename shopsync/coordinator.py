"""Sync coordinator: keeps the local cache and the remote store converged.

State machine::

    UNINITIALIZED -> SYNCING_INITIAL -> LISTENING <-> WRITING
                                             \\-> CLOSED (close())

Outbound writes go through a debounce window so a burst of edits produces a
single full-document overwrite. While a write is in flight the live
subscription is detached, so the store's change notification for our own
write can't race back into the cache and clobber newer local edits. After
the write settles (success or not) the coordinator waits a short grace delay
and re-attaches.

Each outbound write is also stamped with a fresh ``syncRevision``. When the
re-attached listener replays a document that carries that revision and is
identical to what we wrote, the notification is recognised as our own echo
and ignored, so edits made during the grace delay survive even if the echo
arrives late. Any other change, including one that only touches a child path
and leaves our revision at the root, is applied.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, auto
from typing import Optional
from uuid import uuid4

from shopsync.backends import RemoteStore, SaveResult, Subscription, create_backend
from shopsync.cache import FileStorage, LocalCache, MemoryStorage
from shopsync.config import BackendKind, SyncSettings
from shopsync.debounce import Debouncer
from shopsync.snapshot import ContentSnapshot
from shopsync.staleness import StalenessPolicy

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Lifecycle state of the coordinator."""

    UNINITIALIZED = auto()
    SYNCING_INITIAL = auto()  # Waiting for the first remote snapshot
    LISTENING = auto()  # Subscribed (push) or idle (pull), no write in flight
    WRITING = auto()  # Outbound write in flight, subscription detached
    CLOSED = auto()


@dataclass
class SyncStatus:
    """Snapshot of the coordinator for "last synced at ..." indicators."""

    state: SyncState
    last_synced_at: Optional[datetime]
    subscribed: bool
    pending_write: bool
    last_save_result: Optional[SaveResult]
    offline: bool
    outdated: bool


class SyncCoordinator:
    """Owns the cache, the backend and all sync timing for one site."""

    def __init__(
        self,
        cache: LocalCache,
        backend: RemoteStore,
        *,
        debounce_seconds: float = 2.0,
        grace_delay: float = 0.5,
        staleness: Optional[StalenessPolicy] = None,
        initial_sync_timeout: float = 10.0,
        save_timeout: Optional[float] = 30.0,
    ):
        """Initialize the coordinator.

        Args:
            cache: Local cache to keep in sync
            backend: Remote store (push or pull)
            debounce_seconds: Quiet period before a batched write is sent
            grace_delay: Wait after a write before re-attaching the listener
            staleness: Policy for ``is_outdated`` (default: one hour)
            initial_sync_timeout: How long ``init`` waits for the first push
            save_timeout: Upper bound on a single remote write (None: no bound)
        """
        self.cache = cache
        self.backend = backend
        self.grace_delay = grace_delay
        self.staleness = staleness or StalenessPolicy()
        self.initial_sync_timeout = initial_sync_timeout
        self.save_timeout = save_timeout

        self._state = SyncState.UNINITIALIZED
        self._subscription: Optional[Subscription] = None
        self._debouncer = Debouncer(self._write_remote, debounce_seconds)
        self._write_lock = asyncio.Lock()
        self._initial_snapshot = asyncio.Event()
        self._last_written_revision: Optional[str] = None
        self._last_written_payload: Optional[dict] = None
        # Bumped on every outbound write; fetches started before a bump are stale
        self._write_generation = 0
        self._last_save_result: Optional[SaveResult] = None
        self._remote_reachable = True

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_push(self) -> bool:
        return self.backend.kind is BackendKind.PUSH

    def _set_state(self, new_state: SyncState) -> None:
        if new_state != self._state:
            logger.info(f"Sync state: {self._state.name} -> {new_state.name}")
            self._state = new_state

    # =========================================================================
    # Collaborator API
    # =========================================================================

    async def init(self) -> None:
        """Hydrate the cache from the remote store and start listening.

        Push backends are subscribed and the first delivery hydrates the
        cache. Pull backends get a one-shot fetch. If the remote can't be
        reached the cache is kept as-is and the coordinator works offline.
        """
        if self._state is not SyncState.UNINITIALIZED:
            logger.debug(f"init() ignored in state {self._state.name}")
            return

        self._set_state(SyncState.SYNCING_INITIAL)

        if self.is_push:
            self._attach()
            try:
                await asyncio.wait_for(
                    self._initial_snapshot.wait(), self.initial_sync_timeout
                )
            except asyncio.TimeoutError:
                self._remote_reachable = False
                logger.warning(
                    f"No remote snapshot within {self.initial_sync_timeout}s, "
                    "working offline from the local cache"
                )
        else:
            generation = self._write_generation
            snapshot = await self.backend.fetch()
            if snapshot is None:
                self._remote_reachable = False
                logger.warning("Initial load failed, working offline from the local cache")
            elif self._fetch_is_stale(generation):
                logger.info("Local edits made during the initial load, keeping them")
            else:
                self._apply_remote(snapshot)

        # A write or close() may have moved us on while we were waiting
        if self._state is SyncState.SYNCING_INITIAL:
            self._set_state(SyncState.LISTENING)

    def load(self) -> ContentSnapshot:
        """Current content, read synchronously from the cache."""
        return self.cache.read()

    def save(self, snapshot: ContentSnapshot) -> bool:
        """Store an edit locally and schedule it for the remote.

        The cache is written immediately. The remote write is debounced:
        repeated saves within the window reset the timer and only the last
        snapshot is sent.

        Returns:
            Whether the local cache accepted the write
        """
        stored = self.cache.write(snapshot)
        if self._state is SyncState.CLOSED:
            logger.warning("Coordinator closed, edit kept locally only")
            return stored

        self._debouncer(snapshot.model_copy(deep=True))
        return stored

    def is_outdated(self) -> bool:
        """Whether the cache hasn't been synced within the staleness window."""
        return self.staleness.is_outdated(self.cache.last_synced_at())

    async def force_sync(self) -> bool:
        """Fetch the remote document now, bypassing debounce and staleness.

        Push backends are also re-subscribed so the listener starts from a
        fresh full snapshot.

        Returns:
            True if fresh remote data was obtained
        """
        if self._state is SyncState.CLOSED:
            return False

        generation = self._write_generation
        snapshot = await self.backend.fetch()
        if snapshot is None:
            self._remote_reachable = False
            logger.warning("Forced sync failed, keeping local cache")
            return False

        # Re-check after the fetch: a write may have started or even finished
        if self._state is SyncState.CLOSED:
            return False
        if self._fetch_is_stale(generation):
            logger.info("Local edits newer than the fetched document, discarding it")
            return False

        self._apply_remote(snapshot)

        if self.is_push and self._state is SyncState.LISTENING:
            self._detach()
            self._attach()

        logger.info("Forced sync complete")
        return True

    async def refresh_if_outdated(self) -> bool:
        """Run ``force_sync`` only when the cache is stale."""
        if not self.is_outdated():
            return False
        return await self.force_sync()

    async def push_now(self) -> Optional[SaveResult]:
        """Send the pending debounced write immediately.

        Returns:
            The save result, or None when nothing was pending
        """
        return await self._debouncer.flush()

    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            last_synced_at=self.cache.last_synced_at(),
            subscribed=self._subscription is not None and self._subscription.active,
            pending_write=self._debouncer.pending,
            last_save_result=self._last_save_result,
            offline=not self._remote_reachable,
            outdated=self.is_outdated(),
        )

    async def close(self) -> None:
        """Stop syncing: drop the pending write, detach, close the backend."""
        if self._state is SyncState.CLOSED:
            return

        if self._debouncer.cancel():
            logger.warning("Closing with unsent edits; they remain in the local cache")
        self._set_state(SyncState.CLOSED)
        self._detach()

        try:
            await asyncio.wait_for(self._debouncer.wait(), self.save_timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for an in-flight write during close")

        await self.backend.aclose()

    async def __aenter__(self) -> "SyncCoordinator":
        await self.init()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    # =========================================================================
    # Subscription handling
    # =========================================================================

    def _attach(self) -> None:
        if self._subscription is not None and self._subscription.active:
            return
        self._subscription = self.backend.subscribe(self._on_remote_change)

    def _detach(self) -> None:
        self.backend.unsubscribe(self._subscription)
        self._subscription = None

    def _on_remote_change(self, snapshot: ContentSnapshot) -> None:
        if self._state not in (SyncState.SYNCING_INITIAL, SyncState.LISTENING):
            logger.debug(f"Dropping remote change in state {self._state.name}")
            return

        self._apply_remote(snapshot)
        self._initial_snapshot.set()

    def _fetch_is_stale(self, generation: int) -> bool:
        """Whether local edits were written or queued since *generation*."""
        return (
            generation != self._write_generation
            or self._state is SyncState.WRITING
            or self._debouncer.pending
        )

    def _is_own_echo(self, snapshot: ContentSnapshot) -> bool:
        if (
            snapshot.sync_revision is None
            or snapshot.sync_revision != self._last_written_revision
        ):
            return False
        return snapshot.to_dict() == self._last_written_payload

    def _apply_remote(self, snapshot: ContentSnapshot) -> None:
        """Replace the cache with a remote snapshot, unless it's our own echo."""
        self._remote_reachable = True

        if self._is_own_echo(snapshot):
            logger.debug(f"Ignoring echo of our own write {snapshot.sync_revision}")
            self.cache.mark_synced_now()
            return

        if not self.cache.write(snapshot):
            logger.warning("Remote snapshot received but could not be cached")
            return
        self.cache.mark_synced_now()
        logger.debug("Local cache replaced from remote")

    # =========================================================================
    # Outbound writes
    # =========================================================================

    async def _write_remote(self, snapshot: ContentSnapshot) -> SaveResult:
        """Detach, push the full document, wait out the echo, re-attach."""
        async with self._write_lock:
            if self._state is SyncState.CLOSED:
                return SaveResult.FAILED

            resume_state = self._state
            self._set_state(SyncState.WRITING)
            self._detach()

            self._write_generation += 1
            revision = uuid4().hex
            outbound = snapshot.model_copy(update={"sync_revision": revision})
            self._last_written_revision = revision
            self._last_written_payload = outbound.to_dict()

            result = await self._save_bounded(outbound)
            self._last_save_result = result

            if result:
                self._remote_reachable = True
                self.cache.mark_synced_now()
            elif result is SaveResult.FAILED:
                self._remote_reachable = False
                logger.warning("Remote write failed; edits remain in the local cache")
            else:
                logger.warning(
                    f"{type(self.backend).__name__} does not accept writes; "
                    "edits remain local"
                )

            await asyncio.sleep(self.grace_delay)

            if self._state is SyncState.WRITING:
                if resume_state in (SyncState.LISTENING, SyncState.SYNCING_INITIAL):
                    if self.is_push:
                        self._attach()
                    self._set_state(SyncState.LISTENING)
                else:
                    self._set_state(resume_state)

            return result

    async def _save_bounded(self, snapshot: ContentSnapshot) -> SaveResult:
        try:
            if self.save_timeout is None:
                return await self.backend.save(snapshot)
            return await asyncio.wait_for(
                self.backend.save(snapshot), self.save_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Remote write timed out after {self.save_timeout}s")
            return SaveResult.FAILED
        except Exception as e:
            logger.error(f"Remote write raised unexpectedly: {e}")
            return SaveResult.FAILED


def build_coordinator(settings: SyncSettings) -> SyncCoordinator:
    """Wire cache, backend and coordinator from settings."""
    if settings.cache_path:
        storage = FileStorage(settings.cache_path, quota_bytes=settings.cache_quota_bytes)
    else:
        storage = MemoryStorage(quota_bytes=settings.cache_quota_bytes)

    cache = LocalCache(
        storage,
        data_key=settings.data_key,
        last_sync_key=settings.last_sync_key,
    )
    return SyncCoordinator(
        cache,
        create_backend(settings),
        debounce_seconds=settings.debounce_seconds,
        grace_delay=settings.grace_delay_seconds,
        staleness=StalenessPolicy(timedelta(seconds=settings.staleness_seconds)),
        initial_sync_timeout=settings.initial_sync_timeout,
        save_timeout=settings.save_timeout,
    )
