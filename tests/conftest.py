"""
Shared fixtures for shopsync tests.

The fake backends behave like the real stores where it matters for the
coordinator: a new push listener first receives the whole document, change
notifications arrive asynchronously on the loop, and a detached listener
never delivers anything.
"""

import asyncio
import copy

import pytest

from shopsync.backends.base import RemoteStore, SaveResult, Subscription
from shopsync.cache import LocalCache, MemoryStorage
from shopsync.config import BackendKind
from shopsync.coordinator import SyncCoordinator
from shopsync.snapshot import ContentSnapshot


class FakeSubscription(Subscription):
    def __init__(self, on_change):
        self.on_change = on_change
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    def close(self) -> None:
        self._closed = True


class FakePushBackend(RemoteStore):
    """In-memory push store that echoes every write to its listeners."""

    kind = BackendKind.PUSH

    def __init__(self, document=None, deliver_initial=True):
        self.document = document
        self.deliver_initial = deliver_initial
        self.subscriptions: list[FakeSubscription] = []
        self.saves: list[ContentSnapshot] = []
        self.fetches = 0
        self.fetch_fails = False
        self.fail_saves = 0
        self.save_gate: asyncio.Event | None = None
        self.fetch_gate: asyncio.Event | None = None
        self.closed = False

    @property
    def active_subscriptions(self) -> list[FakeSubscription]:
        return [s for s in self.subscriptions if s.active]

    async def fetch(self):
        self.fetches += 1
        # The response reflects the document at request time
        document = copy.deepcopy(self.document)
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fetch_fails:
            return None
        return ContentSnapshot.from_remote(document)

    async def save(self, snapshot):
        self.saves.append(snapshot)
        if self.save_gate is not None:
            await self.save_gate.wait()
        if self.fail_saves:
            self.fail_saves -= 1
            return SaveResult.FAILED
        self.document = snapshot.to_dict()
        self.broadcast(self.document)
        return SaveResult.SAVED

    def subscribe(self, on_change):
        subscription = FakeSubscription(on_change)
        self.subscriptions.append(subscription)
        if self.deliver_initial:
            asyncio.get_running_loop().call_soon(
                self._deliver, subscription, self.document
            )
        return subscription

    def remote_change(self, document) -> None:
        """Another admin session overwrote the document."""
        self.document = document
        self.broadcast(document)

    def broadcast(self, document) -> None:
        loop = asyncio.get_running_loop()
        for subscription in self.active_subscriptions:
            loop.call_soon(self._deliver, subscription, document)

    def _deliver(self, subscription, document) -> None:
        if subscription.active:
            subscription.on_change(ContentSnapshot.from_remote(copy.deepcopy(document)))

    async def aclose(self) -> None:
        self.closed = True


class FakePullBackend(FakePushBackend):
    """Static-file store: no listener, writes only when marked writable."""

    kind = BackendKind.PULL

    def __init__(self, document=None, writable=False):
        super().__init__(document)
        self.writable = writable

    def subscribe(self, on_change):
        return RemoteStore.subscribe(self, on_change)

    async def save(self, snapshot):
        if not self.writable:
            self.saves.append(snapshot)
            return SaveResult.UNSUPPORTED
        return await super().save(snapshot)


def doc(*names, section="shop"):
    """Build a raw content document with one item per name."""
    return {
        section: [
            {"id": i + 1, "name": name, "images": [f"{name}.png"]}
            for i, name in enumerate(names)
        ]
    }


@pytest.fixture
def push_backend():
    return FakePushBackend(doc("Remote Tee"))


@pytest.fixture
def pull_backend():
    return FakePullBackend(doc("Remote Tee"))


@pytest.fixture
def cache():
    return LocalCache(MemoryStorage())


@pytest.fixture
def make_coordinator(cache):
    """Factory for coordinators with short timings."""

    def _make(backend, **kwargs):
        kwargs.setdefault("debounce_seconds", 0.05)
        kwargs.setdefault("grace_delay", 0.02)
        kwargs.setdefault("initial_sync_timeout", 0.5)
        kwargs.setdefault("save_timeout", 1.0)
        return SyncCoordinator(cache, backend, **kwargs)

    return _make


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds."""

    async def _wait(predicate, timeout=2.0, interval=0.005):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met in time")
            await asyncio.sleep(interval)

    return _wait


@pytest.fixture
def make_doc():
    return doc
