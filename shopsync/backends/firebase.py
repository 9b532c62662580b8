"""Push backend: Firebase Realtime Database via the Admin SDK.

The content document lives at a single database path (``content`` by
default). ``save`` overwrites it with ``Reference.set``; ``subscribe`` opens a
``Reference.listen`` stream whose ``put``/``patch`` events are folded into a
local mirror of the document, and the resulting snapshot is handed to the
callback on the asyncio loop.

The SDK is blocking and its listener runs on its own thread, so:

- ``get``/``set`` run in the default executor
- listener events cross back to the loop with ``call_soon_threadsafe``
- a closed subscription drops events that were already queued for the loop

Environment variables are not read here; see ``SyncSettings``.
"""

import asyncio
import copy
import logging
from typing import Any, Optional

import firebase_admin
from firebase_admin import credentials, db
from firebase_admin.exceptions import FirebaseError
from google.auth.exceptions import GoogleAuthError

from shopsync.backends.base import ChangeCallback, RemoteStore, SaveResult, Subscription
from shopsync.config import BackendKind, SyncSettings
from shopsync.exceptions import ConfigError
from shopsync.snapshot import ContentSnapshot

logger = logging.getLogger(__name__)


def get_or_init_app(settings: SyncSettings) -> firebase_admin.App:
    """Return the named Firebase app, initializing it on first use."""
    try:
        return firebase_admin.get_app(settings.firebase_app_name)
    except ValueError:
        pass

    if not settings.firebase_database_url:
        raise ConfigError("firebase_database_url is required for the push backend")

    if settings.firebase_credentials:
        cred = credentials.Certificate(settings.firebase_credentials)
    else:
        cred = credentials.ApplicationDefault()

    return firebase_admin.initialize_app(
        cred,
        {"databaseURL": settings.firebase_database_url},
        name=settings.firebase_app_name,
    )


def _split_path(path: str) -> list[str]:
    return [part for part in (path or "").split("/") if part]


def _set_path(tree: Any, parts: list[str], value: Any) -> Any:
    """Set *value* at *parts* inside *tree* and return the new root.

    Lists are turned into index-keyed dicts on the way down, the same shape
    Firebase uses for sparse arrays. A ``None`` value deletes the key. Nodes
    along the path are copied, so *tree* itself is left untouched.
    """
    if not parts:
        return copy.deepcopy(value)

    if isinstance(tree, list):
        tree = {str(i): v for i, v in enumerate(tree)}
    elif isinstance(tree, dict):
        tree = dict(tree)
    else:
        tree = {}

    key, rest = parts[0], parts[1:]
    child = _set_path(tree.get(key), rest, value)
    if child is None:
        tree.pop(key, None)
    else:
        tree[key] = child
    return tree


def apply_event(tree: Any, event_type: str, path: str, data: Any) -> Any:
    """Fold a listener event into the mirrored document."""
    parts = _split_path(path)
    if event_type == "put":
        return _set_path(tree, parts, data)
    if event_type == "patch":
        for key, value in (data or {}).items():
            tree = _set_path(tree, parts + _split_path(key), value)
        return tree
    logger.debug(f"Ignoring listener event of type {event_type!r}")
    return tree


class FirebaseSubscription(Subscription):
    """A ``Reference.listen`` stream bridged onto an asyncio loop."""

    def __init__(
        self,
        ref: db.Reference,
        on_change: ChangeCallback,
        loop: asyncio.AbstractEventLoop,
    ):
        self._ref = ref
        self._on_change = on_change
        self._loop = loop
        self._mirror: Any = None
        self._closed = False
        self._failed = False
        self._registration = None
        self._future: Optional[asyncio.Future] = None

    @property
    def active(self) -> bool:
        return not self._closed and not self._failed

    def start(self) -> None:
        # listen() connects synchronously, keep it off the loop thread
        self._future = self._loop.run_in_executor(None, self._ref.listen, self._on_event)
        self._future.add_done_callback(self._on_started)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._registration is not None:
            self._close_registration(self._registration)
            self._registration = None

    def _on_started(self, future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self._failed = True
            logger.error(f"Failed to start Firebase listener: {error}")
            return

        registration = future.result()
        if self._closed:
            # Detached before the stream came up
            self._close_registration(registration)
        else:
            self._registration = registration
            logger.debug("Firebase listener attached")

    def _close_registration(self, registration) -> None:
        try:
            registration.close()
        except Exception as e:
            logger.warning(f"Error closing Firebase listener: {e}")

    def _on_event(self, event: db.Event) -> None:
        # Runs on the SDK listener thread
        if self._closed:
            return
        try:
            self._loop.call_soon_threadsafe(
                self._deliver, event.event_type, event.path, event.data
            )
        except RuntimeError:
            # Loop already closed
            pass

    def _deliver(self, event_type: str, path: str, data: Any) -> None:
        if self._closed:
            logger.debug("Dropping listener event after detach")
            return
        self._mirror = apply_event(self._mirror, event_type, path, data)
        self._on_change(ContentSnapshot.from_remote(self._mirror))


class FirebaseBackend(RemoteStore):
    """Real-time remote store backed by a Firebase Realtime Database path."""

    kind = BackendKind.PUSH

    def __init__(self, ref: db.Reference):
        """Initialize the backend.

        Args:
            ref: Database reference holding the content document
        """
        self._ref = ref

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "FirebaseBackend":
        app = get_or_init_app(settings)
        return cls(db.reference(settings.firebase_path, app=app))

    async def fetch(self) -> Optional[ContentSnapshot]:
        try:
            data = await asyncio.to_thread(self._ref.get)
        except (FirebaseError, GoogleAuthError, ValueError) as e:
            logger.error(f"Error loading content from Firebase: {e}")
            return None

        logger.debug("Loaded content from Firebase")
        return ContentSnapshot.from_remote(data)

    async def save(self, snapshot: ContentSnapshot) -> SaveResult:
        try:
            await asyncio.to_thread(self._ref.set, snapshot.to_dict())
        except (FirebaseError, GoogleAuthError, ValueError, TypeError) as e:
            logger.error(f"Error saving content to Firebase: {e}")
            return SaveResult.FAILED

        logger.info("Content saved to Firebase")
        return SaveResult.SAVED

    def subscribe(self, on_change: ChangeCallback) -> FirebaseSubscription:
        subscription = FirebaseSubscription(
            self._ref, on_change, asyncio.get_running_loop()
        )
        subscription.start()
        return subscription
