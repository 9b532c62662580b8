"""Tests for the Firebase Realtime Database backend."""

import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from firebase_admin import exceptions
from google.auth.exceptions import RefreshError

from shopsync.backends import firebase
from shopsync.backends.base import SaveResult
from shopsync.backends.firebase import FirebaseBackend, apply_event, get_or_init_app
from shopsync.config import SyncSettings
from shopsync.exceptions import ConfigError
from shopsync.snapshot import ContentSnapshot

CONTENT = {"shop": [{"id": 1, "name": "Tee", "images": ["tee.png"]}]}


def event(event_type, path, data):
    return SimpleNamespace(event_type=event_type, path=path, data=data)


def fire_from_thread(callback, *events):
    """Deliver listener events the way the SDK does: from another thread."""

    def run():
        for e in events:
            callback(e)

    thread = threading.Thread(target=run)
    thread.start()
    thread.join()


class TestApplyEvent:
    def test_put_at_root_replaces_everything(self):
        assert apply_event({"old": 1}, "put", "/", CONTENT) == CONTENT

    def test_put_at_child_path(self):
        tree = apply_event(CONTENT, "put", "/shop/0/name", "Renamed")

        snapshot = ContentSnapshot.from_remote(tree)
        assert snapshot.shop[0].name == "Renamed"
        assert CONTENT["shop"][0]["name"] == "Tee"

    def test_put_null_deletes(self):
        tree = apply_event({"shop": {"0": {"id": 1}}, "gallery": []}, "put", "/shop", None)

        assert "shop" not in tree

    def test_patch_merges_children(self):
        tree = apply_event(
            {"shop": [{"id": 1}], "gallery": [{"id": 2}]},
            "patch",
            "/",
            {"gallery": None, "orders/0": {"id": 7}},
        )

        assert "gallery" not in tree
        assert tree["orders"] == {"0": {"id": 7}}
        assert tree["shop"] == [{"id": 1}]

    def test_unknown_event_is_ignored(self):
        assert apply_event(CONTENT, "keep-alive", "/", None) is CONTENT


class TestFirebaseBackend:
    @pytest.mark.asyncio
    async def test_fetch(self):
        ref = MagicMock()
        ref.get.return_value = CONTENT

        snapshot = await FirebaseBackend(ref).fetch()

        assert snapshot.shop[0].name == "Tee"

    @pytest.mark.asyncio
    async def test_fetch_empty_database(self):
        ref = MagicMock()
        ref.get.return_value = None

        snapshot = await FirebaseBackend(ref).fetch()

        assert snapshot is not None
        assert snapshot.shop == []

    @pytest.mark.asyncio
    async def test_fetch_unavailable(self):
        ref = MagicMock()
        ref.get.side_effect = exceptions.UnavailableError("down")

        backend = FirebaseBackend(ref)

        assert await backend.fetch() is None
        assert (await backend.load()).shop == []

    @pytest.mark.asyncio
    async def test_fetch_credential_refresh_failure(self):
        ref = MagicMock()
        ref.get.side_effect = RefreshError("token expired")

        assert await FirebaseBackend(ref).fetch() is None

    @pytest.mark.asyncio
    async def test_save_credential_refresh_failure(self):
        ref = MagicMock()
        ref.set.side_effect = RefreshError("token expired")

        result = await FirebaseBackend(ref).save(ContentSnapshot())

        assert result is SaveResult.FAILED

    @pytest.mark.asyncio
    async def test_save_overwrites_document(self):
        ref = MagicMock()
        snapshot = ContentSnapshot.from_remote(CONTENT)

        result = await FirebaseBackend(ref).save(snapshot)

        assert result is SaveResult.SAVED
        ref.set.assert_called_once_with(snapshot.to_dict())

    @pytest.mark.asyncio
    async def test_save_failure(self):
        ref = MagicMock()
        ref.set.side_effect = exceptions.PermissionDeniedError("rules")

        result = await FirebaseBackend(ref).save(ContentSnapshot())

        assert result is SaveResult.FAILED


class TestSubscription:
    @pytest.mark.asyncio
    async def test_events_are_delivered_on_the_loop(self, wait_until):
        ref = MagicMock()
        received = []
        backend = FirebaseBackend(ref)

        subscription = backend.subscribe(received.append)
        await wait_until(lambda: ref.listen.called)
        await wait_until(lambda: subscription._registration is not None)
        callback = ref.listen.call_args.args[0]

        fire_from_thread(
            callback,
            event("put", "/", CONTENT),
            event("put", "/shop/0/name", "Renamed"),
        )
        await wait_until(lambda: len(received) == 2)

        assert received[0].shop[0].name == "Tee"
        assert received[1].shop[0].name == "Renamed"
        assert subscription.active

        backend.unsubscribe(subscription)
        assert not subscription.active
        ref.listen.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_queued_events_dropped_after_close(self, wait_until):
        ref = MagicMock()
        received = []
        subscription = FirebaseBackend(ref).subscribe(received.append)
        await wait_until(lambda: subscription._registration is not None)
        callback = ref.listen.call_args.args[0]

        fire_from_thread(callback, event("put", "/", CONTENT))
        subscription.close()
        subscription.close()
        await wait_until(lambda: subscription._future.done())
        fire_from_thread(callback, event("put", "/", CONTENT))

        assert received == []

    @pytest.mark.asyncio
    async def test_close_before_listener_starts(self, wait_until):
        ref = MagicMock()
        registration = ref.listen.return_value
        subscription = FirebaseBackend(ref).subscribe(lambda snapshot: None)

        subscription.close()
        await wait_until(lambda: registration.close.called)

        assert not subscription.active

    @pytest.mark.asyncio
    async def test_listener_start_failure(self, wait_until):
        ref = MagicMock()
        ref.listen.side_effect = exceptions.UnavailableError("down")

        subscription = FirebaseBackend(ref).subscribe(lambda snapshot: None)
        await wait_until(lambda: subscription._future.done())
        await wait_until(lambda: not subscription.active)


class TestAppInit:
    def test_existing_app_is_reused(self):
        app = object()
        with patch.object(firebase.firebase_admin, "get_app", return_value=app):
            assert get_or_init_app(SyncSettings(backend="push")) is app

    def test_requires_database_url(self):
        with patch.object(firebase.firebase_admin, "get_app", side_effect=ValueError):
            with pytest.raises(ConfigError):
                get_or_init_app(SyncSettings(backend="push"))

    def test_initializes_named_app_with_certificate(self):
        settings = SyncSettings(
            backend="push",
            firebase_database_url="https://shop.firebaseio.com",
            firebase_credentials="/secrets/service-account.json",
        )

        with patch.object(
            firebase.firebase_admin, "get_app", side_effect=ValueError
        ), patch.object(firebase.credentials, "Certificate") as certificate, patch.object(
            firebase.firebase_admin, "initialize_app"
        ) as initialize_app:
            get_or_init_app(settings)

        certificate.assert_called_once_with("/secrets/service-account.json")
        initialize_app.assert_called_once_with(
            certificate.return_value,
            {"databaseURL": "https://shop.firebaseio.com"},
            name="shopsync",
        )

    def test_from_settings_uses_configured_path(self):
        settings = SyncSettings(
            backend="push", firebase_database_url="https://shop.firebaseio.com"
        )

        with patch.object(firebase, "get_or_init_app") as get_app, patch.object(
            firebase.db, "reference"
        ) as reference:
            backend = FirebaseBackend.from_settings(settings)

        reference.assert_called_once_with("content", app=get_app.return_value)
        assert backend._ref is reference.return_value
