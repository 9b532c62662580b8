"""Tests for the staleness policy."""

from datetime import datetime, timedelta, timezone

from shopsync.staleness import DEFAULT_THRESHOLD, StalenessPolicy

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_never_synced_is_outdated():
    assert StalenessPolicy().is_outdated(None, now=NOW)


def test_recent_sync_is_fresh():
    policy = StalenessPolicy()

    assert not policy.is_outdated(NOW - timedelta(minutes=59), now=NOW)


def test_exactly_at_threshold_is_not_outdated():
    policy = StalenessPolicy()

    assert not policy.is_outdated(NOW - DEFAULT_THRESHOLD, now=NOW)
    assert policy.is_outdated(NOW - DEFAULT_THRESHOLD - timedelta(seconds=1), now=NOW)


def test_custom_threshold():
    policy = StalenessPolicy(timedelta(minutes=5))

    assert policy.is_outdated(NOW - timedelta(minutes=6), now=NOW)
    assert not policy.is_outdated(NOW - timedelta(minutes=4), now=NOW)


def test_defaults_to_current_time():
    policy = StalenessPolicy()

    assert not policy.is_outdated(datetime.now(timezone.utc))
    assert policy.is_outdated(datetime.now(timezone.utc) - timedelta(hours=2))
