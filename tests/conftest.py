"""Shared fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from acl_inspector.credentials import Capability, Credential

NOW = datetime(2025, 10, 23, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def valid_full_credential():
    return Credential(
        access_token="access-full",
        refresh_token="refresh-1",
        expires_at=NOW + timedelta(hours=1),
        capability=Capability.FULL,
    )


@pytest.fixture
def expired_full_credential():
    return Credential(
        access_token="access-stale",
        refresh_token="refresh-1",
        expires_at=NOW - timedelta(minutes=5),
        capability=Capability.FULL,
    )
