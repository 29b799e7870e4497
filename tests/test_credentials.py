"""Tests for Credential, TokenStore and token.json persistence."""

import json
import os
import stat
from datetime import datetime, timedelta, timezone

import pytest

from acl_inspector.credentials import Capability, Credential, CredentialState, parse_timestamp
from acl_inspector.token_store import JsonFileCredentialPersistence, TokenStore

NOW = datetime(2025, 10, 23, 12, 0, 0, tzinfo=timezone.utc)


class TestCapability:
    """Capability tests."""

    def test_ordering(self):
        assert Capability.READ_ONLY < Capability.FULL

    @pytest.mark.parametrize("scope, expected", [
        ("Files.Read offline_access", Capability.READ_ONLY),
        ("Files.ReadWrite offline_access", Capability.FULL),
        ("Files.Read Files.ReadWrite.All", Capability.FULL),
        ("", Capability.READ_ONLY),
        (None, Capability.READ_ONLY),
    ])
    def test_from_scope(self, scope, expected):
        assert Capability.from_scope(scope) is expected

    def test_wire_values(self):
        assert Capability.from_wire("full") is Capability.FULL
        assert Capability.from_wire("read") is Capability.READ_ONLY
        assert Capability.FULL.wire == "full"
        with pytest.raises(ValueError):
            Capability.from_wire("admin")


class TestParseTimestamp:
    """parse_timestamp tests."""

    def test_rclone_nanoseconds_with_offset(self):
        parsed = parse_timestamp("2025-07-23T15:50:44.457921153+10:00")
        assert parsed == datetime(2025, 7, 23, 5, 50, 44, 457921, tzinfo=timezone.utc)

    def test_trailing_z(self):
        assert parse_timestamp("2025-10-23T12:00:00Z") == NOW

    def test_naive_is_utc(self):
        assert parse_timestamp("2025-10-23T12:00:00") == NOW


class TestCredential:
    """Credential tests."""

    def test_state(self):
        credential = Credential("a", expires_at=NOW)
        assert credential.state(NOW - timedelta(seconds=1)) is CredentialState.VALID
        assert credential.state(NOW) is CredentialState.EXPIRED
        assert Credential("a").state(NOW) is CredentialState.UNKNOWN

    def test_repr_hides_tokens(self):
        credential = Credential("secret-access", refresh_token="secret-refresh")
        assert "secret" not in repr(credential)

    def test_refreshed_keeps_refresh_token_and_capability(self):
        credential = Credential("a", "r1", NOW, Capability.FULL)
        refreshed = credential.refreshed("b", None, NOW + timedelta(hours=1))
        assert refreshed.refresh_token == "r1"
        assert refreshed.capability is Capability.FULL
        assert credential.access_token == "a"

    def test_refreshed_rotates_and_rederives_scope(self):
        credential = Credential("a", "r1", NOW, Capability.FULL)
        refreshed = credential.refreshed("b", "r2", NOW, scope="Files.Read")
        assert refreshed.refresh_token == "r2"
        assert refreshed.capability is Capability.READ_ONLY

    def test_from_dict_snake_case_with_scope(self):
        credential = Credential.from_dict({
            "access_token": "a",
            "refresh_token": "r",
            "expires_at": "2025-10-23T12:00:00+00:00",
            "scope": "Files.ReadWrite offline_access",
        })
        assert credential == Credential("a", "r", NOW, Capability.FULL)

    def test_from_dict_requires_access_token(self):
        with pytest.raises(ValueError):
            Credential.from_dict({"refreshToken": "r"})


class TestPersistence:
    """token.json round trip tests."""

    def test_round_trip(self, tmp_path):
        persistence = JsonFileCredentialPersistence(str(tmp_path / "token.json"))
        credential = Credential("access", "refresh", NOW + timedelta(microseconds=123), Capability.FULL)
        persistence.save(credential)
        loaded = persistence.load()
        assert loaded == credential
        assert loaded.access_token == credential.access_token
        assert loaded.refresh_token == credential.refresh_token
        assert loaded.expires_at == credential.expires_at
        assert loaded.capability is credential.capability

    def test_round_trip_without_optional_fields(self, tmp_path):
        persistence = JsonFileCredentialPersistence(str(tmp_path / "token.json"))
        credential = Credential("access")
        persistence.save(credential)
        assert persistence.load() == credential

    def test_persisted_shape(self, tmp_path):
        path = tmp_path / "token.json"
        JsonFileCredentialPersistence(str(path)).save(Credential("a", "r", NOW, Capability.FULL))
        assert json.loads(path.read_text()) == {
            "accessToken": "a",
            "refreshToken": "r",
            "expiresAt": "2025-10-23T12:00:00+00:00",
            "capability": "full",
        }

    @pytest.mark.skipif(os.name != "posix", reason="POSIX file modes")
    def test_file_mode(self, tmp_path):
        path = tmp_path / "token.json"
        JsonFileCredentialPersistence(str(path)).save(Credential("a"))
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_missing_or_corrupt_file_loads_none(self, tmp_path):
        path = tmp_path / "token.json"
        persistence = JsonFileCredentialPersistence(str(path))
        assert persistence.load() is None
        path.write_text("{not json")
        assert persistence.load() is None


class TestTokenStore:
    """TokenStore tests."""

    def test_replace_bumps_generation(self):
        store = TokenStore(Credential("a"))
        assert store.generation == 0
        assert store.replace(Credential("b"))
        assert store.snapshot() == (Credential("b"), 1)

    def test_replace_with_stale_generation_is_rejected(self):
        store = TokenStore(Credential("a"))
        store.replace(Credential("b"))
        assert not store.replace(Credential("c"), expected_generation=0)
        assert store.get() == Credential("b")

    def test_serialized(self):
        assert TokenStore().serialized() is None
        assert json.loads(TokenStore(Credential("a")).serialized()) == {"accessToken": "a", "capability": "read"}
