"""Tests for the OAuth refresh transport."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import requests

from acl_inspector.errors import RefreshFailed
from acl_inspector.oauth import DEFAULT_CLIENT_ID, TOKEN_URL, OAuthRefreshTransport


def response(status_code, payload=None):
    resp = MagicMock()
    resp.status_code = status_code
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


@pytest.fixture
def session():
    return MagicMock()


class TestOAuthRefreshTransport:
    """OAuthRefreshTransport.refresh tests."""

    def test_posts_refresh_grant(self, session, clock):
        session.post.return_value = response(200, {
            "access_token": "new-access",
            "refresh_token": "new-refresh",
            "expires_in": 1800,
            "scope": "Files.ReadWrite",
        })
        grant = OAuthRefreshTransport(session=session, clock=clock).refresh("old-refresh")

        args, kwargs = session.post.call_args
        assert args == (TOKEN_URL,)
        assert kwargs["data"]["grant_type"] == "refresh_token"
        assert kwargs["data"]["refresh_token"] == "old-refresh"
        assert kwargs["data"]["client_id"] == DEFAULT_CLIENT_ID
        assert "client_secret" not in kwargs["data"]
        assert kwargs["timeout"] == 30

        assert grant.access_token == "new-access"
        assert grant.refresh_token == "new-refresh"
        assert grant.expires_at == clock.now + timedelta(seconds=1800)
        assert grant.scope == "Files.ReadWrite"

    def test_client_secret_sent_when_configured(self, session, clock):
        session.post.return_value = response(200, {"access_token": "a"})
        OAuthRefreshTransport(client_secret="s3cret", session=session, clock=clock).refresh("r")
        assert session.post.call_args.kwargs["data"]["client_secret"] == "s3cret"

    def test_default_expiry(self, session, clock):
        session.post.return_value = response(200, {"access_token": "a"})
        grant = OAuthRefreshTransport(session=session, clock=clock).refresh("r")
        assert grant.expires_at == clock.now + timedelta(seconds=3600)
        assert grant.refresh_token is None

    def test_invalid_grant(self, session, clock):
        session.post.return_value = response(400, {
            "error": "invalid_grant",
            "error_description": "AADSTS70000: The refresh token has expired.\r\nTrace ID: 1",
        })
        with pytest.raises(RefreshFailed) as exc_info:
            OAuthRefreshTransport(session=session, clock=clock).refresh("r")
        assert exc_info.value.reason == "invalid_grant: AADSTS70000: The refresh token has expired."

    def test_non_json_error(self, session, clock):
        session.post.return_value = response(502, ValueError("no json"))
        with pytest.raises(RefreshFailed, match="HTTP 502"):
            OAuthRefreshTransport(session=session, clock=clock).refresh("r")

    def test_network_error(self, session, clock):
        session.post.side_effect = requests.exceptions.ConnectTimeout("timed out")
        with pytest.raises(RefreshFailed, match="network error"):
            OAuthRefreshTransport(session=session, clock=clock).refresh("r")

    def test_missing_access_token(self, session, clock):
        session.post.return_value = response(200, {"token_type": "Bearer"})
        with pytest.raises(RefreshFailed):
            OAuthRefreshTransport(session=session, clock=clock).refresh("r")
