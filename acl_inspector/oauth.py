"""
OAuth token refresh against the Microsoft identity platform.

Only the refresh_token grant lives here. The interactive browser sign-in that
produces the first full-permission token.json is a separate tool.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, NamedTuple, Optional

import requests

from .credentials import utcnow
from .errors import RefreshFailed

logger = logging.getLogger(__name__)

TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"

# rclone's public OneDrive client id
DEFAULT_CLIENT_ID = "b15665d9-eda6-4092-8539-0eec376afd59"

DEFAULT_SCOPE = "Files.Read Files.ReadWrite Files.ReadWrite.All Sites.Manage.All offline_access"

# Applied when the endpoint omits expires_in
DEFAULT_EXPIRES_IN = 3600


class TokenGrant(NamedTuple):
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    scope: Optional[str]


class OAuthRefreshTransport:
    """
    Exchange a refresh token for a new access token.

    Refresh tokens may rotate: after a successful call the old refresh token
    can stop working, so callers must never run two refreshes with the same
    token concurrently.
    """

    def __init__(self, client_id: str = DEFAULT_CLIENT_ID, client_secret: Optional[str] = None,
                 scope: str = DEFAULT_SCOPE, token_url: str = TOKEN_URL, timeout: float = 30,
                 session: Optional[requests.Session] = None, clock: Callable = utcnow):
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.token_url = token_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clock = clock

    def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Raises:
            RefreshFailed: with the endpoint's error code (e.g. invalid_grant)
                or a network error description
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "scope": self.scope,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        logger.debug("Refreshing access token via %s", self.token_url)
        try:
            resp = self.session.post(self.token_url, data=data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise RefreshFailed(f"network error: {e}") from e

        if resp.status_code != 200:
            raise RefreshFailed(self._error_reason(resp))

        try:
            payload = resp.json()
        except ValueError as e:
            raise RefreshFailed("token endpoint returned invalid JSON") from e

        access_token = payload.get("access_token")
        if not access_token:
            raise RefreshFailed("no access_token in token refresh response")

        expires_in = payload.get("expires_in", DEFAULT_EXPIRES_IN)
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN

        logger.debug("Token refresh succeeded, new token valid for %ss", expires_in)
        return TokenGrant(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=self._clock() + timedelta(seconds=expires_in),
            scope=payload.get("scope"),
        )

    @staticmethod
    def _error_reason(resp) -> str:
        try:
            error = resp.json()
        except ValueError:
            return f"HTTP {resp.status_code}"
        code = error.get("error") if isinstance(error, dict) else None
        if code:
            description = error.get("error_description", "")
            return f"{code}: {description.splitlines()[0]}" if description else code
        return f"HTTP {resp.status_code}"
