"""
Credential records and capability levels.

A Credential is immutable: a refresh produces a new record, it never edits
the old one. Persisted shape (token.json):

    {
      "accessToken": "...",
      "refreshToken": "..."            (optional),
      "expiresAt": "2025-10-23T12:30:00+00:00"  (optional),
      "capability": "read" | "full"
    }

Older token.json files written by the GUI sign-in use snake_case keys
(access_token, refresh_token, expires_at, scope); from_dict reads both.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional


class Capability(IntEnum):
    READ_ONLY = 1
    FULL = 2

    @property
    def wire(self) -> str:
        return "full" if self is Capability.FULL else "read"

    @classmethod
    def from_wire(cls, value: str) -> "Capability":
        value = (value or "").strip().lower()
        if value == "full":
            return cls.FULL
        if value in ("read", "read-only", "readonly"):
            return cls.READ_ONLY
        raise ValueError(f"Unknown capability: {value!r}")

    @classmethod
    def from_scope(cls, scope: Optional[str]) -> "Capability":
        """
        Derive capability from an OAuth scope string.

        Files.ReadWrite (or Files.ReadWrite.All) is enough to edit ACLs on
        OneDrive Personal; Sites.Manage.All is not required. Anything else,
        including a missing scope, is read-only.
        """
        if scope and "Files.ReadWrite" in scope:
            return cls.FULL
        return cls.READ_ONLY


class CredentialState(Enum):
    VALID = "valid"
    EXPIRED = "expired"
    UNKNOWN = "unknown"
    REFRESHING = "refreshing"
    EXHAUSTED = "exhausted"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing 'Z', nanosecond fractions (as written by rclone, e.g.
    2025-07-23T15:50:44.457921153+10:00) and naive values, which are taken as
    UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat only takes 3 or 6 fractional digits on older interpreters
    text = re.sub(r"\.(\d+)", lambda m: "." + (m.group(1) + "000000")[:6], text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    capability: Capability = Capability.READ_ONLY
    source: str = field(default="token.json", compare=False)

    def __repr__(self) -> str:
        return (f"Credential(capability={self.capability.wire}, expires_at={self.expires_at}, "
                f"refreshable={bool(self.refresh_token)}, source={self.source})")

    def state(self, now: Optional[datetime] = None) -> CredentialState:
        if self.expires_at is None:
            return CredentialState.UNKNOWN
        if (now or utcnow()) >= self.expires_at:
            return CredentialState.EXPIRED
        return CredentialState.VALID

    def satisfies(self, required: Capability) -> bool:
        return self.capability >= required

    def refreshed(self, access_token: str, refresh_token: Optional[str] = None,
                  expires_at: Optional[datetime] = None, scope: Optional[str] = None) -> "Credential":
        """
        Build the successor of this credential after a refresh.

        A rotated refresh token replaces the old one; if the endpoint does not
        return one, the old one is kept. Capability is kept unless the grant
        reports a scope.
        """
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            expires_at=expires_at,
            capability=Capability.from_scope(scope) if scope else self.capability,
        )

    def expired_copy(self, now: Optional[datetime] = None) -> "Credential":
        return replace(self, expires_at=now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        data = {"accessToken": self.access_token}
        if self.refresh_token:
            data["refreshToken"] = self.refresh_token
        if self.expires_at is not None:
            data["expiresAt"] = format_timestamp(self.expires_at)
        data["capability"] = self.capability.wire
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "token.json") -> "Credential":
        """
        Load a credential from its persisted form.

        Raises:
            ValueError: if there is no access token or a field cannot be parsed
        """
        access_token = data.get("accessToken") or data.get("access_token")
        if not access_token:
            raise ValueError("No access token in credential record")

        expires_raw = data.get("expiresAt") or data.get("expires_at")
        expires_at = parse_timestamp(expires_raw) if expires_raw else None

        if data.get("capability"):
            capability = Capability.from_wire(data["capability"])
        else:
            capability = Capability.from_scope(data.get("scope"))

        return cls(
            access_token=access_token.strip(),
            refresh_token=data.get("refreshToken") or data.get("refresh_token") or None,
            expires_at=expires_at,
            capability=capability,
            source=source,
        )
