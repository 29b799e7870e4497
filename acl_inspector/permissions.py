"""
Typed permission records and the per-entry classifier.

Microsoft Graph returns permissions as loosely-typed JSON. This module
validates each record once, at the boundary, into a PermissionEntry whose
inheritance source and sharing link are optional typed fields. Everything
downstream works on PermissionEntry only.

Classification order (first match wins):
1. "owner" role     -> OWNER
2. inheritedFrom    -> INHERITED
3. link             -> LINK
4. anything else    -> UNIQUE
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .errors import MalformedEntryError

logger = logging.getLogger(__name__)

# Graph identity fields, personal accounts first
_IDENTITY_KEYS = ("grantedTo", "grantedToV2", "grantedToIdentities", "grantedToIdentitiesV2")


class PermissionTag(Enum):
    OWNER = "owner"
    INHERITED = "inherited"
    UNIQUE = "unique"
    LINK = "link"


@dataclass(frozen=True)
class InheritedFrom:
    """Claimed inheritance source of a permission (a Graph itemReference)."""
    source_id: Optional[str]
    source_path: Optional[str] = None
    source_container_id: Optional[str] = None


@dataclass(frozen=True)
class SharingLink:
    scope: Optional[str]
    type: Optional[str]
    url: Optional[str] = None


@dataclass(frozen=True)
class PermissionEntry:
    """One ACL grant on an item."""
    id: str
    roles: FrozenSet[str]
    granted_identity: Optional[Dict[str, Any]] = field(default=None, compare=False)
    inherited_from: Optional[InheritedFrom] = None
    link: Optional[SharingLink] = None

    def __post_init__(self):
        if self.inherited_from is not None and self.link is not None:
            raise MalformedEntryError(self.id, "both inheritedFrom and link are present")

    @classmethod
    def from_graph(cls, record: Any) -> "PermissionEntry":
        """
        Validate a raw Graph permission record.

        Raises:
            MalformedEntryError: if the record is not an object, has no id,
                has no roles list, or claims both inheritance and a link
        """
        if not isinstance(record, dict):
            raise MalformedEntryError(None, f"expected an object, got {type(record).__name__}")

        entry_id = record.get("id")
        if not entry_id:
            raise MalformedEntryError(None, "missing id")

        roles = record.get("roles")
        if not isinstance(roles, list):
            raise MalformedEntryError(entry_id, "missing roles")

        # An empty inheritedFrom object still claims inheritance
        inherited = record.get("inheritedFrom")
        link = record.get("link")
        if inherited is not None and link is not None:
            raise MalformedEntryError(entry_id, "both inheritedFrom and link are present")

        inherited_from = None
        if inherited is not None:
            if not isinstance(inherited, dict):
                raise MalformedEntryError(entry_id, "inheritedFrom is not an object")
            inherited_from = InheritedFrom(
                source_id=inherited.get("id"),
                source_path=inherited.get("path"),
                source_container_id=inherited.get("driveId"),
            )

        sharing_link = None
        if link is not None:
            if not isinstance(link, dict):
                raise MalformedEntryError(entry_id, "link is not an object")
            sharing_link = SharingLink(
                scope=link.get("scope"),
                type=link.get("type"),
                url=link.get("webUrl"),
            )

        identity = {key: record[key] for key in _IDENTITY_KEYS if record.get(key)}

        return cls(
            id=entry_id,
            roles=frozenset(str(role) for role in roles),
            granted_identity=identity or None,
            inherited_from=inherited_from,
            link=sharing_link,
        )

    @property
    def is_owner(self) -> bool:
        return "owner" in self.roles

    @property
    def is_inherited(self) -> bool:
        return self.inherited_from is not None

    def users(self) -> List[Tuple[str, str]]:
        """
        Extract all users this permission is granted to.

        Returns:
            List of (display_name, email) pairs; either may be empty
        """
        users = []
        if not self.granted_identity:
            return users

        for key in _IDENTITY_KEYS:
            value = self.granted_identity.get(key)
            identities = value if isinstance(value, list) else [value]
            for identity in identities:
                if isinstance(identity, dict) and identity.get("user"):
                    user = identity["user"]
                    users.append((user.get("displayName", "") or "", user.get("email", "") or ""))
        return users

    def grants_user(self, email: str) -> bool:
        target = email.lower()
        return any(user_email.lower() == target for _, user_email in self.users())


def classify(entry: PermissionEntry) -> PermissionTag:
    """Classify one validated entry. Total and side-effect free."""
    if entry.is_owner:
        return PermissionTag.OWNER
    if entry.inherited_from is not None:
        return PermissionTag.INHERITED
    if entry.link is not None:
        return PermissionTag.LINK
    return PermissionTag.UNIQUE


def parse_permissions(records: Iterable[Any]) -> Tuple[List[PermissionEntry], List[MalformedEntryError]]:
    """
    Validate a sequence of raw records, keeping the order of the good ones.

    Already-validated PermissionEntry objects pass through unchanged.

    Returns:
        Tuple of (entries, malformed) where malformed holds one error per
        rejected record
    """
    entries = []
    malformed = []
    for record in records:
        if isinstance(record, PermissionEntry):
            entries.append(record)
            continue
        try:
            entries.append(PermissionEntry.from_graph(record))
        except MalformedEntryError as e:
            logger.warning("Skipping %s", e)
            malformed.append(e)
    return entries, malformed


def has_explicit_user_permission(entries: Iterable[PermissionEntry], email: str) -> bool:
    """Check whether any non-owner, non-inherited entry grants access to email."""
    return bool(permission_ids_for_user(entries, email))


def permission_ids_for_user(entries: Iterable[PermissionEntry], email: str) -> List[str]:
    """Return ids of explicit (UNIQUE or LINK) entries granted to email."""
    ids = []
    for entry in entries:
        if classify(entry) in (PermissionTag.OWNER, PermissionTag.INHERITED):
            continue
        if entry.grants_user(email):
            ids.append(entry.id)
    return ids


def shared_users(entries: Iterable[PermissionEntry]) -> List[str]:
    """List distinct non-owner users (email, falling back to display name)."""
    users = []
    for entry in entries:
        if entry.is_owner:
            continue
        for display_name, email in entry.users():
            name = email or display_name
            if name and name not in users:
                users.append(name)
    return users
