"""
Error types shared by the ACL inspector core.

Every error raised by this package derives from ACLInspectorError so the CLI
can report one item's failure and carry on with the next.
"""

from typing import Optional


class ACLInspectorError(Exception):
    """Base class for all ACL inspector errors."""


class MalformedEntryError(ACLInspectorError):
    """A raw permission record could not be turned into a PermissionEntry."""

    def __init__(self, entry_id: Optional[str], reason: str):
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"Malformed permission entry {entry_id or '<no id>'}: {reason}")


class TransportError(ACLInspectorError):
    """
    A network call made on our behalf failed.

    Args:
        status: HTTP status code, or None for network failures and timeouts
        message: Response text or exception description
    """

    def __init__(self, status: Optional[int], message: str = ""):
        self.status = status
        self.message = message
        if status is None:
            super().__init__(f"Network error: {message}")
        else:
            super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class RefreshFailed(ACLInspectorError):
    """The token endpoint refused or could not complete a refresh."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Token refresh failed: {reason}")


class CapabilityError(ACLInspectorError):
    """
    No credential with the required capability is available.

    Always surfaced to the end user together with a remediation hint.
    """

    def __init__(self, required, available=None, reason: str = "", hint: str = ""):
        self.required = required
        self.available = available
        self.reason = reason
        self.hint = hint or "Re-authenticate through the interactive sign-in flow to obtain a full-permission token."
        available_text = available.wire if available is not None else "none"
        message = f"Operation requires '{required.wire}' capability (available: {available_text})"
        if reason:
            message += f" - {reason}"
        super().__init__(message)
