"""
Microsoft Graph API access for OneDrive items and permissions.

Every request first obtains a credential through the CapabilityGate, so read
calls work with the read-only rclone token while invite/remove insist on a
full-permission token. Non-2xx responses and network failures are raised as
TransportError; nothing here retries.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .coordinator import CapabilityGate, OperationKind
from .errors import TransportError
from .phantom import ExistenceResult

logger = logging.getLogger(__name__)

GRAPH_API = "https://graph.microsoft.com/v1.0"

_SUCCESS = (200, 201, 204)


def build_graph_api_url(endpoint: str) -> str:
    return f"{GRAPH_API}{endpoint}"


def _error_message(resp) -> str:
    try:
        error = resp.json().get("error", {})
        if isinstance(error, dict) and error.get("code"):
            return f"{error['code']}: {error.get('message', '')}".rstrip(": ")
    except (ValueError, AttributeError):
        pass
    return (resp.text or "")[:300]


class GraphClient:
    """
    Thin wrapper around the OneDrive endpoints the inspector needs.

    Args:
        gate: Capability policy consulted before every request
        session: requests session (one is created when omitted)
        timeout: Per-request timeout in seconds; a timeout is a TransportError
    """

    def __init__(self, gate: CapabilityGate, session: Optional[requests.Session] = None, timeout: float = 30):
        self.gate = gate
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, operation: OperationKind, method: str, url: str, **kwargs) -> requests.Response:
        credential = self.gate.require(operation)
        headers = {"Authorization": f"Bearer {credential.access_token}"}
        headers.update(kwargs.pop("headers", {}))

        logger.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise TransportError(None, str(e)) from e

        if resp.status_code == 401:
            self.gate.coordinator.expire(credential)
        if resp.status_code not in _SUCCESS:
            raise TransportError(resp.status_code, _error_message(resp))
        return resp

    def get_item(self, item_path: str) -> Dict[str, Any]:
        """Look up an item by path; "" or "/" is the drive root."""
        path = item_path.strip("/")
        if path:
            url = build_graph_api_url(f"/me/drive/root:/{quote(path)}")
        else:
            url = build_graph_api_url("/me/drive/root")
        return self._request(OperationKind.READ_METADATA, "GET", url).json()

    def get_item_by_id(self, item_id: str) -> Dict[str, Any]:
        url = build_graph_api_url(f"/me/drive/items/{item_id}")
        return self._request(OperationKind.READ_METADATA, "GET", url).json()

    def get_item_id(self, item_path: str) -> str:
        item_id = self.get_item(item_path).get("id")
        if not item_id:
            raise TransportError(200, f"No item ID found in response for '{item_path}'")
        return item_id

    def fetch_permissions(self, item_id: str) -> List[Dict[str, Any]]:
        """Return the raw permission records of an item, in API order."""
        url = build_graph_api_url(f"/me/drive/items/{item_id}/permissions")
        return self._request(OperationKind.LIST_PERMISSIONS, "GET", url).json().get("value", [])

    def list_children(self, item_id: str) -> List[Dict[str, Any]]:
        children = []
        url = build_graph_api_url(f"/me/drive/items/{item_id}/children")
        while url:
            data = self._request(OperationKind.SCAN, "GET", url).json()
            children.extend(data.get("value", []))
            url = data.get("@odata.nextLink")
        return children

    def item_exists(self, item_id: str) -> ExistenceResult:
        """
        Existence probe used by phantom detection.

        Raises:
            TransportError: for anything other than found / 404
        """
        url = build_graph_api_url(f"/me/drive/items/{item_id}")
        try:
            self._request(OperationKind.PROBE_EXISTENCE, "GET", url, params={"$select": "id"})
        except TransportError as e:
            if e.is_not_found:
                return ExistenceResult.NOT_FOUND
            raise
        return ExistenceResult.FOUND

    def invite(self, item_id: str, email: str, role: str = "write", message: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Send a sharing invitation (requireSignIn) for one recipient.

        Returns:
            The created permission records
        """
        url = build_graph_api_url(f"/me/drive/items/{item_id}/invite")
        body = {
            "requireSignIn": True,
            "sendInvitation": True,
            "roles": [role],
            "recipients": [{"email": email}],
            "message": message or f"You have been granted {role} access to this item.",
        }
        resp = self._request(OperationKind.INVITE, "POST", url, json=body,
                             headers={"Content-Type": "application/json"})
        data = resp.json() if resp.content else {}
        return data.get("value", [data] if data else [])

    def remove_permission(self, item_id: str, permission_id: str) -> None:
        url = build_graph_api_url(f"/me/drive/items/{item_id}/permissions/{permission_id}")
        self._request(OperationKind.REMOVE_PERMISSION, "DELETE", url)

    def get_item_path(self, item_id: str) -> str:
        """Get the full path of an item using its parent chain."""
        path_parts = []
        current_id = item_id

        try:
            while current_id:
                item_data = self.get_item_by_id(current_id)
                path_parts.insert(0, item_data.get("name", "Unknown"))

                parent_ref = item_data.get("parentReference")
                if not parent_ref or parent_ref.get("path") == "/drive/root:":
                    break
                current_id = parent_ref.get("id")
        except TransportError as e:
            logger.debug("Stopped resolving path of %s: %s", item_id, e)

        # Remove 'root' from path if present
        if path_parts and path_parts[0].lower() == "root":
            path_parts = path_parts[1:]

        return "/".join(path_parts) if path_parts else "Unknown"
