"""
Credential lifecycle: expiry checks, single-flight refresh, capability fallback.

Every operation that talks to Graph asks the coordinator for a credential of
the capability it needs:

    coordinator = build_coordinator(load_settings())
    gate = CapabilityGate(coordinator)
    credential = gate.require(OperationKind.INVITE)   # raises CapabilityError

The refresh grant is not idempotent - a refresh token may be rotated and the
old one invalidated - so at most one refresh runs per credential generation.
Concurrent callers wait for it and share its outcome. A failed refresh is
remembered for its generation: later callers get the same RefreshFailed
without another token request, until install() or a successful refresh
moves the store to a new generation.
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from .config_utils import RcloneCredentialSource, Settings
from .credentials import Capability, Credential, CredentialState, utcnow
from .errors import CapabilityError, RefreshFailed
from .oauth import OAuthRefreshTransport
from .token_store import CredentialPersistence, JsonFileCredentialPersistence, TokenStore

logger = logging.getLogger(__name__)

# Store re-reads allowed per acquire; a second round covers a refresh that
# finished in another thread just before ours started
_MAX_ROUNDS = 3


class _Flight:
    def __init__(self):
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self.waiters = 0


class SingleFlight:
    """
    Collapse concurrent calls with the same key into one execution.

    The first caller for a key runs the function; callers arriving while it
    runs block and receive the same result or the same exception. If the
    leader is interrupted (KeyboardInterrupt and the like), waiters receive
    the error built by on_cancel and the leader re-raises the interruption.
    """

    def __init__(self, on_cancel: Callable[[], Exception] = lambda: RuntimeError("cancelled")):
        self._lock = threading.Lock()
        self._flights: Dict[Hashable, _Flight] = {}
        self._on_cancel = on_cancel

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._flights

    def waiters(self, key: Hashable) -> int:
        """Number of callers currently blocked on the flight for key."""
        with self._lock:
            flight = self._flights.get(key)
            return flight.waiters if flight is not None else 0

    def do(self, key: Hashable, fn: Callable[[], Any]) -> Any:
        with self._lock:
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flights[key] = flight
            else:
                flight.waiters += 1

        if not leader:
            logger.debug("Joining in-flight call for %r", key)
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.result

        try:
            flight.result = fn()
        except Exception as e:
            flight.error = e
            raise
        except BaseException:
            flight.error = self._on_cancel()
            raise
        finally:
            with self._lock:
                del self._flights[key]
            flight.done.set()
        return flight.result


class CredentialLifecycleCoordinator:
    """
    Owner of the process-wide credential.

    Args:
        store: Holder of the current credential
        refresh_transport: Object with refresh(refresh_token) -> TokenGrant
        persistence: Where refreshed credentials are saved (optional)
        fallback_source: Object with load() -> Optional[Credential], used when
            the stored credential cannot serve a request
        clock: Returns the current aware UTC datetime
    """

    def __init__(self, store: TokenStore, refresh_transport=None,
                 persistence: Optional[CredentialPersistence] = None,
                 fallback_source=None, clock: Callable = utcnow):
        self._store = store
        self._transport = refresh_transport
        self._persistence = persistence
        self._fallback_source = fallback_source
        self._fallback_loaded = False
        self._fallback_credential: Optional[Credential] = None
        self._clock = clock
        self._lock = threading.Lock()
        self._flights = SingleFlight(on_cancel=lambda: RefreshFailed("refresh cancelled"))
        self._rejected_generation: Optional[int] = None
        self._exhausted_generation: Optional[int] = None
        self._failed_refresh: Optional[Tuple[int, RefreshFailed]] = None

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def state(self) -> Optional[CredentialState]:
        """State of the stored credential, or None when there is none."""
        credential, generation = self._store.snapshot()
        if credential is None:
            return None
        if self._flights.in_flight(generation):
            return CredentialState.REFRESHING
        with self._lock:
            if self._exhausted_generation == generation:
                return CredentialState.EXHAUSTED
        return self._state_of(credential, generation)

    def _state_of(self, credential: Credential, generation: int) -> CredentialState:
        with self._lock:
            if self._rejected_generation == generation:
                return CredentialState.EXPIRED
        return credential.state(self._clock())

    def acquire(self, required: Capability = Capability.READ_ONLY) -> Credential:
        """
        Return a usable credential with at least the required capability.

        Raises:
            CapabilityError: if neither the stored credential (after a refresh
                if needed) nor the fallback source can serve the request
        """
        for _ in range(_MAX_ROUNDS):
            credential, generation = self._store.snapshot()
            if credential is None:
                return self._fall_back(required, None, "no stored credential")

            state = self._state_of(credential, generation)

            if state in (CredentialState.VALID, CredentialState.UNKNOWN):
                if state is CredentialState.UNKNOWN:
                    logger.debug("Stored credential has no expiry information, using it as-is")
                if credential.satisfies(required):
                    return credential
                return self._fall_back(
                    required, credential.capability,
                    f"stored token only has '{credential.capability.wire}' capability")

            if not credential.refresh_token:
                return self._fall_back(required, None, "stored token expired and has no refresh token")
            if not credential.satisfies(required):
                # A refresh keeps the granted scopes, it cannot raise capability
                return self._fall_back(
                    required, None,
                    f"stored token expired and refresh would only yield '{credential.capability.wire}' capability")
            if self._transport is None:
                return self._fall_back(required, None, "stored token expired and no refresh transport is configured")

            try:
                self._refresh(credential, generation)
            except RefreshFailed as e:
                return self._fall_back(required, None, f"token expired and {e}",
                                       cause=e, exhausted_generation=generation)

        return self._fall_back(required, None, "stored token is still expired after refresh")

    def _previous_failure(self, generation: int) -> Optional[RefreshFailed]:
        with self._lock:
            if self._failed_refresh is not None and self._failed_refresh[0] == generation:
                return self._failed_refresh[1]
        return None

    def _refresh(self, credential: Credential, generation: int) -> Credential:
        failure = self._previous_failure(generation)
        if failure is not None:
            logger.debug("Refresh for generation %d already failed, not retrying", generation)
            raise failure

        def run() -> Credential:
            current, current_generation = self._store.snapshot()
            if current_generation != generation:
                # Another caller already refreshed; its refresh token may have rotated ours away
                logger.debug("Credential generation %d already replaced, skipping refresh", generation)
                return current

            # A caller that snapshotted before a failed flight ended lands here after it is gone
            failure = self._previous_failure(generation)
            if failure is not None:
                raise failure

            logger.info("Access token expired, refreshing")
            try:
                grant = self._transport.refresh(credential.refresh_token)
            except RefreshFailed as e:
                logger.warning("Token refresh failed: %s", e)
                with self._lock:
                    self._failed_refresh = (generation, e)
                raise
            refreshed = credential.refreshed(grant.access_token, grant.refresh_token, grant.expires_at, grant.scope)
            self._store.replace(refreshed)
            logger.info("Token refresh successful, new token expires at %s", refreshed.expires_at)

            if self._persistence is not None:
                try:
                    self._persistence.save(refreshed)
                except OSError as e:
                    logger.error("Could not save refreshed token: %s", e)
            return refreshed

        return self._flights.do(generation, run)

    def _load_fallback(self) -> Optional[Credential]:
        """Return the fallback credential, re-reading its source once the cached one expires."""
        with self._lock:
            loaded = self._fallback_loaded
            cached = self._fallback_credential
        if loaded and (cached is None or cached.state(self._clock()) is not CredentialState.EXPIRED):
            return cached

        # rclone renews its token on disk independently of this process
        fallback = self._fallback_source.load()
        with self._lock:
            self._fallback_credential = fallback
            self._fallback_loaded = True
        return fallback

    def _fall_back(self, required: Capability, available: Optional[Capability], reason: str,
                   cause: Optional[BaseException] = None,
                   exhausted_generation: Optional[int] = None) -> Credential:
        hint = ""
        if self._fallback_source is not None:
            fallback = self._load_fallback()
            if fallback is not None:
                if fallback.state(self._clock()) is CredentialState.EXPIRED:
                    reason += f"; fallback token from {fallback.source} has expired"
                    hint = getattr(self._fallback_source, "reconnect_hint", "")
                elif fallback.satisfies(required):
                    logger.info("Using fallback %s token from %s (%s)",
                                fallback.capability.wire, fallback.source, reason)
                    return fallback
                elif available is None or fallback.capability > available:
                    available = fallback.capability

        if exhausted_generation is not None:
            with self._lock:
                self._exhausted_generation = exhausted_generation

        raise CapabilityError(required, available, reason, hint) from cause

    def expire(self, credential: Credential) -> None:
        """
        Mark the stored credential as expired after the API rejected it.

        Ignored if the store has moved on to a different credential.
        """
        current, generation = self._store.snapshot()
        if current is not None and current == credential:
            with self._lock:
                self._rejected_generation = generation
            logger.info("Access token rejected by server, will refresh on next use")

    def install(self, credential: Credential) -> None:
        """Install a credential obtained through the interactive sign-in flow."""
        self._store.replace(credential)
        if self._persistence is not None:
            self._persistence.save(credential)


class OperationKind(Enum):
    LIST_PERMISSIONS = "list_permissions"
    READ_METADATA = "read_metadata"
    PROBE_EXISTENCE = "probe_existence"
    SCAN = "scan"
    INVITE = "invite"
    REMOVE_PERMISSION = "remove_permission"


OPERATION_CAPABILITIES = {
    OperationKind.LIST_PERMISSIONS: Capability.READ_ONLY,
    OperationKind.READ_METADATA: Capability.READ_ONLY,
    OperationKind.PROBE_EXISTENCE: Capability.READ_ONLY,
    OperationKind.SCAN: Capability.READ_ONLY,
    OperationKind.INVITE: Capability.FULL,
    OperationKind.REMOVE_PERMISSION: Capability.FULL,
}


class CapabilityGate:
    """Single place where operations are mapped to the capability they need."""

    def __init__(self, coordinator: CredentialLifecycleCoordinator):
        self.coordinator = coordinator

    def require(self, operation: OperationKind) -> Credential:
        return self.coordinator.acquire(OPERATION_CAPABILITIES[operation])


def build_coordinator(settings: Settings) -> CredentialLifecycleCoordinator:
    """Wire up token.json persistence, OAuth refresh and the rclone fallback."""
    persistence = JsonFileCredentialPersistence(settings.token_file)
    transport = OAuthRefreshTransport(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        scope=settings.scope,
        token_url=settings.token_url,
        timeout=settings.timeout,
    )
    return CredentialLifecycleCoordinator(
        store=TokenStore.from_persistence(persistence),
        refresh_transport=transport,
        persistence=persistence,
        fallback_source=RcloneCredentialSource(settings.remote),
    )
