"""
Phantom inheritance detection.

OneDrive sometimes reports a permission as inherited from an item that no
longer exists. Such entries cannot be removed by deleting the permission or by
editing the parent, so they are surfaced separately. Verifying the source
costs a network round trip, so results are cached per source id for a TTL.

Policy: a probe that fails with a transport error resolves to UNKNOWN, which
callers treat as "source exists". A timeout is never reported as PHANTOM.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_PHANTOM_TTL = 300.0


class ExistenceResult(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"


class ProbeResult(Enum):
    EXISTS = "exists"
    PHANTOM = "phantom"
    UNKNOWN = "unknown"


# Returns FOUND/NOT_FOUND, raises TransportError on any other outcome
ExistenceCheck = Callable[[str], ExistenceResult]


@dataclass(frozen=True)
class PhantomRecord:
    source_id: str
    exists: bool
    exists_as_of: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.exists_as_of < self.ttl

    @property
    def result(self) -> ProbeResult:
        return ProbeResult.EXISTS if self.exists else ProbeResult.PHANTOM


class PhantomDetector:
    """
    Cache-backed existence probe for inheritance sources.

    The cache is replace-only: records are never mutated. Concurrent probes of
    the same source may both hit the network; the last write wins, which is
    harmless because a record only depends on its source id.
    """

    def __init__(self, ttl: float = DEFAULT_PHANTOM_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._cache: Dict[str, PhantomRecord] = {}

    def cached(self, source_id: str) -> Optional[PhantomRecord]:
        record = self._cache.get(source_id)
        if record is not None and record.is_fresh(self._clock()):
            return record
        return None

    def probe(self, source_id: str, existence_check: ExistenceCheck) -> ProbeResult:
        record = self.cached(source_id)
        if record is not None:
            logger.debug("Phantom cache hit for %s: %s", source_id, record.result.value)
            return record.result

        try:
            outcome = existence_check(source_id)
        except TransportError as e:
            # Not cached: the next analysis gets to try again
            logger.warning("Could not verify inheritance source %s (%s); assuming it exists", source_id, e)
            return ProbeResult.UNKNOWN

        # Written only after the probe returned, so an interrupted probe leaves no entry
        record = PhantomRecord(
            source_id=source_id,
            exists=outcome is ExistenceResult.FOUND,
            exists_as_of=self._clock(),
            ttl=self.ttl,
        )
        self._cache[source_id] = record
        if not record.exists:
            logger.info("Inheritance source %s no longer exists (phantom)", source_id)
        return record.result

    def invalidate(self, source_id: str) -> None:
        self._cache.pop(source_id, None)

    def clear(self) -> None:
        self._cache.clear()
