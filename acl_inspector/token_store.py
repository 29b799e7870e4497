"""
Process-wide credential store and its on-disk persistence.

TokenStore holds the single authoritative Credential. Each replacement bumps
a generation counter; the generation identifies "this particular credential"
for single-flight refresh, so a caller holding a stale generation can tell
that someone else already refreshed.
"""

import json
import logging
import os
import tempfile
import threading
from typing import Optional, Protocol, Tuple

from .credentials import Credential

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_FILE = "./token.json"


class CredentialPersistence(Protocol):
    def load(self) -> Optional[Credential]:
        ...

    def save(self, credential: Credential) -> None:
        ...


class JsonFileCredentialPersistence:
    """
    Read and write a credential as JSON (token.json).

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash never leaves a half-written token file. The file is
    created with mode 0600.
    """

    def __init__(self, path: str = DEFAULT_TOKEN_FILE):
        self.path = os.path.expanduser(path)

    def load(self) -> Optional[Credential]:
        if not os.path.exists(self.path):
            logger.debug("Token file %s not found", self.path)
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            return Credential.from_dict(data, source="token.json")
        except (OSError, ValueError) as e:
            logger.warning("Could not read token file %s: %s", self.path, e)
            return None

    def save(self, credential: Credential) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(prefix=".token-", suffix=".json", dir=directory)
        try:
            os.chmod(tmp_path, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(credential.to_dict(), fh, indent=2)
                fh.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug("Saved %s credential to %s", credential.capability.wire, self.path)


class TokenStore:
    """Lock-guarded holder of the current credential."""

    def __init__(self, credential: Optional[Credential] = None):
        self._lock = threading.Lock()
        self._credential = credential
        self._generation = 0

    @classmethod
    def from_persistence(cls, persistence: CredentialPersistence) -> "TokenStore":
        return cls(persistence.load())

    def snapshot(self) -> Tuple[Optional[Credential], int]:
        with self._lock:
            return self._credential, self._generation

    def get(self) -> Optional[Credential]:
        return self.snapshot()[0]

    @property
    def generation(self) -> int:
        return self.snapshot()[1]

    def replace(self, credential: Credential, expected_generation: Optional[int] = None) -> bool:
        """
        Install a new credential.

        Args:
            credential: The replacement
            expected_generation: If given, replace only when the store still
                holds that generation

        Returns:
            True if the store was updated
        """
        with self._lock:
            if expected_generation is not None and expected_generation != self._generation:
                return False
            self._credential = credential
            self._generation += 1
            return True

    def serialized(self) -> Optional[str]:
        credential = self.get()
        if credential is None:
            return None
        return json.dumps(credential.to_dict(), indent=2)
