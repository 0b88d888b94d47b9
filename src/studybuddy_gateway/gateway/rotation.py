"""Counter-based selection of Gemini API keys.

Consecutive calls are grouped into batches of ``batch_size``; every call in a
batch gets the same key and the next batch moves to the next key in the pool.
"""
from __future__ import annotations
import threading
from typing import Sequence

from studybuddy_gateway.common.config import BATCH_SIZE
from studybuddy_gateway.common.errors import ConfigError
from studybuddy_gateway.common.schema import Credential


class CredentialRotator:
    """Thread-safe batched rotation over a fixed credential pool."""

    def __init__(self, pool: Sequence[Credential], batch_size: int = BATCH_SIZE) -> None:
        if not pool:
            raise ConfigError("Credential pool cannot be empty")
        if batch_size < 1:
            raise ConfigError("batch_size must be at least 1")
        self.pool = tuple(pool)
        self.batch_size = batch_size
        self._calls = 0
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        with self._lock:
            return self._calls

    def select(self) -> Credential:
        """Return the credential for this call and advance the counter."""
        with self._lock:
            index = (self._calls // self.batch_size) % len(self.pool)
            self._calls += 1
        return self.pool[index]

    def reset(self) -> None:
        with self._lock:
            self._calls = 0
