"""Content-addressed, TTL-bound memoization of analysis results."""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    key: str
    value: T
    expires_at: float


class PromptCache(Generic[T]):
    """Thread-safe TTL cache keyed by request hash.

    Expired entries are evicted lazily on lookup; ``max_entries`` bounds
    memory by dropping the oldest insertion once the cache is full. Values
    are deep-copied in and out, so callers never share cached state.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def hash_prompt(
        prompt: str,
        project_path: str | None = None,
        ide_rules: Sequence[str] = (),
    ) -> str:
        """SHA-256 of the prompt, or of the canonical request when extras are present."""

        if project_path is None and not ide_rules:
            material = prompt
        else:
            material = json.dumps(
                {"prompt": prompt, "projectPath": project_path, "ideRules": list(ide_rules)},
                sort_keys=True,
                ensure_ascii=False,
            )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._store[key]
                LOGGER.debug("Cache entry %s expired", key[:12])
                return None
            return copy.deepcopy(entry.value)

    def set(self, key: str, value: T, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._store.pop(key, None)
            if len(self._store) >= self.max_entries:
                self._purge_expired_locked()
            while len(self._store) >= self.max_entries:
                self._store.popitem(last=False)
            self._store[key] = CacheEntry(
                key=key, value=copy.deepcopy(value), expires_at=self._clock() + ttl
            )

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_expired_locked()

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _purge_expired_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._store.items() if now >= entry.expires_at]
        for key in expired:
            del self._store[key]
        return len(expired)
