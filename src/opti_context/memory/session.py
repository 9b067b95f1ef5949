"""Bounded in-process history used for soft conversational continuity."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Iterable

from opti_context.types import ProductId, SessionEntry, SessionSnapshot


def _recent_unique(values: Iterable[str], limit: int) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))[:limit]


class SessionMemory:
    """Ring buffer of recent interactions, newest first in snapshots.

    Once ``max_items`` entries are held, recording a new one overwrites the
    oldest. Snapshots are immutable copies.
    """

    def __init__(self, max_items: int = 10, clock: Callable[[], float] = time.time) -> None:
        if max_items <= 0:
            raise ValueError("max_items must be positive")
        self.max_items = max_items
        self._clock = clock
        self._entries: deque[SessionEntry] = deque(maxlen=max_items)
        self._lock = threading.Lock()

    def record(
        self,
        products: Iterable[ProductId] = (),
        files: Iterable[str] = (),
        tool_name: str | None = None,
    ) -> SessionEntry:
        entry = SessionEntry(
            products=tuple(dict.fromkeys(products)),
            files=tuple(dict.fromkeys(files)),
            tool_name=tool_name,
            timestamp=self._clock(),
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            entries = tuple(reversed(self._entries))

        products = tuple(
            dict.fromkeys(product for entry in entries for product in entry.products)
        )[: self.max_items]
        return SessionSnapshot(
            entries=entries,
            recent_products=products,
            recent_files=_recent_unique((name for entry in entries for name in entry.files), self.max_items),
            recent_tools=_recent_unique(
                (entry.tool_name for entry in entries if entry.tool_name), self.max_items
            ),
        )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
