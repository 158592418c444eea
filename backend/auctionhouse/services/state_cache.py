# Overview: Short-lived auction status cache used by the state guard.

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from flask import current_app


class StateCache:
    """
    Read-through cache of auction id -> status with a fixed TTL.

    Reads may be up to `ttl_seconds` stale. Code that writes
    auctions.status must call invalidate(auction_id) once the write is
    committed, so the next guard check reads the new value.
    """

    def __init__(self, ttl_seconds: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[int, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, auction_id: int) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(int(auction_id))
            if entry is None:
                return None
            status, expires = entry
            if self._clock() >= expires:
                del self._entries[int(auction_id)]
                return None
            return status

    def set(self, auction_id: int, status: str) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[int(auction_id)] = (status, self._clock() + self.ttl_seconds)

    def invalidate(self, auction_id: int) -> None:
        with self._lock:
            self._entries.pop(int(auction_id), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, auction_id: int) -> bool:
        return self.get(auction_id) is not None


def get_state_cache() -> StateCache:
    """The application's shared cache (created in create_app)."""
    return current_app.extensions["auction_state_cache"]
