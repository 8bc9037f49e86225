"""
Scoped tracking of intermediate image buffers.

Every array produced while scoring a sample is registered with a
``BufferScope``; leaving the scope drops the references and returns the
tracker's counters to where they were, whether the block finished or raised.
The tracker doubles as the memory counter tests use to check for leaks.
"""
from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List

import numpy as np

logger = logging.getLogger(__name__)


class BufferTracker:
    """Counts live buffers and bytes owned by open scopes."""

    def __init__(self):
        self._lock = threading.Lock()
        self.live_buffers = 0
        self.live_bytes = 0
        self._scopes: List["BufferScope"] = []

    def _acquire(self, nbytes: int) -> None:
        with self._lock:
            self.live_buffers += 1
            self.live_bytes += nbytes

    def _release(self, count: int, nbytes: int) -> None:
        with self._lock:
            self.live_buffers -= count
            self.live_bytes -= nbytes

    @contextmanager
    def scope(self) -> Iterator["BufferScope"]:
        s = BufferScope(self)
        with self._lock:
            self._scopes.append(s)
        try:
            yield s
        finally:
            s.close()
            with self._lock:
                if s in self._scopes:
                    self._scopes.remove(s)

    def release_all(self) -> None:
        """Close any scope still open (used on dispose)."""
        with self._lock:
            scopes = list(self._scopes)
            self._scopes.clear()
        for s in scopes:
            s.close()
        if scopes:
            logger.debug(f"[buffers] force-released {len(scopes)} open scope(s)")


class BufferScope:
    def __init__(self, tracker: BufferTracker):
        self._tracker = tracker
        self._arrays: List[np.ndarray] = []
        self._bytes = 0
        self.closed = False

    def track(self, arr):
        """Register an array and return it unchanged."""
        if self.closed:
            raise RuntimeError("buffer scope already closed")
        nbytes = int(arr.nbytes)
        self._arrays.append(arr)
        self._bytes += nbytes
        self._tracker._acquire(nbytes)
        return arr

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        count, nbytes = len(self._arrays), self._bytes
        self._arrays.clear()
        self._bytes = 0
        self._tracker._release(count, nbytes)
