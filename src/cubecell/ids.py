"""Collision-free identifier sources for generated class names."""

import itertools
import threading
import time
import uuid
from typing import Protocol


class IdSource(Protocol):
    def next_id(self) -> int | str: ...


class SequentialIdSource:
    """Increasing integer ids. Safe to share between threads.

    Without ``start`` the sequence is seeded from the clock so ids from
    separate runs rarely repeat.
    """

    def __init__(self, start: int | None = None):
        if start is None:
            start = time.time_ns() // 1_000_000
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return next(self._counter)


class UuidIdSource:
    """Random ids, for generated names that must not collide across processes."""

    def next_id(self) -> str:
        return uuid.uuid4().hex
