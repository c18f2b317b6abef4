"""
Process-local cache holding a single value for a fixed time-to-live.
"""

import time
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """
    Keeps one value until it is older than ttl_seconds.

    Nothing is persisted; an empty cache just means the next reader
    rebuilds the value. Not guarded against concurrent writers.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[T] = None
        self._stored_at: Optional[float] = None

    def get(self) -> Optional[T]:
        if self._stored_at is None:
            return None
        if self._clock() - self._stored_at >= self.ttl_seconds:
            self.invalidate()
            return None
        return self._value

    def set(self, value: T) -> T:
        self._value = value
        self._stored_at = self._clock()
        return value

    def invalidate(self) -> None:
        self._value = None
        self._stored_at = None
