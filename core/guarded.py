"""
Single-value shared state with atomic access.

Used for the running flag, the image-available flag and the outstanding
one-shot request, each of which is read and written from different threads.
"""
import threading
from typing import Generic, TypeVar

T = TypeVar("T")


class GuardedValue(Generic[T]):
    """A value behind its own lock."""

    def __init__(self, value: T):
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> T:
        """Store a new value and return the one it replaced."""
        with self._lock:
            previous, self._value = self._value, value
            return previous

    def compare_and_set(self, expected: T, value: T) -> bool:
        """Replace the value only if it is currently `expected` (identity or equality)."""
        with self._lock:
            if self._value is expected or self._value == expected:
                self._value = value
                return True
            return False

    def __repr__(self) -> str:
        return f"GuardedValue({self.get()!r})"
