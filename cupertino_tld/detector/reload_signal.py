"""
Reload Signal
=============

Single-bit flag telling the classification loop that the configuration
changed. Set by the control endpoint, consumed only by the loop.

Not a queue: any number of set() calls before the loop looks coalesce into
one reload, and the loop then works from whatever configuration is current.
"""

import threading


class ReloadSignal:
    """
    Thread-safe set / check-and-clear flag.

    Example:
        >>> signal = ReloadSignal()
        >>> signal.set(); signal.set()
        >>> signal.consume()
        True
        >>> signal.consume()
        False
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending = False

    def set(self) -> None:
        """Request a reload."""
        with self._lock:
            self._pending = True

    def consume(self) -> bool:
        """Return True once per batch of set() calls, clearing the flag."""
        with self._lock:
            pending = self._pending
            self._pending = False
        return pending

    def is_set(self) -> bool:
        with self._lock:
            return self._pending
