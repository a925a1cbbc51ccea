"""Keyed callback registries with snapshot-then-iterate notification."""

import logging
from collections.abc import Callable, Hashable
from typing import Any

log = logging.getLogger(__name__)

ALL = "*"


class Registry:
    """Ordered callbacks per key.

    Adding the same callback twice under one key keeps a single registration.
    Removing an unknown callback is a no-op. `notify` iterates a copy taken
    before the first call, so callbacks may add or remove registrations
    (including themselves) without being skipped or invoked twice.
    """

    def __init__(self, name: str = "listeners"):
        self.name = name
        self._callbacks: dict[Hashable, list[Callable]] = {}

    def add(self, key: Hashable, callback: Callable) -> None:
        callbacks = self._callbacks.setdefault(key, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def remove(self, key: Hashable, callback: Callable) -> None:
        callbacks = self._callbacks.get(key)
        if not callbacks or callback not in callbacks:
            return
        callbacks.remove(callback)
        if not callbacks:
            del self._callbacks[key]

    def count(self, key: Hashable) -> int:
        return len(self._callbacks.get(key, ()))

    def keys(self) -> list[Hashable]:
        return list(self._callbacks)

    def snapshot(self, key: Hashable) -> tuple[Callable, ...]:
        return tuple(self._callbacks.get(key, ()))

    def notify(self, key: Hashable, *args: Any) -> int:
        """Call every callback for `key` in registration order. Returns calls made."""
        called = 0
        for callback in self.snapshot(key):
            try:
                callback(*args)
            except Exception:
                log.exception(f"{self.name}: callback for {key!r} failed")
            called += 1
        return called
