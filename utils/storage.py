"""
Local key-value storage with change notifications.

Two backends share one small interface (get_item / set_item / transaction /
on_external_change):

- MemoryStorageBackend hands out per-context views; a write through one view
  notifies subscribers of every *other* view, like browser tabs sharing
  localStorage.
- DiskCacheStorage persists to a diskcache directory that several processes
  can share. diskcache has no change feed, so external writes are found by
  polling subscribed keys.
"""

import asyncio
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import diskcache

from setup_logging_optimized import get_logger

logger = get_logger(__name__)

ChangeCallback = Callable[[Optional[str]], None]
Unsubscribe = Callable[[], None]


class KeyValueStorage:
    """String key-value store shared between execution contexts."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def on_external_change(self, keys: Iterable[str], callback: ChangeCallback) -> Unsubscribe:
        """Call `callback(key)` when another context changes one of `keys`."""
        raise NotImplementedError

    @contextmanager
    def transaction(self):
        """Hold reads and writes made inside the block together."""
        yield


class MemoryStorageBackend:
    """Shared in-process store; each context() behaves like a separate tab."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.RLock()
        self._subscribers: List[Tuple["MemoryStorage", frozenset, ChangeCallback]] = []

    def context(self) -> "MemoryStorage":
        return MemoryStorage(self)

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def _set(self, origin: "MemoryStorage", key: str, value: str) -> None:
        with self._lock:
            previous = self._data.get(key)
            self._data[key] = value
            if previous == value:
                return
            targets = [
                callback for context, keys, callback in self._subscribers
                if context is not origin and (not keys or key in keys)
            ]
        for callback in targets:
            try:
                callback(key)
            except Exception as e:
                logger.error(f"Storage change listener failed for {key}: {e}")

    def _subscribe(self, context: "MemoryStorage", keys: Iterable[str], callback: ChangeCallback) -> Unsubscribe:
        entry = (context, frozenset(keys), callback)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._data)


class MemoryStorage(KeyValueStorage):
    """One context's view of a MemoryStorageBackend."""

    def __init__(self, backend: Optional[MemoryStorageBackend] = None):
        self.backend = backend or MemoryStorageBackend()

    def get_item(self, key: str) -> Optional[str]:
        return self.backend._get(key)

    def set_item(self, key: str, value: str) -> None:
        self.backend._set(self, key, value)

    def on_external_change(self, keys: Iterable[str], callback: ChangeCallback) -> Unsubscribe:
        return self.backend._subscribe(self, keys, callback)

    @contextmanager
    def transaction(self):
        with self.backend._lock:
            yield


class DiskCacheStorage(KeyValueStorage):
    """diskcache-backed storage; safe to share between processes."""

    def __init__(self, directory: str):
        self.directory = directory
        self._cache = diskcache.Cache(directory)
        self._lock = threading.RLock()
        self._subscriptions: List[Tuple[frozenset, ChangeCallback]] = []
        self._last_seen: Dict[str, Optional[str]] = {}

    def get_item(self, key: str) -> Optional[str]:
        value = self._cache.get(key)
        return None if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        self._cache.set(key, value)
        with self._lock:
            # Our own writes are not external changes.
            if key in self._last_seen:
                self._last_seen[key] = value

    @contextmanager
    def transaction(self):
        # diskcache transactions lock the cache for every process sharing it
        with self._lock, self._cache.transact():
            yield

    def on_external_change(self, keys: Iterable[str], callback: ChangeCallback) -> Unsubscribe:
        entry = (frozenset(keys), callback)
        with self._lock:
            self._subscriptions.append(entry)
            for key in entry[0]:
                self._last_seen.setdefault(key, self.get_item(key))

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscriptions:
                    self._subscriptions.remove(entry)

        return unsubscribe

    def poll(self) -> List[str]:
        """Compare subscribed keys with the last seen values and notify on change."""
        changed = []
        with self._lock:
            for key, previous in list(self._last_seen.items()):
                current = self.get_item(key)
                if current != previous:
                    self._last_seen[key] = current
                    changed.append(key)
            subscriptions = list(self._subscriptions)

        for key in changed:
            for keys, callback in subscriptions:
                if key in keys:
                    try:
                        callback(key)
                    except Exception as e:
                        logger.error(f"Storage change listener failed for {key}: {e}")
        return changed

    async def watch(self, interval: float = 2.0, stop: Optional[asyncio.Event] = None) -> None:
        """Poll until `stop` is set (or the task is cancelled)."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            self.poll()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def close(self) -> None:
        self._cache.close()
