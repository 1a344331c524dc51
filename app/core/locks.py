"""Per-group exclusivity for read-modify-write sequences."""

import logging
import threading
from contextlib import contextmanager

from app.core.config import settings
from app.core.errors import Unavailable

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        # holders plus waiters; the entry is dropped when this reaches zero
        self.users = 0


class KeyedLocks:
    def __init__(self, timeout: float | None = None):
        self._timeout = timeout
        self._guard = threading.Lock()
        self._entries: dict[object, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key):
        timeout = self._timeout if self._timeout is not None else settings.LOCK_TIMEOUT_SECONDS
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=timeout):
                logger.warning("Timed out waiting for lock %r after %.1fs", key, timeout)
                raise Unavailable("group is busy, retry later")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)


group_locks = KeyedLocks()
