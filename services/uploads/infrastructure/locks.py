from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from redis import Redis
from redis.exceptions import LockError

from services.uploads.application.interfaces import SessionLockProvider
from services.uploads.config import UploadConfig

LOGGER = logging.getLogger(__name__)


class InProcessSessionLocks(SessionLockProvider):
    """One ``threading.Lock`` per session id, kept only while someone uses it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # session id -> [lock, number of callers holding or waiting on it]
        self._locks: dict[str, list] = {}

    def _checkout(self, session_id: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = self._locks[session_id] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _release(self, session_id: str) -> None:
        with self._guard:
            entry = self._locks[session_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[session_id]

    def is_held(self, session_id: str) -> bool:
        with self._guard:
            entry = self._locks.get(session_id)
            return entry is not None and entry[0].locked()

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        lock = self._checkout(session_id)
        try:
            with lock:
                yield
        finally:
            self._release(session_id)


class RedisSessionLocks(SessionLockProvider):
    """Session locks shared by every process talking to the same Redis."""

    def __init__(
        self,
        client: Redis,
        *,
        timeout_seconds: float = 60.0,
        blocking_timeout_seconds: float = 30.0,
    ) -> None:
        self._client = client
        self._timeout = timeout_seconds
        self._blocking_timeout = blocking_timeout_seconds

    def _key(self, session_id: str) -> str:
        return f"upload:session-lock:{session_id}"

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        lock = self._client.lock(
            self._key(session_id),
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
        )
        if not lock.acquire():
            raise LockError(f"Could not lock upload session {session_id}")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError as exc:
                LOGGER.warning("Lock for %s expired before release: %s", session_id, exc)


def create_session_locks(config: UploadConfig) -> SessionLockProvider:
    if not config.redis_locks:
        return InProcessSessionLocks()
    client = Redis(host=config.redis_host, port=config.redis_port, db=config.redis_db)
    # Outlive the longest storage call made while the lock is held.
    longest_ms = max(config.manifest_timeout_ms, config.storage_operation_timeout_ms)
    return RedisSessionLocks(client, timeout_seconds=longest_ms / 1000 + 30)
