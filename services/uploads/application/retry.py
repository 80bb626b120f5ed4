from __future__ import annotations

import random
import threading
from concurrent.futures import Executor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, TypeVar

from services.uploads.config import UploadConfig
from services.uploads.domain.errors import OperationTimeoutError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    max_jitter_seconds: float = 2.0

    @classmethod
    def from_config(cls, config: UploadConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay_seconds=config.retry_base_delay_ms / 1000,
            max_delay_seconds=config.retry_max_delay_ms / 1000,
            max_jitter_seconds=config.retry_max_jitter_ms / 1000,
        )

    def delay_for(self, attempt: int, jitter: float = 0.0) -> float:
        """Backoff before retrying after failed ``attempt`` (1-based)."""
        backoff = self.base_delay_seconds * 2 ** (attempt - 1)
        return min(backoff + jitter, self.max_delay_seconds)


class RandomJitter:
    def __init__(self, max_seconds: float, rng: random.Random | None = None) -> None:
        self._max_seconds = max_seconds
        self._rng = rng or random.Random()

    def __call__(self) -> float:
        return self._rng.uniform(0, self._max_seconds)


def run_with_timeout(
    executor: Executor,
    fn: Callable[[], T],
    *,
    timeout_seconds: float,
    operation: str,
) -> T:
    """Run ``fn`` on ``executor`` and wait at most ``timeout_seconds`` for it.

    The clock starts when a worker picks the call up, so time spent queued
    behind other calls does not count. Queueing itself is bounded by the same
    timeout; a call that never started is cancelled. A call that times out
    while running is abandoned, not cancelled: the storage write may still
    land after ``OperationTimeoutError`` is raised.
    """
    started = threading.Event()

    def call() -> T:
        started.set()
        return fn()

    future = executor.submit(call)
    try:
        if not started.wait(timeout_seconds):
            raise FutureTimeoutError()
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError as exc:
        future.cancel()
        raise OperationTimeoutError(operation, timeout_seconds) from exc
