from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, ContextManager, Protocol, Sequence

if TYPE_CHECKING:
    from services.uploads.domain.session import UploadSession


class IdProvider(Protocol):
    def generate(self) -> str: ...


class Clock(Protocol):
    def now(self) -> datetime: ...

    def sleep(self, seconds: float) -> None: ...


class StorageBackend(Protocol):
    """Object storage. Failures are raised as ``StorageError``."""

    def put(self, bucket: str, path: str, data: bytes, content_type: str) -> str: ...

    def public_url(self, bucket: str, path: str) -> str: ...

    def remove(self, bucket: str, paths: Sequence[str]) -> None: ...


class UploadSessionRepository(Protocol):
    def create(self, session: "UploadSession") -> "UploadSession": ...

    def get(self, session_id: str) -> "UploadSession" | None: ...

    def save(self, session: "UploadSession") -> "UploadSession": ...

    def delete(self, session_id: str) -> None: ...


class SessionLockProvider(Protocol):
    def hold(self, session_id: str) -> ContextManager[None]: ...


class ProgressPublisher(Protocol):
    def publish(
        self,
        session_id: str,
        status: str,
        *,
        progress: float | None = None,
        message: str | None = None,
    ) -> None: ...
