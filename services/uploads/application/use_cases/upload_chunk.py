from __future__ import annotations

import logging
from concurrent.futures import Executor
from datetime import datetime
from pathlib import PurePosixPath
from typing import Callable

from services.uploads.application.dto import ChunkStatus, ChunkUploadResult
from services.uploads.application.interfaces import (
    Clock,
    ProgressPublisher,
    SessionLockProvider,
    StorageBackend,
    UploadSessionRepository,
)
from services.uploads.application.retry import RetryPolicy, run_with_timeout
from services.uploads.domain.errors import (
    OperationTimeoutError,
    PermanentTransferError,
    SessionNotFoundError,
    StorageError,
    TransientTransferError,
    ValidationError,
)
from services.uploads.domain.session import (
    ChunkRecord,
    UploadSession,
    chunk_bounds,
)

LOGGER = logging.getLogger(__name__)

CHUNK_CONTENT_TYPE = "application/octet-stream"
_RETRYABLE = (StorageError, OperationTimeoutError, ConnectionError)


class UploadChunkUseCase:
    """Uploads one chunk with bounded retries. Idempotent per chunk index."""

    def __init__(
        self,
        *,
        repository: UploadSessionRepository,
        storage: StorageBackend,
        locks: SessionLockProvider,
        clock: Clock,
        executor: Executor,
        retry_policy: RetryPolicy,
        storage_timeout_seconds: float = 60.0,
        jitter: Callable[[], float] = lambda: 0.0,
        publisher: ProgressPublisher | None = None,
    ) -> None:
        self._repository = repository
        self._storage = storage
        self._locks = locks
        self._clock = clock
        self._executor = executor
        self._retry_policy = retry_policy
        self._storage_timeout = storage_timeout_seconds
        self._jitter = jitter
        self._publisher = publisher

    def execute(self, session_id: str, index: int, data: bytes) -> ChunkUploadResult:
        session = self._load(session_id)
        if not 0 <= index < session.total_chunks:
            raise ValidationError(
                f"Chunk index {index} outside 0..{session.total_chunks - 1}"
            )

        existing = session.chunk_at(index)
        if existing is not None:
            LOGGER.info("Chunk %d of %s already uploaded, skipping", index, session_id)
            return _already_uploaded(session, existing)

        payload = bytes(data) if data is not None else b""
        _, expected = chunk_bounds(index, session.total_size, session.chunk_size)
        if len(payload) != expected:
            raise ValidationError(
                f"Chunk {index} must be {expected} bytes, got {len(payload)}"
            )

        path = build_chunk_path(session, index, self._clock.now())
        stored_path, attempts = self._transfer(session, index, path, payload)

        # Orphaned objects are removed after the lock is released.
        try:
            with self._locks.hold(session_id):
                current = self._load(session_id)
                existing = current.chunk_at(index)
                if existing is None:
                    record = ChunkRecord(
                        index=index,
                        storage_path=stored_path,
                        size_bytes=len(payload),
                        uploaded_at=self._clock.now(),
                        attempts_used=attempts,
                    )
                    updated = self._repository.save(current.with_chunk(record))
        except SessionNotFoundError:
            self._discard(session.bucket, stored_path)
            raise

        if existing is not None:
            # A concurrent submission for the same index won the write.
            if existing.storage_path != stored_path:
                self._discard(current.bucket, stored_path)
            return _already_uploaded(current, existing)

        LOGGER.info(
            "Chunk %d of %s uploaded to %s after %d attempt(s); progress %.2f%% (%d/%d)",
            index,
            session_id,
            stored_path,
            attempts,
            updated.progress_percent,
            updated.uploaded_count,
            updated.total_chunks,
        )
        if self._publisher is not None:
            self._publisher.publish(
                session_id,
                "uploading",
                progress=updated.progress_percent,
                message=f"Chunk {index + 1}/{updated.total_chunks} uploaded",
            )
        return ChunkUploadResult(
            index=index,
            status=ChunkStatus.UPLOADED,
            storage_path=stored_path,
            progress_percent=updated.progress_percent,
            is_complete=updated.is_complete,
            attempts_used=attempts,
        )

    def _transfer(
        self, session: UploadSession, index: int, path: str, payload: bytes
    ) -> tuple[str, int]:
        max_retries = self._retry_policy.max_retries
        timeout_seconds = session.chunk_timeout_ms / 1000
        attempt = 0
        while True:
            attempt += 1
            LOGGER.debug(
                "Upload attempt %d/%d for chunk %d of %s (%d bytes)",
                attempt,
                max_retries,
                index,
                session.session_id,
                len(payload),
            )
            try:
                stored_path = run_with_timeout(
                    self._executor,
                    lambda: self._storage.put(
                        session.bucket, path, payload, CHUNK_CONTENT_TYPE
                    ),
                    timeout_seconds=timeout_seconds,
                    operation=f"chunk {index} upload",
                )
                return stored_path or path, attempt
            except _RETRYABLE as exc:
                if isinstance(exc, StorageError) and not exc.retryable:
                    LOGGER.error(
                        "Chunk %d of %s rejected by storage: %s",
                        index,
                        session.session_id,
                        exc,
                    )
                    raise self._permanent(session, index, payload, attempt, False) from exc
                failure = TransientTransferError(index, attempt, str(exc))

            if attempt >= max_retries:
                LOGGER.error(
                    "Chunk %d of %s failed after %d attempts: %s",
                    index,
                    session.session_id,
                    attempt,
                    failure.reason,
                )
                raise self._permanent(session, index, payload, attempt, True) from failure

            delay = self._retry_policy.delay_for(attempt, self._jitter())
            LOGGER.warning("%s; retrying in %.2fs", failure, delay)
            self._clock.sleep(delay)

    def _permanent(
        self,
        session: UploadSession,
        index: int,
        payload: bytes,
        attempts: int,
        retryable: bool,
    ) -> PermanentTransferError:
        return PermanentTransferError(
            index=index,
            size_bytes=len(payload),
            bucket=session.bucket,
            attempts=attempts,
            timestamp=self._clock.now(),
            retryable=retryable,
        )

    def _discard(self, bucket: str, path: str) -> None:
        try:
            run_with_timeout(
                self._executor,
                lambda: self._storage.remove(bucket, [path]),
                timeout_seconds=self._storage_timeout,
                operation=f"removal of {path}",
            )
        except (StorageError, OperationTimeoutError, ConnectionError) as exc:
            LOGGER.warning("Failed to remove orphaned chunk object %s: %s", path, exc)

    def _load(self, session_id: str) -> UploadSession:
        session = self._repository.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session


def build_chunk_path(session: UploadSession, index: int, timestamp: datetime) -> str:
    extension = PurePosixPath(session.original_name or "").suffix
    millis = int(timestamp.timestamp() * 1000)
    segments = [
        session.folder,
        "chunks",
        session.session_id,
        f"{millis}_chunk_{index:04d}{extension}",
    ]
    return "/".join(segment for segment in segments if segment)


def _already_uploaded(session: UploadSession, record: ChunkRecord) -> ChunkUploadResult:
    return ChunkUploadResult(
        index=record.index,
        status=ChunkStatus.ALREADY_UPLOADED,
        storage_path=record.storage_path,
        progress_percent=session.progress_percent,
        is_complete=session.is_complete,
        attempts_used=0,
    )
