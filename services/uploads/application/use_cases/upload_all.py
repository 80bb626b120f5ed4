from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import List

from services.uploads.application.dto import ChunkUploadResult
from services.uploads.application.interfaces import (
    Clock,
    ProgressPublisher,
    UploadSessionRepository,
)
from services.uploads.application.use_cases.cleanup_upload import CleanupUploadUseCase
from services.uploads.application.use_cases.upload_chunk import UploadChunkUseCase
from services.uploads.domain.errors import (
    BatchTransferError,
    IntegrityError,
    SessionNotFoundError,
    ValidationError,
)
from services.uploads.domain.session import UploadSession, chunk_bounds

LOGGER = logging.getLogger(__name__)


class UploadAllChunksUseCase:
    """Slices a byte source and uploads it in sequential, concurrent batches.

    A batch fails as a whole when any member fails; the session is then
    force-cleaned and ``BatchTransferError`` is raised.
    """

    def __init__(
        self,
        *,
        repository: UploadSessionRepository,
        upload_chunk: UploadChunkUseCase,
        cleanup: CleanupUploadUseCase,
        clock: Clock,
        batch_pause_seconds: float = 1.0,
        publisher: ProgressPublisher | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._repository = repository
        self._upload_chunk = upload_chunk
        self._cleanup = cleanup
        self._clock = clock
        self._batch_pause_seconds = batch_pause_seconds
        self._publisher = publisher
        self._max_workers = max_workers

    def execute(
        self,
        session_id: str,
        source: bytes | bytearray | memoryview,
        max_concurrency: int | None = None,
    ) -> List[ChunkUploadResult]:
        session = self._load(session_id)
        view = memoryview(source)
        if view.nbytes != session.total_size:
            raise ValidationError(
                f"Source holds {view.nbytes} bytes, session {session_id} "
                f"expects {session.total_size}"
            )
        concurrency = (
            session.max_concurrency if max_concurrency is None else max_concurrency
        )
        if concurrency <= 0:
            raise ValidationError("max_concurrency must be positive")
        if self._max_workers is not None and concurrency > self._max_workers:
            LOGGER.warning(
                "Concurrency %d for %s exceeds %d storage workers; capping",
                concurrency,
                session_id,
                self._max_workers,
            )
            concurrency = self._max_workers

        total = session.total_chunks
        batch_count = -(-total // concurrency)
        LOGGER.info(
            "Uploading %s: %d chunk(s) in %d batch(es) of up to %d",
            session_id,
            total,
            batch_count,
            concurrency,
        )

        results: List[ChunkUploadResult] = []
        with ThreadPoolExecutor(
            max_workers=concurrency, thread_name_prefix=f"upload-{session_id[:8]}"
        ) as pool:
            for batch_no, batch_start in enumerate(range(0, total, concurrency), 1):
                batch_end = min(batch_start + concurrency, total)
                LOGGER.info(
                    "Batch %d/%d for %s (chunks %d to %d)",
                    batch_no,
                    batch_count,
                    session_id,
                    batch_start,
                    batch_end - 1,
                )
                try:
                    results.extend(
                        self._run_batch(pool, session, view, batch_start, batch_end)
                    )
                except Exception as exc:
                    LOGGER.error(
                        "Batch %d/%d for %s failed: %s",
                        batch_no,
                        batch_count,
                        session_id,
                        exc,
                    )
                    self._abort(session_id)
                    raise BatchTransferError(session_id, batch_start, exc) from exc

                if batch_end < total and self._batch_pause_seconds > 0:
                    self._clock.sleep(self._batch_pause_seconds)

        self._verify(session_id, total)
        return results

    def _run_batch(
        self,
        pool: ThreadPoolExecutor,
        session: UploadSession,
        view: memoryview,
        batch_start: int,
        batch_end: int,
    ) -> List[ChunkUploadResult]:
        futures: List[Future] = []
        for index in range(batch_start, batch_end):
            offset, length = chunk_bounds(index, session.total_size, session.chunk_size)
            chunk = bytes(view[offset : offset + length])
            futures.append(
                pool.submit(self._upload_chunk.execute, session.session_id, index, chunk)
            )
        # Let every member settle before deciding, so no transfer outlives the batch.
        wait(futures)
        for future in futures:
            exc = future.exception()
            if exc is not None:
                raise exc
        return [future.result() for future in futures]

    def _abort(self, session_id: str) -> None:
        if self._publisher is not None:
            self._publisher.publish(session_id, "error", message="Chunk upload failed")
        try:
            self._cleanup.execute(session_id, force=True)
        except Exception as exc:
            LOGGER.error("Cleanup after failed batch for %s failed: %s", session_id, exc)

    def _verify(self, session_id: str, total: int) -> None:
        session = self._load(session_id)
        LOGGER.info(
            "Upload verification for %s: %d/%d chunks recorded",
            session_id,
            session.uploaded_count,
            total,
        )
        if session.uploaded_count != total:
            raise IntegrityError(session_id, session.uploaded_count, total)

    def _load(self, session_id: str) -> UploadSession:
        session = self._repository.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session
