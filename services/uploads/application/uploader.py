from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List

from services.uploads.application.dto import (
    ChunkUploadResult,
    CleanupResult,
    InitializedUpload,
    UploadProgress,
)
from services.uploads.application.interfaces import (
    Clock,
    IdProvider,
    ProgressPublisher,
    SessionLockProvider,
    StorageBackend,
    UploadSessionRepository,
)
from services.uploads.application.media_classifier import BucketSelector
from services.uploads.application.retry import RandomJitter, RetryPolicy
from services.uploads.application.use_cases import (
    CleanupUploadUseCase,
    CompleteUploadUseCase,
    GetUploadProgressUseCase,
    InitializeUploadUseCase,
    UploadAllChunksUseCase,
    UploadChunkUseCase,
)
from services.uploads.config import UploadConfig
from services.uploads.domain.manifest import CompletedUpload
from services.uploads.domain.session import FileUpload

LOGGER = logging.getLogger(__name__)


class ChunkedUploadService:
    """Entry point used by the HTTP layer: one method per caller operation."""

    def __init__(
        self,
        *,
        config: UploadConfig,
        repository: UploadSessionRepository,
        storage: StorageBackend,
        id_provider: IdProvider,
        clock: Clock,
        locks: SessionLockProvider,
        publisher: ProgressPublisher | None = None,
        jitter: Callable[[], float] | None = None,
        bucket_selector: BucketSelector | None = None,
    ) -> None:
        self._config = config
        # Storage calls run here so each one can be abandoned on timeout.
        self._storage_workers = max(4, config.max_concurrent_chunks * 2)
        self._executor = ThreadPoolExecutor(
            max_workers=self._storage_workers,
            thread_name_prefix="storage",
        )
        storage_timeout = config.storage_operation_timeout_ms / 1000

        self._initialize = InitializeUploadUseCase(
            repository=repository,
            id_provider=id_provider,
            clock=clock,
            config=config,
            bucket_selector=bucket_selector,
        )
        self._upload_chunk = UploadChunkUseCase(
            repository=repository,
            storage=storage,
            locks=locks,
            clock=clock,
            executor=self._executor,
            retry_policy=RetryPolicy.from_config(config),
            storage_timeout_seconds=storage_timeout,
            jitter=jitter or RandomJitter(config.retry_max_jitter_ms / 1000),
            publisher=publisher,
        )
        self._cleanup = CleanupUploadUseCase(
            repository=repository,
            storage=storage,
            locks=locks,
            executor=self._executor,
            timeout_seconds=storage_timeout,
        )
        self._upload_all = UploadAllChunksUseCase(
            repository=repository,
            upload_chunk=self._upload_chunk,
            cleanup=self._cleanup,
            clock=clock,
            batch_pause_seconds=config.batch_pause_ms / 1000,
            publisher=publisher,
            max_workers=self._storage_workers,
        )
        self._complete = CompleteUploadUseCase(
            repository=repository,
            storage=storage,
            locks=locks,
            clock=clock,
            executor=self._executor,
            timeout_seconds=config.manifest_timeout_ms / 1000,
            require_manifest_write=config.require_manifest_write,
            publisher=publisher,
        )
        self._progress = GetUploadProgressUseCase(repository=repository)

    @property
    def config(self) -> UploadConfig:
        return self._config

    def requires_chunking(self, size: int) -> bool:
        """Files at or below the threshold are meant for a single direct upload."""
        return size > self._config.chunk_threshold_bytes

    def initialize(self, file: FileUpload, folder: str = "videos") -> InitializedUpload:
        return self._initialize.execute(file, folder)

    def upload_chunk(self, session_id: str, index: int, data: bytes) -> ChunkUploadResult:
        return self._upload_chunk.execute(session_id, index, data)

    def upload_all(
        self,
        session_id: str,
        source: bytes | bytearray | memoryview,
        max_concurrency: int | None = None,
    ) -> List[ChunkUploadResult]:
        return self._upload_all.execute(session_id, source, max_concurrency)

    def complete(self, session_id: str) -> CompletedUpload:
        return self._complete.execute(session_id)

    def get_progress(self, session_id: str) -> UploadProgress:
        return self._progress.execute(session_id)

    def cleanup(self, session_id: str, force: bool = False) -> CleanupResult:
        return self._cleanup.execute(session_id, force)

    def upload_file(self, file: FileUpload, folder: str = "videos") -> CompletedUpload:
        """Initialize, transfer every chunk and complete in one call."""
        initialized = self.initialize(file, folder)
        LOGGER.info(
            "Uploading %s as %s (%d chunk(s), concurrency %d)",
            file.filename,
            initialized.session_id,
            initialized.total_chunks,
            initialized.max_concurrency,
        )
        self.upload_all(initialized.session_id, file.data, initialized.max_concurrency)
        return self.complete(initialized.session_id)

    def close(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)

    def __enter__(self) -> "ChunkedUploadService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
