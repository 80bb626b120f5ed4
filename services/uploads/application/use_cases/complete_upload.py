from __future__ import annotations

import json
import logging
from concurrent.futures import Executor
from pathlib import PurePosixPath
from typing import List

from services.uploads.application.interfaces import (
    Clock,
    ProgressPublisher,
    SessionLockProvider,
    StorageBackend,
    UploadSessionRepository,
)
from services.uploads.application.retry import run_with_timeout
from services.uploads.domain.errors import (
    IncompleteUploadError,
    ManifestWriteError,
    OperationTimeoutError,
    SessionNotFoundError,
    StorageError,
)
from services.uploads.domain.manifest import (
    CompletedUpload,
    CompletionStatus,
    Manifest,
    ManifestChunk,
)
from services.uploads.domain.session import UploadSession

LOGGER = logging.getLogger(__name__)

MANIFEST_CONTENT_TYPE = "application/json"


class CompleteUploadUseCase:
    def __init__(
        self,
        *,
        repository: UploadSessionRepository,
        storage: StorageBackend,
        locks: SessionLockProvider,
        clock: Clock,
        executor: Executor,
        timeout_seconds: float,
        require_manifest_write: bool = False,
        publisher: ProgressPublisher | None = None,
    ) -> None:
        self._repository = repository
        self._storage = storage
        self._locks = locks
        self._clock = clock
        self._executor = executor
        self._timeout_seconds = timeout_seconds
        self._require_manifest_write = require_manifest_write
        self._publisher = publisher

    def execute(self, session_id: str) -> CompletedUpload:
        with self._locks.hold(session_id):
            session = self._repository.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if not session.is_complete:
                raise IncompleteUploadError(
                    session_id,
                    session.uploaded_count,
                    session.total_chunks,
                    session.progress_percent,
                )

            chunks = self._resolve_chunks(session)
            if session.final_manifest_url is not None:
                LOGGER.info("Upload %s already completed, returning manifest", session_id)
                return _result(session, chunks, CompletionStatus.ALREADY_COMPLETED)

            completed_at = self._clock.now()
            manifest = Manifest(
                session_id=session.session_id,
                original_name=session.original_name,
                content_type=session.content_type,
                total_size=session.total_size,
                total_chunks=session.total_chunks,
                chunk_size=session.chunk_size,
                max_concurrency=session.max_concurrency,
                chunks=chunks,
                stats=session.stats,
                created_at=session.created_at,
                completed_at=completed_at,
            )
            manifest_path = build_manifest_path(session)
            persisted = self._write_manifest(session, manifest_path, manifest)
            if not persisted and self._require_manifest_write:
                raise ManifestWriteError(session_id, manifest_path)

            manifest_url = self._storage.public_url(session.bucket, manifest_path)
            updated = self._repository.save(
                session.mark_completed(
                    manifest_url=manifest_url,
                    manifest_path=manifest_path,
                    completed_at=completed_at,
                )
            )

        LOGGER.info(
            "Completed upload %s: %d chunk(s), %d total attempts (%.2f per chunk)",
            session_id,
            len(chunks),
            manifest.stats.total_attempts,
            manifest.stats.average_attempts,
        )
        if self._publisher is not None:
            self._publisher.publish(
                session_id, "complete", progress=100.0, message=manifest_url
            )
        return _result(updated, chunks, CompletionStatus.COMPLETED, persisted)

    def _resolve_chunks(self, session: UploadSession) -> List[ManifestChunk]:
        ordered = sorted(session.uploaded_chunks, key=lambda record: record.index)
        return [
            ManifestChunk(
                index=record.index,
                url=self._storage.public_url(session.bucket, record.storage_path),
                size_bytes=record.size_bytes,
                attempts=record.attempts_used or 1,
            )
            for record in ordered
        ]

    def _write_manifest(
        self, session: UploadSession, manifest_path: str, manifest: Manifest
    ) -> bool:
        body = json.dumps(manifest.to_payload(), indent=2).encode("utf-8")
        try:
            run_with_timeout(
                self._executor,
                lambda: self._storage.put(
                    session.bucket, manifest_path, body, MANIFEST_CONTENT_TYPE
                ),
                timeout_seconds=self._timeout_seconds,
                operation=f"manifest upload for {session.session_id}",
            )
        except (StorageError, OperationTimeoutError, ConnectionError) as exc:
            LOGGER.warning(
                "Failed to upload manifest %s, continuing without it: %s",
                manifest_path,
                exc,
            )
            return False
        return True


def build_manifest_path(session: UploadSession) -> str:
    segments = [session.folder, "manifests", f"{session.session_id}_manifest.json"]
    return "/".join(segment for segment in segments if segment)


def _result(
    session: UploadSession,
    chunks: List[ManifestChunk],
    status: CompletionStatus,
    manifest_persisted: bool | None = None,
) -> CompletedUpload:
    return CompletedUpload(
        session_id=session.session_id,
        manifest_url=session.final_manifest_url or "",
        manifest_path=session.manifest_path or "",
        format=PurePosixPath(session.original_name or "").suffix.lstrip("."),
        bucket=session.bucket,
        total_size=session.total_size,
        original_name=session.original_name,
        chunks=chunks,
        stats=session.stats,
        status=status,
        manifest_persisted=manifest_persisted,
    )
