from __future__ import annotations

import logging
from concurrent.futures import Executor

from services.uploads.application.dto import CleanupResult
from services.uploads.application.interfaces import (
    SessionLockProvider,
    StorageBackend,
    UploadSessionRepository,
)
from services.uploads.application.retry import run_with_timeout
from services.uploads.domain.errors import OperationTimeoutError, StorageError

LOGGER = logging.getLogger(__name__)


class CleanupUploadUseCase:
    """Best-effort removal of chunk objects and, when forced, the session record.

    Completed uploads keep their chunks unless ``force`` is set: the manifest
    points at them.
    """

    def __init__(
        self,
        *,
        repository: UploadSessionRepository,
        storage: StorageBackend,
        locks: SessionLockProvider,
        executor: Executor,
        timeout_seconds: float,
    ) -> None:
        self._repository = repository
        self._storage = storage
        self._locks = locks
        self._executor = executor
        self._timeout_seconds = timeout_seconds

    def execute(self, session_id: str, force: bool = False) -> CleanupResult:
        with self._locks.hold(session_id):
            session = self._repository.get(session_id)
            if session is None:
                LOGGER.info("No upload session %s to clean up", session_id)
                return CleanupResult(session_id=session_id, skipped_reason="not_found")

            if session.is_complete and not force:
                LOGGER.info(
                    "Skipping cleanup of completed upload %s; chunks are retained",
                    session_id,
                )
                return CleanupResult(session_id=session_id, skipped_reason="completed")

            paths = [record.storage_path for record in session.uploaded_chunks]
            if session.manifest_path:
                paths.append(session.manifest_path)
            removed = self._remove(session.bucket, paths, session_id)

            deleted = False
            if force:
                self._repository.delete(session_id)
                deleted = True
                LOGGER.info("Removed upload session record %s", session_id)

        return CleanupResult(
            session_id=session_id, removed_objects=removed, session_deleted=deleted
        )

    def _remove(self, bucket: str, paths: list[str], session_id: str) -> int:
        if not paths:
            return 0
        try:
            run_with_timeout(
                self._executor,
                lambda: self._storage.remove(bucket, paths),
                timeout_seconds=self._timeout_seconds,
                operation=f"cleanup of {session_id}",
            )
        except (StorageError, OperationTimeoutError, ConnectionError) as exc:
            LOGGER.error(
                "Failed to delete %d object(s) for %s from %s: %s",
                len(paths),
                session_id,
                bucket,
                exc,
            )
            return 0
        LOGGER.info("Cleaned up %d object(s) for %s", len(paths), session_id)
        return len(paths)
