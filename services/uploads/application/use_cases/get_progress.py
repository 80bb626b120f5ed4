from __future__ import annotations

from services.uploads.application.dto import UploadProgress
from services.uploads.application.interfaces import UploadSessionRepository
from services.uploads.domain.errors import SessionNotFoundError


class GetUploadProgressUseCase:
    def __init__(self, *, repository: UploadSessionRepository) -> None:
        self._repository = repository

    def execute(self, session_id: str) -> UploadProgress:
        session = self._repository.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return UploadProgress(
            session_id=session.session_id,
            progress_percent=session.progress_percent,
            uploaded_chunks=session.uploaded_count,
            total_chunks=session.total_chunks,
            is_complete=session.is_complete,
            state=session.state,
            final_manifest_url=session.final_manifest_url,
            stats=session.stats,
        )
