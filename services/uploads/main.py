from __future__ import annotations

from services.uploads.application.uploader import ChunkedUploadService
from services.uploads.config import UploadConfig, load_config
from services.uploads.infrastructure.clock import SystemClock
from services.uploads.infrastructure.db import create_session_factory
from services.uploads.infrastructure.ids import HexIdProvider
from services.uploads.infrastructure.locks import create_session_locks
from services.uploads.infrastructure.progress_publisher import (
    create_progress_publisher,
)
from services.uploads.infrastructure.sessions import SqlUploadSessionRepository
from services.uploads.infrastructure.storage import create_storage_backend


def build_service(config: UploadConfig | None = None) -> ChunkedUploadService:
    cfg = config or load_config()
    session_factory = create_session_factory(cfg.database_dsn)
    return ChunkedUploadService(
        config=cfg,
        repository=SqlUploadSessionRepository(session_factory),
        storage=create_storage_backend(cfg),
        id_provider=HexIdProvider(),
        clock=SystemClock(),
        locks=create_session_locks(cfg),
        publisher=create_progress_publisher(cfg),
    )
