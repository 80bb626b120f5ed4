from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from services.uploads.domain.session import SessionState, UploadStats


class ChunkStatus(str, Enum):
    UPLOADED = "uploaded"
    ALREADY_UPLOADED = "already_uploaded"


@dataclass(frozen=True)
class InitializedUpload:
    session_id: str
    total_chunks: int
    chunk_size: int
    max_concurrency: int
    bucket: str


@dataclass(frozen=True)
class ChunkUploadResult:
    index: int
    status: ChunkStatus
    storage_path: str
    progress_percent: float
    is_complete: bool
    attempts_used: int = 0


@dataclass(frozen=True)
class UploadProgress:
    session_id: str
    progress_percent: float
    uploaded_chunks: int
    total_chunks: int
    is_complete: bool
    state: SessionState
    final_manifest_url: Optional[str]
    stats: UploadStats


@dataclass(frozen=True)
class CleanupResult:
    session_id: str
    removed_objects: int = 0
    session_deleted: bool = False
    skipped_reason: Optional[str] = None
