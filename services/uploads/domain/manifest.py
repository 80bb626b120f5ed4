from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .session import UploadStats


class CompletionStatus(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"


@dataclass(frozen=True)
class ManifestChunk:
    index: int
    url: str
    size_bytes: int
    attempts: int


@dataclass(frozen=True)
class Manifest:
    session_id: str
    original_name: str
    content_type: str
    total_size: int
    total_chunks: int
    chunk_size: int
    max_concurrency: int
    chunks: List[ManifestChunk]
    stats: UploadStats
    created_at: datetime
    completed_at: datetime

    def to_payload(self) -> dict[str, object]:
        return {
            "sessionId": self.session_id,
            "originalFilename": self.original_name,
            "mimetype": self.content_type,
            "totalSize": self.total_size,
            "totalChunks": self.total_chunks,
            "chunkSize": self.chunk_size,
            "maxConcurrentChunks": self.max_concurrency,
            "chunks": [
                {
                    "index": chunk.index,
                    "url": chunk.url,
                    "size": chunk.size_bytes,
                    "uploadAttempts": chunk.attempts,
                }
                for chunk in self.chunks
            ],
            "totalUploadAttempts": self.stats.total_attempts,
            "averageUploadAttempts": self.stats.average_attempts,
            "createdAt": _isoformat(self.created_at),
            "completedAt": _isoformat(self.completed_at),
        }


@dataclass(frozen=True)
class CompletedUpload:
    session_id: str
    manifest_url: str
    manifest_path: str
    format: str
    bucket: str
    total_size: int
    original_name: str
    chunks: List[ManifestChunk]
    stats: UploadStats
    status: CompletionStatus
    manifest_persisted: Optional[bool] = None

    @property
    def chunk_urls(self) -> list[str]:
        return [chunk.url for chunk in self.chunks]


def _isoformat(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")
