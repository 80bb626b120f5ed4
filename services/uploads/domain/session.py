from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class MediaKind(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    DOCUMENT = "document"
    OTHER = "other"


class SessionState(str, Enum):
    INITIALIZED = "initialized"
    UPLOADING = "uploading"
    ALL_CHUNKS_PRESENT = "all_chunks_present"
    COMPLETED = "completed"


@dataclass(frozen=True)
class ChunkRecord:
    index: int
    storage_path: str
    size_bytes: int
    uploaded_at: datetime
    attempts_used: int = 1


@dataclass(frozen=True)
class UploadStats:
    total_attempts: int
    average_attempts: float


def count_chunks(total_size: int, chunk_size: int) -> int:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return math.ceil(total_size / chunk_size)


def chunk_bounds(index: int, total_size: int, chunk_size: int) -> tuple[int, int]:
    """Return ``(offset, length)`` of chunk ``index``; the last chunk holds the remainder."""
    offset = index * chunk_size
    if index < 0 or offset >= total_size:
        raise IndexError(f"Chunk {index} is outside a {total_size}-byte object")
    return offset, min(chunk_size, total_size - offset)


def summarize_attempts(records) -> UploadStats:
    records = list(records)
    if not records:
        return UploadStats(total_attempts=0, average_attempts=0.0)
    total = sum(record.attempts_used or 1 for record in records)
    return UploadStats(
        total_attempts=total, average_attempts=round(total / len(records), 2)
    )


@dataclass(frozen=True)
class UploadSession:
    session_id: str
    original_name: str
    content_type: str
    total_size: int
    chunk_size: int
    media_kind: MediaKind
    bucket: str
    folder: str
    max_concurrency: int
    chunk_timeout_ms: int
    created_at: datetime
    chunks: Tuple[Optional[ChunkRecord], ...] = ()
    final_manifest_url: Optional[str] = None
    manifest_path: Optional[str] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        # A freshly created session gets an empty slot per chunk.
        if not self.chunks:
            object.__setattr__(self, "chunks", (None,) * self.total_chunks)
        elif len(self.chunks) != self.total_chunks:
            raise ValueError(
                f"Chunk table has {len(self.chunks)} slots, expected {self.total_chunks}"
            )

    @property
    def total_chunks(self) -> int:
        return count_chunks(self.total_size, self.chunk_size)

    @property
    def uploaded_chunks(self) -> list[ChunkRecord]:
        return [record for record in self.chunks if record is not None]

    @property
    def uploaded_count(self) -> int:
        return sum(1 for record in self.chunks if record is not None)

    @property
    def progress_percent(self) -> float:
        if self.total_chunks == 0:
            return 0.0
        return self.uploaded_count / self.total_chunks * 100

    @property
    def is_complete(self) -> bool:
        return self.total_chunks > 0 and self.uploaded_count == self.total_chunks

    @property
    def state(self) -> SessionState:
        if self.final_manifest_url is not None:
            return SessionState.COMPLETED
        if self.is_complete:
            return SessionState.ALL_CHUNKS_PRESENT
        if self.uploaded_count:
            return SessionState.UPLOADING
        return SessionState.INITIALIZED

    @property
    def stats(self) -> UploadStats:
        return summarize_attempts(self.uploaded_chunks)

    def chunk_at(self, index: int) -> Optional[ChunkRecord]:
        self._check_index(index)
        return self.chunks[index]

    def with_chunk(self, record: ChunkRecord) -> "UploadSession":
        """Write ``record`` into its empty slot and return the updated session."""
        self._check_index(record.index)
        if self.is_complete:
            raise ValueError(f"Session {self.session_id} is complete; chunks are frozen")
        if self.chunks[record.index] is not None:
            raise ValueError(
                f"Chunk {record.index} already recorded for {self.session_id}"
            )
        chunks = list(self.chunks)
        chunks[record.index] = record
        return replace(self, chunks=tuple(chunks))

    def mark_completed(
        self, *, manifest_url: str, manifest_path: str, completed_at: datetime
    ) -> "UploadSession":
        if not self.is_complete:
            raise ValueError(f"Session {self.session_id} has missing chunks")
        return replace(
            self,
            final_manifest_url=manifest_url,
            manifest_path=manifest_path,
            completed_at=completed_at,
        )

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.total_chunks:
            raise IndexError(
                f"Chunk index {index} outside 0..{self.total_chunks - 1}"
            )


@dataclass(frozen=True)
class FileUpload:
    """An incoming file as handed over by the HTTP layer."""

    filename: str
    content_type: str
    data: bytes | bytearray | memoryview | None
    size: Optional[int] = None

    @property
    def byte_size(self) -> int:
        if self.size is not None:
            return self.size
        return len(self.data) if self.data is not None else 0
