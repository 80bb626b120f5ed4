from __future__ import annotations

import threading
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Integer, String, delete

from services.uploads.application.interfaces import UploadSessionRepository
from services.uploads.domain.errors import SessionNotFoundError
from services.uploads.domain.session import (
    ChunkRecord,
    MediaKind,
    UploadSession,
    count_chunks,
)
from services.uploads.infrastructure.db import Base


class UploadSessionRecord(Base):
    __tablename__ = "upload_sessions"

    session_id = Column(String, primary_key=True)
    original_name = Column(String, nullable=False)
    content_type = Column(String, nullable=False, default="")
    total_size = Column(BigInteger, nullable=False)
    chunk_size = Column(BigInteger, nullable=False)
    media_kind = Column(String, nullable=False)
    bucket = Column(String, nullable=False)
    folder = Column(String, nullable=False, default="")
    max_concurrency = Column(Integer, nullable=False)
    chunk_timeout_ms = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    final_manifest_url = Column(String, nullable=True)
    manifest_path = Column(String, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class UploadChunkRecord(Base):
    __tablename__ = "upload_chunks"

    # The composite key makes a second row for the same index impossible.
    session_id = Column(String, primary_key=True)
    chunk_index = Column(Integer, primary_key=True)
    storage_path = Column(String, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), nullable=False)
    attempts_used = Column(Integer, nullable=False, default=1)


class SqlUploadSessionRepository(UploadSessionRepository):
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def create(self, session: UploadSession) -> UploadSession:
        record = UploadSessionRecord(session_id=session.session_id)
        _apply(record, session)
        with self._session_factory() as db:
            db.add(record)
            for chunk in session.uploaded_chunks:
                db.add(_chunk_record(session.session_id, chunk))
            db.commit()
        return session

    def get(self, session_id: str) -> UploadSession | None:
        with self._session_factory() as db:
            record = db.get(UploadSessionRecord, session_id)
            if record is None:
                return None
            chunk_rows = (
                db.query(UploadChunkRecord)
                .filter(UploadChunkRecord.session_id == session_id)
                .all()
            )
            table = [None] * count_chunks(record.total_size, record.chunk_size)
            for row in chunk_rows:
                table[row.chunk_index] = ChunkRecord(
                    index=row.chunk_index,
                    storage_path=row.storage_path,
                    size_bytes=row.size_bytes,
                    uploaded_at=_as_utc(row.uploaded_at),
                    attempts_used=row.attempts_used,
                )
            return UploadSession(
                session_id=record.session_id,
                original_name=record.original_name,
                content_type=record.content_type,
                total_size=record.total_size,
                chunk_size=record.chunk_size,
                media_kind=MediaKind(record.media_kind),
                bucket=record.bucket,
                folder=record.folder,
                max_concurrency=record.max_concurrency,
                chunk_timeout_ms=record.chunk_timeout_ms,
                created_at=_as_utc(record.created_at),
                chunks=tuple(table),
                final_manifest_url=record.final_manifest_url,
                manifest_path=record.manifest_path,
                completed_at=_as_utc(record.completed_at),
            )

    def save(self, session: UploadSession) -> UploadSession:
        with self._session_factory() as db:
            record = db.get(UploadSessionRecord, session.session_id)
            if record is None:
                raise SessionNotFoundError(session.session_id)
            _apply(record, session)
            stored = {
                index
                for (index,) in db.query(UploadChunkRecord.chunk_index).filter(
                    UploadChunkRecord.session_id == session.session_id
                )
            }
            for chunk in session.uploaded_chunks:
                if chunk.index not in stored:
                    db.add(_chunk_record(session.session_id, chunk))
            db.commit()
        return session

    def delete(self, session_id: str) -> None:
        with self._session_factory() as db:
            db.execute(
                delete(UploadChunkRecord).where(
                    UploadChunkRecord.session_id == session_id
                )
            )
            db.execute(
                delete(UploadSessionRecord).where(
                    UploadSessionRecord.session_id == session_id
                )
            )
            db.commit()


class InMemoryUploadSessionRepository(UploadSessionRepository):
    """Process-local store for tests and single-process tooling."""

    def __init__(self) -> None:
        self._sessions: dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    def create(self, session: UploadSession) -> UploadSession:
        with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Upload session {session.session_id} already exists")
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> UploadSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def save(self, session: UploadSession) -> UploadSession:
        with self._lock:
            if session.session_id not in self._sessions:
                raise SessionNotFoundError(session.session_id)
            self._sessions[session.session_id] = session
        return session

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


def _apply(record: UploadSessionRecord, session: UploadSession) -> None:
    record.original_name = session.original_name
    record.content_type = session.content_type or ""
    record.total_size = session.total_size
    record.chunk_size = session.chunk_size
    record.media_kind = session.media_kind.value
    record.bucket = session.bucket
    record.folder = session.folder
    record.max_concurrency = session.max_concurrency
    record.chunk_timeout_ms = session.chunk_timeout_ms
    record.created_at = session.created_at
    record.final_manifest_url = session.final_manifest_url
    record.manifest_path = session.manifest_path
    record.completed_at = session.completed_at


def _chunk_record(session_id: str, chunk: ChunkRecord) -> UploadChunkRecord:
    return UploadChunkRecord(
        session_id=session_id,
        chunk_index=chunk.index,
        storage_path=chunk.storage_path,
        size_bytes=chunk.size_bytes,
        uploaded_at=chunk.uploaded_at,
        attempts_used=chunk.attempts_used,
    )


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
