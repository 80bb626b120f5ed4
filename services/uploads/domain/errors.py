from __future__ import annotations

from datetime import datetime


class UploadError(Exception):
    """Base class for chunked upload failures."""


class ValidationError(UploadError, ValueError):
    """Input was rejected before any transfer started."""


class SessionNotFoundError(UploadError, LookupError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Upload session {session_id} not found")
        self.session_id = session_id


class StorageError(UploadError):
    """Raised by storage adapters. ``retryable`` marks network-class failures."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class TransientTransferError(UploadError):
    """A single chunk attempt failed; the retry loop absorbs it."""

    def __init__(self, index: int, attempt: int, reason: str) -> None:
        super().__init__(f"Chunk {index} attempt {attempt} failed: {reason}")
        self.index = index
        self.attempt = attempt
        self.reason = reason


class PermanentTransferError(UploadError):
    def __init__(
        self,
        *,
        index: int,
        size_bytes: int,
        bucket: str,
        attempts: int,
        timestamp: datetime,
        retryable: bool = True,
    ) -> None:
        reason = "retry budget exhausted" if retryable else "non-retryable storage error"
        super().__init__(
            f"Failed to upload chunk {index} after {attempts} attempt(s) "
            f"({reason}; size={size_bytes} bytes, bucket={bucket}, "
            f"at={timestamp.isoformat()})"
        )
        self.index = index
        self.size_bytes = size_bytes
        self.bucket = bucket
        self.attempts = attempts
        self.timestamp = timestamp
        self.retryable = retryable


class IncompleteUploadError(UploadError):
    def __init__(self, session_id: str, uploaded: int, total: int, progress: float) -> None:
        super().__init__(
            f"Not all chunks have been uploaded for {session_id}: "
            f"{progress:.2f}% ({uploaded}/{total})"
        )
        self.session_id = session_id
        self.uploaded = uploaded
        self.total = total
        self.progress = progress


class IntegrityError(UploadError):
    def __init__(self, session_id: str, uploaded: int, total: int) -> None:
        super().__init__(
            f"Upload {session_id} incomplete after all batches: "
            f"{uploaded}/{total} chunks recorded"
        )
        self.session_id = session_id
        self.uploaded = uploaded
        self.total = total


class BatchTransferError(UploadError):
    def __init__(self, session_id: str, batch_start: int, cause: Exception) -> None:
        super().__init__(
            f"Failed to upload batch starting at chunk {batch_start} "
            f"for {session_id}: {cause}"
        )
        self.session_id = session_id
        self.batch_start = batch_start
        self.cause = cause


class ManifestWriteError(UploadError):
    def __init__(self, session_id: str, manifest_path: str) -> None:
        super().__init__(f"Manifest {manifest_path} for {session_id} was not written")
        self.session_id = session_id
        self.manifest_path = manifest_path


class OperationTimeoutError(UploadError):
    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(f"{operation} timed out after {timeout_seconds:.1f}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds
