from __future__ import annotations

import logging

from services.uploads.application.dto import InitializedUpload
from services.uploads.application.interfaces import (
    Clock,
    IdProvider,
    UploadSessionRepository,
)
from services.uploads.application.media_classifier import (
    BucketSelector,
    MediaClassifier,
    create_video_classifier,
)
from services.uploads.config import UploadConfig
from services.uploads.domain.errors import ValidationError
from services.uploads.domain.session import FileUpload, UploadSession

LOGGER = logging.getLogger(__name__)

_BYTES_TYPES = (bytes, bytearray, memoryview)


class InitializeUploadUseCase:
    def __init__(
        self,
        *,
        repository: UploadSessionRepository,
        id_provider: IdProvider,
        clock: Clock,
        config: UploadConfig,
        classifier: MediaClassifier | None = None,
        bucket_selector: BucketSelector | None = None,
    ) -> None:
        self._repository = repository
        self._id_provider = id_provider
        self._clock = clock
        self._config = config
        self._classifier = classifier or create_video_classifier()
        self._bucket_selector = bucket_selector or BucketSelector()

    def execute(self, file: FileUpload, folder: str = "videos") -> InitializedUpload:
        size = self._validate_bytes(file)
        classification = self._classifier.classify(file.content_type, file.filename)
        if not classification.matched:
            raise ValidationError(
                f"File must be a {self._classifier.kind.value}: "
                f"{file.filename!r} ({file.content_type or 'no content type'})"
            )

        folder = (folder or "").strip("/")
        bucket = self._bucket_selector.select(
            file.content_type, folder=folder, filename=file.filename
        )
        chunk_size = self._config.chunk_size_bytes
        session = UploadSession(
            session_id=self._id_provider.generate(),
            original_name=file.filename,
            content_type=file.content_type,
            total_size=size,
            chunk_size=chunk_size,
            media_kind=classification.kind,
            bucket=bucket,
            folder=folder,
            max_concurrency=self._config.max_concurrent_chunks,
            chunk_timeout_ms=self._config.chunk_timeout_ms,
            created_at=self._clock.now(),
        )
        self._repository.create(session)

        LOGGER.info(
            "Initialized upload %s for %s: %d bytes in %d chunk(s) of %d bytes, "
            "bucket=%s, detected by %s",
            session.session_id,
            file.filename,
            size,
            session.total_chunks,
            chunk_size,
            bucket,
            classification.matched_by,
        )
        return InitializedUpload(
            session_id=session.session_id,
            total_chunks=session.total_chunks,
            chunk_size=chunk_size,
            max_concurrency=session.max_concurrency,
            bucket=bucket,
        )

    def _validate_bytes(self, file: FileUpload) -> int:
        if file.data is None or not isinstance(file.data, _BYTES_TYPES):
            raise ValidationError("Invalid file buffer: bytes are required")
        actual = len(file.data)
        if actual == 0:
            raise ValidationError("Invalid file buffer: file is empty")
        if file.size is not None and file.size != actual:
            raise ValidationError(
                f"Declared size {file.size} does not match {actual} received bytes"
            )
        if actual > self._config.max_file_size_bytes:
            raise ValidationError(
                f"File size ({actual} bytes) exceeds limit "
                f"({self._config.max_file_size_bytes} bytes)"
            )
        return actual
