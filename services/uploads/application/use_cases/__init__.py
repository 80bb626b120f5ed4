"""Use cases for the chunked upload service."""

from .cleanup_upload import CleanupUploadUseCase
from .complete_upload import CompleteUploadUseCase
from .get_progress import GetUploadProgressUseCase
from .initialize_upload import InitializeUploadUseCase
from .upload_all import UploadAllChunksUseCase
from .upload_chunk import UploadChunkUseCase

__all__ = [
    "CleanupUploadUseCase",
    "CompleteUploadUseCase",
    "GetUploadProgressUseCase",
    "InitializeUploadUseCase",
    "UploadAllChunksUseCase",
    "UploadChunkUseCase",
]
